"""Storage for generated media assets."""

from genflow.assets.store import AssetRef, AssetStore, FileAssetStore, InMemoryAssetStore, build_asset_store

__all__ = ["AssetRef", "AssetStore", "FileAssetStore", "InMemoryAssetStore", "build_asset_store"]
