"""Asset storage for generated media: in-memory or file-based."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Protocol

from genflow.config import Settings

logger = logging.getLogger(__name__)

AssetRef = str

_EXTRA_EXTENSIONS = {
    "application/json": ".json",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
}


def _extension_for(content_type: str) -> str:
    base = content_type.split(";", 1)[0].strip().lower()
    return _EXTRA_EXTENSIONS.get(base) or mimetypes.guess_extension(base) or ".bin"


def new_asset_ref() -> AssetRef:
    return f"asset_{uuid.uuid4().hex[:16]}"


class AssetStore(Protocol):
    async def put(self, data: bytes, content_type: str) -> AssetRef: ...
    async def get_url(self, ref: AssetRef) -> str | None: ...
    async def read(self, ref: AssetRef) -> bytes | None: ...
    async def delete(self, ref: AssetRef) -> None: ...


class InMemoryAssetStore:
    """Process-local asset store (tests, CLI --mock)."""

    def __init__(self) -> None:
        self._assets: dict[AssetRef, tuple[bytes, str]] = {}

    async def put(self, data: bytes, content_type: str) -> AssetRef:
        ref = new_asset_ref()
        self._assets[ref] = (bytes(data), content_type)
        return ref

    async def get_url(self, ref: AssetRef) -> str | None:
        return f"memory://{ref}" if ref in self._assets else None

    async def read(self, ref: AssetRef) -> bytes | None:
        entry = self._assets.get(ref)
        return entry[0] if entry else None

    async def delete(self, ref: AssetRef) -> None:
        self._assets.pop(ref, None)

    def __contains__(self, ref: object) -> bool:
        return ref in self._assets

    def __len__(self) -> int:
        return len(self._assets)


class FileAssetStore:
    """Assets as files under ``<data_dir>/assets`` named ``<ref><ext>``."""

    def __init__(self, assets_dir: Path, base_url: str | None = None):
        self._dir = Path(assets_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url.rstrip("/") if base_url else None

    def _find(self, ref: AssetRef) -> Path | None:
        matches = sorted(self._dir.glob(f"{ref}.*"))
        return matches[0] if matches else None

    async def put(self, data: bytes, content_type: str) -> AssetRef:
        ref = new_asset_ref()
        path = self._dir / f"{ref}{_extension_for(content_type)}"
        await asyncio.to_thread(path.write_bytes, data)
        logger.debug("Stored asset %s (%d bytes, %s)", path.name, len(data), content_type)
        return ref

    async def get_url(self, ref: AssetRef) -> str | None:
        path = self._find(ref)
        if path is None:
            return None
        if self._base_url:
            return f"{self._base_url}/{path.name}"
        return path.resolve().as_uri()

    async def read(self, ref: AssetRef) -> bytes | None:
        path = self._find(ref)
        if path is None:
            return None
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, ref: AssetRef) -> None:
        path = await asyncio.to_thread(self._find, ref)
        if path is not None:
            await asyncio.to_thread(path.unlink, missing_ok=True)


def build_asset_store(settings: Settings) -> AssetStore:
    if settings.genflow_asset_store.lower() == "memory":
        logger.info("Using in-memory asset store")
        return InMemoryAssetStore()
    logger.info("Using file-based asset store (%s)", settings.assets_dir)
    return FileAssetStore(settings.assets_dir, settings.genflow_asset_base_url)

