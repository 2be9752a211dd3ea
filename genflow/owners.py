"""Owning entities (apps) as far as job orchestration needs them: existence, profile and attached assets."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

ICON_SLOT = "icon"
COVER_IMAGE_SLOT = "cover_image"
COVER_VIDEO_SLOT = "cover_video"
SCREEN_SLOT_PREFIX = "screen:"


def screen_slot(index: int) -> str:
    return f"{SCREEN_SLOT_PREFIX}{index}"


def screen_refs(attachments: dict[str, str]) -> list[str]:
    """Screen attachments in screen order."""
    screens = [
        (int(slot[len(SCREEN_SLOT_PREFIX):]), ref)
        for slot, ref in attachments.items()
        if slot.startswith(SCREEN_SLOT_PREFIX)
    ]
    return [ref for _, ref in sorted(screens)]


@dataclass
class OwnerProfile:
    """App store text of an owner; jobs read it and write generated text back."""

    name: str | None = None
    description: str | None = None
    category: str | None = None
    style_guide: str | None = None


class OwnerRegistry(Protocol):
    def register(self, owner_id: str, profile: OwnerProfile | None = None) -> None: ...
    async def exists(self, owner_id: str) -> bool: ...
    async def get_profile(self, owner_id: str) -> OwnerProfile | None: ...
    async def update_profile(self, owner_id: str, **fields: str | None) -> OwnerProfile: ...
    async def get_attachment(self, owner_id: str, slot: str) -> str | None: ...
    async def attach(self, owner_id: str, slot: str, ref: str) -> str | None: ...
    async def list_attachments(self, owner_id: str) -> dict[str, str]: ...


class InMemoryOwnerRegistry:
    """Registered owner ids with their profiles and attached asset references."""

    def __init__(self, owner_ids: list[str] | None = None):
        self._attachments: dict[str, dict[str, str]] = {}
        self._profiles: dict[str, OwnerProfile] = {}
        for owner_id in owner_ids or []:
            self.register(owner_id)

    def register(self, owner_id: str, profile: OwnerProfile | None = None) -> None:
        """Add *owner_id*; an existing owner keeps its attachments and only takes a new *profile*."""
        self._attachments.setdefault(owner_id, {})
        if profile is not None:
            self._profiles[owner_id] = profile
        else:
            self._profiles.setdefault(owner_id, OwnerProfile())

    def remove(self, owner_id: str) -> None:
        self._attachments.pop(owner_id, None)
        self._profiles.pop(owner_id, None)

    async def exists(self, owner_id: str) -> bool:
        return owner_id in self._attachments

    async def get_profile(self, owner_id: str) -> OwnerProfile | None:
        profile = self._profiles.get(owner_id)
        return dataclasses.replace(profile) if profile is not None else None

    async def update_profile(self, owner_id: str, **fields: str | None) -> OwnerProfile:
        if owner_id not in self._profiles:
            raise KeyError(owner_id)
        self._profiles[owner_id] = dataclasses.replace(self._profiles[owner_id], **fields)
        logger.debug("Updated profile of %s: %s", owner_id, ", ".join(sorted(fields)))
        return dataclasses.replace(self._profiles[owner_id])

    async def get_attachment(self, owner_id: str, slot: str) -> str | None:
        return self._attachments.get(owner_id, {}).get(slot)

    async def attach(self, owner_id: str, slot: str, ref: str) -> str | None:
        """Set *slot* to *ref* and return the reference it replaced."""
        if owner_id not in self._attachments:
            raise KeyError(owner_id)
        previous = self._attachments[owner_id].get(slot)
        self._attachments[owner_id][slot] = ref
        logger.debug("Attached %s to %s/%s (replaced %s)", ref, owner_id, slot, previous)
        return previous

    async def list_attachments(self, owner_id: str) -> dict[str, str]:
        return dict(self._attachments.get(owner_id, {}))
