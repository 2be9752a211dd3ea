"""Owner registration, a stand-in for the app CRUD that owns generation jobs."""

from __future__ import annotations

import dataclasses
import logging
import uuid

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from genflow.owners import OwnerProfile

logger = logging.getLogger(__name__)
router = APIRouter()


class OwnerCreateRequest(BaseModel):
    owner_id: str | None = Field(default=None, min_length=1, max_length=128)
    name: str | None = None
    description: str | None = Field(default=None, max_length=4000)
    category: str | None = None
    style_guide: str | None = None


class OwnerResponse(BaseModel):
    owner_id: str
    name: str | None = None
    description: str | None = None
    category: str | None = None
    style_guide: str | None = None
    attachments: dict[str, str] = Field(default_factory=dict)


@router.post("/owners", response_model=OwnerResponse, status_code=status.HTTP_201_CREATED)
async def register_owner(request: Request, body: OwnerCreateRequest | None = None):
    """Register an owner id (generated when omitted). Re-registering keeps its assets."""
    orchestrator = request.app.state.orchestrator
    body = body or OwnerCreateRequest()
    owner_id = body.owner_id or f"app_{uuid.uuid4().hex[:12]}"
    fields = body.model_dump(exclude={"owner_id"})
    profile = OwnerProfile(**fields) if any(fields.values()) else None
    orchestrator.owners.register(owner_id, profile)
    logger.info("Registered owner %s", owner_id)
    current = await orchestrator.owners.get_profile(owner_id)
    return OwnerResponse(owner_id=owner_id, **dataclasses.asdict(current or OwnerProfile()))


@router.get("/owners/{owner_id}", response_model=OwnerResponse)
async def get_owner(request: Request, owner_id: str):
    """Owner with its profile and attached assets resolved to URLs."""
    orchestrator = request.app.state.orchestrator
    owners = orchestrator.owners
    if not await owners.exists(owner_id):
        raise HTTPException(status_code=404, detail=f"Owner not found: {owner_id}")
    attachments = {}
    for slot, ref in (await owners.list_attachments(owner_id)).items():
        attachments[slot] = await orchestrator.asset_url(ref)
    profile = await owners.get_profile(owner_id) or OwnerProfile()
    return OwnerResponse(owner_id=owner_id, attachments=attachments, **dataclasses.asdict(profile))
