"""Generation job schema, status state machine and snapshot read model."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from genflow.errors import InvalidTransitionError, JobImmutableError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobKind(str, Enum):
    CONCEPT = "concept"
    ICON = "icon"
    SCREENS = "screens"
    COVER_IMAGE = "coverImage"
    COVER_VIDEO = "coverVideo"
    FULL_APP = "fullAppGeneration"
    IMPROVE_DESCRIPTION = "improveDescription"


class JobStatus(str, Enum):
    PENDING = "pending"
    GENERATING_CONCEPT = "generating_concept"
    GENERATING_ICON = "generating_icon"
    GENERATING_SCREENS = "generating_screens"
    GENERATING = "generating"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class UnitKind(str, Enum):
    """What a single provider call produces."""

    CONCEPT = "concept"
    ICON = "icon"
    SCREEN = "screen"
    COVER_IMAGE = "cover_image"
    COVER_VIDEO = "cover_video"
    DESCRIPTION = "description"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.PARTIAL, JobStatus.FAILED})
ACTIVE_STATUSES = frozenset(set(JobStatus) - TERMINAL_STATUSES)

# Forward-only transitions; terminal states are absorbing.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({
        JobStatus.GENERATING_CONCEPT,
        JobStatus.GENERATING_ICON,
        JobStatus.GENERATING_SCREENS,
        JobStatus.GENERATING,
        JobStatus.FAILED,
    }),
    JobStatus.GENERATING_CONCEPT: frozenset({
        JobStatus.GENERATING_ICON,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.GENERATING_ICON: frozenset({
        JobStatus.GENERATING_SCREENS,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.GENERATING_SCREENS: frozenset({
        JobStatus.COMPLETED,
        JobStatus.PARTIAL,
        JobStatus.FAILED,
    }),
    # Single-stage kinds never end partial
    JobStatus.GENERATING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.PARTIAL: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    if current == new:
        return not current.is_terminal
    return new in ALLOWED_TRANSITIONS[current]


# ---------------------------------------------------------------------------
# Payload pieces
# ---------------------------------------------------------------------------

class FailedUnit(BaseModel):
    """A unit that failed after all retries, with its last error."""

    model_config = ConfigDict(populate_by_name=True)

    unit_name: str = Field(alias="unitName")
    error_message: str = Field(alias="errorMessage")


class ConceptColors(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    primary: str = "#000000"
    background: str = "#FFFFFF"
    text: str = "#000000"
    accent: str = "#000000"


class ConceptTypography(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    headline_font: str = Field(default="System", alias="headlineFont")
    headline_size: str = Field(default="24px", alias="headlineSize")
    headline_weight: str = Field(default="bold", alias="headlineWeight")
    body_font: str = Field(default="System", alias="bodyFont")
    body_size: str = Field(default="16px", alias="bodySize")
    body_weight: str = Field(default="normal", alias="bodyWeight")


class ConceptEffects(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    corner_radius: str = Field(default="8px", alias="cornerRadius")
    shadow_style: str = Field(default="none", alias="shadowStyle")
    design_philosophy: str = Field(default="Clean and simple", alias="designPhilosophy")


class ConceptSummary(BaseModel):
    """Structured concept produced by the concept stage.

    The design system (colors, typography, effects) falls back to neutral
    defaults when the model leaves it out.
    """

    name: str
    subtitle: str = ""
    description: str = ""
    category: str | None = None
    style_guide: str = ""
    icon_prompt: str = ""
    cover_prompt: str = ""
    screen_names: list[str] = Field(default_factory=list)
    colors: ConceptColors = Field(default_factory=ConceptColors)
    typography: ConceptTypography = Field(default_factory=ConceptTypography)
    effects: ConceptEffects = Field(default_factory=ConceptEffects)


class ConceptImages(BaseModel):
    """Preview images generated for one concept of a concept batch."""

    icon_ref: str | None = None
    cover_ref: str | None = None


class _ScreensCounters(BaseModel):
    screens_generated: int = Field(default=0, ge=0)
    screens_total: int = Field(default=0, ge=0)
    screen_refs: dict[int, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _generated_within_total(self):
        if self.screens_generated > self.screens_total:
            raise ValueError(
                f"screens_generated ({self.screens_generated}) exceeds screens_total ({self.screens_total})"
            )
        return self


class FullAppPayload(_ScreensCounters):
    kind: Literal["fullAppGeneration"] = "fullAppGeneration"
    concept: ConceptSummary | None = None
    icon_ref: str | None = None


class ConceptPayload(BaseModel):
    kind: Literal["concept"] = "concept"
    # First concept in slot order; all of them are in `concepts`
    concept: ConceptSummary | None = None
    concepts: list[ConceptSummary] = Field(default_factory=list)
    concept_images: dict[int, ConceptImages] = Field(default_factory=dict)


class IconPayload(BaseModel):
    kind: Literal["icon"] = "icon"
    icon_ref: str | None = None


class ScreensPayload(_ScreensCounters):
    kind: Literal["screens"] = "screens"


class CoverImagePayload(BaseModel):
    kind: Literal["coverImage"] = "coverImage"
    variants_total: int = 0
    variants: dict[int, str] = Field(default_factory=dict)
    auto_saved_ref: str | None = None


class CoverVideoPayload(BaseModel):
    kind: Literal["coverVideo"] = "coverVideo"
    video_ref: str | None = None


class DescriptionPayload(BaseModel):
    kind: Literal["improveDescription"] = "improveDescription"
    original_description: str | None = None
    description: str | None = None


JobPayload = Annotated[
    Union[
        FullAppPayload,
        ConceptPayload,
        IconPayload,
        ScreensPayload,
        CoverImagePayload,
        CoverVideoPayload,
        DescriptionPayload,
    ],
    Field(discriminator="kind"),
]

_PAYLOAD_TYPES: dict[JobKind, type[BaseModel]] = {
    JobKind.FULL_APP: FullAppPayload,
    JobKind.CONCEPT: ConceptPayload,
    JobKind.ICON: IconPayload,
    JobKind.SCREENS: ScreensPayload,
    JobKind.COVER_IMAGE: CoverImagePayload,
    JobKind.COVER_VIDEO: CoverVideoPayload,
    JobKind.IMPROVE_DESCRIPTION: DescriptionPayload,
}


def empty_payload(kind: JobKind) -> BaseModel:
    return _PAYLOAD_TYPES[JobKind(kind)]()


# ---------------------------------------------------------------------------
# Job envelope
# ---------------------------------------------------------------------------

class GenerationJob(BaseModel):
    """Shared job envelope plus a kind-specific payload."""

    job_id: str
    owner_id: str
    kind: JobKind
    status: JobStatus = JobStatus.PENDING
    current_step: str = "Queued"
    progress_percentage: int = Field(default=0, ge=0, le=100)
    failed_units: list[FailedUnit] = Field(default_factory=list)
    error: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    payload: JobPayload
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _payload_matches_kind(self):
        if self.payload.kind != JobKind(self.kind).value:
            raise ValueError(f"payload kind {self.payload.kind!r} does not match job kind {self.kind!r}")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


def apply_patch(job: GenerationJob, changes: dict[str, Any]) -> GenerationJob:
    """Return a new job with *changes* applied, or raise without side effects.

    ``changes["payload"]`` is merged field-by-field into the current payload.
    Terminal jobs are immutable, status only moves forward and
    ``progress_percentage`` never decreases.
    """
    if job.is_terminal:
        raise JobImmutableError(f"Job {job.job_id} is {job.status.value}; record is immutable")

    data = job.model_dump()
    payload_changes = changes.get("payload")
    for key, value in changes.items():
        if key == "payload":
            continue
        if key in ("job_id", "owner_id", "kind", "created_at", "version"):
            raise ValueError(f"Field {key!r} cannot be patched")
        data[key] = value
    if payload_changes:
        merged = dict(data["payload"])
        merged.update(payload_changes if isinstance(payload_changes, dict) else payload_changes.model_dump())
        data["payload"] = merged

    new_status = JobStatus(data["status"])
    if new_status != job.status and not can_transition(job.status, new_status):
        raise InvalidTransitionError(
            f"Job {job.job_id}: {job.status.value} -> {new_status.value} is not allowed"
        )
    if int(data["progress_percentage"]) < job.progress_percentage:
        data["progress_percentage"] = job.progress_percentage

    data["version"] = job.version + 1
    data["updated_at"] = utcnow()
    return GenerationJob.model_validate(data)


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------

class JobSnapshot(BaseModel):
    """What readers observe: flat status view with wire (camelCase) aliases."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    owner_id: str = Field(alias="ownerId")
    kind: JobKind
    status: JobStatus
    current_step: str = Field(alias="currentStep")
    screens_generated: int = Field(default=0, alias="screensGenerated")
    screens_total: int = Field(default=0, alias="screensTotal")
    failed_units: list[FailedUnit] = Field(default_factory=list, alias="failedUnits")
    error: str | None = None
    progress_percentage: int = Field(alias="progressPercentage")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    version: int = 0
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


def to_snapshot(job: GenerationJob) -> JobSnapshot:
    payload = job.payload
    return JobSnapshot(
        job_id=job.job_id,
        owner_id=job.owner_id,
        kind=job.kind,
        status=job.status,
        current_step=job.current_step,
        screens_generated=getattr(payload, "screens_generated", 0),
        screens_total=getattr(payload, "screens_total", 0),
        failed_units=list(job.failed_units),
        error=job.error,
        progress_percentage=job.progress_percentage,
        created_at=job.created_at,
        updated_at=job.updated_at,
        version=job.version,
        payload=payload.model_dump(mode="json"),
    )
