"""Submission parameters per job kind, validated before a job record exists."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from genflow.errors import ValidationError
from genflow.jobs.models import JobKind


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class _DescriptionParams(_Params):
    description: str = Field(min_length=1, max_length=4000)
    category_hint: str | None = None
    ui_style: str | None = None


class ConceptParams(_DescriptionParams):
    # Concepts are generated in parallel, each as its own unit
    num_concepts: int = Field(default=1, ge=1, le=4)
    # Also generate an icon and a cover image preview per concept
    include_images: bool = False


class FullAppParams(_DescriptionParams):
    screens_count: int = Field(default=5, ge=1, le=10)


class IconParams(_Params):
    prompt: str = Field(min_length=1, max_length=4000)
    style_guide: str | None = None


class ScreensParams(_Params):
    app_name: str = Field(min_length=1)
    style_guide: str = ""
    screen_names: list[str] = Field(min_length=1, max_length=10)
    reference_refs: list[str] = Field(default_factory=list)

    @field_validator("screen_names")
    @classmethod
    def _names_not_blank(cls, names: list[str]) -> list[str]:
        cleaned = [n.strip() for n in names]
        if any(not n for n in cleaned):
            raise ValueError("screen names must not be blank")
        return cleaned


class CoverImageParams(_Params):
    num_variants: int = Field(default=4, ge=1, le=6)
    width: int = Field(default=1920, ge=256, le=4096)
    height: int = Field(default=960, ge=256, le=4096)
    description: str | None = Field(default=None, max_length=4000)
    user_feedback: str | None = None
    # Generate a single variant and attach it to the owner right away
    auto_save: bool = False

    @property
    def variant_count(self) -> int:
        return 1 if self.auto_save else self.num_variants


class CoverVideoParams(_Params):
    custom_prompt: str | None = None
    duration_s: int = Field(default=6, ge=1, le=10)


class DescriptionParams(_Params):
    user_feedback: str | None = Field(default=None, max_length=2000)
    # Send up to five of the owner's screens as visual context
    include_screenshots: bool = True


PARAMS_BY_KIND: dict[JobKind, type[_Params]] = {
    JobKind.FULL_APP: FullAppParams,
    JobKind.CONCEPT: ConceptParams,
    JobKind.ICON: IconParams,
    JobKind.SCREENS: ScreensParams,
    JobKind.COVER_IMAGE: CoverImageParams,
    JobKind.COVER_VIDEO: CoverVideoParams,
    JobKind.IMPROVE_DESCRIPTION: DescriptionParams,
}


def parse_kind(kind: str | JobKind) -> JobKind:
    try:
        return JobKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in JobKind)
        raise ValidationError(f"Unknown job kind {kind!r}; expected one of: {allowed}") from None


def validate_params(kind: JobKind, params: dict[str, Any] | None) -> _Params:
    """Return the typed params for *kind*, raising ValidationError on bad input."""
    model = PARAMS_BY_KIND[kind]
    try:
        return model.model_validate(params or {})
    except PydanticValidationError as e:
        details = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{d['loc'] or 'params'}: {d['msg']}" for d in details)
        raise ValidationError(f"Invalid params for {kind.value}: {summary}", details=details) from e
