"""Stage plans per job kind and the prompts each stage sends to the provider."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from genflow.jobs.models import ConceptSummary, JobKind, JobStatus, UnitKind
from genflow.owners import OwnerProfile


@dataclass(frozen=True)
class StagePlan:
    stage: str
    unit_kind: UnitKind
    status: JobStatus
    label: str
    # Single long unit: progress is time-based under a heartbeat, with the overdue check
    single: bool = True


CONCEPT_STAGE = StagePlan("concept", UnitKind.CONCEPT, JobStatus.GENERATING_CONCEPT, "Generating concept")
CONCEPT_IMAGES_STAGE = StagePlan(
    "concept_images", UnitKind.ICON, JobStatus.GENERATING_CONCEPT, "Generating concept images", single=False,
)
ICON_STAGE = StagePlan("icon", UnitKind.ICON, JobStatus.GENERATING_ICON, "Generating icon")
SCREENS_STAGE = StagePlan("screens", UnitKind.SCREEN, JobStatus.GENERATING_SCREENS, "Generating screens", single=False)
COVER_IMAGE_STAGE = StagePlan("cover_image", UnitKind.COVER_IMAGE, JobStatus.GENERATING, "Generating cover images", single=False)
COVER_VIDEO_STAGE = StagePlan("cover_video", UnitKind.COVER_VIDEO, JobStatus.GENERATING, "Generating cover video")
DESCRIPTION_STAGE = StagePlan("description", UnitKind.DESCRIPTION, JobStatus.GENERATING, "Improving description")

PIPELINES: dict[JobKind, list[StagePlan]] = {
    JobKind.FULL_APP: [CONCEPT_STAGE, ICON_STAGE, SCREENS_STAGE],
    JobKind.CONCEPT: [CONCEPT_STAGE, CONCEPT_IMAGES_STAGE],
    JobKind.ICON: [ICON_STAGE],
    JobKind.SCREENS: [SCREENS_STAGE],
    JobKind.COVER_IMAGE: [COVER_IMAGE_STAGE],
    JobKind.COVER_VIDEO: [COVER_VIDEO_STAGE],
    JobKind.IMPROVE_DESCRIPTION: [DESCRIPTION_STAGE],
}

# Stages whose unit count comes from the job params
_UNIT_COUNTS: dict[str, Callable[[Any], int]] = {
    "concept": lambda p: getattr(p, "num_concepts", 1),
    "cover_image": lambda p: p.variant_count,
}

MAX_DESCRIPTION_SCREENSHOTS = 5


def plan_for(kind: JobKind, params: Any = None) -> list[StagePlan]:
    """Stages of a *kind* job. A stage whose params ask for one unit runs it as a single long unit."""
    plans = []
    for plan in PIPELINES[JobKind(kind)]:
        if plan.stage == "concept_images" and not getattr(params, "include_images", False):
            continue
        count = _UNIT_COUNTS.get(plan.stage)
        if count is not None and params is not None:
            plan = dataclasses.replace(plan, single=count(params) == 1)
        plans.append(plan)
    return plans


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def concept_prompt(description: str, category_hint: str | None = None, ui_style: str | None = None,
                   screens_count: int | None = None, variant: int = 0, total: int = 1) -> str:
    lines = [
        "You are a mobile app product designer. Turn the idea below into an app concept.",
        f"Idea: {description}",
    ]
    if category_hint:
        lines.append(f"App Store category hint: {category_hint}")
    if ui_style:
        lines.append(f"Preferred UI style: {ui_style}")
    if total > 1:
        lines.append(f"Concept {variant + 1} of {total}: take a direction clearly different from the obvious one.")
    if screens_count:
        lines.append(f"Propose exactly {screens_count} screen names, most important first.")
    lines.append(
        "Return name, subtitle (max 30 chars), description, category, style_guide, "
        "colors (primary, background, text, accent as hex), typography (headlineFont, headlineSize, "
        "headlineWeight, bodyFont, bodySize, bodyWeight), effects (cornerRadius, shadowStyle, "
        "designPhilosophy), icon_prompt, cover_prompt and screen_names."
    )
    return "\n".join(lines)


def concept_style(concept: ConceptSummary) -> str:
    """Style guide text plus the concept's design system, for image prompts."""
    c, t, e = concept.colors, concept.typography, concept.effects
    parts = [concept.style_guide] if concept.style_guide else []
    parts.append(f"Colors: primary {c.primary}, background {c.background}, text {c.text}, accent {c.accent}.")
    parts.append(f"Type: {t.headline_font} {t.headline_weight} headlines, {t.body_font} {t.body_weight} body.")
    parts.append(f"Corners {e.corner_radius}, shadows {e.shadow_style}. {e.design_philosophy}.")
    return " ".join(parts)


def icon_prompt(concept: ConceptSummary) -> str:
    base = concept.icon_prompt or f"App icon for {concept.name}"
    return f"{base}. Style: {concept_style(concept)} Square, no text, centered symbol, iOS app icon."


def standalone_icon_prompt(prompt: str, style_guide: str | None) -> str:
    style = f" Style: {style_guide}." if style_guide else ""
    return f"{prompt}.{style} Square, no text, centered symbol, iOS app icon."


def screen_prompt(app_name: str, style_guide: str, screen_name: str, index: int, total: int) -> str:
    parts = [
        f"Mobile app screenshot for '{app_name}': the {screen_name} screen ({index + 1} of {total}).",
        "Portrait phone frame, realistic UI content, no device bezel.",
    ]
    if style_guide:
        parts.append(f"Follow this style guide: {style_guide}")
    if index > 0:
        parts.append("Match the visual style of the reference screen exactly.")
    return " ".join(parts)


def screen_names_for(concept: ConceptSummary, count: int) -> list[str]:
    """Exactly *count* names: the concept's, padded with generic ones."""
    names = [n.strip() for n in concept.screen_names if n and n.strip()][:count]
    while len(names) < count:
        names.append(f"Screen {len(names) + 1}")
    return names


def cover_image_prompt(owner_id: str, description: str | None, user_feedback: str | None,
                       variant: int, total: int) -> str:
    subject = description or f"the app {owner_id}"
    parts = [f"Wide promotional cover artwork for {subject}. Bold composition, no UI text."]
    if total > 1:
        parts.append(f"Variation {variant + 1} of {total}: use a distinct composition.")
    if user_feedback:
        parts.append(f"Apply this feedback: {user_feedback}")
    return " ".join(parts)


def cover_video_prompt(owner_id: str, custom_prompt: str | None) -> str:
    if custom_prompt:
        return custom_prompt
    return f"Subtle cinematic camera motion over the cover artwork of {owner_id}; smooth loop, no cuts."


def concept_cover_prompt(concept: ConceptSummary) -> str:
    base = concept.cover_prompt or f"Promotional cover artwork for {concept.name}"
    return f"{base}. Style: {concept_style(concept)} Wide banner, bold composition, no UI text."


def description_prompt(profile: OwnerProfile, user_feedback: str | None, screenshot_count: int = 0) -> str:
    lines = [
        "Rewrite this App Store description in modern App Store formatting: a short hook, then "
        "KEY FEATURES, BENEFITS and PERFECT FOR sections with bullet points. Keep every claim "
        "supported by the original text.",
        f"App name: {profile.name or 'Untitled app'}",
    ]
    if profile.category:
        lines.append(f"Category: {profile.category}")
    if profile.style_guide:
        lines.append(f"Visual style: {profile.style_guide}")
    if user_feedback:
        lines.append(f"Apply this feedback: {user_feedback}")
    if screenshot_count:
        lines.append(f"{screenshot_count} screenshot(s) of the app are attached for context.")
    lines.append(f"Current description:\n{profile.description}")
    lines.append("Return only the new description text.")
    return "\n".join(lines)
