"""Progress estimation: fixed per-stage slices of 0–100, countable or time-based within a slice.

Every stage of a job kind owns a ``(start, end)`` slice. Stages with many
units advance linearly with units done; single long units follow an
asymptotic curve ``100 * (1 - e^(-2 * elapsed / target))`` that reaches
about 87% at the target duration and never 100 before resolution.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from genflow.config import Settings
from genflow.errors import ConfigError
from genflow.jobs.models import JobKind, JobStatus, UnitKind

logger = logging.getLogger(__name__)

NON_TERMINAL_CAP = 99


class StageSlice(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: str
    start: int = Field(ge=0, le=100)
    end: int = Field(ge=0, le=100)

    @property
    def span(self) -> int:
        return self.end - self.start


class ProgressTable(BaseModel):
    """Ordered stage slices per job kind, each covering exactly 0–100."""

    slices: dict[JobKind, list[StageSlice]]

    @model_validator(mode="after")
    def _covers_zero_to_hundred(self):
        for kind, slices in self.slices.items():
            if not slices:
                raise ValueError(f"{kind.value}: no stages")
            position = 0
            for s in slices:
                if s.end <= s.start:
                    raise ValueError(f"{kind.value}/{s.stage}: empty or reversed slice {s.start}-{s.end}")
                if s.start != position:
                    raise ValueError(
                        f"{kind.value}/{s.stage}: starts at {s.start}, expected {position} (gap or overlap)"
                    )
                position = s.end
            if position != 100:
                raise ValueError(f"{kind.value}: stages end at {position}, expected 100")
        missing = set(JobKind) - set(self.slices)
        if missing:
            raise ValueError("no stages for: " + ", ".join(sorted(k.value for k in missing)))
        return self

    def slices_for(self, kind: JobKind) -> list[StageSlice]:
        return self.slices[JobKind(kind)]

    def slice_for(self, kind: JobKind, stage: str) -> StageSlice:
        for s in self.slices_for(kind):
            if s.stage == stage:
                return s
        raise KeyError(f"{JobKind(kind).value} has no stage {stage!r}")

    @classmethod
    def from_mapping(cls, data: dict) -> "ProgressTable":
        """Build from ``{kind: {stage: [start, end], ...}}`` (YAML file shape)."""
        slices: dict[str, list[dict]] = {}
        for kind, stages in (data or {}).items():
            slices[kind] = [
                {"stage": stage, "start": bounds[0], "end": bounds[1]}
                for stage, bounds in stages.items()
            ]
        try:
            return cls.model_validate({"slices": slices})
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid progress table: {e}") from e

    def to_mapping(self) -> dict[str, dict[str, list[int]]]:
        return {
            kind.value: {s.stage: [s.start, s.end] for s in slices}
            for kind, slices in self.slices.items()
        }


DEFAULT_TABLE_MAPPING: dict[str, dict[str, list[int]]] = {
    JobKind.FULL_APP.value: {"concept": [0, 15], "icon": [15, 30], "screens": [30, 100]},
    JobKind.CONCEPT.value: {"concept": [0, 40], "concept_images": [40, 100]},
    JobKind.ICON.value: {"icon": [0, 100]},
    JobKind.SCREENS.value: {"screens": [0, 100]},
    JobKind.COVER_IMAGE.value: {"cover_image": [0, 100]},
    JobKind.COVER_VIDEO.value: {"cover_video": [0, 100]},
    JobKind.IMPROVE_DESCRIPTION.value: {"description": [0, 100]},
}


def default_progress_table() -> ProgressTable:
    return ProgressTable.from_mapping(DEFAULT_TABLE_MAPPING)


def load_progress_table(settings: Settings) -> ProgressTable:
    """Default table, with kinds overridden from GENFLOW_PROGRESS_TABLE_PATH if set."""
    path = settings.genflow_progress_table_path
    if not path:
        return default_progress_table()
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Progress table file not found: {p}")
    with open(p, "r", encoding="utf-8") as f:
        try:
            overrides = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Progress table {p} is not valid YAML: {e}") from e
    if not isinstance(overrides, dict):
        raise ConfigError(f"Progress table {p} must be a mapping of kind -> stages")
    merged = {**DEFAULT_TABLE_MAPPING, **overrides}
    table = ProgressTable.from_mapping(merged)
    logger.info("Loaded progress table from %s", p)
    return table


# ---------------------------------------------------------------------------
# Regimes
# ---------------------------------------------------------------------------

def countable(stage: StageSlice, done: int, total: int) -> float:
    """Linear progress through *stage* by units resolved."""
    if total <= 0:
        return float(stage.start)
    done = min(max(done, 0), total)
    return stage.start + stage.span * done / total


def time_based_fraction(elapsed: float, target: float) -> float:
    """Asymptotic 0–99 curve; about 87 at ``elapsed == target``."""
    if target <= 0:
        return float(NON_TERMINAL_CAP)
    value = 100.0 * (1.0 - math.exp(-2.0 * max(elapsed, 0.0) / target))
    return min(value, float(NON_TERMINAL_CAP))


def time_based(stage: StageSlice, elapsed: float, target: float) -> float:
    return stage.start + stage.span * time_based_fraction(elapsed, target) / 100.0


def is_overdue(elapsed: float, target: float, factor: float = 3.0) -> bool:
    return elapsed > target * factor


class ProgressEstimate(BaseModel):
    value: int
    overdue: bool = False


class ProgressEstimator:
    """Maps stage, unit counts and elapsed time to a monotonic integer percentage."""

    def __init__(
        self,
        table: ProgressTable | None = None,
        target_durations: dict[str, float] | None = None,
        overdue_factor: float = 3.0,
    ):
        self.table = table or default_progress_table()
        self._targets = dict(target_durations or {})
        self._overdue_factor = overdue_factor

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProgressEstimator":
        return cls(
            load_progress_table(settings),
            settings.genflow_target_durations,
            settings.genflow_overdue_factor,
        )

    def target_for(self, unit_kind: UnitKind) -> float:
        return float(self._targets.get(UnitKind(unit_kind).value, 40.0))

    def stage_start(self, kind: JobKind, stage: str, previous: int = 0) -> int:
        return self._finish(self.table.slice_for(kind, stage).start, previous)

    def stage_end(self, kind: JobKind, stage: str, previous: int = 0) -> int:
        """Snap to the end of a resolved stage (never 100 here)."""
        return self._finish(self.table.slice_for(kind, stage).end, previous)

    def estimate(
        self,
        kind: JobKind,
        stage: str,
        *,
        previous: int = 0,
        done: int | None = None,
        total: int | None = None,
        elapsed: float | None = None,
        unit_kind: UnitKind | None = None,
    ) -> ProgressEstimate:
        """Countable when *done*/*total* are given, time-based when *elapsed* is."""
        stage_slice = self.table.slice_for(kind, stage)
        if done is not None and total is not None:
            return ProgressEstimate(value=self._finish(countable(stage_slice, done, total), previous))
        if elapsed is None or unit_kind is None:
            raise ValueError("estimate needs done/total or elapsed/unit_kind")
        target = self.target_for(unit_kind)
        return ProgressEstimate(
            value=self._finish(time_based(stage_slice, elapsed, target), previous),
            overdue=is_overdue(elapsed, target, self._overdue_factor),
        )

    def final(self, status: JobStatus, previous: int) -> int:
        """Progress for a terminal status: 100 once all work resolved, else frozen."""
        if status in (JobStatus.COMPLETED, JobStatus.PARTIAL):
            return 100
        return min(previous, NON_TERMINAL_CAP)

    @staticmethod
    def _finish(value: float, previous: int) -> int:
        return max(previous, min(int(value), NON_TERMINAL_CAP))
