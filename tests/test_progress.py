"""Tests for progress slices, the countable and time-based regimes, and the estimator."""

import pytest

from genflow.errors import ConfigError
from genflow.jobs.models import JobKind, JobStatus, UnitKind
from genflow.orchestrator.progress import (
    DEFAULT_TABLE_MAPPING,
    ProgressEstimator,
    ProgressTable,
    StageSlice,
    countable,
    default_progress_table,
    is_overdue,
    load_progress_table,
    time_based,
    time_based_fraction,
)

TARGETS = {"concept": 20.0, "icon": 40.0, "screen": 40.0, "cover_image": 40.0, "cover_video": 90.0}


def test_countable_linear_within_slice():
    screens = StageSlice(stage="screens", start=30, end=100)
    assert countable(screens, 0, 5) == 30
    assert countable(screens, 2, 5) == pytest.approx(58)
    assert countable(screens, 5, 5) == 100


def test_countable_clamps_done_and_handles_empty_stage():
    s = StageSlice(stage="screens", start=30, end=100)
    assert countable(s, 9, 5) == 100
    assert countable(s, 3, 0) == 30


def test_time_based_fraction_at_target_is_about_87():
    value = time_based_fraction(40.0, 40.0)
    assert abs(value - 87) <= 2
    assert value < 100


def test_time_based_fraction_curve_points():
    assert time_based_fraction(0.0, 40.0) == 0
    assert time_based_fraction(60.0, 40.0) == pytest.approx(95.0, abs=1)
    assert time_based_fraction(10_000.0, 40.0) == 99


def test_time_based_maps_into_slice():
    icon = StageSlice(stage="icon", start=15, end=30)
    assert time_based(icon, 0.0, 40.0) == 15
    assert 15 < time_based(icon, 40.0, 40.0) < 30


def test_is_overdue_after_three_targets():
    assert not is_overdue(90.0, 40.0)
    assert not is_overdue(120.0, 40.0)
    assert is_overdue(120.1, 40.0)
    assert is_overdue(31.0, 10.0, factor=3.0)


class TestProgressTable:
    def test_default_table_covers_every_kind(self):
        table = default_progress_table()
        for kind in JobKind:
            slices = table.slices_for(kind)
            assert slices[0].start == 0
            assert slices[-1].end == 100

    def test_full_app_slices(self):
        table = default_progress_table()
        assert [(s.stage, s.start, s.end) for s in table.slices_for(JobKind.FULL_APP)] == [
            ("concept", 0, 15),
            ("icon", 15, 30),
            ("screens", 30, 100),
        ]

    def test_concept_and_description_slices(self):
        table = default_progress_table()
        assert [(s.stage, s.start, s.end) for s in table.slices_for(JobKind.CONCEPT)] == [
            ("concept", 0, 40),
            ("concept_images", 40, 100),
        ]
        assert [(s.stage, s.end) for s in table.slices_for(JobKind.IMPROVE_DESCRIPTION)] == [("description", 100)]

    def test_gap_is_rejected(self):
        bad = dict(DEFAULT_TABLE_MAPPING)
        bad["fullAppGeneration"] = {"concept": [0, 15], "icon": [20, 30], "screens": [30, 100]}
        with pytest.raises(ConfigError):
            ProgressTable.from_mapping(bad)

    def test_overlap_is_rejected(self):
        bad = dict(DEFAULT_TABLE_MAPPING)
        bad["fullAppGeneration"] = {"concept": [0, 20], "icon": [15, 30], "screens": [30, 100]}
        with pytest.raises(ConfigError):
            ProgressTable.from_mapping(bad)

    def test_must_end_at_100(self):
        bad = dict(DEFAULT_TABLE_MAPPING)
        bad["icon"] = {"icon": [0, 90]}
        with pytest.raises(ConfigError):
            ProgressTable.from_mapping(bad)

    def test_missing_kind_is_rejected(self):
        bad = {k: v for k, v in DEFAULT_TABLE_MAPPING.items() if k != "coverVideo"}
        with pytest.raises(ConfigError):
            ProgressTable.from_mapping(bad)

    def test_yaml_override(self, tmp_path, settings_factory):
        path = tmp_path / "progress.yaml"
        path.write_text(
            "fullAppGeneration:\n"
            "  concept: [0, 10]\n"
            "  icon: [10, 25]\n"
            "  screens: [25, 100]\n",
            encoding="utf-8",
        )
        table = load_progress_table(settings_factory(genflow_progress_table_path=str(path)))
        assert table.slice_for(JobKind.FULL_APP, "icon") == StageSlice(stage="icon", start=10, end=25)
        # Kinds not in the file keep their defaults
        assert table.slice_for(JobKind.ICON, "icon").end == 100

    def test_yaml_override_with_gap_fails_at_load(self, tmp_path, settings_factory):
        path = tmp_path / "progress.yaml"
        path.write_text("icon:\n  icon: [5, 100]\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_progress_table(settings_factory(genflow_progress_table_path=str(path)))

    def test_missing_file(self, tmp_path, settings_factory):
        with pytest.raises(ConfigError):
            load_progress_table(settings_factory(genflow_progress_table_path=str(tmp_path / "nope.yaml")))


class TestProgressEstimator:
    def setup_method(self):
        self.estimator = ProgressEstimator(default_progress_table(), TARGETS)

    def test_image_time_based_at_target(self):
        est = self.estimator.estimate(JobKind.ICON, "icon", elapsed=40.0, unit_kind=UnitKind.ICON)
        assert abs(est.value - 87) <= 2
        assert est.value < 100
        assert not est.overdue

    def test_values_are_integers_capped_at_99(self):
        est = self.estimator.estimate(JobKind.COVER_VIDEO, "cover_video", elapsed=1e6, unit_kind=UnitKind.COVER_VIDEO)
        assert isinstance(est.value, int)
        assert est.value == 99
        assert est.overdue

    def test_countable_all_done_still_below_100(self):
        est = self.estimator.estimate(JobKind.FULL_APP, "screens", done=5, total=5)
        assert est.value == 99

    def test_never_below_previous(self):
        est = self.estimator.estimate(JobKind.FULL_APP, "icon", previous=40, elapsed=0.0, unit_kind=UnitKind.ICON)
        assert est.value == 40

    def test_monotonic_over_time(self):
        values = []
        previous = 0
        for elapsed in (0, 5, 10, 20, 40, 60, 100):
            previous = self.estimator.estimate(
                JobKind.FULL_APP, "concept", previous=previous, elapsed=float(elapsed), unit_kind=UnitKind.CONCEPT,
            ).value
            values.append(previous)
        assert values == sorted(values)
        assert values[-1] <= 15

    def test_final_values(self):
        assert self.estimator.final(JobStatus.COMPLETED, 64) == 100
        assert self.estimator.final(JobStatus.PARTIAL, 64) == 100
        assert self.estimator.final(JobStatus.FAILED, 64) == 64

    def test_stage_boundaries(self):
        assert self.estimator.stage_start(JobKind.FULL_APP, "screens") == 30
        assert self.estimator.stage_end(JobKind.FULL_APP, "concept") == 15
        assert self.estimator.stage_end(JobKind.ICON, "icon") == 99
