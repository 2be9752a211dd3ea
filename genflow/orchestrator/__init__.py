"""Job orchestration: stages, units, progress and background execution."""

from genflow.orchestrator.orchestrator import CancelAck, JobOrchestrator, create_orchestrator
from genflow.orchestrator.progress import ProgressEstimator, ProgressTable, StageSlice, load_progress_table
from genflow.orchestrator.runner import JobRunner
from genflow.orchestrator.stage import StageController, StageReport
from genflow.orchestrator.unit import UnitOutcome, UnitSpec, UnitTask

__all__ = [
    "CancelAck",
    "JobOrchestrator",
    "JobRunner",
    "ProgressEstimator",
    "ProgressTable",
    "StageController",
    "StageReport",
    "StageSlice",
    "UnitOutcome",
    "UnitSpec",
    "UnitTask",
    "create_orchestrator",
    "load_progress_table",
]
