"""Flake detection: run history, windowed metrics, and quarantine state."""

from scenario_orchestrator.flake.config import FlakeConfig, OrchestratorConfig
from scenario_orchestrator.flake.detector import (
    Detector,
    FlakeMetrics,
    FlakeStorageError,
    QuarantineAction,
    QuarantineEntry,
)
from scenario_orchestrator.flake.history import RunRecord, ScenarioHistory

__all__ = [
    "Detector",
    "FlakeConfig",
    "FlakeMetrics",
    "FlakeStorageError",
    "OrchestratorConfig",
    "QuarantineAction",
    "QuarantineEntry",
    "RunRecord",
    "ScenarioHistory",
]
