"""Batch scheduling: discovery, filtering, execution, and comparison."""

from scenario_orchestrator.batch.compare import compare
from scenario_orchestrator.batch.executor import (
    ScenarioExecutor,
    ScenarioPool,
    SubprocessScenarioExecutor,
)
from scenario_orchestrator.batch.preflight import OutputDirPreflight, PreflightError
from scenario_orchestrator.batch.types import (
    BatchConfig,
    BatchResult,
    BatchSummary,
    Comparison,
    ComparisonItem,
    ExecutionOutcome,
    ScenarioResult,
)

__all__ = [
    "BatchConfig",
    "BatchResult",
    "BatchSummary",
    "Comparison",
    "ComparisonItem",
    "ExecutionOutcome",
    "OutputDirPreflight",
    "PreflightError",
    "ScenarioExecutor",
    "ScenarioPool",
    "ScenarioResult",
    "SubprocessScenarioExecutor",
    "compare",
]
