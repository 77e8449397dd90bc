"""Data types for batch scenario execution.

Covers the batch configuration, per-scenario results, the aggregated
batch result written to manifest.json, preflight verdicts, and baseline
comparisons.
"""

from __future__ import annotations

import datetime
from dataclasses import asdict, dataclass, field
from typing import Any

from scenario_orchestrator.flake.history import format_timestamp, parse_timestamp


# Scenario run statuses
STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_PASSED = "passed"
STATUS_FAILED = "failed"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"
STATUS_RETRYING = "retrying"

VALID_STATUSES = frozenset({
    STATUS_PENDING,
    STATUS_RUNNING,
    STATUS_PASSED,
    STATUS_FAILED,
    STATUS_ERROR,
    STATUS_SKIPPED,
    STATUS_RETRYING,
})

FAILING_STATUSES = frozenset({STATUS_FAILED, STATUS_ERROR})

# Skip reasons set by the scheduler
SKIP_STOPPED = "batch stopped on failure"
SKIP_CANCELLED = "context cancelled"


@dataclass
class BatchConfig:
    """Configuration for a batch run."""

    pattern: str = ""
    parallel: int = 1
    stop_on_fail: bool = False
    label: str = ""
    model: str = ""
    environment: str = "staging"
    filter_tags: list[str] = field(default_factory=list)
    exclude_tags: list[str] = field(default_factory=list)
    include_quarantined: bool = False
    compare_to: str = ""
    skip_preflight: bool = False
    output_dir: str = "test-results"
    timeout_minutes: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchConfig:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class RunParams:
    """Parameters handed to the scenario executor for one scenario."""

    batch_id: str
    environment: str = "staging"
    model: str = ""
    artifact_dir: str = ""


@dataclass
class ExecutionOutcome:
    """What an executor reports back for one scenario."""

    status: str
    duration: float = 0.0
    observations: dict[str, int] = field(default_factory=dict)
    retry_count: int = 0
    error: str = ""
    success_criteria_met: int = 0
    success_criteria_total: int = 0


@dataclass
class ScenarioResult:
    """Result of a single scenario within a batch."""

    scenario: str
    path: str
    status: str
    duration: float = 0.0
    observations: dict[str, int] = field(default_factory=dict)
    success_criteria_met: int = 0
    success_criteria_total: int = 0
    retry_count: int = 0
    error: str = ""
    artifact_dir: str = ""
    quarantined: bool = False
    skip_reason: str = ""

    @property
    def is_failing(self) -> bool:
        return self.status in FAILING_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "scenario": self.scenario,
            "path": self.path,
            "status": self.status,
            "duration": self.duration,
            "observations": dict(self.observations),
            "success_criteria_met": self.success_criteria_met,
            "success_criteria_total": self.success_criteria_total,
            "retry_count": self.retry_count,
            "quarantined": self.quarantined,
        }
        if self.error:
            data["error"] = self.error
        if self.artifact_dir:
            data["artifact_dir"] = self.artifact_dir
        if self.skip_reason:
            data["skip_reason"] = self.skip_reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScenarioResult:
        status = data.get("status", "")
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid scenario status '{status}'")
        return cls(
            scenario=data["scenario"],
            path=data.get("path", ""),
            status=status,
            duration=float(data.get("duration", 0.0)),
            observations={
                str(k): int(v) for k, v in (data.get("observations") or {}).items()
            },
            success_criteria_met=int(data.get("success_criteria_met", 0)),
            success_criteria_total=int(data.get("success_criteria_total", 0)),
            retry_count=int(data.get("retry_count", 0)),
            error=data.get("error", ""),
            artifact_dir=data.get("artifact_dir", ""),
            quarantined=bool(data.get("quarantined", False)),
            skip_reason=data.get("skip_reason", ""),
        )


@dataclass
class BatchSummary:
    """Aggregated statistics for a batch run."""

    passed: int = 0
    failed: int = 0
    errors: int = 0
    skipped: int = 0
    total_observations: dict[str, int] = field(default_factory=dict)
    total_retries: int = 0
    flake_rate: float = 0.0
    new_quarantine_candidates: list[str] = field(default_factory=list)
    auto_quarantined: list[str] = field(default_factory=list)
    auto_unquarantined: list[str] = field(default_factory=list)
    flaky_scenarios: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchSummary:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class ComparisonItem:
    """A single fixed, new, or recurring issue."""

    scenario: str
    description: str
    severity: str
    run_count: int = 0


@dataclass
class Comparison:
    """Diff of a batch against a baseline batch."""

    baseline_id: str
    fixed: list[ComparisonItem] = field(default_factory=list)
    new_issues: list[ComparisonItem] = field(default_factory=list)
    recurring: list[ComparisonItem] = field(default_factory=list)
    regression_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PreflightCheck:
    """A single preflight check."""

    name: str
    passed: bool
    message: str = ""
    error: str = ""
    fix: str = ""


@dataclass
class PreflightResult:
    """Verdict of the preflight checker."""

    passed: bool = True
    checks: list[PreflightCheck] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchResult:
    """Aggregated result of a batch run."""

    id: str
    config: BatchConfig
    started_at: datetime.datetime
    completed_at: datetime.datetime | None = None
    total_duration: float = 0.0
    scenarios_found: int = 0
    scenarios_run: int = 0
    scenarios_skipped: int = 0
    results: list[ScenarioResult] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)
    output_dir: str = ""
    comparison: Comparison | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "config": self.config.to_dict(),
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
            "total_duration": self.total_duration,
            "scenarios_found": self.scenarios_found,
            "scenarios_run": self.scenarios_run,
            "scenarios_skipped": self.scenarios_skipped,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
            "output_dir": self.output_dir,
        }
        if self.comparison is not None:
            data["comparison"] = self.comparison.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchResult:
        """Rebuild a BatchResult from a manifest.

        The comparison section is not restored; a loaded result only ever
        serves as a baseline.
        """
        started_at = parse_timestamp(data.get("started_at"))
        if started_at is None:
            raise ValueError("Batch manifest is missing started_at")
        return cls(
            id=data["id"],
            config=BatchConfig.from_dict(data.get("config") or {}),
            started_at=started_at,
            completed_at=parse_timestamp(data.get("completed_at")),
            total_duration=float(data.get("total_duration", 0.0)),
            scenarios_found=int(data.get("scenarios_found", 0)),
            scenarios_run=int(data.get("scenarios_run", 0)),
            scenarios_skipped=int(data.get("scenarios_skipped", 0)),
            results=[ScenarioResult.from_dict(r) for r in data.get("results") or []],
            summary=BatchSummary.from_dict(data.get("summary") or {}),
            output_dir=data.get("output_dir", ""),
        )
