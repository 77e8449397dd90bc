"""Per-scenario run history for flake detection.

A ScenarioHistory holds the recent RunRecords for one scenario
(newest-first, bounded) together with lifetime counters and the current
pass/failure streaks. Histories are owned by the Detector, which takes
care of locking and persistence.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any


# Valid run outcomes
OUTCOME_PASS = "pass"
OUTCOME_FAIL = "fail"
OUTCOME_ERROR = "error"
OUTCOME_SKIP = "skip"

VALID_OUTCOMES = frozenset({OUTCOME_PASS, OUTCOME_FAIL, OUTCOME_ERROR, OUTCOME_SKIP})


def utcnow() -> datetime.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(tz=datetime.timezone.utc)


def format_timestamp(value: datetime.datetime | None) -> str | None:
    """Serialize a datetime to ISO-8601, passing None through."""
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Any) -> datetime.datetime | None:
    """Parse an ISO-8601 timestamp string.

    Raises:
        ValueError: If the value is neither None nor a valid timestamp.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


@dataclass(frozen=True)
class RunRecord:
    """One observed execution of a scenario."""

    timestamp: datetime.datetime
    outcome: str  # pass, fail, error, skip
    retry_count: int = 0
    duration: float = 0.0
    batch_id: str = ""
    error_type: str = ""
    infrastructure_error: bool = False

    def __post_init__(self) -> None:
        if self.outcome not in VALID_OUTCOMES:
            raise ValueError(
                f"Invalid outcome '{self.outcome}'. "
                f"Must be one of: {sorted(VALID_OUTCOMES)}"
            )

    @property
    def counts_as_failure(self) -> bool:
        """True for fail outcomes and for errors not blamed on infrastructure."""
        if self.outcome == OUTCOME_FAIL:
            return True
        return self.outcome == OUTCOME_ERROR and not self.infrastructure_error

    @property
    def counts_as_error(self) -> bool:
        """True for infrastructure errors."""
        return self.outcome == OUTCOME_ERROR and self.infrastructure_error

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": format_timestamp(self.timestamp),
            "outcome": self.outcome,
            "retry_count": self.retry_count,
            "duration": self.duration,
        }
        if self.batch_id:
            data["batch_id"] = self.batch_id
        if self.error_type:
            data["error_type"] = self.error_type
        if self.infrastructure_error:
            data["infrastructure_error"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunRecord:
        timestamp = parse_timestamp(data.get("timestamp"))
        if timestamp is None:
            raise ValueError("Run record is missing a timestamp")
        return cls(
            timestamp=timestamp,
            outcome=data["outcome"],
            retry_count=int(data.get("retry_count", 0)),
            duration=float(data.get("duration", 0.0)),
            batch_id=data.get("batch_id", ""),
            error_type=data.get("error_type", ""),
            infrastructure_error=bool(data.get("infrastructure_error", False)),
        )


@dataclass
class ScenarioHistory:
    """Run history and lifetime counters for a single scenario.

    Invariant: total_runs == total_passes + total_failures + total_errors.
    Skip outcomes are kept in ``runs`` but leave every counter untouched.
    """

    scenario: str
    runs: list[RunRecord] = field(default_factory=list)
    first_run: datetime.datetime | None = None
    last_run: datetime.datetime | None = None
    total_runs: int = 0
    total_passes: int = 0
    total_failures: int = 0
    total_errors: int = 0
    consecutive_failures: int = 0
    consecutive_passes: int = 0

    def append(self, record: RunRecord, max_runs: int) -> None:
        """Record a run (newest-first) and trim to ``max_runs`` entries.

        Args:
            record: The run to add.
            max_runs: Maximum number of records retained.
        """
        if self.first_run is None:
            self.first_run = record.timestamp
        self.last_run = record.timestamp
        self.runs.insert(0, record)

        if record.outcome == OUTCOME_PASS:
            self.total_runs += 1
            self.total_passes += 1
            self.consecutive_passes += 1
            self.consecutive_failures = 0
        elif record.outcome in (OUTCOME_FAIL, OUTCOME_ERROR):
            self.total_runs += 1
            if record.counts_as_error:
                self.total_errors += 1
            else:
                self.total_failures += 1
            self.consecutive_failures += 1
            self.consecutive_passes = 0

        if len(self.runs) > max_runs:
            del self.runs[max_runs:]

    def copy(self) -> ScenarioHistory:
        """Return a copy whose run list can be mutated independently."""
        return ScenarioHistory(
            scenario=self.scenario,
            runs=list(self.runs),
            first_run=self.first_run,
            last_run=self.last_run,
            total_runs=self.total_runs,
            total_passes=self.total_passes,
            total_failures=self.total_failures,
            total_errors=self.total_errors,
            consecutive_failures=self.consecutive_failures,
            consecutive_passes=self.consecutive_passes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "runs": [r.to_dict() for r in self.runs],
            "first_run": format_timestamp(self.first_run),
            "last_run": format_timestamp(self.last_run),
            "total_runs": self.total_runs,
            "total_passes": self.total_passes,
            "total_failures": self.total_failures,
            "total_errors": self.total_errors,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_passes": self.consecutive_passes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScenarioHistory:
        return cls(
            scenario=data["scenario"],
            runs=[RunRecord.from_dict(r) for r in data.get("runs") or []],
            first_run=parse_timestamp(data.get("first_run")),
            last_run=parse_timestamp(data.get("last_run")),
            total_runs=int(data.get("total_runs", 0)),
            total_passes=int(data.get("total_passes", 0)),
            total_failures=int(data.get("total_failures", 0)),
            total_errors=int(data.get("total_errors", 0)),
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            consecutive_passes=int(data.get("consecutive_passes", 0)),
        )
