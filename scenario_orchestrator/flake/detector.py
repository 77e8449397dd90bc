"""Flake detection and quarantine management.

The Detector tracks run history per scenario, computes windowed flake
metrics, and drives the quarantine state machine:

- not quarantined -> quarantined (auto: flake rate or consecutive failures
  over threshold; manual: quarantine())
- auto-quarantined -> released (auto: success rate recovered, when
  auto_unquarantine is enabled; manual: unquarantine())
- manual quarantines are only ever released by hand

State (config snapshot, histories, quarantine entries) is written to a
JSON storage file on every mutation. A missing file starts empty; a
malformed file raises instead of being discarded.
"""

from __future__ import annotations

import copy
import datetime
import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from scenario_orchestrator.flake.config import FlakeConfig
from scenario_orchestrator.flake.history import (
    OUTCOME_PASS,
    RunRecord,
    ScenarioHistory,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

STORAGE_VERSION = 1

# Quarantine action types
ACTION_QUARANTINE = "quarantine"
ACTION_UNQUARANTINE = "unquarantine"
ACTION_FLAG = "flag"


class FlakeStorageError(RuntimeError):
    """Writing the detector storage file failed.

    The in-memory state already reflects the mutation; ``actions`` holds any
    quarantine actions that were applied before the write failed.
    """

    def __init__(self, message: str, actions: list[QuarantineAction] | None = None) -> None:
        super().__init__(message)
        self.actions = actions or []


class _ReadWriteLock:
    """Many concurrent readers or one writer.

    Waiting writers block new readers, so steady queries cannot starve
    record_run.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class FlakeMetrics:
    """Windowed metrics for one scenario, computed on demand."""

    scenario: str
    flake_rate: float = 0.0
    success_rate: float = 0.0
    window_runs: int = 0
    window_passes: int = 0
    window_failures: int = 0
    window_errors: int = 0
    is_flaky: bool = False
    is_stable: bool = False
    consecutive_failures: int = 0
    consecutive_passes: int = 0
    last_outcome: str = ""
    average_retries: float = 0.0
    average_duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "flake_rate": self.flake_rate,
            "success_rate": self.success_rate,
            "window_runs": self.window_runs,
            "window_passes": self.window_passes,
            "window_failures": self.window_failures,
            "window_errors": self.window_errors,
            "is_flaky": self.is_flaky,
            "is_stable": self.is_stable,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_passes": self.consecutive_passes,
            "last_outcome": self.last_outcome,
            "average_retries": self.average_retries,
            "average_duration": self.average_duration,
        }


@dataclass
class QuarantineEntry:
    """A quarantined scenario."""

    scenario: str
    quarantined_at: datetime.datetime
    reason: str
    flake_rate: float = 0.0
    auto_quarantined: bool = False
    review_required: bool = False
    last_run_at: datetime.datetime | None = None
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "scenario": self.scenario,
            "quarantined_at": format_timestamp(self.quarantined_at),
            "reason": self.reason,
            "flake_rate": self.flake_rate,
            "auto_quarantined": self.auto_quarantined,
            "review_required": self.review_required,
        }
        if self.last_run_at is not None:
            data["last_run_at"] = format_timestamp(self.last_run_at)
        if self.notes:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuarantineEntry:
        quarantined_at = parse_timestamp(data.get("quarantined_at"))
        if quarantined_at is None:
            raise ValueError("Quarantine entry is missing quarantined_at")
        return cls(
            scenario=data["scenario"],
            quarantined_at=quarantined_at,
            reason=data.get("reason", ""),
            flake_rate=float(data.get("flake_rate", 0.0)),
            auto_quarantined=bool(data.get("auto_quarantined", False)),
            review_required=bool(data.get("review_required", False)),
            last_run_at=parse_timestamp(data.get("last_run_at")),
            notes=data.get("notes", ""),
        )


@dataclass
class QuarantineAction:
    """A state transition taken while recording a run. Never persisted."""

    action: str  # quarantine, unquarantine, flag
    scenario: str
    reason: str
    metrics: FlakeMetrics | None = None
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action": self.action,
            "scenario": self.scenario,
            "reason": self.reason,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.metrics is not None:
            data["metrics"] = self.metrics.to_dict()
        return data


class Detector:
    """Tracks scenario run history and detects flaky scenarios.

    All history and quarantine state sits behind a single reader/writer
    lock: mutators take it exclusively, queries share it.
    """

    def __init__(self, storage_path: str | Path, config: FlakeConfig | None = None) -> None:
        self.storage_path = Path(storage_path)
        self.config = config if config is not None else FlakeConfig()
        self._history: dict[str, ScenarioHistory] = {}
        self._quarantine: dict[str, QuarantineEntry] = {}
        self._lock = _ReadWriteLock()
        if self.storage_path.exists():
            self._load()

    def record_run(self, scenario: str, record: RunRecord) -> list[QuarantineAction]:
        """Record a run outcome and apply the quarantine policy.

        Args:
            scenario: Scenario name.
            record: The observed run.

        Returns:
            Quarantine actions taken for this run (possibly empty).

        Raises:
            FlakeStorageError: If persisting the state failed. The run and
                any actions are still applied in memory.
        """
        with self._lock.write():
            hist = self._history.get(scenario)
            if hist is None:
                hist = ScenarioHistory(scenario=scenario)
                self._history[scenario] = hist
            hist.append(record, self.config.max_history)

            entry = self._quarantine.get(scenario)
            if entry is not None:
                entry.last_run_at = record.timestamp

            metrics = self._calculate_metrics(scenario)
            actions = self._determine_actions(scenario, metrics, record.timestamp)

            try:
                self._save()
            except OSError as e:
                raise FlakeStorageError(
                    f"Failed to save flake data to {self.storage_path}: {e}",
                    actions,
                ) from e

        return actions

    def get_metrics(self, scenario: str) -> FlakeMetrics:
        """Get windowed metrics for a scenario (zero-valued if unknown)."""
        with self._lock.read():
            return self._calculate_metrics(scenario)

    def get_all_metrics(self) -> list[FlakeMetrics]:
        """Get metrics for every tracked scenario, highest flake rate first."""
        with self._lock.read():
            metrics = [self._calculate_metrics(name) for name in sorted(self._history)]
        metrics.sort(key=lambda m: m.flake_rate, reverse=True)
        return metrics

    def get_flaky_scenarios(self) -> list[FlakeMetrics]:
        """Get metrics for scenarios currently classified as flaky."""
        return [m for m in self.get_all_metrics() if m.is_flaky]

    def is_quarantined(self, scenario: str) -> bool:
        with self._lock.read():
            return scenario in self._quarantine

    def get_quarantine_entry(self, scenario: str) -> QuarantineEntry | None:
        """Get a copy of the quarantine entry, or None."""
        with self._lock.read():
            entry = self._quarantine.get(scenario)
            return copy.copy(entry) if entry is not None else None

    def list_quarantined(self) -> list[QuarantineEntry]:
        """List quarantine entries, most recently quarantined first."""
        with self._lock.read():
            entries = [copy.copy(e) for e in self._quarantine.values()]
        entries.sort(key=lambda e: e.quarantined_at, reverse=True)
        return entries

    def quarantine(self, scenario: str, reason: str, notes: str = "") -> None:
        """Manually quarantine a scenario.

        Manual entries never require review and are never released by the
        automatic recovery policy.

        Raises:
            FlakeStorageError: If persisting the state failed.
        """
        with self._lock.write():
            entry = QuarantineEntry(
                scenario=scenario,
                quarantined_at=utcnow(),
                reason=reason,
                auto_quarantined=False,
                review_required=False,
                notes=notes,
            )
            hist = self._history.get(scenario)
            if hist is not None:
                entry.flake_rate = self._calculate_metrics(scenario).flake_rate
                entry.last_run_at = hist.last_run
            self._quarantine[scenario] = entry
            self._save_or_raise()

    def unquarantine(self, scenario: str) -> None:
        """Release a scenario from quarantine. No-op if not quarantined.

        Raises:
            FlakeStorageError: If persisting the state failed.
        """
        with self._lock.write():
            self._quarantine.pop(scenario, None)
            self._save_or_raise()

    def get_history(self, scenario: str) -> ScenarioHistory | None:
        """Get a copy of a scenario's history, or None if never recorded."""
        with self._lock.read():
            hist = self._history.get(scenario)
            return hist.copy() if hist is not None else None

    def clear_history(self, scenario: str) -> None:
        """Forget all runs of a scenario. Quarantine state is kept.

        Raises:
            FlakeStorageError: If persisting the state failed.
        """
        with self._lock.write():
            self._history.pop(scenario, None)
            self._save_or_raise()

    def _calculate_metrics(self, scenario: str) -> FlakeMetrics:
        """Compute metrics over the first window_size runs.

        Caller must hold the lock (read or write).
        """
        metrics = FlakeMetrics(scenario=scenario)
        hist = self._history.get(scenario)
        if hist is None or not hist.runs:
            return metrics

        total_duration = 0.0
        total_retries = 0
        for run in hist.runs[: self.config.window_size]:
            # skips count toward the window but are neither pass nor fail
            metrics.window_runs += 1
            total_duration += run.duration
            total_retries += run.retry_count
            if run.outcome == OUTCOME_PASS:
                metrics.window_passes += 1
            elif run.counts_as_error:
                metrics.window_errors += 1
            elif run.counts_as_failure:
                metrics.window_failures += 1

        if metrics.window_runs > 0:
            metrics.flake_rate = (
                metrics.window_failures + metrics.window_errors
            ) / metrics.window_runs
            metrics.success_rate = metrics.window_passes / metrics.window_runs
            metrics.average_retries = total_retries / metrics.window_runs
            metrics.average_duration = total_duration / metrics.window_runs

        metrics.consecutive_failures = hist.consecutive_failures
        metrics.consecutive_passes = hist.consecutive_passes
        metrics.last_outcome = hist.runs[0].outcome

        if metrics.window_runs >= self.config.min_runs:
            metrics.is_flaky = (
                metrics.flake_rate >= self.config.flake_threshold
                or self._consecutive_trigger(metrics)
            )
            metrics.is_stable = (
                metrics.success_rate >= self.config.unquarantine_threshold
            )

        return metrics

    def _consecutive_trigger(self, metrics: FlakeMetrics) -> bool:
        threshold = self.config.consecutive_failures_threshold
        return threshold > 0 and metrics.consecutive_failures >= threshold

    def _determine_actions(
        self,
        scenario: str,
        metrics: FlakeMetrics,
        last_run: datetime.datetime,
    ) -> list[QuarantineAction]:
        """Apply the quarantine policy. At most one branch fires.

        Entries and actions are stamped with the current time; last_run is
        the timestamp of the run being recorded.

        Caller must hold the write lock.
        """
        if metrics.window_runs < self.config.min_runs:
            return []

        now = utcnow()
        entry = self._quarantine.get(scenario)

        if entry is None and self.config.auto_quarantine and metrics.is_flaky:
            if self._consecutive_trigger(metrics):
                reason = (
                    f"Auto-quarantined: {metrics.consecutive_failures} "
                    f"consecutive failures"
                )
            else:
                reason = (
                    f"Auto-quarantined: {metrics.flake_rate:.0%} failure rate "
                    f"over {metrics.window_runs} runs"
                )
            self._quarantine[scenario] = QuarantineEntry(
                scenario=scenario,
                quarantined_at=now,
                reason=reason,
                flake_rate=metrics.flake_rate,
                auto_quarantined=True,
                review_required=True,
                last_run_at=last_run,
            )
            return [QuarantineAction(ACTION_QUARANTINE, scenario, reason, metrics, now)]

        if (
            entry is not None
            and entry.auto_quarantined
            and self.config.auto_unquarantine
            and metrics.is_stable
        ):
            reason = (
                f"Auto-unquarantined: {metrics.success_rate:.0%} success rate "
                f"over {metrics.window_runs} runs"
            )
            del self._quarantine[scenario]
            return [QuarantineAction(ACTION_UNQUARANTINE, scenario, reason, metrics, now)]

        if entry is None and not self.config.auto_quarantine and metrics.is_flaky:
            reason = f"Flagged as flaky: {metrics.flake_rate:.0%} failure rate"
            return [QuarantineAction(ACTION_FLAG, scenario, reason, metrics, now)]

        return []

    def _load(self) -> None:
        """Load state from the storage file.

        Raises:
            ValueError: If the file cannot be parsed.
        """
        try:
            data = json.loads(self.storage_path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Failed to parse flake data {self.storage_path}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ValueError(
                f"Failed to parse flake data {self.storage_path}: "
                f"expected an object"
            )

        try:
            self._history = {
                name: ScenarioHistory.from_dict(h)
                for name, h in (data.get("history") or {}).items()
            }
            self._quarantine = {
                name: QuarantineEntry.from_dict(q)
                for name, q in (data.get("quarantine") or {}).items()
            }
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise ValueError(
                f"Failed to parse flake data {self.storage_path}: {e}"
            ) from e

    def _save(self) -> None:
        """Write the full state to the storage file. Caller holds the write lock."""
        data = {
            "version": STORAGE_VERSION,
            "config": self.config.to_dict(),
            "history": {name: h.to_dict() for name, h in self._history.items()},
            "quarantine": {
                name: e.to_dict() for name, e in self._quarantine.items()
            },
            "updated_at": format_timestamp(utcnow()),
        }
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.storage_path, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")

    def _save_or_raise(self) -> None:
        try:
            self._save()
        except OSError as e:
            raise FlakeStorageError(
                f"Failed to save flake data to {self.storage_path}: {e}"
            ) from e
