"""Batch runner: discover, filter, execute, record, summarize, compare.

A batch run goes through these steps:

1. Discover scenario files matching the glob pattern (sorted).
2. Apply the include/exclude tag filters.
3. Skip quarantined scenarios (flake detector or legacy store) unless
   include_quarantined is set.
4. Run preflight checks; a failure aborts the batch.
5. Execute the remaining scenarios on the worker pool.
6. Record each outcome with the flake detector, collecting quarantine
   actions.
7. Summarize counts, observations, and stability changes.
8. Compare against a baseline batch if one was given.
9. Write manifest.json for the batch.
"""

from __future__ import annotations

import datetime
import secrets
import sys
import threading
import time
from pathlib import Path

from scenario_orchestrator.batch.compare import compare
from scenario_orchestrator.batch.discovery import Scenario, filter_by_tags, load_scenarios
from scenario_orchestrator.batch.executor import ScenarioExecutor, ScenarioPool
from scenario_orchestrator.batch.infra import InfraErrorClassifier, InfraPredicate, categorize_error
from scenario_orchestrator.batch.preflight import OutputDirPreflight, PreflightChecker, PreflightError
from scenario_orchestrator.batch.quarantine_store import QuarantineStore
from scenario_orchestrator.batch.types import (
    STATUS_ERROR,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
    BatchConfig,
    BatchResult,
    BatchSummary,
    ExecutionOutcome,
    RunParams,
    ScenarioResult,
)
from scenario_orchestrator.flake.config import FlakeConfig
from scenario_orchestrator.flake.detector import (
    ACTION_FLAG,
    ACTION_QUARANTINE,
    ACTION_UNQUARANTINE,
    Detector,
    FlakeStorageError,
    QuarantineAction,
)
from scenario_orchestrator.flake.history import (
    OUTCOME_ERROR,
    OUTCOME_FAIL,
    OUTCOME_PASS,
    OUTCOME_SKIP,
    RunRecord,
    utcnow,
)
from scenario_orchestrator.reporting.manifest import (
    batch_dir,
    find_baseline,
    load_manifest,
    save_manifest,
)

FLAKE_DATA_FILE = ".flake-data.json"
LEGACY_QUARANTINE_FILE = ".quarantine"

# Statuses an executor may report; anything else is treated as an error
EXECUTOR_STATUSES = frozenset({STATUS_PASSED, STATUS_FAILED, STATUS_ERROR, STATUS_SKIPPED})

_OUTCOME_BY_STATUS = {
    STATUS_PASSED: OUTCOME_PASS,
    STATUS_FAILED: OUTCOME_FAIL,
    STATUS_ERROR: OUTCOME_ERROR,
    STATUS_SKIPPED: OUTCOME_SKIP,
}


def generate_id() -> str:
    """Short random hex identifier for batches and runs."""
    return secrets.token_hex(4)


class BatchRunner:
    """Executes batch runs of scenarios.

    The detector, legacy quarantine store and preflight checker default to
    ones rooted in ``config.output_dir``.
    """

    def __init__(
        self,
        config: BatchConfig,
        executor: ScenarioExecutor,
        detector: Detector | None = None,
        quarantine_store: QuarantineStore | None = None,
        preflight: PreflightChecker | None = None,
        is_infra_error: InfraPredicate | None = None,
        flake_config: FlakeConfig | None = None,
    ) -> None:
        self.config = config
        self.executor = executor
        output_dir = Path(config.output_dir)
        self.detector = (
            detector
            if detector is not None
            else Detector(output_dir / FLAKE_DATA_FILE, flake_config)
        )
        self.quarantine_store = (
            quarantine_store
            if quarantine_store is not None
            else QuarantineStore(output_dir / LEGACY_QUARANTINE_FILE)
        )
        self.preflight = preflight if preflight is not None else OutputDirPreflight(output_dir)
        self.is_infra_error = is_infra_error or InfraErrorClassifier()
        self.batch_id = ""
        self._actions: list[QuarantineAction] = []
        self._actions_lock = threading.Lock()

    def run(self, cancel_event: threading.Event | None = None) -> BatchResult:
        """Execute the batch.

        Args:
            cancel_event: When set, scenarios not yet dispatched are
                skipped with reason "context cancelled". The batch deadline
                (config.timeout_minutes) has the same effect.

        Returns:
            The completed BatchResult.

        Raises:
            ValueError: If the scenario pattern is invalid.
            PreflightError: If preflight checks fail. No scenario runs.
        """
        self.batch_id = generate_id()
        self._actions = []

        result = BatchResult(
            id=self.batch_id,
            config=self.config,
            started_at=utcnow(),
        )
        start_time = time.monotonic()

        scenarios = load_scenarios(self.config.pattern)
        result.scenarios_found = len(scenarios)

        filtered = filter_by_tags(
            scenarios, self.config.filter_tags, self.config.exclude_tags
        )

        runnable: list[Scenario] = []
        quarantined_names: set[str] = set()
        for scenario in filtered:
            reason = self._quarantine_reason(scenario)
            if reason is None:
                runnable.append(scenario)
                continue
            quarantined_names.add(scenario.name)
            if self.config.include_quarantined:
                runnable.append(scenario)
            else:
                result.results.append(ScenarioResult(
                    scenario=scenario.name,
                    path=scenario.path,
                    status=STATUS_SKIPPED,
                    quarantined=True,
                    skip_reason=reason,
                ))

        result.scenarios_run = len(runnable)
        result.scenarios_skipped = len(result.results)

        if not self.config.skip_preflight:
            verdict = self.preflight.check()
            if not verdict.passed:
                raise PreflightError(verdict)

        result.output_dir = str(batch_dir(self.config.output_dir, self.batch_id))
        Path(result.output_dir).mkdir(parents=True, exist_ok=True)

        deadline = None
        if self.config.timeout_minutes:
            deadline = start_time + self.config.timeout_minutes * 60

        def is_cancelled() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            return deadline is not None and time.monotonic() >= deadline

        pool = ScenarioPool(
            self._run_scenario,
            parallel=self.config.parallel,
            stop_on_fail=self.config.stop_on_fail,
            is_cancelled=is_cancelled,
        )
        for scenario_result in pool.run(runnable):
            if scenario_result.scenario in quarantined_names:
                scenario_result.quarantined = True
            result.results.append(scenario_result)

        result.summary = self._summarize(result.results)

        if self.config.compare_to:
            self._attach_comparison(result)

        result.completed_at = utcnow()
        result.total_duration = time.monotonic() - start_time

        try:
            save_manifest(result)
        except OSError as e:
            print(f"batch: failed to save manifest: {e}", file=sys.stderr)

        return result

    def _quarantine_reason(self, scenario: Scenario) -> str | None:
        """Skip reason if either quarantine source holds the scenario."""
        entry = self.detector.get_quarantine_entry(scenario.name)
        if entry is not None:
            return f"quarantined: {entry.reason}" if entry.reason else "quarantined"
        if self.quarantine_store.is_quarantined(scenario.path):
            return "quarantined"
        return None

    def _run_scenario(self, scenario: Scenario) -> ScenarioResult:
        """Run one scenario and record its outcome. Called on a worker thread."""
        start_time = time.monotonic()
        params = RunParams(
            batch_id=self.batch_id,
            environment=self.config.environment,
            model=self.config.model,
            artifact_dir=str(
                Path(self.config.output_dir)
                / datetime.date.today().isoformat()
                / scenario.name
                / f"run-{generate_id()}"
            ),
        )

        try:
            outcome = self.executor.execute(scenario.path, params)
        except Exception as e:
            outcome = ExecutionOutcome(
                status=STATUS_ERROR,
                duration=time.monotonic() - start_time,
                error=f"Executor error: {e}",
            )

        status = outcome.status
        error = outcome.error
        if status not in EXECUTOR_STATUSES:
            error = error or f"Executor returned unexpected status '{status}'"
            status = STATUS_ERROR

        result = ScenarioResult(
            scenario=scenario.name,
            path=scenario.path,
            status=status,
            duration=outcome.duration,
            observations=dict(outcome.observations),
            success_criteria_met=outcome.success_criteria_met,
            success_criteria_total=outcome.success_criteria_total,
            retry_count=outcome.retry_count,
            error=error,
            artifact_dir=params.artifact_dir,
        )
        self._record_outcome(result)
        return result

    def _record_outcome(self, result: ScenarioResult) -> None:
        """Feed a scenario result to the flake detector."""
        outcome = _OUTCOME_BY_STATUS.get(result.status, OUTCOME_ERROR)
        infra = outcome == OUTCOME_ERROR and self.is_infra_error(result.error)

        record = RunRecord(
            timestamp=utcnow(),
            outcome=outcome,
            retry_count=result.retry_count,
            duration=result.duration,
            batch_id=self.batch_id,
            error_type=categorize_error(result.error),
            infrastructure_error=infra,
        )

        try:
            actions = self.detector.record_run(result.scenario, record)
        except FlakeStorageError as e:
            print(
                f"flake detector: failed to record run for {result.scenario}: {e}",
                file=sys.stderr,
            )
            actions = e.actions

        if actions:
            with self._actions_lock:
                self._actions.extend(actions)

    def _summarize(self, results: list[ScenarioResult]) -> BatchSummary:
        summary = BatchSummary()
        for sr in results:
            if sr.status == STATUS_PASSED:
                summary.passed += 1
            elif sr.status == STATUS_FAILED:
                summary.failed += 1
            elif sr.status == STATUS_ERROR:
                summary.errors += 1
            elif sr.status == STATUS_SKIPPED:
                summary.skipped += 1

            summary.total_retries += sr.retry_count
            for severity, count in sr.observations.items():
                summary.total_observations[severity] = (
                    summary.total_observations.get(severity, 0) + count
                )

        total = summary.passed + summary.failed + summary.errors
        if total > 0:
            summary.flake_rate = (summary.failed + summary.errors) / total

        with self._actions_lock:
            actions = list(self._actions)
        by_type: dict[str, set[str]] = {
            ACTION_QUARANTINE: set(),
            ACTION_UNQUARANTINE: set(),
            ACTION_FLAG: set(),
        }
        for action in actions:
            by_type.setdefault(action.action, set()).add(action.scenario)
        summary.auto_quarantined = sorted(by_type[ACTION_QUARANTINE])
        summary.auto_unquarantined = sorted(by_type[ACTION_UNQUARANTINE])
        summary.flaky_scenarios = sorted(by_type[ACTION_FLAG])

        auto_quarantined = by_type[ACTION_QUARANTINE]
        summary.new_quarantine_candidates = [
            sr.scenario
            for sr in results
            if sr.is_failing
            and not sr.quarantined
            and sr.scenario not in auto_quarantined
        ]
        return summary

    def _attach_comparison(self, result: BatchResult) -> None:
        """Compare against the configured baseline; failures only warn."""
        try:
            baseline = load_manifest(
                find_baseline(self.config.output_dir, self.config.compare_to)
            )
        except (OSError, ValueError) as e:
            print(
                f"batch: failed to load baseline {self.config.compare_to}: {e}",
                file=sys.stderr,
            )
            return
        result.comparison = compare(result, baseline)
