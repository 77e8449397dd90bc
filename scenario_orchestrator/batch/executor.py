"""Scenario executors and the bounded worker pool.

The executor that actually drives a scenario (agent, browser, ...) is a
black box behind the ScenarioExecutor protocol. SubprocessScenarioExecutor
is the default: it runs a command per scenario and reads its exit code.

ScenarioPool runs scenarios with a fixed number of workers pulling from a
pre-filled queue. With stop_on_fail, the first failing result stops
dispatch of scenarios that have not started yet; scenarios already running
are not interrupted and run to completion.
"""

from __future__ import annotations

import asyncio
import json
import os
import shlex
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Protocol

from scenario_orchestrator.batch.discovery import Scenario
from scenario_orchestrator.batch.types import (
    SKIP_CANCELLED,
    SKIP_STOPPED,
    STATUS_ERROR,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
    ExecutionOutcome,
    RunParams,
    ScenarioResult,
)


class ScenarioExecutor(Protocol):
    def execute(self, scenario_path: str, params: RunParams) -> ExecutionOutcome:
        ...


class SubprocessScenarioExecutor:
    """Runs each scenario as a subprocess.

    The command template is split shell-style and ``{path}`` is replaced
    with the scenario path. Exit code 0 means passed, 1 failed, anything
    else error. If the last line of stdout is a JSON object, its
    ``observations``, ``retry_count``, ``success_criteria_met``,
    ``success_criteria_total`` and ``error`` keys are used.
    """

    def __init__(self, command: str, timeout: float = 300.0) -> None:
        if not command.strip():
            raise ValueError("Executor command must not be empty")
        self.command = command
        self.timeout = timeout

    def _argv(self, scenario_path: str) -> list[str]:
        argv = [part.replace("{path}", scenario_path) for part in shlex.split(self.command)]
        if "{path}" not in self.command:
            argv.append(scenario_path)
        return argv

    def execute(self, scenario_path: str, params: RunParams) -> ExecutionOutcome:
        env = dict(os.environ)
        env.update({
            "SCENARIO_BATCH_ID": params.batch_id,
            "SCENARIO_ENVIRONMENT": params.environment,
            "SCENARIO_MODEL": params.model,
            "SCENARIO_ARTIFACT_DIR": params.artifact_dir,
        })

        start_time = time.monotonic()
        try:
            proc = subprocess.run(
                self._argv(scenario_path),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            return ExecutionOutcome(
                status=STATUS_ERROR,
                duration=time.monotonic() - start_time,
                error=f"Scenario timeout after {self.timeout} seconds",
            )
        except FileNotFoundError:
            return ExecutionOutcome(
                status=STATUS_ERROR,
                duration=time.monotonic() - start_time,
                error=f"Executor failed to launch: {self.command}",
            )
        except OSError as e:
            return ExecutionOutcome(
                status=STATUS_ERROR,
                duration=time.monotonic() - start_time,
                error=f"OS error running scenario: {e}",
            )
        duration = time.monotonic() - start_time

        if proc.returncode == 0:
            status = STATUS_PASSED
        elif proc.returncode == 1:
            status = STATUS_FAILED
        else:
            status = STATUS_ERROR

        report = _parse_report_line(proc.stdout)
        error = str(report.get("error") or "")
        if status != STATUS_PASSED and not error:
            stderr_lines = proc.stderr.strip().splitlines()
            error = stderr_lines[-1] if stderr_lines else f"exit code {proc.returncode}"

        return ExecutionOutcome(
            status=status,
            duration=duration,
            observations={
                str(k): int(v) for k, v in (report.get("observations") or {}).items()
            },
            retry_count=int(report.get("retry_count", 0)),
            error=error,
            success_criteria_met=int(report.get("success_criteria_met", 0)),
            success_criteria_total=int(report.get("success_criteria_total", 0)),
        )


def _parse_report_line(stdout: str) -> dict[str, Any]:
    """Parse a trailing JSON object from stdout, if there is one."""
    lines = [line for line in stdout.strip().splitlines() if line.strip()]
    if not lines or not lines[-1].lstrip().startswith("{"):
        return {}
    try:
        data = json.loads(lines[-1])
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def skipped_result(scenario: Scenario, reason: str) -> ScenarioResult:
    return ScenarioResult(
        scenario=scenario.name,
        path=scenario.path,
        status=STATUS_SKIPPED,
        skip_reason=reason,
    )


class ScenarioPool:
    """Runs scenarios on a fixed-size worker pool.

    ``run_one`` is called on a worker thread for each dispatched scenario.
    Before dispatching, a worker checks the stop flag (set by a failing
    result when stop_on_fail is on) and then ``is_cancelled``; either one
    turns the scenario into a skipped result instead of running it.
    """

    def __init__(
        self,
        run_one: Callable[[Scenario], ScenarioResult],
        parallel: int = 1,
        stop_on_fail: bool = False,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> None:
        self.run_one = run_one
        self.parallel = max(parallel, 1)
        self.stop_on_fail = stop_on_fail
        self.is_cancelled = is_cancelled or (lambda: False)
        self._stopped = False

    def run(self, scenarios: list[Scenario]) -> list[ScenarioResult]:
        """Run all scenarios.

        Returns:
            One result per scenario, in the input order.
        """
        if not scenarios:
            return []
        return asyncio.run(self._run_async(scenarios))

    async def _run_async(self, scenarios: list[Scenario]) -> list[ScenarioResult]:
        self._stopped = False
        workers = min(self.parallel, len(scenarios))
        lock = asyncio.Lock()
        loop = asyncio.get_running_loop()

        work: asyncio.Queue[int] = asyncio.Queue()
        for idx in range(len(scenarios)):
            work.put_nowait(idx)

        results: list[ScenarioResult | None] = [None] * len(scenarios)

        with ThreadPoolExecutor(max_workers=workers) as threads:

            async def worker() -> None:
                while True:
                    try:
                        idx = work.get_nowait()
                    except asyncio.QueueEmpty:
                        return
                    scenario = scenarios[idx]

                    async with lock:
                        stopped = self._stopped
                    if stopped:
                        results[idx] = skipped_result(scenario, SKIP_STOPPED)
                        continue
                    if self.is_cancelled():
                        results[idx] = skipped_result(scenario, SKIP_CANCELLED)
                        continue

                    result = await loop.run_in_executor(threads, self.run_one, scenario)
                    results[idx] = result

                    if self.stop_on_fail and result.is_failing:
                        async with lock:
                            self._stopped = True

            await asyncio.gather(*(worker() for _ in range(workers)))

        return [r for r in results if r is not None]
