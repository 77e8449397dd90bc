"""Preflight checks run once before a batch.

The runner only cares about the verdict: any failed check aborts the batch
before a single scenario executes. Checkers are any object with a
``check() -> PreflightResult`` method.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Protocol

from scenario_orchestrator.batch.types import PreflightCheck, PreflightResult


# Minimum free space for artifacts (bytes)
DEFAULT_MIN_FREE_BYTES = 500 * 1024 * 1024


class PreflightError(RuntimeError):
    """Preflight checks failed; the batch was not started."""

    def __init__(self, result: PreflightResult) -> None:
        failed = [c.name for c in result.checks if not c.passed]
        super().__init__(f"Preflight checks failed: {', '.join(failed) or 'unknown'}")
        self.result = result


class PreflightChecker(Protocol):
    def check(self) -> PreflightResult:
        ...


class OutputDirPreflight:
    """Checks the output directory is writable and has free disk space."""

    def __init__(self, output_dir: str | Path, min_free_bytes: int = DEFAULT_MIN_FREE_BYTES) -> None:
        self.output_dir = Path(output_dir)
        self.min_free_bytes = min_free_bytes

    def check(self) -> PreflightResult:
        result = PreflightResult()
        for check in (self._check_writable(), self._check_disk_space()):
            result.checks.append(check)
            if not check.passed:
                result.passed = False
        return result

    def _check_writable(self) -> PreflightCheck:
        probe = self.output_dir / ".preflight-test"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            probe.write_text("test")
            probe.unlink()
        except OSError as e:
            return PreflightCheck(
                name="output_directory",
                passed=False,
                message="Output directory not writable",
                error=str(e),
                fix=f"Check permissions on {self.output_dir}",
            )
        return PreflightCheck(
            name="output_directory",
            passed=True,
            message="Output directory writable",
        )

    def _check_disk_space(self) -> PreflightCheck:
        try:
            free = shutil.disk_usage(self.output_dir).free
        except OSError as e:
            return PreflightCheck(
                name="disk_space",
                passed=False,
                message="Could not determine free disk space",
                error=str(e),
            )
        if free < self.min_free_bytes:
            return PreflightCheck(
                name="disk_space",
                passed=False,
                message=f"Only {free // (1024 * 1024)} MiB free",
                fix="Free up disk space or choose another --output directory",
            )
        return PreflightCheck(
            name="disk_space",
            passed=True,
            message="Disk space sufficient",
        )
