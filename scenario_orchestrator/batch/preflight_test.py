"""Unit tests for preflight checks."""

from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import patch

from scenario_orchestrator.batch.preflight import OutputDirPreflight, PreflightError
from scenario_orchestrator.batch.types import PreflightCheck, PreflightResult


class TestOutputDirPreflight:
    """Tests for the default preflight checker."""

    def test_writable_dir_passes(self):
        """A writable directory with space passes both checks."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = OutputDirPreflight(Path(tmpdir) / "out", min_free_bytes=1).check()
            assert result.passed
            assert [c.name for c in result.checks] == ["output_directory", "disk_space"]
            assert not (Path(tmpdir) / "out" / ".preflight-test").exists()

    def test_unwritable_dir_fails(self):
        """An output path under a regular file fails the writable check."""
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "blocker"
            blocker.write_text("")
            result = OutputDirPreflight(blocker / "out", min_free_bytes=1).check()
            assert not result.passed
            writable = result.checks[0]
            assert writable.name == "output_directory"
            assert not writable.passed
            assert writable.fix

    def test_low_disk_space_fails(self):
        """Free space below the minimum fails the disk check."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch("scenario_orchestrator.batch.preflight.shutil.disk_usage") as usage:
                usage.return_value.free = 10
                result = OutputDirPreflight(tmpdir, min_free_bytes=100).check()
            assert not result.passed
            assert result.checks[1].name == "disk_space"
            assert not result.checks[1].passed


class TestPreflightError:
    """Tests for PreflightError."""

    def test_message_lists_failed_checks(self):
        """The message names the failed checks and keeps the result."""
        result = PreflightResult(passed=False, checks=[
            PreflightCheck(name="output_directory", passed=True),
            PreflightCheck(name="disk_space", passed=False),
        ])
        err = PreflightError(result)
        assert "disk_space" in str(err)
        assert "output_directory" not in str(err)
        assert err.result is result
