"""Unit tests for batch data types."""

from __future__ import annotations

import datetime

import pytest

from scenario_orchestrator.batch.types import (
    STATUS_ERROR,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
    BatchConfig,
    BatchResult,
    ScenarioResult,
)


class TestScenarioResult:
    """Tests for ScenarioResult."""

    @pytest.mark.parametrize("status, failing", [
        (STATUS_PASSED, False),
        (STATUS_FAILED, True),
        (STATUS_ERROR, True),
        (STATUS_SKIPPED, False),
    ])
    def test_is_failing(self, status, failing):
        """Only failed and error results count as failing."""
        assert ScenarioResult("a", "a.yaml", status).is_failing is failing

    def test_to_dict_omits_empty_strings(self):
        """error, artifact_dir and skip_reason are only written when set."""
        data = ScenarioResult("a", "a.yaml", STATUS_PASSED).to_dict()
        assert "error" not in data
        assert "artifact_dir" not in data
        assert "skip_reason" not in data
        assert data["quarantined"] is False

    def test_from_dict_rejects_unknown_status(self):
        """Unknown statuses raise ValueError."""
        with pytest.raises(ValueError, match="Invalid scenario status"):
            ScenarioResult.from_dict({"scenario": "a", "status": "exploded"})


class TestBatchConfig:
    """Tests for BatchConfig serialization."""

    def test_from_dict_ignores_unknown_keys(self):
        """Keys from newer manifests are ignored."""
        cfg = BatchConfig.from_dict({"pattern": "x/*.yaml", "parallel": 4, "shiny": True})
        assert cfg.pattern == "x/*.yaml"
        assert cfg.parallel == 4
        assert cfg.environment == "staging"


class TestBatchResult:
    """Tests for BatchResult serialization."""

    def test_requires_started_at(self):
        """A manifest without started_at is rejected."""
        with pytest.raises(ValueError):
            BatchResult.from_dict({"id": "abc"})

    def test_timestamps_serialized_as_iso(self):
        """Timestamps are written as ISO-8601 strings."""
        started = datetime.datetime(2025, 3, 1, tzinfo=datetime.timezone.utc)
        data = BatchResult(id="abc", config=BatchConfig(), started_at=started).to_dict()
        assert data["started_at"] == "2025-03-01T00:00:00+00:00"
        assert data["completed_at"] is None
        assert "comparison" not in data
