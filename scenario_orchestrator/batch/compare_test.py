"""Unit tests for baseline comparison."""

from __future__ import annotations

import datetime

from scenario_orchestrator.batch.compare import (
    compare,
    count_observations,
    highest_severity,
)
from scenario_orchestrator.batch.types import (
    STATUS_ERROR,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
    BatchConfig,
    BatchResult,
    ScenarioResult,
)

T0 = datetime.datetime(2025, 3, 1, tzinfo=datetime.timezone.utc)


def _batch(batch_id: str, results: list[ScenarioResult]) -> BatchResult:
    return BatchResult(id=batch_id, config=BatchConfig(), started_at=T0, results=results)


def _sr(name: str, status: str, error: str = "", **obs: int) -> ScenarioResult:
    return ScenarioResult(
        scenario=name, path=f"{name}.yaml", status=status, error=error, observations=obs
    )


class TestSeverityHelpers:
    """Tests for severity helpers."""

    def test_highest_severity(self):
        """The worst non-zero severity wins."""
        assert highest_severity({"P3": 4, "P1": 1, "P2": 0}) == "P1"

    def test_default_severity(self):
        """No observations default to P3."""
        assert highest_severity({}) == "P3"
        assert highest_severity(None) == "P3"
        assert highest_severity({"P0": 0}) == "P3"

    def test_count_observations(self):
        """Counts are summed across severities."""
        assert count_observations({"P1": 2, "P3": 5}) == 7
        assert count_observations(None) == 0


class TestCompare:
    """Tests for compare()."""

    def test_swap_yields_zero_score(self):
        """One fix and one regression net to a score of zero."""
        baseline = _batch("base", [
            _sr("checkout", STATUS_FAILED),
            _sr("search", STATUS_PASSED),
        ])
        current = _batch("curr", [
            _sr("checkout", STATUS_PASSED),
            _sr("search", STATUS_FAILED, error="no results"),
        ])
        comp = compare(current, baseline)
        assert comp.baseline_id == "base"
        assert [i.scenario for i in comp.fixed] == ["checkout"]
        assert [i.scenario for i in comp.new_issues] == ["search"]
        assert comp.fixed[0].description == "Scenario now passes"
        assert comp.new_issues[0].description == "Regression: no results"
        assert comp.recurring == []
        assert comp.regression_score == 0

    def test_recurring_failure(self):
        """A scenario failing in both batches is recurring."""
        comp = compare(
            _batch("c", [_sr("a", STATUS_ERROR, error="boom", P0=1)]),
            _batch("b", [_sr("a", STATUS_FAILED)]),
        )
        assert len(comp.recurring) == 1
        item = comp.recurring[0]
        assert item.description == "Still failing: boom"
        assert item.severity == "P0"
        assert item.run_count == 2
        assert comp.regression_score == 0

    def test_observation_delta_on_passing_scenarios(self):
        """Passing in both: more observations is new, fewer is fixed."""
        comp = compare(
            _batch("c", [_sr("a", STATUS_PASSED, P2=3), _sr("b", STATUS_PASSED)]),
            _batch("b", [_sr("a", STATUS_PASSED, P2=1), _sr("b", STATUS_PASSED, P1=2)]),
        )
        assert [i.scenario for i in comp.new_issues] == ["a"]
        assert comp.new_issues[0].severity == "P2"
        assert [i.scenario for i in comp.fixed] == ["b"]
        assert comp.fixed[0].severity == "P1"

    def test_only_overlapping_scenarios(self):
        """Scenarios missing from either batch are ignored."""
        comp = compare(
            _batch("c", [_sr("new", STATUS_FAILED)]),
            _batch("b", [_sr("gone", STATUS_FAILED)]),
        )
        assert comp.fixed == comp.new_issues == comp.recurring == []
        assert comp.regression_score == 0

    def test_skipped_produces_no_entry(self):
        """A skipped scenario on either side is not compared."""
        comp = compare(
            _batch("c", [_sr("a", STATUS_SKIPPED), _sr("b", STATUS_FAILED)]),
            _batch("b", [_sr("a", STATUS_FAILED), _sr("b", STATUS_SKIPPED)]),
        )
        assert comp.fixed == comp.new_issues == comp.recurring == []

    def test_each_scenario_in_one_list(self):
        """No scenario appears in more than one category."""
        statuses = [STATUS_PASSED, STATUS_FAILED, STATUS_ERROR, STATUS_SKIPPED]
        baseline, current = [], []
        for i, b in enumerate(statuses):
            for j, c in enumerate(statuses):
                name = f"s{i}{j}"
                baseline.append(_sr(name, b, P3=i))
                current.append(_sr(name, c, P3=j))
        comp = compare(_batch("c", current), _batch("b", baseline))
        names = [i.scenario for i in comp.fixed + comp.new_issues + comp.recurring]
        assert len(names) == len(set(names))
        assert comp.regression_score == len(comp.fixed) - len(comp.new_issues)
