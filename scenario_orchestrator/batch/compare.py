"""Baseline comparison between two batch results.

Only scenarios present in both batches are compared; scenarios that were
added or removed are ignored. Each matched pair lands in at most one of
fixed, new_issues or recurring.
"""

from __future__ import annotations

from scenario_orchestrator.batch.types import (
    STATUS_PASSED,
    BatchResult,
    Comparison,
    ComparisonItem,
)


# Most severe first
SEVERITY_ORDER = ("P0", "P1", "P2", "P3")
DEFAULT_SEVERITY = "P3"


def highest_severity(observations: dict[str, int] | None) -> str:
    """Worst severity with a non-zero count, defaulting to P3."""
    if not observations:
        return DEFAULT_SEVERITY
    for severity in SEVERITY_ORDER:
        if observations.get(severity, 0) > 0:
            return severity
    return DEFAULT_SEVERITY


def count_observations(observations: dict[str, int] | None) -> int:
    """Total number of observations across severities."""
    if not observations:
        return 0
    return sum(observations.values())


def compare(current: BatchResult, baseline: BatchResult) -> Comparison:
    """Diff ``current`` against ``baseline``.

    - baseline failing, current passed: fixed
    - baseline passed, current failing: new issue
    - both failing: recurring
    - both passed: more observations is a new issue, fewer is a fix

    Skipped or otherwise non-terminal statuses on either side produce no
    entry.

    Returns:
        Comparison with regression_score = len(fixed) - len(new_issues).
    """
    comparison = Comparison(baseline_id=baseline.id)
    baseline_results = {r.scenario: r for r in baseline.results}

    for curr in current.results:
        base = baseline_results.get(curr.scenario)
        if base is None:
            continue

        curr_passed = curr.status == STATUS_PASSED
        base_passed = base.status == STATUS_PASSED

        if base.is_failing and curr_passed:
            comparison.fixed.append(ComparisonItem(
                scenario=curr.scenario,
                description="Scenario now passes",
                severity=highest_severity(base.observations),
            ))
        elif base_passed and curr.is_failing:
            comparison.new_issues.append(ComparisonItem(
                scenario=curr.scenario,
                description=f"Regression: {curr.error}" if curr.error else "Regression",
                severity=highest_severity(curr.observations),
            ))
        elif base.is_failing and curr.is_failing:
            comparison.recurring.append(ComparisonItem(
                scenario=curr.scenario,
                description=(
                    f"Still failing: {curr.error}" if curr.error else "Still failing"
                ),
                severity=highest_severity(curr.observations),
                run_count=2,
            ))
        elif base_passed and curr_passed:
            curr_obs = count_observations(curr.observations)
            base_obs = count_observations(base.observations)
            if curr_obs > base_obs:
                comparison.new_issues.append(ComparisonItem(
                    scenario=curr.scenario,
                    description=f"New observations: {curr_obs} (was {base_obs})",
                    severity=highest_severity(curr.observations),
                ))
            elif curr_obs < base_obs:
                comparison.fixed.append(ComparisonItem(
                    scenario=curr.scenario,
                    description=f"Observations reduced: {curr_obs} (was {base_obs})",
                    severity=highest_severity(base.observations),
                ))

    comparison.regression_score = len(comparison.fixed) - len(comparison.new_issues)
    return comparison
