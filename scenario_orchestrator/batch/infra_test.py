"""Unit tests for infrastructure-error classification."""

from __future__ import annotations

import pytest

from scenario_orchestrator.batch.infra import InfraErrorClassifier, categorize_error


class TestInfraErrorClassifier:
    """Tests for the marker-based predicate."""

    @pytest.mark.parametrize("message", [
        "Scenario timeout after 300 seconds",
        "Browser crash detected",
        "dial tcp: connection refused",
        "Playwright: target closed",
        "Executor failed to launch: runner",
        "CONTEXT DEADLINE EXCEEDED",
    ])
    def test_default_markers_match(self, message):
        """Built-in markers classify harness errors as infrastructure."""
        assert InfraErrorClassifier()(message)

    def test_assertion_error_is_not_infra(self):
        """Scenario assertion failures are not infrastructure errors."""
        assert not InfraErrorClassifier()("expected cart total 10, got 12")

    def test_empty_message(self):
        """Empty error text is never infrastructure."""
        assert not InfraErrorClassifier()("")

    def test_custom_markers_replace_defaults(self):
        """A custom marker list replaces the built-in one."""
        classify = InfraErrorClassifier(["oom killed"])
        assert classify("Pod OOM killed")
        assert not classify("timeout")


class TestCategorizeError:
    """Tests for coarse error categories."""

    @pytest.mark.parametrize("message, category", [
        ("", ""),
        ("request timed out", "timeout"),
        ("chromium exited", "browser_crash"),
        ("network unreachable", "network_error"),
        ("success criteria not met", "test_failure"),
        ("something odd", "unknown"),
    ])
    def test_categories(self, message, category):
        """Error text maps to its category."""
        assert categorize_error(message) == category
