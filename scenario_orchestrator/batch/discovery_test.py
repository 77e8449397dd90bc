"""Unit tests for scenario discovery and tag filtering."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from scenario_orchestrator.batch.discovery import (
    Scenario,
    extract_tags,
    filter_by_tags,
    find_scenarios,
    has_any_tag,
    load_scenarios,
    scenario_name,
)


def _write(path: Path, content: str) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return str(path)


class TestFindScenarios:
    """Tests for glob discovery."""

    def test_recursive_sorted_yaml_only(self):
        """** matches nested files; non-YAML files are ignored; result is sorted."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _write(root / "b" / "search.yaml", "name: search\n")
            _write(root / "a" / "checkout.yml", "name: checkout\n")
            _write(root / "a" / "notes.txt", "not a scenario\n")
            found = find_scenarios(str(root / "**" / "*"))
            assert found == sorted(found)
            assert [Path(p).name for p in found] == ["checkout.yml", "search.yaml"]

    def test_no_matches(self):
        """A pattern without matches yields an empty list."""
        with tempfile.TemporaryDirectory() as tmpdir:
            assert find_scenarios(str(Path(tmpdir) / "*.yaml")) == []

    def test_empty_pattern_rejected(self):
        """An empty pattern raises ValueError."""
        with pytest.raises(ValueError):
            find_scenarios("")


class TestExtractTags:
    """Tests for reading tags from scenario files."""

    def test_tags_list(self):
        """Tags are read from the tags key."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(Path(tmpdir) / "s.yaml", "name: s\ntags: [smoke, checkout]\n")
            assert extract_tags(path) == ["smoke", "checkout"]

    def test_single_tag_string(self):
        """A scalar tag becomes a one-element list."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(Path(tmpdir) / "s.yaml", "tags: smoke\n")
            assert extract_tags(path) == ["smoke"]

    def test_malformed_yaml_has_no_tags(self):
        """Unparseable YAML yields no tags instead of raising."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(Path(tmpdir) / "s.yaml", "tags: [unclosed\n")
            assert extract_tags(path) == []

    def test_missing_file_has_no_tags(self):
        """A missing file yields no tags."""
        assert extract_tags("/nonexistent/scenario.yaml") == []

    def test_load_scenarios_names(self):
        """Scenario names are file stems."""
        with tempfile.TemporaryDirectory() as tmpdir:
            _write(Path(tmpdir) / "login.yaml", "tags: [auth]\n")
            scenarios = load_scenarios(str(Path(tmpdir) / "*.yaml"))
            assert len(scenarios) == 1
            assert scenarios[0].name == "login"
            assert scenarios[0].tags == ["auth"]
            assert scenario_name("/x/y/login.yaml") == "login"


class TestFilterByTags:
    """Tests for include/exclude tag filtering."""

    SCENARIOS = [
        Scenario("a", "a.yaml", ["smoke", "checkout"]),
        Scenario("b", "b.yaml", ["Slow"]),
        Scenario("c", "c.yaml", []),
    ]

    def test_no_filters_keeps_all(self):
        """Without filters every scenario survives."""
        assert [s.name for s in filter_by_tags(self.SCENARIOS)] == ["a", "b", "c"]

    def test_include_filter(self):
        """Only scenarios sharing a filter tag survive."""
        result = filter_by_tags(self.SCENARIOS, filter_tags=["smoke", "slow"])
        assert [s.name for s in result] == ["a", "b"]

    def test_exclude_filter(self):
        """Scenarios with an excluded tag are dropped."""
        result = filter_by_tags(self.SCENARIOS, exclude_tags=["slow"])
        assert [s.name for s in result] == ["a", "c"]

    def test_include_and_exclude(self):
        """Exclusion applies after inclusion."""
        result = filter_by_tags(
            self.SCENARIOS, filter_tags=["smoke", "slow"], exclude_tags=["checkout"]
        )
        assert [s.name for s in result] == ["b"]

    def test_case_insensitive(self):
        """Tag matching ignores case."""
        assert has_any_tag(["Smoke"], ["SMOKE"])
        assert not has_any_tag([], ["smoke"])
