"""Scenario discovery and tag filtering.

Scenarios are YAML files matched by a glob pattern. Only the ``tags`` key
is read here; the rest of the file belongs to the scenario executor.
"""

from __future__ import annotations

import glob
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import yaml


SCENARIO_EXTENSIONS = frozenset({".yaml", ".yml"})


@dataclass
class Scenario:
    """A discovered scenario file."""

    name: str
    path: str
    tags: list[str] = field(default_factory=list)


def scenario_name(path: str) -> str:
    """Short scenario name: the file name without its extension."""
    return Path(path).stem


def find_scenarios(pattern: str) -> list[str]:
    """Find scenario files matching a glob pattern.

    ``**`` matches across directories. Only .yaml/.yml files are kept, and
    the result is sorted so batches run in a deterministic order.

    Args:
        pattern: Glob pattern, e.g. "scenarios/**/*.yaml".

    Returns:
        Sorted list of matching scenario paths.
    """
    if not pattern:
        raise ValueError("Scenario pattern must not be empty")
    matches = glob.glob(pattern, recursive=True)
    return sorted(
        m for m in matches
        if Path(m).suffix.lower() in SCENARIO_EXTENSIONS and Path(m).is_file()
    )


def extract_tags(path: str) -> list[str]:
    """Read the ``tags`` list from a scenario file.

    Unreadable or malformed files yield no tags; reporting those is left
    to the executor when the scenario runs.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError):
        return []

    if not isinstance(data, dict):
        return []
    tags = data.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    if not isinstance(tags, list):
        return []
    return [str(t) for t in tags if t is not None]


def load_scenarios(pattern: str) -> list[Scenario]:
    """Discover scenarios and read their tags."""
    return [
        Scenario(name=scenario_name(p), path=p, tags=extract_tags(p))
        for p in find_scenarios(pattern)
    ]


def has_any_tag(tags: Iterable[str], check: Iterable[str]) -> bool:
    """Case-insensitive check whether any of ``check`` appears in ``tags``."""
    tag_set = {t.lower() for t in tags}
    return any(c.lower() in tag_set for c in check)


def filter_by_tags(
    scenarios: list[Scenario],
    filter_tags: list[str] | None = None,
    exclude_tags: list[str] | None = None,
) -> list[Scenario]:
    """Apply include/exclude tag filters.

    A scenario survives if it shares a tag with ``filter_tags`` (or that
    list is empty) and shares none with ``exclude_tags``.
    """
    if not filter_tags and not exclude_tags:
        return list(scenarios)

    filtered: list[Scenario] = []
    for scenario in scenarios:
        if filter_tags and not has_any_tag(scenario.tags, filter_tags):
            continue
        if exclude_tags and has_any_tag(scenario.tags, exclude_tags):
            continue
        filtered.append(scenario)
    return filtered
