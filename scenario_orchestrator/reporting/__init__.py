"""Batch manifests and reports."""

from scenario_orchestrator.reporting.manifest import (
    find_baseline,
    load_manifest,
    save_manifest,
    write_yaml_report,
)

__all__ = [
    "find_baseline",
    "load_manifest",
    "save_manifest",
    "write_yaml_report",
]
