"""Legacy quarantine list.

Older result directories keep quarantined scenarios in a standalone
``.quarantine`` JSON file (a list of entries). The batch runner still
honours it alongside the flake detector: a scenario is skipped when either
source reports it quarantined. ``scenario-quarantine migrate`` moves these
entries into the detector.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from scenario_orchestrator.batch.discovery import scenario_name
from scenario_orchestrator.flake.history import format_timestamp, utcnow


class QuarantineStore:
    """Manages the legacy .quarantine file. Has its own lock."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._entries: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        """Load entries from the file.

        Raises:
            ValueError: If the file is not a JSON list of entries.
        """
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid quarantine file {self.path}: {e}") from e
        if not isinstance(data, list):
            raise ValueError(f"Invalid quarantine file {self.path}: expected a list")
        for entry in data:
            if isinstance(entry, dict) and entry.get("scenario"):
                self._entries[entry["scenario"]] = entry

    def save(self) -> None:
        """Write entries to the file."""
        with self._lock:
            self._save()

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(list(self._entries.values()), f, indent=2)
            f.write("\n")

    def is_quarantined(self, scenario_path: str) -> bool:
        """Check a scenario by path or bare name."""
        with self._lock:
            return scenario_name(scenario_path) in self._entries

    def quarantine(self, scenario: str, reason: str, flake_rate: float = 0.0) -> None:
        with self._lock:
            self._entries[scenario] = {
                "scenario": scenario,
                "quarantined_at": format_timestamp(utcnow()),
                "reason": reason,
                "flake_rate": flake_rate,
            }
            self._save()

    def unquarantine(self, scenario: str) -> None:
        with self._lock:
            self._entries.pop(scenario, None)
            self._save()

    def list_entries(self) -> list[dict[str, Any]]:
        """All entries, sorted by scenario name."""
        with self._lock:
            return [dict(self._entries[name]) for name in sorted(self._entries)]
