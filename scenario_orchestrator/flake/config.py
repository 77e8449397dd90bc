"""Flake detection and orchestrator configuration.

FlakeConfig holds the detector thresholds. OrchestratorConfig reads and
writes the .scenario_config JSON file that stores those thresholds along
with batch execution defaults.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "window_size": 10,
    "flake_threshold": 0.3,
    "min_runs": 3,
    "auto_quarantine": True,
    "auto_unquarantine": False,
    "unquarantine_threshold": 0.9,
    "consecutive_failures_threshold": 0,
    "parallel": 1,
    "output_dir": "test-results",
    "environment": "staging",
    "timeout_minutes": 30,
    "infra_error_markers": None,
}


@dataclass
class FlakeConfig:
    """Thresholds driving flake classification and quarantine.

    Zero or negative values for window_size, flake_threshold, min_runs and
    unquarantine_threshold are replaced with their defaults.
    """

    window_size: int = 10
    flake_threshold: float = 0.3
    min_runs: int = 3
    auto_quarantine: bool = True
    auto_unquarantine: bool = False
    unquarantine_threshold: float = 0.9
    # > 0 quarantines on this many consecutive failures regardless of rate
    consecutive_failures_threshold: int = 0

    def __post_init__(self) -> None:
        if self.window_size <= 0:
            self.window_size = DEFAULT_CONFIG["window_size"]
        if self.flake_threshold <= 0:
            self.flake_threshold = DEFAULT_CONFIG["flake_threshold"]
        if self.min_runs <= 0:
            self.min_runs = DEFAULT_CONFIG["min_runs"]
        if self.unquarantine_threshold <= 0:
            self.unquarantine_threshold = DEFAULT_CONFIG["unquarantine_threshold"]

    @property
    def max_history(self) -> int:
        """Number of run records kept per scenario."""
        return self.window_size * 2

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlakeConfig:
        return cls(
            window_size=int(data.get("window_size", DEFAULT_CONFIG["window_size"])),
            flake_threshold=float(
                data.get("flake_threshold", DEFAULT_CONFIG["flake_threshold"])
            ),
            min_runs=int(data.get("min_runs", DEFAULT_CONFIG["min_runs"])),
            auto_quarantine=bool(
                data.get("auto_quarantine", DEFAULT_CONFIG["auto_quarantine"])
            ),
            auto_unquarantine=bool(
                data.get("auto_unquarantine", DEFAULT_CONFIG["auto_unquarantine"])
            ),
            unquarantine_threshold=float(
                data.get(
                    "unquarantine_threshold",
                    DEFAULT_CONFIG["unquarantine_threshold"],
                )
            ),
            consecutive_failures_threshold=int(
                data.get(
                    "consecutive_failures_threshold",
                    DEFAULT_CONFIG["consecutive_failures_threshold"],
                )
            ),
        )


class OrchestratorConfig:
    """Manages the .scenario_config JSON configuration file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        if path is not None and path.exists():
            self._load()

    def _load(self) -> None:
        """Load config from the file."""
        assert self.path is not None
        try:
            text = self.path.read_text()
            data = json.loads(text)
            if isinstance(data, dict):
                self._data = {**DEFAULT_CONFIG, **data}
        except (json.JSONDecodeError, OSError):
            self._data = dict(DEFAULT_CONFIG)

    def save(self) -> None:
        """Write config to the file."""
        if self.path is None:
            raise ValueError("No config file path specified")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._data, f, indent=2)
            f.write("\n")

    @property
    def config(self) -> dict[str, Any]:
        """Get the full configuration dict."""
        return dict(self._data)

    @property
    def flake(self) -> FlakeConfig:
        """Detector thresholds as a FlakeConfig."""
        return FlakeConfig.from_dict(self._data)

    @property
    def parallel(self) -> int:
        """Default number of scenarios run at once."""
        return int(self._data.get("parallel") or DEFAULT_CONFIG["parallel"])

    @property
    def output_dir(self) -> Path:
        """Default results directory."""
        return Path(self._data.get("output_dir") or DEFAULT_CONFIG["output_dir"])

    @property
    def environment(self) -> str:
        """Default target environment."""
        return str(self._data.get("environment") or DEFAULT_CONFIG["environment"])

    @property
    def timeout_minutes(self) -> float:
        """Whole-batch deadline in minutes."""
        return float(
            self._data.get("timeout_minutes") or DEFAULT_CONFIG["timeout_minutes"]
        )

    @property
    def infra_error_markers(self) -> list[str] | None:
        """Custom infrastructure-error markers (None = built-in list)."""
        val = self._data.get("infra_error_markers")
        return [str(m) for m in val] if val else None

    def set_config(self, **values: Any) -> None:
        """Update configuration values, ignoring unknown keys and None."""
        for key, value in values.items():
            if key in DEFAULT_CONFIG and value is not None:
                self._data[key] = value
