"""Infrastructure-error classification for scenario errors.

Deciding whether an error came from the harness (browser, network,
timeouts) or from the scenario itself is a substring heuristic over the
error text. The marker list is configurable, and the runner accepts any
predicate with the same signature.
"""

from __future__ import annotations

from typing import Callable, Iterable


# Substrings (lowercase) that mark an error as infrastructure-caused
DEFAULT_INFRA_MARKERS: tuple[str, ...] = (
    "timeout",
    "browser crash",
    "network error",
    "connection refused",
    "context deadline exceeded",
    "playwright",
    "chromium",
    "failed to launch",
)

InfraPredicate = Callable[[str], bool]


class InfraErrorClassifier:
    """Predicate matching error text against a list of markers."""

    def __init__(self, markers: Iterable[str] | None = None) -> None:
        source = DEFAULT_INFRA_MARKERS if markers is None else markers
        self.markers = tuple(m.lower() for m in source if m)

    def __call__(self, message: str) -> bool:
        if not message:
            return False
        lower = message.lower()
        return any(marker in lower for marker in self.markers)


def categorize_error(message: str) -> str:
    """Coarse error category for a run record.

    Returns:
        One of timeout, browser_crash, network_error, test_failure,
        unknown; or "" when there is no error text.
    """
    if not message:
        return ""
    lower = message.lower()
    if "timeout" in lower or "timed out" in lower:
        return "timeout"
    if "browser" in lower or "chromium" in lower:
        return "browser_crash"
    if "network" in lower or "connection" in lower:
        return "network_error"
    if "assertion" in lower or "criteria" in lower:
        return "test_failure"
    return "unknown"
