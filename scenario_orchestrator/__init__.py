"""Scenario orchestrator: batch execution with flake detection and quarantine."""
