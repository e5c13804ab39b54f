"""Utilities for keeping per-job request and response traces."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .files import ensure_dir, write_json


@dataclass(slots=True)
class StepLogPaths:
    """Convenience container with derived log file paths."""

    request_path: Path
    response_path: Path


class RunLogger:
    """Persists provider requests and responses under ``runs/<trace_id>``."""

    def __init__(self, base_dir: str | Path = "runs") -> None:
        self._base_dir = ensure_dir(base_dir)
        self._counters: dict[str, int] = {}

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def step_paths(self, trace_id: str, step_name: str) -> StepLogPaths:
        """Return the paths used for logging a specific step.

        Steps repeat (every poll is a step), so each name gets a running
        sequence number to keep earlier traces intact.
        """
        run_root = ensure_dir(self._base_dir / trace_id)
        key = f"{trace_id}/{step_name}"
        sequence = self._counters.get(key, 0) + 1
        self._counters[key] = sequence
        stem = f"{sequence:03d}-{step_name}"
        return StepLogPaths(
            request_path=run_root / f"{stem}-request.json",
            response_path=run_root / f"{stem}-response.json",
        )

    def log_exchange(self, trace_id: str, step_name: str, request: Any, response: Any) -> StepLogPaths:
        """Persist one request/response pair."""
        paths = self.step_paths(trace_id, step_name)
        write_json(paths.request_path, request)
        write_json(paths.response_path, response)
        return paths
