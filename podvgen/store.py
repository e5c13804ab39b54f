"""Single-slot persistence for the active video job."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Protocol

from .errors import JobStoreError
from .types import VideoJob
from .utils.files import atomic_write_json


class JobStore(Protocol):
    """One logical slot holding the active job."""

    def save(self, job: VideoJob) -> None:
        ...

    def load(self) -> Optional[VideoJob]:
        ...

    def clear(self) -> None:
        ...


class FileJobStore:
    """Keeps the job record as a JSON file that survives process restarts."""

    def __init__(self, path: str | Path = "runs/active_job.json") -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, job: VideoJob) -> None:
        atomic_write_json(self._path, job.to_record())

    def load(self) -> Optional[VideoJob]:
        if not self._path.exists():
            return None
        try:
            record = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise JobStoreError(f"Cannot read job record at {self._path}: {exc}") from exc
        return VideoJob.from_record(record)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


class MemoryJobStore:
    """In-process store; records are round-tripped through the same schema."""

    def __init__(self) -> None:
        self._record: Optional[str] = None

    def save(self, job: VideoJob) -> None:
        self._record = json.dumps(job.to_record())

    def load(self) -> Optional[VideoJob]:
        if self._record is None:
            return None
        return VideoJob.from_record(json.loads(self._record))

    def clear(self) -> None:
        self._record = None


__all__ = ["FileJobStore", "JobStore", "MemoryJobStore"]
