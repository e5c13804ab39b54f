"""File system helpers shared across the package."""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse


def ensure_dir(path: str | Path) -> Path:
    """Create the directory if it does not exist."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_text(path: str | Path, content: str) -> Path:
    """Write UTF-8 text to disk."""
    target = Path(path)
    ensure_dir(target.parent)
    target.write_text(content, encoding="utf-8")
    return target


def write_json(path: str | Path, data: Any) -> Path:
    """Serialize a Python object as JSON to disk."""
    payload = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    return write_text(path, payload)


def atomic_write(path: str | Path, content: bytes) -> Path:
    """Write binary content to disk atomically."""
    target = Path(path)
    ensure_dir(target.parent)
    temp_path = target.with_suffix(target.suffix + ".tmp")
    with open(temp_path, "wb") as handle:
        handle.write(content)
    os.replace(temp_path, target)
    return target


def atomic_write_json(path: str | Path, data: Any) -> Path:
    """Serialize ``data`` and replace ``path`` in one step."""
    payload = json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True)
    return atomic_write(path, (payload + "\n").encode("utf-8"))


def sha256_hex(data: bytes) -> str:
    """Return the hexadecimal SHA-256 digest for the given bytes."""
    return hashlib.sha256(data).hexdigest()


def guess_extension(path: str | Path) -> str | None:
    """Extract the file extension (without leading dot) from a path or URL."""
    text = str(path)
    if "://" in text:
        text = urlparse(text).path
    suffix = Path(text).suffix
    return suffix[1:].lower() if suffix else None
