"""Download finished clips and join them into one deliverable."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from .utils.files import atomic_write, ensure_dir, guess_extension, write_text

MOCK_SCHEME = "mock://"
CONCAT_LIST_NAME = "concat.txt"


def download_clips(
    urls: Sequence[str],
    work_dir: str | Path,
    *,
    timeout: int = 60,
    session: Optional[requests.Session] = None,
) -> List[Path]:
    """Fetch each clip into ``work_dir``; ``mock://`` URLs become text stand-ins."""
    target_dir = ensure_dir(work_dir)
    http = session or requests.Session()
    paths: List[Path] = []
    for index, url in enumerate(urls):
        if url.startswith(MOCK_SCHEME):
            paths.append(write_text(target_dir / f"clip-{index:03d}.txt", f"[Clip #{index}] {url}"))
            continue
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
        ext = guess_extension(url) or "mp4"
        paths.append(atomic_write(target_dir / f"clip-{index:03d}.{ext}", response.content))
    return paths


def assemble_clips(
    urls: Sequence[str],
    output_path: str | Path,
    *,
    work_dir: str | Path,
    timeout: int = 60,
    session: Optional[requests.Session] = None,
) -> Path:
    """Download ``urls`` in order and stream-copy them into ``output_path``.

    The clips of one job share codec and resolution, so ffmpeg's concat
    demuxer joins them without re-encoding. Mock clips are joined as text so
    offline runs still produce an artifact; the returned path then carries a
    ``.txt`` suffix.
    """
    if not urls:
        raise ValueError("No clips to assemble.")
    output = Path(output_path)
    ensure_dir(output.parent)
    clips = download_clips(urls, work_dir, timeout=timeout, session=session)

    if all(clip.suffix == ".txt" for clip in clips):
        combined = [clip.read_text(encoding="utf-8") for clip in clips]
        return write_text(output.with_suffix(".txt"), "\n\n".join(combined))

    # One "file '<path>'" entry per clip; single quotes are closed, escaped and reopened.
    entries = []
    for clip in clips:
        quoted = str(clip.resolve()).replace("'", "'\\''")
        entries.append(f"file '{quoted}'\n")
    clip_list = write_text(Path(work_dir) / CONCAT_LIST_NAME, "".join(entries))

    command = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        str(clip_list),
        "-c",
        "copy",
        str(output),
    ]
    try:
        completed = subprocess.run(command, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise RuntimeError("ffmpeg was not found on PATH; it is needed to join the downloaded clips.") from exc
    if completed.returncode != 0:
        detail = (completed.stderr or completed.stdout or "").strip() or f"exit code {completed.returncode}"
        raise RuntimeError(f"Joining {len(clips)} clips into {output} failed: {detail}")
    return output


__all__ = ["assemble_clips", "download_clips"]
