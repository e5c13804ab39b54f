"""Spoken-duration estimation and sentence-based dialogue segmentation."""

from __future__ import annotations

import math
import re
from typing import List

from .types import DialogueSegment

WORDS_PER_MINUTE = 150
MIN_DURATION_SECONDS = 3

# A sentence is any run of text closed by one or more terminators; a trailing
# fragment without a terminator is kept as its own sentence.
_SENTENCE_PATTERN = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")
_SPOKEN_PATTERN = re.compile(r"[^.!?\s]")


def estimate_duration(text: str) -> int:
    """Return the estimated spoken seconds for ``text``."""
    words = len(text.split())
    return max(MIN_DURATION_SECONDS, math.ceil(words * 60 / WORDS_PER_MINUTE))


def split_sentences(text: str) -> List[str]:
    """Tokenize ``text`` into sentences delimited by ``.``, ``!`` or ``?``."""
    sentences: List[str] = []
    pending = ""
    for match in _SENTENCE_PATTERN.finditer(text):
        piece = match.group(0).strip()
        if not piece:
            continue
        # Bare punctuation runs ("...") attach to a neighbouring sentence.
        if not _SPOKEN_PATTERN.search(piece):
            if sentences:
                sentences[-1] += piece
            else:
                pending += piece
            continue
        sentences.append(f"{pending} {piece}".strip() if pending else piece)
        pending = ""
    if pending:
        sentences.append(pending)
    return sentences


def split_dialogue(text: str, max_segment_seconds: float) -> List[DialogueSegment]:
    """Greedily pack sentences into segments of at most ``max_segment_seconds``.

    A sentence that alone exceeds the cap is emitted as its own segment.
    """
    if max_segment_seconds <= 0:
        raise ValueError("max_segment_seconds must be positive.")

    segments: List[DialogueSegment] = []
    current: List[str] = []
    current_duration = 0

    def _close() -> None:
        segments.append(
            DialogueSegment(
                id=f"seg-{len(segments)}",
                text=" ".join(current),
                estimated_duration_seconds=current_duration,
            )
        )

    for sentence in split_sentences(text):
        duration = estimate_duration(sentence)
        if current and current_duration + duration > max_segment_seconds:
            _close()
            current = []
            current_duration = 0
        current.append(sentence)
        current_duration += duration

    if current:
        _close()
    return segments


__all__ = [
    "MIN_DURATION_SECONDS",
    "WORDS_PER_MINUTE",
    "estimate_duration",
    "split_dialogue",
    "split_sentences",
]
