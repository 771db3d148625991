"""Parse and format the ``<|start|>text<|end|>`` transcript markup."""

from __future__ import annotations

import re
from typing import Iterable, List

from ..audio.types import TranscribedSegment

TIMESTAMPED_SEGMENT = re.compile(r"<\|(\d+(?:\.\d+)?)\|>([^<]*)<\|(\d+(?:\.\d+)?)\|>")


def parse_timestamped(text: str | None, offset: float = 0.0) -> List[TranscribedSegment]:
    """Split Whisper output (or a persisted transcript) into segments.

    ``offset`` is added to every timestamp. Segment text is stripped and
    segments with no text are dropped, so only non-blank, trimmed text
    survives a format and parse round trip.
    """
    if not text:
        return []
    segments: List[TranscribedSegment] = []
    for match in TIMESTAMPED_SEGMENT.finditer(text):
        body = _unescape(match.group(2)).strip()
        if not body:
            continue
        segments.append(
            TranscribedSegment(
                text=body,
                start=float(match.group(1)) + offset,
                end=float(match.group(3)) + offset,
            )
        )
    return segments


def format_segment(segment: TranscribedSegment) -> str:
    return f"<|{segment.start:.2f}|>{_escape(segment.text)}<|{segment.end:.2f}|>"


def format_transcript(segments: Iterable[TranscribedSegment]) -> str:
    return "\n".join(format_segment(segment) for segment in segments)


def transcript_text(segments: Iterable[TranscribedSegment]) -> str:
    return " ".join(segment.text for segment in segments if segment.text).strip()


# A raw "<" would end the segment text early.
def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;")


def _unescape(text: str) -> str:
    return text.replace("&lt;", "<").replace("&amp;", "&")


__all__ = ["parse_timestamped", "format_segment", "format_transcript", "transcript_text"]
