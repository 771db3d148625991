"""Transcript text files in the ``<|start|>text<|end|>`` line format."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

from ..audio.types import TranscribedSegment
from ..services.segment_parser import format_transcript, parse_timestamped

LOGGER = logging.getLogger("transcriber.store")


class TranscriptStore:
    """Persist one transcript per attachment name under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        stem = Path(name).stem or "transcript"
        return self.directory / f"{stem}.txt"

    def save(self, name: str, segments: Iterable[TranscribedSegment]) -> Path:
        path = self.path_for(name)
        path.write_text(format_transcript(segments), encoding="utf-8")
        LOGGER.info("Saved transcript to %s", path)
        return path

    def load(self, name: str) -> List[TranscribedSegment]:
        path = self.path_for(name)
        if not path.exists():
            return []
        return parse_timestamped(path.read_text(encoding="utf-8"))

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()


__all__ = ["TranscriptStore"]
