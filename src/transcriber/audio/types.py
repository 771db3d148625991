"""Dataclasses shared across the transcription pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

DEFAULT_STATE_SHAPE = (2, 1, 64)


@dataclass(slots=True)
class RecurrentState:
    """Hidden/cell tensors carried between VAD calls.

    ``sample_rate`` and ``batch_size`` are zero until the first inference.
    """

    h: np.ndarray
    c: np.ndarray
    sample_rate: int = 0
    batch_size: int = 0

    @classmethod
    def zeros(cls, shape: tuple[int, ...] = DEFAULT_STATE_SHAPE) -> "RecurrentState":
        return cls(
            h=np.zeros(shape, dtype=np.float32),
            c=np.zeros(shape, dtype=np.float32),
        )


@dataclass(slots=True)
class DetectionEvent:
    """Voice-activity boundary (``start`` or ``end``) in seconds from buffer start."""

    kind: str
    seconds: float


@dataclass(slots=True)
class ChunkSpan:
    start: float
    end: float

    @property
    def length(self) -> float:
        return self.end - self.start


@dataclass(slots=True)
class TranscribedSegment:
    """Text with timestamps on the global (whole recording) timeline."""

    text: str
    start: float
    end: float

    @property
    def length(self) -> float:
        return self.end - self.start


class TranscriptionTask(Enum):
    # Values are the Whisper decoder task tokens.
    TRANSLATE = 50358
    TRANSCRIBE = 50359

    @classmethod
    def parse(cls, value: "TranscriptionTask | str") -> "TranscriptionTask":
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown transcription task: {value!r}") from None


class RunState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLANNING = "planning"
    TRANSCRIBING = "transcribing"
    DONE = "done"


@dataclass(slots=True)
class ChunkOutcome:
    """Result of transcribing one span; ``error`` is set when the chunk was dropped."""

    index: int
    span: ChunkSpan
    segments: List[TranscribedSegment] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None
