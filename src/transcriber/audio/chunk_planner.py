"""Split a recording into bounded, speech-aligned chunks for Whisper."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from ..metrics import VAD_FALLBACK_COUNTER
from ..settings import TranscriberSettings, get_settings
from .pcm import BYTES_PER_SAMPLE
from .types import ChunkSpan, DetectionEvent
from .vad_detector import SpeechDetector
from .vad_session import VadSession

LOGGER = logging.getLogger("transcriber.planner")

SAMPLE_RATE = 16000
START_THRESHOLD = 0.25
END_THRESHOLD = 0.25
MIN_SILENCE_DURATION_MS = 1000
SPEECH_PAD_MS = 400
WINDOW_SIZE_SAMPLES = 3200

MAX_CHUNK_SECONDS = 29.0
MIN_CHUNK_SECONDS = 5.0
CHUNK_GUARD_SECONDS = 0.1


class ChunkPlanner:
    """Plan chunk spans covering a whole PCM16 mono buffer.

    Chunks end on the last voice-activity boundary that fits under
    ``max_chunk_seconds``. When the detector cannot run the buffer is sliced
    uniformly instead.
    """

    def __init__(
        self,
        detector_factory: Optional[Callable[[], SpeechDetector]] = None,
        *,
        settings: TranscriberSettings | None = None,
        sample_rate: int = SAMPLE_RATE,
        window_size_samples: int = WINDOW_SIZE_SAMPLES,
        start_threshold: float = START_THRESHOLD,
        end_threshold: float = END_THRESHOLD,
        min_silence_duration_ms: int = MIN_SILENCE_DURATION_MS,
        speech_pad_ms: int = SPEECH_PAD_MS,
        max_chunk_seconds: float = MAX_CHUNK_SECONDS,
        min_chunk_seconds: float = MIN_CHUNK_SECONDS,
    ) -> None:
        self.settings = settings
        self.sample_rate = sample_rate
        self.window_size_samples = window_size_samples
        self.start_threshold = start_threshold
        self.end_threshold = end_threshold
        self.min_silence_duration_ms = min_silence_duration_ms
        self.speech_pad_ms = speech_pad_ms
        self.max_chunk_seconds = max_chunk_seconds
        self.min_chunk_seconds = min_chunk_seconds
        self._detector_factory = detector_factory or self._default_detector
        self._detector: Optional[SpeechDetector] = None

    def _default_detector(self) -> SpeechDetector:
        settings = self.settings or get_settings()
        return SpeechDetector(
            VadSession(settings.vad_model_path),
            start_threshold=self.start_threshold,
            end_threshold=self.end_threshold,
            sample_rate=self.sample_rate,
            min_silence_duration_ms=self.min_silence_duration_ms,
            speech_pad_ms=self.speech_pad_ms,
        )

    def _get_detector(self) -> SpeechDetector:
        if self._detector is None:
            self._detector = self._detector_factory()
        else:
            self._detector.reset()
        return self._detector

    def plan(self, buffer: bytes | None) -> List[ChunkSpan]:
        if not buffer:
            return []
        total_seconds = len(buffer) / float(self.sample_rate * BYTES_PER_SAMPLE)
        if total_seconds <= self.max_chunk_seconds:
            return [ChunkSpan(0.0, total_seconds)]

        events = self._detect_events(buffer)
        if events is None:
            VAD_FALLBACK_COUNTER.inc()
            return uniform_chunks(total_seconds, self.max_chunk_seconds)

        spans = boundary_chunks(events, total_seconds, self.max_chunk_seconds)
        merged = merge_small_chunks(spans, self.max_chunk_seconds, self.min_chunk_seconds)
        LOGGER.info(
            "Planned %d chunks for %.1fs of audio from %d VAD events",
            len(merged),
            total_seconds,
            len(events),
        )
        return merged

    def _detect_events(self, buffer: bytes) -> Optional[List[DetectionEvent]]:
        """Scan full windows; ``None`` means voice-activity planning must be abandoned."""
        try:
            detector = self._get_detector()
        except Exception as exc:
            LOGGER.warning("VAD unavailable, using time-based chunks: %s", exc)
            return None

        bytes_per_window = self.window_size_samples * BYTES_PER_SAMPLE
        events: List[DetectionEvent] = []
        for offset in range(0, len(buffer) - bytes_per_window + 1, bytes_per_window):
            window = buffer[offset : offset + bytes_per_window]
            try:
                events.extend(detector.apply(window, True))
            except Exception as exc:
                LOGGER.warning(
                    "VAD failed on window at %.1fs, using time-based chunks: %s",
                    offset / float(self.sample_rate * BYTES_PER_SAMPLE),
                    exc,
                )
                return None
        return events

    def close(self) -> None:
        """Release the cached detector and its model session."""
        detector, self._detector = self._detector, None
        if detector is None:
            return
        try:
            detector.close()
        except Exception as exc:
            LOGGER.warning("Failed to close VAD detector: %s", exc)

    def __enter__(self) -> "ChunkPlanner":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def uniform_chunks(total_seconds: float, max_chunk_seconds: float = MAX_CHUNK_SECONDS) -> List[ChunkSpan]:
    if total_seconds <= max_chunk_seconds:
        return [ChunkSpan(0.0, total_seconds)]
    chunks: List[ChunkSpan] = []
    start = 0.0
    while start < total_seconds:
        end = min(start + max_chunk_seconds, total_seconds)
        chunks.append(ChunkSpan(start, end))
        start = end
    return chunks


def boundary_chunks(
    events: Iterable[DetectionEvent],
    total_seconds: float,
    max_chunk_seconds: float = MAX_CHUNK_SECONDS,
) -> List[ChunkSpan]:
    if total_seconds <= max_chunk_seconds:
        return [ChunkSpan(0.0, total_seconds)]
    ordered = sorted(events, key=lambda event: event.seconds)
    chunks: List[ChunkSpan] = []
    next_start = 0.0
    while next_start < total_seconds:
        end = min(next_start + max_chunk_seconds, total_seconds)
        inside = [event for event in ordered if next_start < event.seconds <= end]
        if inside:
            end = inside[-1].seconds
        chunks.append(ChunkSpan(next_start, end))
        next_start = end + CHUNK_GUARD_SECONDS
    return chunks


def merge_small_chunks(
    chunks: Iterable[ChunkSpan],
    max_chunk_seconds: float = MAX_CHUNK_SECONDS,
    min_chunk_seconds: float = MIN_CHUNK_SECONDS,
) -> List[ChunkSpan]:
    """Fold chunks shorter than ``min_chunk_seconds`` into their predecessor.

    A merge only happens when the combined length stays within
    ``max_chunk_seconds``. The input is not modified.
    """
    merged = [ChunkSpan(chunk.start, chunk.end) for chunk in chunks]
    index = 1
    while index < len(merged):
        current = merged[index]
        previous = merged[index - 1]
        if current.length < min_chunk_seconds and current.end - previous.start <= max_chunk_seconds:
            previous.end = current.end
            del merged[index]
            continue
        index += 1
    return merged


__all__ = [
    "ChunkPlanner",
    "uniform_chunks",
    "boundary_chunks",
    "merge_small_chunks",
    "MAX_CHUNK_SECONDS",
    "MIN_CHUNK_SECONDS",
    "WINDOW_SIZE_SAMPLES",
]
