"""Drive chunked Whisper inference over a whole recording."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np

from ..audio import pcm
from ..audio.chunk_planner import ChunkPlanner
from ..audio.types import (
    ChunkOutcome,
    ChunkSpan,
    RunState,
    TranscribedSegment,
    TranscriptionTask,
)
from ..errors import ChunkExtractionFailure, ChunkInferenceFailure, LoadFailure
from ..metrics import CHUNK_COUNTER, TRANSCRIBE_DURATION
from ..settings import TranscriberSettings, get_settings
from .segment_parser import format_transcript, parse_timestamped
from .whisper_engine import WhisperEngine

LOGGER = logging.getLogger("transcriber.service")

ProgressCallback = Callable[[float], None]
Loader = Callable[[Path], bytes]
Extractor = Callable[[bytes, float, float], np.ndarray]


class TranscriptService:
    """Turn an audio file into timestamped segments, one bounded chunk at a time.

    One service owns one Whisper handle. Runs are sequential; do not call
    :meth:`transcribe` from several threads on the same instance.
    """

    def __init__(
        self,
        settings: TranscriberSettings | None = None,
        *,
        engine: WhisperEngine | None = None,
        planner: ChunkPlanner | None = None,
        loader: Loader | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.engine = engine or WhisperEngine(self.settings)
        self.planner = planner or ChunkPlanner(settings=self.settings)
        self._load = loader or pcm.load_pcm16
        self._extract = extractor or pcm.extract_samples
        self.state = RunState.IDLE

    def transcribe(
        self,
        path: str | Path | None,
        language: str | None = None,
        task: TranscriptionTask | str | None = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[TranscribedSegment]:
        """Return the whole-recording transcript; never raises for audio or model errors."""
        started = time.perf_counter()
        segments: List[TranscribedSegment] = []
        try:
            if path is None:
                LOGGER.error("No audio file given")
                return segments
            path = Path(path)
            language = language or self.settings.language
            try:
                task = TranscriptionTask.parse(task or self.settings.task)
            except ValueError as exc:
                LOGGER.error("%s", exc)
                return segments
            buffer = self._load_buffer(path)
            if not buffer:
                return segments
            spans = self._plan(buffer)
            if not spans:
                return segments
            self.state = RunState.TRANSCRIBING
            for outcome in self._run_chunks(buffer, spans, language, task, on_progress, cancel):
                if outcome.ok:
                    segments.extend(outcome.segments)
            LOGGER.info(
                "Transcribed %s: %d segments from %d chunks",
                path.name,
                len(segments),
                len(spans),
            )
            return segments
        finally:
            self.state = RunState.DONE
            TRANSCRIBE_DURATION.observe(time.perf_counter() - started)

    def transcribe_to_text(self, path: str | Path, **kwargs) -> str:
        return format_transcript(self.transcribe(path, **kwargs))

    def _load_buffer(self, path: Path) -> bytes:
        self.state = RunState.LOADING
        try:
            buffer = self._load(path)
        except LoadFailure as exc:
            LOGGER.error("Could not load audio: %s", exc)
            return b""
        except Exception as exc:
            LOGGER.error("Unexpected error loading %s: %s", path, exc)
            return b""
        if not buffer:
            LOGGER.error("No audio bytes obtained from %s", path)
        return buffer or b""

    def _plan(self, buffer: bytes) -> List[ChunkSpan]:
        self.state = RunState.PLANNING
        try:
            spans = self.planner.plan(buffer)
        except Exception as exc:
            LOGGER.error("Chunk planning failed: %s", exc)
            return []
        if not spans:
            LOGGER.warning("Chunk planner produced no spans")
        return spans

    def _run_chunks(
        self,
        buffer: bytes,
        spans: Sequence[ChunkSpan],
        language: str,
        task: TranscriptionTask,
        on_progress: Optional[ProgressCallback],
        cancel: Optional[threading.Event],
    ) -> Iterator[ChunkOutcome]:
        total = len(spans)
        for index, span in enumerate(spans):
            outcome = self._transcribe_span(index, span, buffer, language, task)
            if outcome.error is not None:
                CHUNK_COUNTER.labels(status="error").inc()
                LOGGER.warning(
                    "Skipping chunk %d/%d [%.2f-%.2f]: %s",
                    index + 1,
                    total,
                    span.start,
                    span.end,
                    outcome.error,
                )
            yield outcome
            if on_progress is not None:
                try:
                    on_progress((index + 1) / total)
                except Exception as exc:
                    LOGGER.warning("Progress callback failed after chunk %d/%d: %s", index + 1, total, exc)
            if cancel is not None and cancel.is_set():
                LOGGER.info("Transcription cancelled after chunk %d/%d", index + 1, total)
                return

    def _transcribe_span(
        self,
        index: int,
        span: ChunkSpan,
        buffer: bytes,
        language: str,
        task: TranscriptionTask,
    ) -> ChunkOutcome:
        outcome = ChunkOutcome(index=index, span=span)
        try:
            samples = self._extract(buffer, span.start, span.end)
        except Exception as exc:
            outcome.error = ChunkExtractionFailure(str(exc))
            return outcome
        if samples is None or len(samples) == 0:
            CHUNK_COUNTER.labels(status="skipped").inc()
            LOGGER.info("Chunk %d [%.2f-%.2f] has no samples", index + 1, span.start, span.end)
            return outcome
        try:
            raw = self.engine.transcribe_chunk(samples, language, task)
        except Exception as exc:
            outcome.error = ChunkInferenceFailure(str(exc))
            return outcome
        outcome.segments = parse_timestamped(raw, offset=span.start)
        CHUNK_COUNTER.labels(status="success").inc()
        return outcome

    def close(self) -> None:
        self.engine.close()
        close_planner = getattr(self.planner, "close", None)
        if close_planner is not None:
            close_planner()

    def __enter__(self) -> "TranscriptService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = ["TranscriptService"]
