"""Prometheus metrics for transcription runs."""

from __future__ import annotations

from prometheus_client import Counter, Summary

CHUNK_COUNTER = Counter(
    "transcribe_chunks_total",
    "Chunks handled by the transcription pipeline",
    labelnames=("status",),
)

VAD_FALLBACK_COUNTER = Counter(
    "vad_fallback_total",
    "Buffers planned with uniform slicing because voice-activity detection failed",
)

TRANSCRIBE_DURATION = Summary(
    "transcribe_run_seconds",
    "Time spent loading, planning and transcribing one recording",
)
