"""Chunked, VAD-aligned Whisper transcription pipeline."""

__version__ = "1.0.0"
