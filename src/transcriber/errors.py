"""Error kinds raised inside the transcription pipeline."""

from __future__ import annotations


class TranscriptionError(Exception):
    pass


class InvalidInput(TranscriptionError, ValueError):
    """VAD input with a bad shape, sample rate or length."""


class DetectorFailure(TranscriptionError):
    """Voice-activity scanning could not run on a window."""


class ChunkExtractionFailure(TranscriptionError):
    pass


class ChunkInferenceFailure(TranscriptionError):
    pass


class LoadFailure(TranscriptionError):
    """No audio bytes could be obtained for the source file."""


__all__ = [
    "TranscriptionError",
    "InvalidInput",
    "DetectorFailure",
    "ChunkExtractionFailure",
    "ChunkInferenceFailure",
    "LoadFailure",
]
