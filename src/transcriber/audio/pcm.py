"""PCM16 helpers: decode files into 16 kHz mono buffers and slice them."""

from __future__ import annotations

import logging
import math
from pathlib import Path

import numpy as np
import soundfile as sf
from scipy import signal as scipy_signal

from ..errors import LoadFailure

LOGGER = logging.getLogger("transcriber.pcm")

SAMPLE_RATE = 16000
BYTES_PER_SAMPLE = 2
INT16_SCALE = 32768.0


def load_pcm16(path: str | Path, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Decode ``path`` into PCM16 little-endian mono bytes at ``sample_rate``."""
    path = Path(path)
    if not path.exists():
        raise LoadFailure(f"Audio file not found: {path}")
    try:
        audio, source_rate = sf.read(str(path), dtype="float32", always_2d=False)
    except Exception as exc:
        raise LoadFailure(f"Could not decode {path.name}: {exc}") from exc
    if audio.ndim > 1:
        audio = audio.mean(axis=1)
    if source_rate != sample_rate:
        audio = resample(audio, source_rate, sample_rate)
    pcm = np.clip(audio * INT16_SCALE, -INT16_SCALE, INT16_SCALE - 1).astype("<i2")
    LOGGER.debug("Loaded %s: %d samples at %d Hz", path.name, len(pcm), sample_rate)
    return pcm.tobytes()


def resample(audio: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    if source_rate == target_rate or audio.size == 0:
        return audio.astype(np.float32, copy=False)
    common = math.gcd(int(source_rate), int(target_rate))
    resampled = scipy_signal.resample_poly(audio, target_rate // common, source_rate // common)
    return resampled.astype(np.float32)


def pcm16_to_float(buffer: bytes) -> np.ndarray:
    usable = len(buffer) - (len(buffer) % BYTES_PER_SAMPLE)
    samples = np.frombuffer(buffer[:usable], dtype="<i2")
    return (samples.astype(np.float32) / INT16_SCALE).astype(np.float32, copy=False)


def duration_seconds(buffer: bytes, sample_rate: int = SAMPLE_RATE) -> float:
    return len(buffer) / float(sample_rate * BYTES_PER_SAMPLE)


def extract_samples(
    buffer: bytes,
    start: float,
    end: float,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    """Float samples in [-1, 1] for ``[start, end)`` seconds of ``buffer``."""
    if start < 0 or end - start <= 0:
        return np.array([], dtype=np.float32)
    first = int(round(start * sample_rate))
    last = int(round(end * sample_rate))
    total = len(buffer) // BYTES_PER_SAMPLE
    first = min(first, total)
    last = min(last, total)
    if last <= first:
        return np.array([], dtype=np.float32)
    return pcm16_to_float(buffer[first * BYTES_PER_SAMPLE : last * BYTES_PER_SAMPLE])


__all__ = [
    "SAMPLE_RATE",
    "load_pcm16",
    "resample",
    "pcm16_to_float",
    "duration_seconds",
    "extract_samples",
]
