"""Turn per-window VAD probabilities into speech start/end events."""

from __future__ import annotations

import numpy as np

from .pcm import pcm16_to_float
from .types import DetectionEvent
from .vad_session import VadSession

SPEECH_START = "start"
SPEECH_END = "end"


class SpeechDetector:
    """Hysteresis over a :class:`VadSession`.

    Speech starts on the first window at or above ``start_threshold``. It ends once
    probabilities stay below ``end_threshold`` for ``min_silence_duration_ms``. Both
    boundaries are widened by ``speech_pad_ms``.
    """

    def __init__(
        self,
        session: VadSession,
        *,
        start_threshold: float = 0.25,
        end_threshold: float = 0.25,
        sample_rate: int = 16000,
        min_silence_duration_ms: int = 1000,
        speech_pad_ms: int = 400,
    ) -> None:
        if start_threshold < 0 or start_threshold > 1:
            raise ValueError("start_threshold must be within [0, 1]")
        if end_threshold < 0 or end_threshold > 1:
            raise ValueError("end_threshold must be within [0, 1]")
        self.session = session
        self.start_threshold = start_threshold
        self.end_threshold = end_threshold
        self.sample_rate = sample_rate
        self.min_silence_samples = sample_rate * min_silence_duration_ms / 1000.0
        self.speech_pad_samples = sample_rate * speech_pad_ms / 1000.0
        self.reset()

    def reset(self) -> None:
        self.session.reset()
        self.triggered = False
        self.temp_end = 0
        self.current_sample = 0

    def apply(self, window: bytes | np.ndarray, return_seconds: bool = True) -> list[DetectionEvent]:
        if isinstance(window, (bytes, bytearray, memoryview)):
            audio = pcm16_to_float(bytes(window))
        else:
            audio = np.asarray(window, dtype=np.float32)
        window_size = len(audio)
        self.current_sample += window_size

        probability = float(self.session.apply(audio[np.newaxis, :], self.sample_rate)[0])
        events: list[DetectionEvent] = []

        if probability >= self.start_threshold and self.temp_end:
            self.temp_end = 0

        if probability >= self.start_threshold and not self.triggered:
            self.triggered = True
            start = max(0.0, self.current_sample - self.speech_pad_samples - window_size)
            events.append(DetectionEvent(SPEECH_START, self._convert(start, return_seconds)))

        elif probability < self.end_threshold and self.triggered:
            if not self.temp_end:
                self.temp_end = self.current_sample
            if self.current_sample - self.temp_end >= self.min_silence_samples:
                end = self.temp_end + self.speech_pad_samples
                self.temp_end = 0
                self.triggered = False
                events.append(DetectionEvent(SPEECH_END, self._convert(end, return_seconds)))

        return events

    def _convert(self, sample: float, return_seconds: bool) -> float:
        if return_seconds:
            return round(sample / self.sample_rate, 1)
        return float(int(sample))

    def close(self) -> None:
        self.session.close()


__all__ = ["SpeechDetector", "SPEECH_START", "SPEECH_END"]
