import numpy as np
import pytest

from src.transcriber.audio.vad_detector import SPEECH_END, SPEECH_START, SpeechDetector

WINDOW = 3200


class ScriptedSession:
    """Stands in for VadSession, replaying one probability per window."""

    def __init__(self, probabilities) -> None:
        self.probabilities = list(probabilities)
        self.calls = 0
        self.resets = 0
        self.closed = False
        self.rates: list[int] = []

    def reset(self) -> None:
        self.resets += 1

    def apply(self, windows, sample_rate):
        self.rates.append(sample_rate)
        assert np.asarray(windows).shape == (1, WINDOW)
        value = self.probabilities[self.calls]
        self.calls += 1
        return np.array([value], dtype=np.float32)

    def close(self) -> None:
        self.closed = True


def _run(detector: SpeechDetector, count: int):
    window = np.zeros(WINDOW, dtype=np.int16).tobytes()
    events = []
    for index in range(count):
        for event in detector.apply(window, True):
            events.append((index, event.kind, event.seconds))
    return events


def test_emits_padded_start_and_end_after_min_silence():
    probs = [0.0] * 4 + [0.9] * 3 + [0.0] * 10
    detector = SpeechDetector(ScriptedSession(probs))

    events = _run(detector, len(probs))

    # start: 5 windows in, minus one window and 400 ms padding -> 0.4 s
    # end: silence began at 1.6 s, confirmed after 1 s, plus 400 ms padding -> 2.0 s
    assert events == [(4, SPEECH_START, 0.4), (12, SPEECH_END, 2.0)]


def test_start_is_clamped_to_zero():
    detector = SpeechDetector(ScriptedSession([0.8]))
    assert _run(detector, 1) == [(0, SPEECH_START, 0.0)]


def test_speech_resuming_cancels_tentative_end():
    probs = [0.9] + [0.0] * 3 + [0.9] + [0.0] * 6
    detector = SpeechDetector(ScriptedSession(probs))

    events = _run(detector, len(probs))

    kinds = [kind for _, kind, _ in events]
    assert kinds == [SPEECH_START, SPEECH_END]
    # the end is measured from the second silence (starting at 1.2 s)
    assert events[-1] == (10, SPEECH_END, 1.6)


def test_no_events_for_continuous_silence():
    detector = SpeechDetector(ScriptedSession([0.1] * 20))
    assert _run(detector, 20) == []


def test_accepts_float_windows_and_returns_samples():
    session = ScriptedSession([0.9])
    detector = SpeechDetector(session, speech_pad_ms=0)

    events = detector.apply(np.zeros(WINDOW, dtype=np.float32), return_seconds=False)

    assert [(event.kind, event.seconds) for event in events] == [(SPEECH_START, 0.0)]
    assert session.rates == [16000]


def test_reset_clears_progress_and_session_state():
    session = ScriptedSession([0.9, 0.9])
    detector = SpeechDetector(session)
    _run(detector, 1)
    assert detector.triggered

    detector.reset()

    assert not detector.triggered
    assert detector.current_sample == 0
    assert session.resets == 2  # construction + explicit reset
    assert [event.kind for event in detector.apply(np.zeros(WINDOW, dtype=np.int16).tobytes())] == [SPEECH_START]


def test_close_closes_session():
    session = ScriptedSession([])
    SpeechDetector(session).close()
    assert session.closed


def test_rejects_out_of_range_thresholds():
    with pytest.raises(ValueError):
        SpeechDetector(ScriptedSession([]), start_threshold=1.5)
