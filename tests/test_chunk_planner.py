from types import SimpleNamespace

import numpy as np
import pytest
from prometheus_client import REGISTRY

from src.transcriber.audio.chunk_planner import (
    MAX_CHUNK_SECONDS,
    ChunkPlanner,
    boundary_chunks,
    merge_small_chunks,
    uniform_chunks,
)
from src.transcriber.audio.types import ChunkSpan, DetectionEvent
from src.transcriber.audio.vad_session import VadSession
from src.transcriber.errors import DetectorFailure
from src.transcriber.settings import TranscriberSettings

SAMPLE_RATE = 16000


def _buffer(seconds: float) -> bytes:
    return np.zeros(int(seconds * SAMPLE_RATE), dtype=np.int16).tobytes()


class FakeDetector:
    def __init__(self, events_by_window=None, fail_at=None) -> None:
        self.events_by_window = events_by_window or {}
        self.fail_at = fail_at
        self.calls = 0
        self.resets = 0
        self.closed = False

    def apply(self, window, return_seconds=True):  # noqa: ARG002
        index = self.calls
        self.calls += 1
        if self.fail_at is not None and index == self.fail_at:
            raise DetectorFailure("window failed")
        return list(self.events_by_window.get(index, []))

    def reset(self) -> None:
        self.resets += 1
        self.calls = 0

    def close(self) -> None:
        self.closed = True


def _as_tuples(spans):
    return [(round(span.start, 3), round(span.end, 3)) for span in spans]


def _fallback_count() -> float:
    return REGISTRY.get_sample_value("vad_fallback_total") or 0.0


def _never_called():
    raise AssertionError("detector should not be built for short buffers")


def test_empty_buffer_returns_empty_plan():
    planner = ChunkPlanner(_never_called)
    assert planner.plan(b"") == []
    assert planner.plan(None) == []


@pytest.mark.parametrize("seconds", [0.1, 5.0, 29.0])
def test_short_buffer_is_single_span(seconds):
    planner = ChunkPlanner(_never_called)
    spans = planner.plan(_buffer(seconds))
    assert len(spans) == 1
    assert spans[0].start == 0.0
    assert spans[0].end == pytest.approx(seconds)


def test_chunks_end_on_last_event_inside_window():
    detector = FakeDetector(
        {
            10: [DetectionEvent("end", 20.0)],
            200: [DetectionEvent("start", 45.0)],
            300: [DetectionEvent("end", 60.0)],
        }
    )
    planner = ChunkPlanner(lambda: detector)

    spans = planner.plan(_buffer(70))

    assert _as_tuples(spans) == [(0.0, 20.0), (20.1, 45.0), (45.1, 60.0), (60.1, 70.0)]
    assert detector.calls == 350
    assert not detector.closed


def test_events_are_sorted_before_planning():
    detector = FakeDetector({0: [DetectionEvent("end", 25.0), DetectionEvent("start", 12.0)]})
    planner = ChunkPlanner(lambda: detector)

    spans = planner.plan(_buffer(40))

    assert _as_tuples(spans) == [(0.0, 25.0), (25.1, 40.0)]


def test_small_tail_is_merged_into_previous_chunk():
    detector = FakeDetector({0: [DetectionEvent("end", 28.0), DetectionEvent("end", 54.0)]})
    planner = ChunkPlanner(lambda: detector)

    spans = planner.plan(_buffer(56))

    assert _as_tuples(spans) == [(0.0, 28.0), (28.1, 56.0)]


def test_detector_failure_falls_back_to_uniform_slicing():
    detector = FakeDetector({0: [DetectionEvent("end", 10.0)]}, fail_at=3)
    planner = ChunkPlanner(lambda: detector)
    before = _fallback_count()

    spans = planner.plan(_buffer(70))

    assert _as_tuples(spans) == _as_tuples(uniform_chunks(70.0))
    assert _as_tuples(spans) == [(0.0, 29.0), (29.0, 58.0), (58.0, 70.0)]
    assert _fallback_count() == before + 1


def test_detector_is_built_once_and_reset_between_plans():
    built = []

    def factory():
        detector = FakeDetector({0: [DetectionEvent("end", 20.0)]})
        built.append(detector)
        return detector

    planner = ChunkPlanner(factory)
    for _ in range(3):
        assert _as_tuples(planner.plan(_buffer(40))) == [(0.0, 20.0), (20.1, 40.0)]

    assert len(built) == 1
    assert built[0].resets == 2
    assert not built[0].closed

    planner.close()
    assert built[0].closed
    planner.close()


def test_window_failure_keeps_detector_for_next_plan():
    detector = FakeDetector({0: [DetectionEvent("end", 20.0)]}, fail_at=3)
    planner = ChunkPlanner(lambda: detector)

    assert _as_tuples(planner.plan(_buffer(70))) == _as_tuples(uniform_chunks(70.0))
    detector.fail_at = None
    assert _as_tuples(planner.plan(_buffer(40))) == [(0.0, 20.0), (20.1, 40.0)]
    assert not detector.closed


def test_close_errors_are_not_raised():
    class StubbornDetector(FakeDetector):
        def close(self) -> None:
            raise RuntimeError("session already released")

    planner = ChunkPlanner(lambda: StubbornDetector())
    planner.plan(_buffer(40))
    planner.close()


class SilentOnnxSession:
    def __init__(self) -> None:
        self.runs = 0

    def get_inputs(self):
        return [SimpleNamespace(name=name, shape=[2, 1, 64]) for name in ("input", "sr", "h", "c")]

    def run(self, output_names, feed):  # noqa: ARG002
        self.runs += 1
        rows = feed["input"].shape[0]
        return [np.zeros((rows, 1), dtype=np.float32), feed["h"], feed["c"]]


def test_default_detector_opens_vad_model_once(tmp_path, monkeypatch):
    opened = []

    def fake_open(model_path):
        opened.append(model_path)
        return SilentOnnxSession()

    monkeypatch.setattr(VadSession, "_open_session", staticmethod(fake_open))
    settings = TranscriberSettings(model_dir=str(tmp_path), vad_model_file="vad.onnx")
    planner = ChunkPlanner(settings=settings)

    for _ in range(3):
        spans = planner.plan(_buffer(40))
        assert _as_tuples(spans) == [(0.0, 29.0), (29.1, 40.0)]

    assert opened == [tmp_path / "vad.onnx"]
    planner.close()


def test_detector_construction_failure_falls_back():
    def broken_factory():
        raise FileNotFoundError("silero_vad.onnx")

    planner = ChunkPlanner(broken_factory)
    assert _as_tuples(planner.plan(_buffer(60))) == _as_tuples(uniform_chunks(60.0))


def test_uniform_chunks_cover_duration():
    spans = uniform_chunks(100.0)
    assert spans[0].start == 0.0
    assert spans[-1].end == 100.0
    assert all(span.length <= MAX_CHUNK_SECONDS for span in spans)
    for previous, current in zip(spans, spans[1:]):
        assert current.start == previous.end


def test_boundary_chunks_are_ordered_and_bounded():
    events = [DetectionEvent("start", s) for s in (3.2, 17.9, 31.0, 33.3, 70.1, 88.8, 119.5)]
    spans = boundary_chunks(events, 130.0)

    assert spans[0].start == 0.0
    assert spans[-1].end == pytest.approx(130.0)
    for span in spans:
        assert 0.0 <= span.start < span.end <= 130.0
        assert span.length <= MAX_CHUNK_SECONDS + 1e-9
    for previous, current in zip(spans, spans[1:]):
        assert current.start > previous.end


def test_merge_small_chunks_respects_max_length():
    spans = [ChunkSpan(0.0, 10.0), ChunkSpan(10.1, 12.0), ChunkSpan(12.1, 14.0), ChunkSpan(14.1, 40.0)]

    merged = merge_small_chunks(spans)

    assert _as_tuples(merged) == [(0.0, 14.0), (14.1, 40.0)]
    # input is left untouched
    assert spans[0].end == 10.0


def test_merge_small_chunks_is_idempotent_and_maximal():
    spans = [
        ChunkSpan(0.0, 27.0),
        ChunkSpan(27.1, 29.0),
        ChunkSpan(29.1, 31.0),
        ChunkSpan(31.1, 58.0),
        ChunkSpan(58.1, 60.0),
        ChunkSpan(60.1, 61.0),
    ]

    once = merge_small_chunks(spans)
    twice = merge_small_chunks(once)

    assert _as_tuples(once) == _as_tuples(twice)
    for previous, current in zip(once, once[1:]):
        mergeable = current.length < 5.0 and current.end - previous.start <= MAX_CHUNK_SECONDS
        assert not mergeable
    assert all(span.length <= MAX_CHUNK_SECONDS for span in once)


def test_merge_small_chunks_handles_empty_input():
    assert merge_small_chunks([]) == []
