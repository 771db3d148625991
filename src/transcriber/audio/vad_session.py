"""Stateful Silero VAD session on top of ONNX Runtime."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

try:  # pragma: no cover - optional heavy dependency
    import onnxruntime as ort  # type: ignore
except Exception:  # pragma: no cover
    ort = None  # type: ignore

from ..errors import DetectorFailure, InvalidInput
from .types import DEFAULT_STATE_SHAPE, RecurrentState

LOGGER = logging.getLogger("transcriber.vad")

SUPPORTED_SAMPLE_RATES = (8000, 16000)
# rate / samples above this means the window is shorter than ~32 ms
MAX_RATE_TO_SAMPLES_RATIO = 31.25


class VadSession:
    """One Silero VAD network plus the recurrent state it carries between windows.

    ``apply`` and ``reset`` are the only operations that touch the state. A session
    must not be shared between concurrent callers.
    """

    def __init__(self, model_path: str | Path | None = None, *, session=None) -> None:
        if session is None:
            session = self._open_session(model_path)
        self._session = session
        input_names = [node.name for node in session.get_inputs()]
        self._h_name = _first_present(input_names, ("state", "h"))
        self._c_name = _first_present(input_names, ("stateN", "c"))
        self._state_shape = self._resolve_state_shape(session)
        self.state = RecurrentState.zeros(self._state_shape)
        LOGGER.debug(
            "VAD session ready (inputs=%s, state=%s/%s, shape=%s)",
            input_names,
            self._h_name,
            self._c_name,
            self._state_shape,
        )

    @staticmethod
    def _open_session(model_path: str | Path | None):
        if ort is None:
            raise RuntimeError("onnxruntime is required to load the VAD model")
        if model_path is None:
            raise ValueError("model_path is required when no session is given")
        path = Path(model_path)
        if not path.exists():
            raise FileNotFoundError(f"Silero VAD model file not found at: {path}")
        options = ort.SessionOptions()
        options.inter_op_num_threads = 1
        options.intra_op_num_threads = 1
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED
        LOGGER.info("Loading Silero VAD model from %s", path)
        return ort.InferenceSession(
            str(path), sess_options=options, providers=["CPUExecutionProvider"]
        )

    def _resolve_state_shape(self, session) -> tuple[int, ...]:
        for node in session.get_inputs():
            if node.name == self._h_name:
                shape = tuple(getattr(node, "shape", None) or ())
                if shape and all(isinstance(dim, int) and dim > 0 for dim in shape):
                    return shape
        return DEFAULT_STATE_SHAPE

    def reset(self) -> None:
        self.state = RecurrentState.zeros(self._state_shape)

    def apply(self, windows: Sequence[Sequence[float]] | np.ndarray, sample_rate: int) -> np.ndarray:
        """Return one speech probability per row of ``windows``."""
        x, sample_rate = self._validate(windows, sample_rate)
        batch_size = x.shape[0]

        state = self.state
        if state.batch_size == 0 or state.sample_rate != sample_rate or state.batch_size != batch_size:
            self.reset()
            state = self.state

        feed = {
            "input": x,
            "sr": np.array([sample_rate], dtype=np.int64),
        }
        if self._h_name:
            feed[self._h_name] = state.h
        if self._c_name:
            feed[self._c_name] = state.c

        try:
            outputs = self._session.run(None, feed)
        except Exception as exc:
            raise DetectorFailure(f"VAD inference failed: {exc}") from exc

        if len(outputs) > 1:
            state.h = np.asarray(outputs[1], dtype=np.float32)
        if len(outputs) > 2:
            state.c = np.asarray(outputs[2], dtype=np.float32)
        state.sample_rate = sample_rate
        state.batch_size = batch_size
        return np.asarray(outputs[0], dtype=np.float32).reshape(-1)

    def _validate(self, windows, sample_rate: int) -> tuple[np.ndarray, int]:
        x = np.asarray(windows, dtype=np.float32)
        if x.ndim == 1:
            x = x[np.newaxis, :]
        if x.ndim != 2:
            raise InvalidInput(f"Incorrect audio data dimension: {x.ndim}")
        if x.shape[0] > 2:
            raise InvalidInput(f"Incorrect audio data dimension: {x.shape[0]}")

        if sample_rate != 16000 and sample_rate % 16000 == 0:
            step = sample_rate // 16000
            x = x[:, ::step]
            sample_rate = 16000

        if sample_rate not in SUPPORTED_SAMPLE_RATES:
            raise InvalidInput(
                f"Only supports sample rates {SUPPORTED_SAMPLE_RATES} (or multiples of 16000)"
            )
        if x.shape[1] == 0 or sample_rate / x.shape[1] > MAX_RATE_TO_SAMPLES_RATIO:
            raise InvalidInput("Input audio is too short")
        return np.ascontiguousarray(x), sample_rate

    def close(self) -> None:
        self._session = None

    def __enter__(self) -> "VadSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _first_present(names: Sequence[str], candidates: Sequence[str]) -> str | None:
    for candidate in candidates:
        if candidate in names:
            return candidate
    return None


__all__ = ["VadSession"]
