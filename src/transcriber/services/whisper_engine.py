"""Lazy Whisper loader (ONNX end-to-end model or faster-whisper) + mock backend."""

from __future__ import annotations

import logging
import threading
from typing import Iterable

import numpy as np

try:  # pragma: no cover - optional heavy dependency
    import onnxruntime as ort  # type: ignore
except Exception:  # pragma: no cover
    ort = None  # type: ignore

try:  # pragma: no cover - optional heavy dependency
    from onnxruntime_extensions import get_library_path  # type: ignore
except Exception:  # pragma: no cover
    get_library_path = None  # type: ignore

try:  # pragma: no cover - optional heavy dependency
    from faster_whisper import WhisperModel  # type: ignore
except Exception:  # pragma: no cover
    WhisperModel = None  # type: ignore

from ..audio.pcm import SAMPLE_RATE
from ..audio.types import TranscribedSegment, TranscriptionTask
from ..settings import TranscriberSettings
from .segment_parser import format_segment

LOGGER = logging.getLogger("transcriber.whisper")

START_OF_TRANSCRIPT = 50258
FIRST_LANGUAGE_TOKEN = 50259

# Whisper tokenizer order; the token id is FIRST_LANGUAGE_TOKEN + index.
LANGUAGES = (
    "en zh de es ru ko fr ja pt tr pl ca nl ar sv it id hi fi vi he uk el ms cs ro "
    "da hu ta no th ur hr bg lt la mi ml cy sk te fa lv bn sr az sl kn et mk br eu "
    "is hy ne mn bs kk sq sw gl mr pa si km sn yo so af oc ka be tg sd gu am yi lo "
    "uz fo ht ps tk nn mt sa lb my bo tl mg as tt haw ln ha ba jw su"
).split()

BACKENDS = ("onnx", "faster-whisper", "mock")


def language_token(code: str) -> int:
    normalized = (code or "").strip().lower()
    try:
        return FIRST_LANGUAGE_TOKEN + LANGUAGES.index(normalized)
    except ValueError:
        raise ValueError(f"Unsupported Whisper language: {code!r}") from None


def decoder_preamble(language: str, task: TranscriptionTask | str) -> np.ndarray:
    task = TranscriptionTask.parse(task)
    return np.array(
        [[START_OF_TRANSCRIPT, language_token(language), task.value]], dtype=np.int32
    )


class WhisperEngine:
    """Owns one speech-to-text inference handle, loaded on first use.

    ``transcribe_chunk`` always returns Whisper's annotated output form,
    ``<|start|>text<|end|>`` repeated, with timestamps local to the chunk.
    """

    def __init__(self, settings: TranscriberSettings, *, model=None) -> None:
        self.settings = settings
        self.backend = settings.backend
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown Whisper backend {self.backend!r}; expected one of {BACKENDS}")
        self._lock = threading.Lock()
        self._model = model
        if self.backend == "mock":
            LOGGER.warning(
                "Whisper mock mode enabled (set WHISPER_USE_MOCK=0 and configure "
                "WHISPER_BACKEND to enable real transcription)."
            )

    def _load_model(self):
        if self.backend == "mock":
            raise RuntimeError("Mock mode does not load real Whisper models")
        if self._model is None:
            with self._lock:
                if self._model is None:
                    try:
                        if self.backend == "onnx":
                            self._model = self._load_onnx()
                        else:
                            self._model = self._load_faster_whisper()
                    except Exception as exc:  # pragma: no cover - hardware/env dep
                        LOGGER.error("Failed to load Whisper backend '%s': %s", self.backend, exc)
                        raise
        return self._model

    def _load_onnx(self):
        if ort is None:
            raise RuntimeError("onnxruntime is required for the onnx Whisper backend")
        path = self.settings.whisper_model_path
        if not path.exists():
            raise FileNotFoundError(f"Whisper model file not found at: {path}")
        options = ort.SessionOptions()
        if get_library_path is not None:
            options.register_custom_ops_library(get_library_path())
        else:
            LOGGER.warning("onnxruntime-extensions not installed; custom Whisper ops unavailable")
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        options.enable_mem_pattern = False
        LOGGER.info("Loading Whisper ONNX model from %s", path)
        return ort.InferenceSession(
            str(path), sess_options=options, providers=["CPUExecutionProvider"]
        )

    def _load_faster_whisper(self):
        if WhisperModel is None:
            raise RuntimeError("faster-whisper is not installed")
        LOGGER.info(
            "Loading faster-whisper model '%s' on %s (%s)",
            self.settings.whisper_model,
            self.settings.whisper_device,
            self.settings.whisper_compute_type,
        )
        return WhisperModel(
            self.settings.whisper_model,
            device=self.settings.whisper_device,
            compute_type=self.settings.whisper_compute_type,
        )

    def transcribe_chunk(
        self,
        audio: np.ndarray,
        language: str,
        task: TranscriptionTask | str = TranscriptionTask.TRANSCRIBE,
    ) -> str:
        audio = np.asarray(audio, dtype=np.float32).reshape(-1)
        if audio.size == 0:
            return ""
        task = TranscriptionTask.parse(task)
        if self.backend == "mock":
            duration = len(audio) / float(SAMPLE_RATE)
            return format_segment(
                TranscribedSegment(f"[mock transcript {len(audio)} samples]", 0.0, duration)
            )
        model = self._load_model()
        if self.backend == "onnx":
            return self._run_onnx(model, audio, language, task)
        return self._run_faster_whisper(model, audio, language, task)

    def _run_onnx(self, session, audio: np.ndarray, language: str, task: TranscriptionTask) -> str:
        feed = {
            "audio_pcm": audio[np.newaxis, :],
            "min_length": np.array([0], dtype=np.int32),
            "max_length": np.array([self.settings.whisper_max_length], dtype=np.int32),
            "num_beams": np.array([1], dtype=np.int32),
            "num_return_sequences": np.array([1], dtype=np.int32),
            "length_penalty": np.array([self.settings.whisper_length_penalty], dtype=np.float32),
            "repetition_penalty": np.array(
                [self.settings.whisper_repetition_penalty], dtype=np.float32
            ),
            "logits_processor": np.array([1], dtype=np.int32),
            "decoder_input_ids": decoder_preamble(language, task),
        }
        outputs = session.run(None, feed)
        value = np.asarray(outputs[0]).reshape(-1)[0]
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        return str(value)

    def _run_faster_whisper(self, model, audio: np.ndarray, language: str, task: TranscriptionTask) -> str:
        language = LANGUAGES[language_token(language) - FIRST_LANGUAGE_TOKEN]
        segments, _info = model.transcribe(
            audio,
            language=language,
            task=task.name.lower(),
            beam_size=1,
            length_penalty=self.settings.whisper_length_penalty,
            repetition_penalty=self.settings.whisper_repetition_penalty,
            without_timestamps=False,
            vad_filter=False,
        )
        return _render_segments(segments)

    def close(self) -> None:
        with self._lock:
            self._model = None

    def __enter__(self) -> "WhisperEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _render_segments(segments: Iterable) -> str:
    pieces = []
    for segment in segments:
        text = (getattr(segment, "text", "") or "").strip()
        if not text:
            continue
        start = float(getattr(segment, "start", 0.0) or 0.0)
        end = float(getattr(segment, "end", start) or start)
        pieces.append(format_segment(TranscribedSegment(text, start, end)))
    return "".join(pieces)


__all__ = ["WhisperEngine", "language_token", "decoder_preamble", "LANGUAGES", "BACKENDS"]
