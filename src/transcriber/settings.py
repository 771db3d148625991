"""Transcriber settings resolved from the environment."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_MODEL_DIR = ROOT_DIR / "onnx-models" / "whisper"


class TranscriberSettings(BaseModel):
    model_dir: str = Field(
        default=os.getenv("TRANSCRIBER_MODEL_DIR", str(DEFAULT_MODEL_DIR))
    )
    vad_model_file: str = Field(default=os.getenv("VAD_MODEL_FILE", "silero_vad.onnx"))
    whisper_model_file: str = Field(
        default=os.getenv(
            "WHISPER_MODEL_FILE", "whisper_medium_int8_cpu_ort_1.18.0.onnx"
        )
    )
    whisper_backend: str = Field(default=os.getenv("WHISPER_BACKEND", "onnx"))
    whisper_model: str = Field(default=os.getenv("WHISPER_MODEL", "medium"))
    whisper_device: str = Field(default=os.getenv("WHISPER_DEVICE", "cpu"))
    whisper_compute_type: str = Field(
        default=os.getenv("WHISPER_COMPUTE_TYPE", "int8")
    )
    whisper_mock_transcriber: bool = Field(
        default=os.getenv("WHISPER_USE_MOCK", "false").lower() in {"1", "true", "yes"}
    )
    whisper_max_length: int = Field(default=int(os.getenv("WHISPER_MAX_LENGTH", "448")))
    whisper_length_penalty: float = Field(
        default=float(os.getenv("WHISPER_LENGTH_PENALTY", "1.0"))
    )
    whisper_repetition_penalty: float = Field(
        default=float(os.getenv("WHISPER_REPETITION_PENALTY", "1.2"))
    )
    language: str = Field(default=os.getenv("TRANSCRIBE_LANGUAGE", "en"))
    task: str = Field(default=os.getenv("TRANSCRIBE_TASK", "transcribe"))
    transcript_dir: str = Field(default=os.getenv("TRANSCRIPT_DIR", "data/transcripts"))

    @property
    def vad_model_path(self) -> Path:
        return Path(self.model_dir) / self.vad_model_file

    @property
    def whisper_model_path(self) -> Path:
        return Path(self.model_dir) / self.whisper_model_file

    @property
    def backend(self) -> str:
        if self.whisper_mock_transcriber:
            return "mock"
        return self.whisper_backend.strip().lower()


@lru_cache()
def get_settings() -> TranscriberSettings:
    return TranscriberSettings()
