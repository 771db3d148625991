"""Transcribe one audio file and store the timestamped transcript next to the others."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from src.transcriber.services.transcript_service import TranscriptService
from src.transcriber.settings import get_settings
from src.transcriber.store.transcript_store import TranscriptStore


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Transcribe an audio file with chunked Whisper.")
    parser.add_argument("audio", type=Path, help="Audio file to transcribe.")
    parser.add_argument("--language", default=settings.language, help="Whisper language code (default: %(default)s).")
    parser.add_argument(
        "--task",
        choices=("transcribe", "translate"),
        default=settings.task,
        help="Transcribe in the source language or translate to English.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path(settings.transcript_dir),
        help="Directory for the transcript text file (default: %(default)s).",
    )
    parser.add_argument("--backend", choices=("onnx", "faster-whisper", "mock"), help="Override WHISPER_BACKEND.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.backend:
        settings = settings.model_copy(
            update={"whisper_backend": args.backend, "whisper_mock_transcriber": args.backend == "mock"}
        )

    def report(fraction: float) -> None:
        print(f"\rTranscribing: {fraction * 100:5.1f}%", end="", flush=True)

    with TranscriptService(settings) as service:
        segments = service.transcribe(args.audio, language=args.language, task=args.task, on_progress=report)
    print()
    if not segments:
        print("No transcript produced.")
        return
    path = TranscriptStore(args.output).save(args.audio.name, segments)
    print(f"{len(segments)} segments written to {path}")


if __name__ == "__main__":
    main()
