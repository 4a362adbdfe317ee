"""Lazy Whisper (faster-whisper) loader + mock fallback."""

from __future__ import annotations

import io
import logging
import threading
from typing import Iterable

import numpy as np

try:  # pragma: no cover - optional heavy dependency
    from faster_whisper import WhisperModel  # type: ignore
except ImportError:  # pragma: no cover
    WhisperModel = None  # type: ignore

from ..settings import APISettings

LOGGER = logging.getLogger("livescribe.whisper")


class WhisperEngine:
    """Thin wrapper that loads Whisper on demand and falls back to mock mode."""

    def __init__(self, settings: APISettings) -> None:
        self.settings = settings
        self._lock = threading.Lock()
        self._model = None
        self._mock = settings.whisper_mock_transcriber or WhisperModel is None
        if self._mock:
            LOGGER.warning(
                "Whisper mock mode enabled (set WHISPER_USE_MOCK=0 and install "
                "faster-whisper to enable real transcription)."
            )

    @property
    def model_name(self) -> str:
        return "mock" if self._mock else self.settings.whisper_model

    @property
    def is_loaded(self) -> bool:
        return self._mock or self._model is not None

    def load(self) -> None:
        if not self._mock:
            self._load_model()

    def _load_model(self) -> WhisperModel:
        if self._mock:
            raise RuntimeError("Mock mode does not load real Whisper models")
        if self._model is None:
            with self._lock:
                if self._model is None:
                    LOGGER.info("Loading Whisper model '%s'...", self.settings.whisper_model)
                    try:
                        self._model = WhisperModel(
                            self.settings.whisper_model,
                            device=self.settings.whisper_device,
                            compute_type=self.settings.whisper_compute_type,
                        )
                    except Exception as exc:  # pragma: no cover - hardware/env dep
                        LOGGER.error(
                            "Failed to load Whisper model '%s': %s",
                            self.settings.whisper_model,
                            exc,
                        )
                        raise
                    LOGGER.info("Whisper model loaded")
        return self._model

    def transcribe_bytes(self, data: bytes) -> str:
        if self._mock:
            return f"[mock transcript {len(data)} bytes]"
        model = self._load_model()
        segments, _info = model.transcribe(
            io.BytesIO(data), language=self.settings.whisper_language, beam_size=5
        )
        return _join_segments(segments)

    def transcribe_audio(self, audio: np.ndarray, sample_rate: int = 16000) -> str:
        if self._mock:
            duration = len(audio) / float(sample_rate)
            return f"[mock transcript {len(audio)} samples, {duration:.2f}s]"
        model = self._load_model()
        segments, _info = model.transcribe(
            audio=audio,
            language=self.settings.whisper_language,
            beam_size=5,
            vad_filter=True,
        )
        return _join_segments(segments)


def _join_segments(segments: Iterable) -> str:
    pieces = [segment.text.strip() for segment in segments]
    return " ".join(piece for piece in pieces if piece).strip()
