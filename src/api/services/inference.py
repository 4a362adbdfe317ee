"""Async boundary around the speech-to-text engine."""

from __future__ import annotations

import asyncio
import logging
import time

import numpy as np

from ..metrics import INFERENCE_FAILURES, INFERENCE_LATENCY
from .whisper_engine import WhisperEngine

LOGGER = logging.getLogger("livescribe.inference")


class InferenceInvoker:
    """Runs blocking Whisper calls in the default executor.

    One instance is shared by every connection of an app; concurrency between
    connections is allowed, ordering within a connection is the caller's job.
    """

    def __init__(self, engine: WhisperEngine, sample_rate: int = 16000) -> None:
        self.engine = engine
        self.sample_rate = sample_rate

    @property
    def is_ready(self) -> bool:
        return self.engine.is_loaded

    @property
    def model_name(self) -> str:
        return self.engine.model_name

    async def warm_up(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.engine.load)

    async def transcribe_pcm(self, audio: np.ndarray) -> str:
        return await self._run("live", self.engine.transcribe_audio, audio, self.sample_rate)

    async def transcribe_file(self, data: bytes) -> str:
        return await self._run("batch", self.engine.transcribe_bytes, data)

    async def _run(self, path: str, func, *args) -> str:
        loop = asyncio.get_running_loop()
        start = time.perf_counter()
        try:
            text = await loop.run_in_executor(None, func, *args)
        except Exception:
            INFERENCE_FAILURES.labels(path=path).inc()
            raise
        elapsed = time.perf_counter() - start
        INFERENCE_LATENCY.labels(path=path).observe(elapsed)
        LOGGER.info("Inference (%s) completed in %.2fs", path, elapsed)
        return text
