"""Per-connection segmentation state machine for /api/live.

Audio frames are decoded continuously into a PCM buffer. A transcription pass
runs when either

* no frame has arrived for ``silence_ms`` (the speaker paused), or
* more than ``latency_ceiling_ms`` passed since the previous pass while audio
  keeps arriving,

or when the client sends ``{"type": "flush"}``. At most one pass per
connection is in flight; a trigger that lands while one is running is dropped
and the audio it would have used is picked up by the next trigger.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..metrics import LIVE_TRIGGERS
from ..schemas import LiveErrorMessage, TranscriptionMessage
from .inference import InferenceInvoker
from .transcoder import (
    BYTES_PER_SAMPLE,
    AudioTranscoder,
    PcmBuffer,
    PcmPassthroughTranscoder,
    TranscoderError,
    pcm16_to_float32,
)

LOGGER = logging.getLogger("livescribe.live")

SendJson = Callable[[Dict[str, Any]], Awaitable[None]]
TranscoderFactory = Callable[[PcmBuffer], AudioTranscoder]


class HandlerState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    TRANSCRIBING = "transcribing"


class ConnectionHandler:
    def __init__(
        self,
        send: SendJson,
        invoker: InferenceInvoker,
        transcoder_factory: Optional[TranscoderFactory] = None,
        *,
        silence_ms: int = 500,
        latency_ceiling_ms: int = 3000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._send_json = send
        self.invoker = invoker
        self.silence_s = silence_ms / 1000.0
        self.latency_ceiling_s = latency_ceiling_ms / 1000.0
        self._clock = clock

        self.pcm = PcmBuffer()
        factory = transcoder_factory or PcmPassthroughTranscoder
        self.transcoder = factory(self.pcm)

        self.bytes_received = 0
        self.trigger_count = 0
        self.last_activity: Optional[float] = None
        self.last_trigger = clock()
        self._in_flight = False
        self._closed = False
        self._decoder_failed = False
        self._silence_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> HandlerState:
        if self._in_flight:
            return HandlerState.TRANSCRIBING
        if self._silence_handle is not None or len(self.pcm) >= BYTES_PER_SAMPLE:
            return HandlerState.ACCUMULATING
        return HandlerState.IDLE

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def on_audio(self, data: bytes) -> None:
        if self._closed or not data:
            return
        self.bytes_received += len(data)
        now = self._clock()
        if self.state is HandlerState.IDLE:
            # a new utterance starts its own latency window
            self.last_trigger = now
        self.last_activity = now
        LOGGER.debug("Received audio chunk from client: %d bytes", len(data))
        if self._decoder_failed:
            return
        try:
            await self.transcoder.feed(data)
        except TranscoderError as exc:
            LOGGER.error("Transcoding failed, dropping further audio: %s", exc)
            self._decoder_failed = True
            await self._send(LiveErrorMessage(message="Audio decoding failed").model_dump())
        self._arm_silence_timer()
        if not self._in_flight and self._clock() - self.last_trigger > self.latency_ceiling_s:
            LOGGER.debug("Time threshold reached, triggering transcription")
            self._schedule("latency")

    async def on_control(self, raw: str) -> None:
        if self._closed:
            return
        try:
            message = json.loads(raw)
        except ValueError:
            LOGGER.warning("Received invalid JSON text message")
            return
        kind = message.get("type") if isinstance(message, dict) else None
        if kind == "reset":
            self._cancel_silence_timer()
            self.pcm.clear()
            LOGGER.info("Audio buffer cleared by client")
        elif kind == "flush":
            LOGGER.info("Flush requested by client")
            self._schedule("flush")
        else:
            LOGGER.warning("Ignoring unknown control message %r", kind)

    async def trigger(self, reason: str) -> bool:
        """Run one transcription pass; False when skipped."""
        if self._closed:
            return False
        if self._in_flight:
            LOGGER.debug("Transcription already in progress, skipping %s trigger", reason)
            return False
        if len(self.pcm) < BYTES_PER_SAMPLE:
            LOGGER.debug("No PCM data to transcribe (%s trigger)", reason)
            return False

        self._in_flight = True
        snapshot = self.pcm.swap()
        self.trigger_count += 1
        LIVE_TRIGGERS.labels(reason=reason).inc()
        LOGGER.info("Transcribing %d bytes of PCM data (%s)", len(snapshot), reason)
        try:
            text = await self.invoker.transcribe_pcm(pcm16_to_float32(snapshot))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.error("Live transcription error: %s", exc)
            await self._send(LiveErrorMessage(message="Transcription failed").model_dump())
        else:
            text = (text or "").strip()
            LOGGER.info("Transcription result: %r", text)
            if text:
                await self._send(TranscriptionMessage(text=text).model_dump())
        finally:
            self._in_flight = False
            self.last_trigger = self._clock()
            if (
                not self._closed
                and self._silence_handle is None
                and len(self.pcm) >= BYTES_PER_SAMPLE
            ):
                # silence fired mid-pass; re-arm for the audio left behind
                self._arm_silence_timer()
        return True

    async def wait_idle(self) -> None:
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_silence_timer()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        try:
            await self.transcoder.close()
        except Exception as exc:
            LOGGER.error("Error cleaning up transcoder: %s", exc)
        self.pcm.clear()
        LOGGER.info(
            "Live connection closed after %d bytes and %d transcription pass(es)",
            self.bytes_received,
            self.trigger_count,
        )

    def _arm_silence_timer(self) -> None:
        self._cancel_silence_timer()
        loop = asyncio.get_running_loop()
        self._silence_handle = loop.call_later(self.silence_s, self._on_silence)

    def _cancel_silence_timer(self) -> None:
        if self._silence_handle is not None:
            self._silence_handle.cancel()
            self._silence_handle = None

    def _on_silence(self) -> None:
        self._silence_handle = None
        LOGGER.debug("Silence detected, triggering transcription")
        self._schedule("silence")

    def _schedule(self, reason: str) -> None:
        if self._closed:
            return
        task = asyncio.create_task(self.trigger(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, payload: Dict[str, Any]) -> None:
        try:
            await self._send_json(payload)
        except Exception as exc:
            LOGGER.debug("Failed to send %s message (socket closed?): %s", payload.get("type"), exc)
