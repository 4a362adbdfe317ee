"""WebSocket session that drains the chunk queue to the live endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from ..audio.types import AudioChunk, ChunkMetadata, StreamingOptions
from ..store.queue_store import ChunkQueue
from ..store.result_compiler import ResultCompiler, TranscriptOutcome
from ..store.settings_store import AppSettings
from .events import EventChannel

LOGGER = logging.getLogger("livescribe.streaming")

Connector = Callable[[str], Awaitable[Any]]


class ConnectionFailedError(Exception):
    """The live endpoint could not be reached."""


class StreamingDisabledError(RuntimeError):
    """Streaming mode is switched off in the app settings."""


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    FLUSHING = "flushing"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class Progress:
    processed: int
    total: int


class StreamingSession:
    """Owns one live connection for one recording.

    The queue is owned by the caller; the session only pulls from it. Chunks
    are sent as binary frames in FIFO order, transcripts come back as JSON
    text frames and are appended to the compiler in arrival order.
    """

    def __init__(
        self,
        url: str,
        queue: ChunkQueue,
        compiler: Optional[ResultCompiler] = None,
        *,
        connect: Optional[Connector] = None,
        poll_interval: float = 0.05,
        finish_timeout: float = 5.0,
        settle_time: float = 1.0,
        connect_timeout: float = 10.0,
        include_timestamps: bool = False,
    ) -> None:
        self.url = url
        self.queue = queue
        self.compiler = compiler or ResultCompiler()
        self.poll_interval = poll_interval
        self.finish_timeout = finish_timeout
        self.settle_time = settle_time
        self.connect_timeout = connect_timeout
        self.include_timestamps = include_timestamps
        self.sent_chunk_ids: Set[str] = set()

        self.transcription_update: EventChannel[str] = EventChannel("transcription_update")
        self.progress: EventChannel[Progress] = EventChannel("progress")
        self.errors: EventChannel[str] = EventChannel("errors")
        self.state_changed: EventChannel[SessionState] = EventChannel("state_changed")

        self._connect = connect or websockets.connect
        self._state = SessionState.IDLE
        self._socket: Any = None
        self._socket_open = False
        self._draining = False
        self._connect_task: Optional[asyncio.Future] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None

    @classmethod
    def create(
        cls,
        settings: AppSettings,
        options: StreamingOptions,
        **kwargs: Any,
    ) -> "StreamingSession":
        if not settings.streaming_mode:
            raise StreamingDisabledError("Streaming mode is disabled; use batch transcription")
        memory_limit = min(options.memory_limit, settings.max_memory_mb * 1024 * 1024)
        queue = ChunkQueue(options.max_queue_size, memory_limit)
        kwargs.setdefault("poll_interval", settings.poll_interval_ms / 1000.0)
        kwargs.setdefault("finish_timeout", settings.finish_timeout_s)
        kwargs.setdefault("settle_time", settings.settle_time_s)
        kwargs.setdefault("include_timestamps", settings.include_timestamps)
        return cls(settings.live_url(), queue, ResultCompiler(), **kwargs)

    @property
    def state(self) -> SessionState:
        return self._state

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        LOGGER.debug("Session %s -> %s", self._state.value, state.value)
        self._state = state
        self.state_changed.publish(state)

    async def start(self) -> None:
        if self._state in (SessionState.ACTIVE, SessionState.CONNECTING):
            return
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Cannot start a session in state {self._state.value}")
        self._set_state(SessionState.CONNECTING)
        self._connect_task = asyncio.ensure_future(
            asyncio.wait_for(self._connect(self.url), timeout=self.connect_timeout)
        )
        try:
            socket = await self._connect_task
        except asyncio.CancelledError:
            if self._state is SessionState.CONNECTING:
                raise
            LOGGER.info("Connection attempt to %s aborted", self.url)
            return
        except Exception as exc:
            if self._state is not SessionState.CONNECTING:
                return
            LOGGER.error("Connection to %s failed: %s", self.url, exc)
            self._set_state(SessionState.IDLE)
            raise ConnectionFailedError(f"Connection to streaming backend failed: {exc}") from exc
        finally:
            self._connect_task = None
        if self._state is not SessionState.CONNECTING:
            # aborted while the handshake completed
            try:
                await socket.close()
            except Exception as exc:
                LOGGER.debug("Error while closing socket: %s", exc)
            return
        LOGGER.info("Connected to %s", self.url)
        self._socket = socket
        self._socket_open = True
        self._draining = True
        self._set_state(SessionState.ACTIVE)
        self._receive_task = asyncio.create_task(self._receive_loop())
        self._drain_task = asyncio.create_task(self._drain_loop())

    async def add_chunk(self, payload: bytes, metadata: ChunkMetadata) -> bool:
        added = self.queue.enqueue(AudioChunk(payload=payload, metadata=metadata))
        if not added:
            return False
        if self._state is SessionState.IDLE:
            try:
                await self.start()
            except ConnectionFailedError as exc:
                self.errors.publish(str(exc))
        return True

    async def _drain_loop(self) -> None:
        while self._draining and self._socket_open:
            chunk = self.queue.dequeue()
            if chunk is None:
                await asyncio.sleep(self.poll_interval)
                continue
            try:
                await self._socket.send(chunk.payload)
            except ConnectionClosed:
                LOGGER.warning("Socket closed while sending chunk %s", chunk.id[:6])
                self._socket_open = False
                chunk.release()
                break
            except Exception as exc:
                LOGGER.error("Error sending chunk %s: %s", chunk.id[:6], exc)
                chunk.release()
                continue
            self.sent_chunk_ids.add(chunk.id)
            chunk.release()
            self._publish_progress()
        if not self._socket_open and self._state is SessionState.ACTIVE:
            self._set_state(SessionState.CLOSED)

    async def _receive_loop(self) -> None:
        try:
            async for message in self._socket:
                self._handle_message(message)
        except ConnectionClosed as exc:
            LOGGER.info("Live connection closed: %s", exc)
        except Exception as exc:
            LOGGER.error("Receive loop failed: %s", exc)
        finally:
            self._socket_open = False
            if self._state is SessionState.ACTIVE:
                LOGGER.warning("Live connection closed unexpectedly")
                self._set_state(SessionState.CLOSED)

    def _handle_message(self, raw: Any) -> None:
        if isinstance(raw, (bytes, bytearray)):
            LOGGER.warning("Ignoring unexpected binary frame (%d bytes)", len(raw))
            return
        try:
            message = json.loads(raw)
        except ValueError:
            LOGGER.warning("Received invalid message from streaming backend")
            return
        if not isinstance(message, dict):
            LOGGER.warning("Ignoring non-object message from streaming backend")
            return
        kind = message.get("type")
        if kind == "transcription":
            text = message.get("text")
            if not isinstance(text, str) or not text.strip():
                return
            self.compiler.add_segment(text.strip(), timestamp=time.time())
            self._publish_progress()
            self.transcription_update.publish(self.get_partial_result())
        elif kind == "error":
            detail = str(message.get("message") or "unknown error")
            LOGGER.warning("Streaming backend reported error: %s", detail)
            self.errors.publish(detail)
        else:
            LOGGER.debug("Ignoring message of type %r", kind)

    async def finish(self, include_metadata: bool = False) -> str:
        if self._state is SessionState.ACTIVE:
            self._set_state(SessionState.FLUSHING)
            await self._wait_for_drain()
            self._draining = False
            await self._join(self._drain_task)
            if self._socket_open:
                try:
                    await self._socket.send(json.dumps({"type": "flush"}))
                except Exception as exc:
                    LOGGER.error("Failed to flush stream: %s", exc)
                else:
                    await asyncio.sleep(self.settle_time)
            await self._close_socket()
            await self._join(self._receive_task, cancel=True)
            self._set_state(SessionState.CLOSED)
        return self.compiler.get_final_result(self.include_timestamps, include_metadata)

    async def finish_outcome(self) -> TranscriptOutcome:
        await self.finish()
        return self.compiler.get_outcome(self.include_timestamps)

    async def _wait_for_drain(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.finish_timeout
        while self.queue.size() > 0 and self._socket_open:
            if loop.time() >= deadline:
                LOGGER.warning(
                    "Queue still holds %d chunk(s) after %.1fs; flushing anyway",
                    self.queue.size(),
                    self.finish_timeout,
                )
                return
            await asyncio.sleep(self.poll_interval)

    async def abort(self) -> None:
        if self._state is SessionState.CLOSED and self._socket is None:
            self.queue.clear()
            return
        self._draining = False
        self._set_state(SessionState.CLOSED)
        if self._connect_task is not None:
            self._connect_task.cancel()
        await self._join(self._drain_task, cancel=True)
        await self._close_socket()
        await self._join(self._receive_task, cancel=True)
        self.queue.clear()
        LOGGER.info("Session aborted")

    async def _close_socket(self) -> None:
        socket, self._socket = self._socket, None
        self._socket_open = False
        if socket is None:
            return
        try:
            await socket.close()
        except Exception as exc:
            LOGGER.debug("Error while closing socket: %s", exc)

    async def _join(self, task: Optional[asyncio.Task], cancel: bool = False) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        if cancel:
            task.cancel()
        try:
            await asyncio.wait_for(task, timeout=max(self.poll_interval * 4, 0.5))
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass

    def _publish_progress(self) -> None:
        processed = len(self.sent_chunk_ids)
        self.progress.publish(Progress(processed=processed, total=processed + self.queue.size()))

    def get_partial_result(self) -> str:
        return self.compiler.get_partial_result(self.include_timestamps)

    def get_stats(self) -> dict:
        return {
            "state": self._state.value,
            "queue": self.queue.get_stats(),
            "processed_chunks": len(self.sent_chunk_ids),
            "total_duration": self.compiler.get_total_duration(),
            "segment_count": self.compiler.get_segment_count(),
        }

    def is_queue_paused(self) -> bool:
        return self.queue.is_paused()

    def get_memory_usage(self) -> int:
        return self.queue.get_memory_usage()


__all__ = ["ConnectionFailedError", "Progress", "SessionState", "StreamingDisabledError", "StreamingSession"]
