"""Bounded in-memory queue for audio chunks awaiting transmission."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from ..audio.types import AudioChunk
from ..services.events import EventChannel

LOGGER = logging.getLogger("livescribe.queue")


@dataclass(frozen=True, slots=True)
class MemoryWarning:
    """Published when an enqueue is rejected by either bound."""

    utilization: float
    memory_usage: int
    memory_limit: int
    size: int
    max_size: int


class ChunkQueue:
    """FIFO of chunks bounded by item count and total payload bytes.

    One producer (capture callback) and one consumer (drain loop) may call in
    from different threads; every read and mutation goes through ``_lock``.
    """

    def __init__(self, max_size: int, memory_limit: int) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if memory_limit <= 0:
            raise ValueError("memory_limit must be positive")
        self.max_size = max_size
        self.memory_limit = memory_limit
        self.memory_warning: EventChannel[MemoryWarning] = EventChannel("memory_warning")
        self._lock = threading.Lock()
        self._items: Deque[AudioChunk] = deque()
        self._bytes = 0
        # size of the last rejected chunk, 0 once something fits again
        self._blocked_size = 0

    def enqueue(self, chunk: AudioChunk) -> bool:
        with self._lock:
            if not self._fits(chunk.size):
                self._blocked_size = max(chunk.size, 1)
                warning = MemoryWarning(
                    utilization=self._utilization(),
                    memory_usage=self._bytes,
                    memory_limit=self.memory_limit,
                    size=len(self._items),
                    max_size=self.max_size,
                )
            else:
                self._items.append(chunk)
                self._bytes += chunk.size
                self._blocked_size = 0
                return True
        LOGGER.warning(
            "Queue full (%d/%d items, %.1f%% memory); chunk %s rejected",
            warning.size,
            warning.max_size,
            warning.utilization,
            chunk.id[:6],
        )
        self.memory_warning.publish(warning)
        return False

    def dequeue(self) -> Optional[AudioChunk]:
        with self._lock:
            if not self._items:
                return None
            chunk = self._items.popleft()
            self._bytes -= chunk.size
            if self._blocked_size and self._fits(self._blocked_size):
                self._blocked_size = 0
            return chunk

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def get_memory_usage(self) -> int:
        with self._lock:
            return self._bytes

    def is_paused(self) -> bool:
        with self._lock:
            return self._paused()

    def clear(self) -> None:
        with self._lock:
            discarded = list(self._items)
            self._items.clear()
            self._bytes = 0
            self._blocked_size = 0
        for chunk in discarded:
            try:
                chunk.release()
            except Exception:
                LOGGER.exception("Failed to release chunk %s", chunk.id[:6])
        if discarded:
            LOGGER.info("Cleared %d queued chunk(s)", len(discarded))

    def get_stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "size": len(self._items),
                "max_size": self.max_size,
                "memory_usage": self._bytes,
                "memory_limit": self.memory_limit,
                "utilization": self._utilization(),
                "paused": self._paused(),
            }

    def __len__(self) -> int:
        return self.size()

    def _fits(self, incoming: int) -> bool:
        return (
            len(self._items) + 1 <= self.max_size
            and self._bytes + incoming <= self.memory_limit
        )

    def _paused(self) -> bool:
        if len(self._items) >= self.max_size or self._bytes >= self.memory_limit:
            return True
        return bool(self._blocked_size) and not self._fits(self._blocked_size)

    def _utilization(self) -> float:
        return round(self._bytes / self.memory_limit * 100.0, 1)


__all__ = ["ChunkQueue", "MemoryWarning"]
