"""Dataclasses shared across audio helpers."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    """Sequencing metadata supplied by the capture front end."""

    index: int
    duration: float
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("chunk index must be non-negative")


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """One encoded slice of captured audio."""

    payload: bytes
    metadata: ChunkMetadata
    releaser: Optional[Callable[[], None]] = field(default=None, compare=False, repr=False)

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def index(self) -> int:
        return self.metadata.index

    @property
    def size(self) -> int:
        return len(self.payload)

    def release(self) -> None:
        """Drop any external resource backing the payload (temp file, capture buffer)."""
        if self.releaser is None:
            return
        self.releaser()


@dataclass(frozen=True, slots=True)
class StreamingOptions:
    """Opaque limits handed over by the device-capability detector."""

    chunk_duration: float = 1.0
    max_queue_size: int = 50
    memory_limit: int = 50 * 1024 * 1024


__all__ = ["AudioChunk", "ChunkMetadata", "StreamingOptions"]
