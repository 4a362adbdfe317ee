"""Append-only log of transcript segments with text rendering."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True, slots=True)
class TranscriptionSegment:
    """One piece of backend text, keyed by arrival order."""

    sequence: int
    text: str
    timestamp: Optional[float] = None
    duration: Optional[float] = None


@dataclass(frozen=True, slots=True)
class TranscriptOutcome:
    text: str
    empty: bool


class ResultCompiler:
    """Collect segments in the order they arrive and render them as text.

    Segment durations are only known when the backend reports them, so
    ``get_total_duration`` under-counts streams whose segments carry none.
    """

    def __init__(self, delimiter: str = " ") -> None:
        self.delimiter = delimiter
        self._lock = threading.Lock()
        self._segments: List[TranscriptionSegment] = []

    def add_segment(
        self,
        text: str,
        *,
        timestamp: Optional[float] = None,
        duration: Optional[float] = None,
    ) -> TranscriptionSegment:
        with self._lock:
            segment = TranscriptionSegment(
                sequence=len(self._segments),
                text=text,
                timestamp=timestamp,
                duration=duration,
            )
            self._segments.append(segment)
        return segment

    def segments(self) -> List[TranscriptionSegment]:
        with self._lock:
            return list(self._segments)

    def get_partial_result(self, include_timestamps: bool = False) -> str:
        return self._render(self.segments(), include_timestamps)

    def get_final_result(self, include_timestamps: bool = False, include_metadata: bool = False) -> str:
        segments = self.segments()
        text = self._render(segments, include_timestamps)
        if include_metadata and text:
            duration = sum(segment.duration or 0.0 for segment in segments)
            text = f"{text}\n\n({len(segments)} segment(s), {duration:.1f}s of audio)"
        return text

    def get_outcome(self, include_timestamps: bool = False) -> TranscriptOutcome:
        text = self.get_final_result(include_timestamps)
        return TranscriptOutcome(text=text, empty=not text.strip())

    def get_total_duration(self) -> float:
        return sum(segment.duration or 0.0 for segment in self.segments())

    def get_segment_count(self) -> int:
        with self._lock:
            return len(self._segments)

    def is_empty(self) -> bool:
        return self.get_segment_count() == 0

    def clear(self) -> None:
        with self._lock:
            self._segments = []

    def _render(self, segments: List[TranscriptionSegment], include_timestamps: bool) -> str:
        parts: List[str] = []
        origin = next((s.timestamp for s in segments if s.timestamp is not None), None)
        for segment in segments:
            text = segment.text.strip()
            if not text:
                continue
            if include_timestamps:
                text = f"[{_format_offset(segment.timestamp, origin)}] {text}"
            parts.append(text)
        separator = "\n" if include_timestamps else self.delimiter
        return separator.join(parts)


def _format_offset(timestamp: Optional[float], origin: Optional[float]) -> str:
    if timestamp is None or origin is None:
        return "--:--:--"
    total = max(0, int(timestamp - origin))
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


__all__ = ["ResultCompiler", "TranscriptOutcome", "TranscriptionSegment"]
