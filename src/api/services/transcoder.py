"""Normalise incoming live audio to 16 kHz mono s16le PCM.

Encoded container streams (webm/ogg) are only decodable as a whole, so the
ffmpeg transcoder keeps one decoder process per connection and feeds every
binary frame into it; decoded PCM lands in a ``PcmBuffer`` that the
segmentation trigger swaps out.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import threading
from typing import Optional

import ffmpeg
import numpy as np

LOGGER = logging.getLogger("livescribe.transcoder")

BYTES_PER_SAMPLE = 2


class TranscoderError(RuntimeError):
    pass


class PcmBuffer:
    """Thread-safe accumulator with reset-and-return-previous semantics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data = bytearray()

    def append(self, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            self._data.extend(data)

    def swap(self) -> bytes:
        """Return everything buffered so far and start a fresh buffer.

        A trailing odd byte (half a sample) stays behind for the next swap.
        """
        with self._lock:
            previous, self._data = self._data, bytearray()
            if len(previous) % BYTES_PER_SAMPLE:
                self._data.extend(previous[-1:])
                del previous[-1:]
        return bytes(previous)

    def clear(self) -> None:
        with self._lock:
            self._data = bytearray()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Convert s16le bytes to float32 samples in [-1.0, 1.0)."""
    usable = len(data) - (len(data) % BYTES_PER_SAMPLE)
    if usable <= 0:
        return np.array([], dtype=np.float32)
    samples = np.frombuffer(data[:usable], dtype="<i2")
    return samples.astype(np.float32) / 32768.0


def check_ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


class AudioTranscoder:
    """Base interface; implementations write PCM into ``sink``."""

    def __init__(self, sink: PcmBuffer, sample_rate: int = 16000) -> None:
        self.sink = sink
        self.sample_rate = sample_rate

    async def start(self) -> None:
        return None

    async def feed(self, data: bytes) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class PcmPassthroughTranscoder(AudioTranscoder):
    """For clients that already send 16 kHz mono s16le."""

    async def feed(self, data: bytes) -> None:
        self.sink.append(data)


class FfmpegTranscoder(AudioTranscoder):
    """Long-running ffmpeg process decoding a container stream from stdin."""

    def __init__(self, sink: PcmBuffer, sample_rate: int = 16000, input_format: Optional[str] = "webm") -> None:
        super().__init__(sink, sample_rate)
        self.input_format = input_format
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None

    def command(self) -> list[str]:
        input_kwargs = {"format": self.input_format} if self.input_format else {}
        stream = (
            ffmpeg.input("pipe:", **input_kwargs)
            .output("pipe:", format="s16le", acodec="pcm_s16le", ac=1, ar=self.sample_rate)
            .global_args("-hide_banner", "-loglevel", "error")
        )
        return stream.compile()

    async def start(self) -> None:
        if self._process is not None:
            return
        if not check_ffmpeg_available():
            raise TranscoderError("FFmpeg is not installed or not in PATH")
        LOGGER.info("Starting FFmpeg process for streaming (%s)", self.input_format or "probe")
        self._process = await asyncio.create_subprocess_exec(
            *self.command(),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        self._reader = asyncio.create_task(self._read_loop(self._process))

    async def feed(self, data: bytes) -> None:
        if self._process is None:
            await self.start()
        if self._process is None or self._process.stdin is None:
            raise TranscoderError("FFmpeg process has no input pipe")
        if self._process.returncode is not None:
            raise TranscoderError(f"FFmpeg exited with code {self._process.returncode}")
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise TranscoderError(f"Failed to write to FFmpeg: {exc}") from exc

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        if process.stdout is None:
            return
        while True:
            chunk = await process.stdout.read(4096)
            if not chunk:
                break
            LOGGER.debug("FFmpeg output chunk: %d bytes", len(chunk))
            self.sink.append(chunk)

    async def close(self) -> None:
        process, self._process = self._process, None
        reader, self._reader = self._reader, None
        if process is None:
            return
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            process.kill()
        await process.wait()
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass


def build_transcoder(sink: PcmBuffer, input_format: str, sample_rate: int = 16000) -> AudioTranscoder:
    fmt = (input_format or "").lower()
    if fmt in {"s16le", "pcm", "pcm_s16le"}:
        return PcmPassthroughTranscoder(sink, sample_rate)
    if fmt in {"", "auto"}:
        return FfmpegTranscoder(sink, sample_rate, input_format=None)
    return FfmpegTranscoder(sink, sample_rate, input_format=fmt)
