import asyncio
import json
import time

import numpy as np

from src.api.services.live_session import ConnectionHandler, HandlerState
from src.api.services.transcoder import AudioTranscoder, TranscoderError, pcm16_to_float32


class RecordingInvoker:
    def __init__(self, text: str = "hello", delay: float = 0.0, fail: bool = False) -> None:
        self.text = text
        self.delay = delay
        self.fail = fail
        self.calls = []
        self.call_times = []

    async def transcribe_pcm(self, audio):
        self.calls.append(audio)
        self.call_times.append(time.monotonic())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("model exploded")
        return self.text


def _frame(start: int, samples: int = 300) -> bytes:
    return np.arange(start, start + samples, dtype="<i2").tobytes()


def _handler(invoker, **kwargs):
    sent = []

    async def send(payload):
        sent.append(payload)

    kwargs.setdefault("silence_ms", 500)
    kwargs.setdefault("latency_ceiling_ms", 3000)
    return ConnectionHandler(send, invoker, **kwargs), sent


def test_two_frames_then_gap_trigger_exactly_once_on_concatenation():
    async def scenario():
        invoker = RecordingInvoker()
        handler, sent = _handler(invoker)
        first, second = _frame(0), _frame(300)
        assert len(first) == len(second) == 600
        await handler.on_audio(first)
        await asyncio.sleep(0.1)
        await handler.on_audio(second)
        await asyncio.sleep(0.6)
        await handler.wait_idle()
        await handler.close()
        return invoker, sent, first + second

    invoker, sent, combined = asyncio.run(scenario())
    assert len(invoker.calls) == 1
    np.testing.assert_array_equal(invoker.calls[0], pcm16_to_float32(combined))
    assert sent == [{"type": "transcription", "text": "hello"}]


def test_one_trigger_per_silence_episode():
    async def scenario():
        invoker = RecordingInvoker()
        handler, _ = _handler(invoker, silence_ms=100)
        await handler.on_audio(_frame(0))
        await asyncio.sleep(0.3)
        await handler.wait_idle()
        after_first = len(invoker.calls)
        await asyncio.sleep(0.3)
        still = len(invoker.calls)
        await handler.on_audio(_frame(10))
        await asyncio.sleep(0.3)
        await handler.wait_idle()
        await handler.close()
        return after_first, still, len(invoker.calls)

    assert asyncio.run(scenario()) == (1, 1, 2)


def test_latency_ceiling_fires_during_continuous_audio():
    async def scenario():
        invoker = RecordingInvoker()
        handler, sent = _handler(invoker, silence_ms=200, latency_ceiling_ms=300)
        start = time.monotonic()
        while time.monotonic() - start < 0.8:
            await handler.on_audio(_frame(0, 160))
            await asyncio.sleep(0.05)
        await handler.wait_idle()
        await handler.close()
        return start, invoker, sent

    start, invoker, sent = asyncio.run(scenario())
    assert invoker.call_times, "latency trigger never fired"
    assert invoker.call_times[0] - start < 0.6
    assert len(sent) >= 1


def test_flush_while_idle_is_a_noop():
    async def scenario():
        invoker = RecordingInvoker()
        handler, sent = _handler(invoker)
        assert handler.state is HandlerState.IDLE
        await handler.on_control(json.dumps({"type": "flush"}))
        await handler.wait_idle()
        await handler.close()
        return invoker, sent

    invoker, sent = asyncio.run(scenario())
    assert invoker.calls == []
    assert sent == []


def test_flush_forces_immediate_pass():
    async def scenario():
        invoker = RecordingInvoker(text="  flushed  ")
        handler, sent = _handler(invoker, silence_ms=10_000)
        await handler.on_audio(_frame(0))
        assert handler.state is HandlerState.ACCUMULATING
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        state = handler.state
        await handler.close()
        return sent, state

    sent, state = asyncio.run(scenario())
    assert sent == [{"type": "transcription", "text": "flushed"}]
    assert state is HandlerState.IDLE


def test_reset_discards_untranscribed_audio():
    async def scenario():
        invoker = RecordingInvoker()
        handler, sent = _handler(invoker, silence_ms=100)
        await handler.on_audio(_frame(0))
        await handler.on_control('{"type": "reset"}')
        await asyncio.sleep(0.25)
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        await handler.close()
        return invoker, sent

    invoker, sent = asyncio.run(scenario())
    assert invoker.calls == []
    assert sent == []


def test_failed_pass_reports_error_and_connection_continues():
    async def scenario():
        invoker = RecordingInvoker(fail=True)
        handler, sent = _handler(invoker, silence_ms=10_000)
        await handler.on_audio(_frame(0))
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        invoker.fail = False
        await handler.on_audio(_frame(5))
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        await handler.close()
        return sent

    assert asyncio.run(scenario()) == [
        {"type": "error", "message": "Transcription failed"},
        {"type": "transcription", "text": "hello"},
    ]


def test_trigger_during_inference_is_dropped_and_new_audio_waits_for_next():
    async def scenario():
        invoker = RecordingInvoker(delay=0.2)
        handler, sent = _handler(invoker, silence_ms=10_000)
        first, second = _frame(0), _frame(1000)
        await handler.on_audio(first)
        await handler.on_control('{"type": "flush"}')
        await asyncio.sleep(0.05)
        assert handler.in_flight
        assert handler.state is HandlerState.TRANSCRIBING
        await handler.on_audio(second)
        dropped = await handler.trigger("flush")
        await handler.wait_idle()
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        await handler.close()
        return dropped, invoker, first, second

    dropped, invoker, first, second = asyncio.run(scenario())
    assert dropped is False
    assert len(invoker.calls) == 2
    np.testing.assert_array_equal(invoker.calls[0], pcm16_to_float32(first))
    np.testing.assert_array_equal(invoker.calls[1], pcm16_to_float32(second))


def test_blank_transcript_sends_nothing():
    async def scenario():
        invoker = RecordingInvoker(text="   ")
        handler, sent = _handler(invoker, silence_ms=10_000)
        await handler.on_audio(_frame(0))
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        await handler.close()
        return invoker, sent

    invoker, sent = asyncio.run(scenario())
    assert len(invoker.calls) == 1
    assert sent == []


def test_close_cancels_pending_silence_timer():
    async def scenario():
        invoker = RecordingInvoker()
        handler, sent = _handler(invoker, silence_ms=50)
        await handler.on_audio(_frame(0))
        await handler.close()
        await asyncio.sleep(0.15)
        await handler.on_audio(_frame(0))
        await handler.on_control('{"type": "flush"}')
        return invoker, sent, len(handler.pcm)

    invoker, sent, remaining = asyncio.run(scenario())
    assert invoker.calls == []
    assert sent == []
    assert remaining == 0


def test_malformed_control_messages_are_ignored():
    async def scenario():
        invoker = RecordingInvoker()
        handler, sent = _handler(invoker, silence_ms=10_000)
        await handler.on_control("not json")
        await handler.on_control("[]")
        await handler.on_control('{"type": "rewind"}')
        await handler.on_audio(_frame(0))
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        await handler.close()
        return sent

    assert asyncio.run(scenario()) == [{"type": "transcription", "text": "hello"}]


def test_audio_arriving_during_inference_gets_its_own_silence_trigger():
    async def scenario():
        invoker = RecordingInvoker(delay=0.5)
        handler, sent = _handler(invoker, silence_ms=100)
        await handler.on_audio(_frame(0))
        await asyncio.sleep(0.2)
        assert handler.in_flight
        await handler.on_audio(_frame(300))
        await asyncio.sleep(1.0)
        await handler.wait_idle()
        leftover = len(handler.pcm)
        await handler.close()
        return invoker, sent, leftover

    invoker, sent, leftover = asyncio.run(scenario())
    assert [len(audio) for audio in invoker.calls] == [300, 300]
    np.testing.assert_array_equal(invoker.calls[1], pcm16_to_float32(_frame(300)))
    assert leftover == 0
    assert len(sent) == 2


def test_latency_window_starts_with_the_utterance_not_the_connection():
    async def scenario():
        invoker = RecordingInvoker()
        handler, _ = _handler(invoker, silence_ms=500, latency_ceiling_ms=300)
        await asyncio.sleep(0.4)
        first, second = _frame(0), _frame(300)
        await handler.on_audio(first)
        await asyncio.sleep(0.1)
        await handler.on_audio(second)
        await asyncio.sleep(0.6)
        await handler.wait_idle()
        await handler.close()
        return invoker, first + second

    invoker, combined = asyncio.run(scenario())
    assert len(invoker.calls) == 1
    np.testing.assert_array_equal(invoker.calls[0], pcm16_to_float32(combined))


def test_latency_trigger_on_aged_connection_waits_for_the_ceiling():
    async def scenario():
        invoker = RecordingInvoker()
        handler, _ = _handler(invoker, silence_ms=200, latency_ceiling_ms=300)
        await asyncio.sleep(0.4)
        start = time.monotonic()
        while time.monotonic() - start < 0.8:
            await handler.on_audio(_frame(0, 160))
            await asyncio.sleep(0.05)
        await handler.wait_idle()
        await handler.close()
        return start, invoker

    start, invoker = asyncio.run(scenario())
    assert invoker.call_times, "latency trigger never fired"
    assert invoker.call_times[0] - start < 0.6
    assert len(invoker.calls[0]) > 160


class BrokenTranscoder(AudioTranscoder):
    feeds = 0

    async def feed(self, data: bytes) -> None:
        self.feeds += 1
        raise TranscoderError("FFmpeg exited with code 1")


def test_decoder_failure_is_reported_once_and_later_frames_are_dropped():
    async def scenario():
        invoker = RecordingInvoker()
        handler, sent = _handler(invoker, transcoder_factory=BrokenTranscoder, silence_ms=10_000)
        for start in range(3):
            await handler.on_audio(_frame(start))
        await handler.on_control('{"type": "flush"}')
        await handler.wait_idle()
        feeds = handler.transcoder.feeds
        received = handler.bytes_received
        await handler.close()
        return invoker, sent, feeds, received

    invoker, sent, feeds, received = asyncio.run(scenario())
    assert sent == [{"type": "error", "message": "Audio decoding failed"}]
    assert feeds == 1
    assert received == 1800
    assert invoker.calls == []
