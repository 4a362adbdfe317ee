import random
import threading

from client.livescribe.audio.types import AudioChunk, ChunkMetadata
from client.livescribe.store.queue_store import ChunkQueue


def _chunk(index: int, size: int, releaser=None) -> AudioChunk:
    return AudioChunk(
        payload=bytes(size),
        metadata=ChunkMetadata(index=index, duration=0.5),
        releaser=releaser,
    )


def test_third_chunk_rejected_until_queue_drains():
    queue = ChunkQueue(max_size=10, memory_limit=2500)
    warnings = []
    queue.memory_warning.subscribe(warnings.append)

    assert queue.enqueue(_chunk(0, 1000)) is True
    assert queue.enqueue(_chunk(1, 1000)) is True
    assert queue.is_paused() is False
    assert queue.enqueue(_chunk(2, 1000)) is False
    assert queue.is_paused() is True
    assert queue.size() == 2
    assert queue.get_memory_usage() == 2000
    assert len(warnings) == 1
    assert warnings[0].utilization == 80.0

    first = queue.dequeue()
    assert first is not None and first.index == 0
    assert queue.is_paused() is False
    assert queue.enqueue(_chunk(3, 1000)) is True
    assert queue.get_memory_usage() == 2000


def test_dequeue_is_fifo():
    queue = ChunkQueue(max_size=5, memory_limit=10_000)
    for idx in range(4):
        assert queue.enqueue(_chunk(idx, 10))
    assert [queue.dequeue().index for _ in range(4)] == [0, 1, 2, 3]
    assert queue.dequeue() is None


def test_item_count_bound_sets_paused():
    queue = ChunkQueue(max_size=2, memory_limit=10_000)
    assert queue.enqueue(_chunk(0, 1))
    assert queue.enqueue(_chunk(1, 1))
    assert queue.is_paused() is True
    assert queue.enqueue(_chunk(2, 1)) is False
    queue.dequeue()
    assert queue.is_paused() is False


def test_bounds_hold_for_random_enqueue_sequences():
    rng = random.Random(1234)
    for _ in range(50):
        max_size = rng.randint(1, 8)
        limit = rng.randint(100, 5000)
        queue = ChunkQueue(max_size=max_size, memory_limit=limit)
        for idx in range(40):
            if rng.random() < 0.3:
                queue.dequeue()
            else:
                queue.enqueue(_chunk(idx, rng.randint(0, 1500)))
            assert queue.get_memory_usage() <= limit
            assert queue.size() <= max_size


def test_clear_releases_chunks_and_resets_usage():
    released = []
    queue = ChunkQueue(max_size=3, memory_limit=2500)
    for idx in range(3):
        queue.enqueue(_chunk(idx, 800, releaser=lambda idx=idx: released.append(idx)))
    assert queue.enqueue(_chunk(9, 800)) is False

    queue.clear()

    assert queue.get_memory_usage() == 0
    assert queue.size() == 0
    assert queue.is_paused() is False
    assert sorted(released) == [0, 1, 2]


def test_failing_warning_subscriber_does_not_break_enqueue():
    queue = ChunkQueue(max_size=1, memory_limit=100)

    def boom(_warning):
        raise RuntimeError("ui gone")

    queue.memory_warning.subscribe(boom)
    assert queue.enqueue(_chunk(0, 50))
    assert queue.enqueue(_chunk(1, 50)) is False
    assert queue.size() == 1


def test_concurrent_producer_and_consumer_keep_counts_consistent():
    queue = ChunkQueue(max_size=1000, memory_limit=10_000_000)
    accepted = []
    taken = []

    def produce():
        for idx in range(2000):
            if queue.enqueue(_chunk(idx, 100)):
                accepted.append(idx)

    def consume():
        for _ in range(4000):
            chunk = queue.dequeue()
            if chunk is not None:
                taken.append(chunk.index)

    producer = threading.Thread(target=produce)
    consumer = threading.Thread(target=consume)
    producer.start()
    consumer.start()
    producer.join()
    consumer.join()
    while (chunk := queue.dequeue()) is not None:
        taken.append(chunk.index)

    assert taken == accepted
    assert queue.get_memory_usage() == 0
    assert queue.size() == 0


def test_zero_byte_chunks_count_against_item_bound_only():
    queue = ChunkQueue(max_size=2, memory_limit=1000)
    assert queue.enqueue(_chunk(0, 0)) is True
    assert queue.get_memory_usage() == 0
    assert queue.enqueue(_chunk(1, 1000)) is True
    assert queue.is_paused() is True

    assert queue.enqueue(_chunk(2, 0)) is False
    assert queue.get_stats()["paused"] is True

    empty = queue.dequeue()
    assert empty is not None and empty.size == 0
    assert queue.is_paused() is True  # memory is still full
    assert queue.enqueue(_chunk(3, 0)) is True
    assert queue.size() == 2
    assert queue.get_memory_usage() == 1000
