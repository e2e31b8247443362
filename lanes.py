"""Lane routing and bounded per-lane buffering."""

import asyncio
from typing import AsyncIterator, Optional

from models import TransactionRecord

# Fraction of a lane's estimated record count the buffer may hold at once
BUFFER_FRACTION = 4

_END_OF_STREAM = None


def partition(client_id: int, lane_count: int) -> int:
    """Route a client to a lane. Every record of a client lands on the same lane."""
    if lane_count < 1:
        raise ValueError("lane_count must be at least 1")
    return client_id % lane_count


def compute_buffer_capacity(
    input_bytes: int,
    lane_count: int,
    floor: int = 64,
    ceiling: int = 8192,
    bytes_per_record: int = 16
) -> int:
    """Size each lane's buffer from the input size.

    Small inputs get ``floor``, large inputs grow with the estimated number of
    records per lane and stop at ``ceiling``. The result never decreases as
    ``input_bytes`` grows.
    """
    if floor > ceiling:
        raise ValueError("floor must not exceed ceiling")
    estimated_records = max(input_bytes, 0) // max(bytes_per_record, 1)
    per_lane = estimated_records // max(lane_count, 1)
    return max(floor, min(ceiling, per_lane // BUFFER_FRACTION))


class LaneBuffer:
    """Bounded FIFO between the producer and one lane's engine.

    A full buffer suspends the producer in ``put`` until the engine frees
    space. ``drain`` yields records in enqueue order and stops once ``close``
    has been called and everything before it has been consumed.
    """

    def __init__(self, lane: int, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.lane = lane
        self.capacity = capacity
        self._queue: "asyncio.Queue[Optional[TransactionRecord]]" = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self.backpressure_waits = 0

    def offer(self, record: TransactionRecord) -> bool:
        """Try to enqueue without waiting. Returns False if the lane is full."""
        self._ensure_open()
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            return False
        return True

    async def put(self, record: TransactionRecord) -> None:
        """Enqueue, waiting for space when the lane is full."""
        if self.offer(record):
            return
        self.backpressure_waits += 1
        await self._queue.put(record)

    async def close(self) -> None:
        """Signal end-of-stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_END_OF_STREAM)

    def abort(self) -> int:
        """Close without waiting, discarding whatever the engine has not consumed yet.

        Used when the run is failing: the engine may already be gone, so a
        blocking close could wait forever on a full buffer. Returns the number
        of discarded records.
        """
        discarded = 0
        while True:
            try:
                record = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            if record is not _END_OF_STREAM:
                discarded += 1
        self._closed = True
        self._queue.put_nowait(_END_OF_STREAM)
        return discarded

    async def drain(self) -> AsyncIterator[TransactionRecord]:
        while True:
            record = await self._queue.get()
            self._queue.task_done()
            if record is _END_OF_STREAM:
                return
            yield record

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Lane {self.lane} is closed")
