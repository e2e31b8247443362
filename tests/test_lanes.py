import pytest
import asyncio
from decimal import Decimal

from lanes import LaneBuffer, compute_buffer_capacity, partition
from models import TransactionKind, TransactionRecord


def deposit(client, tx_id, amount="1"):
    return TransactionRecord(
        kind=TransactionKind.deposit,
        client_id=client,
        transaction_id=tx_id,
        amount=Decimal(amount)
    )


async def _collect(lane):
    return [record async for record in lane.drain()]


class TestPartition:
    """Test client routing."""

    def test_same_client_same_lane(self):
        for lane_count in (1, 2, 3, 7, 16):
            for client_id in range(200):
                lane = partition(client_id, lane_count)
                assert 0 <= lane < lane_count
                assert lane == partition(client_id, lane_count)

    def test_modulo_routing(self):
        assert partition(10, 4) == 2
        assert partition(0, 4) == 0
        assert partition(65535, 1) == 0

    def test_invalid_lane_count(self):
        with pytest.raises(ValueError):
            partition(1, 0)


class TestBufferCapacity:
    """Test buffer sizing."""

    def test_small_input_uses_floor(self):
        assert compute_buffer_capacity(100, 4, floor=64, ceiling=8192) == 64
        assert compute_buffer_capacity(0, 4, floor=64, ceiling=8192) == 64

    def test_huge_input_uses_ceiling(self):
        assert compute_buffer_capacity(10 ** 12, 4, floor=64, ceiling=8192) == 8192

    def test_scales_between_bounds(self):
        # 1.6 MB / 16 bytes = 100k records, 25k per lane, a quarter buffered
        capacity = compute_buffer_capacity(1_600_000, 4, floor=64, ceiling=8192, bytes_per_record=16)
        assert capacity == 6250

    def test_monotonic_in_input_size(self):
        sizes = [0, 10, 10 ** 3, 10 ** 5, 10 ** 6, 10 ** 7, 10 ** 9]
        capacities = [compute_buffer_capacity(size, 3) for size in sizes]
        assert capacities == sorted(capacities)

    def test_floor_above_ceiling_rejected(self):
        with pytest.raises(ValueError):
            compute_buffer_capacity(100, 1, floor=10, ceiling=5)


class TestLaneBuffer:
    """Test bounded FIFO behaviour and backpressure."""

    @pytest.mark.asyncio
    async def test_offer_fails_when_full(self):
        lane = LaneBuffer(0, capacity=2)

        assert lane.offer(deposit(1, 1)) is True
        assert lane.offer(deposit(1, 2)) is True
        assert lane.offer(deposit(1, 3)) is False

    @pytest.mark.asyncio
    async def test_drain_preserves_order(self):
        lane = LaneBuffer(0, capacity=10)
        records = [deposit(1, tx_id) for tx_id in range(5)]
        for record in records:
            await lane.put(record)
        await lane.close()

        drained = [record async for record in lane.drain()]
        assert drained == records

    @pytest.mark.asyncio
    async def test_put_blocks_until_consumer_frees_space(self):
        lane = LaneBuffer(0, capacity=1)
        await lane.put(deposit(1, 1))

        blocked = asyncio.create_task(lane.put(deposit(1, 2)))
        await asyncio.sleep(0)
        assert not blocked.done()

        consumed = []

        async def consume():
            async for record in lane.drain():
                consumed.append(record.transaction_id)

        consumer = asyncio.create_task(consume())
        await asyncio.wait_for(blocked, timeout=1)
        await lane.close()
        await asyncio.wait_for(consumer, timeout=1)

        assert consumed == [1, 2]
        assert lane.backpressure_waits == 1

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_rejects_new_records(self):
        lane = LaneBuffer(0, capacity=4)
        await lane.close()
        await lane.close()

        with pytest.raises(RuntimeError):
            lane.offer(deposit(1, 1))
        assert [record async for record in lane.drain()] == []

    @pytest.mark.asyncio
    async def test_abort_on_full_lane_does_not_wait(self):
        lane = LaneBuffer(0, capacity=2)
        await lane.put(deposit(1, 1))
        await lane.put(deposit(1, 2))

        assert lane.abort() == 2
        with pytest.raises(RuntimeError):
            lane.offer(deposit(1, 3))
        drained = await asyncio.wait_for(_collect(lane), timeout=1)
        assert drained == []

    @pytest.mark.asyncio
    async def test_abort_after_close(self):
        lane = LaneBuffer(0, capacity=1)
        await lane.close()

        assert lane.abort() == 0
        assert await asyncio.wait_for(_collect(lane), timeout=1) == []

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            LaneBuffer(0, capacity=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
