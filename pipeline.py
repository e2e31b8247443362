import asyncio
import os
import time
from typing import Dict, Iterable, List, Optional, Tuple
import structlog

from config import Settings, get_settings
from errors import AggregationError, InputError
from lanes import LaneBuffer, compute_buffer_capacity, partition
from models import FinalClientState, TransactionRecord
from records import read_records
from services import AccountStateEngine, get_account_state_engine

logger = structlog.get_logger()


class Aggregator:
    """Collects each lane's finished states over a queue and merges them.

    Every lane submits exactly once; lanes own disjoint clients, so a
    duplicate client id means routing is broken.
    """

    def __init__(self, lane_count: int):
        self.lane_count = lane_count
        self._inbox: "asyncio.Queue[Tuple[int, List[FinalClientState]]]" = asyncio.Queue()

    async def submit(self, lane: int, states: List[FinalClientState]) -> None:
        await self._inbox.put((lane, states))

    async def collect(self) -> List[FinalClientState]:
        merged: Dict[int, FinalClientState] = {}
        for _ in range(self.lane_count):
            lane, states = await self._inbox.get()
            for state in states:
                if state.client_id in merged:
                    raise AggregationError(state.client_id)
                merged[state.client_id] = state
            logger.debug("Lane results collected", lane=lane, clients=len(states))
        return [merged[client_id] for client_id in sorted(merged)]


class LedgerPipeline:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.records_read = 0
        self.backpressure_waits = 0

    @property
    def lane_count(self) -> int:
        return self.settings.lane_count

    def buffer_capacity(self, input_bytes: int) -> int:
        return compute_buffer_capacity(
            input_bytes,
            self.lane_count,
            floor=self.settings.buffer_floor,
            ceiling=self.settings.buffer_ceiling,
            bytes_per_record=self.settings.bytes_per_record
        )

    async def run(self, records: Iterable[TransactionRecord], input_bytes: int = 0) -> List[FinalClientState]:
        """Route records to lanes, process every lane concurrently and merge the results."""
        start_time = time.time()
        capacity = self.buffer_capacity(input_bytes)
        lanes = [LaneBuffer(lane, capacity) for lane in range(self.lane_count)]
        engines = [get_account_state_engine(lane) for lane in range(self.lane_count)]
        aggregator = Aggregator(self.lane_count)

        logger.info(
            "Pipeline started",
            lanes=self.lane_count,
            buffer_capacity=capacity,
            input_bytes=input_bytes
        )

        producer = asyncio.create_task(self._produce(records, lanes))
        workers = [
            asyncio.create_task(self._work(lane, engine, aggregator))
            for lane, engine in zip(lanes, engines)
        ]
        collector = asyncio.create_task(aggregator.collect())
        tasks = [producer, *workers, collector]

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        failed = [task for task in tasks if task in done and task.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            error = failed[0].exception()
            logger.info("Pipeline aborted", error=str(error), records_read=self.records_read)
            raise error

        results = collector.result()
        self.backpressure_waits = sum(lane.backpressure_waits for lane in lanes)
        logger.info(
            "Pipeline completed",
            clients=len(results),
            records_read=self.records_read,
            backpressure_waits=self.backpressure_waits,
            process_time=round(time.time() - start_time, 4)
        )
        return results

    async def _produce(self, records: Iterable[TransactionRecord], lanes: List[LaneBuffer]) -> None:
        try:
            for record in records:
                lane = lanes[partition(record.client_id, len(lanes))]
                await lane.put(record)
                self.records_read += 1
        except BaseException:
            # Failing or cancelled: engines may be gone, so never wait for buffer space
            discarded = sum(lane.abort() for lane in lanes)
            logger.debug("Lanes aborted", discarded=discarded, records_read=self.records_read)
            raise
        for lane in lanes:
            await lane.close()

    async def _work(self, lane: LaneBuffer, engine: AccountStateEngine, aggregator: Aggregator) -> None:
        async for record in lane.drain():
            engine.apply(record)
        await aggregator.submit(lane.lane, engine.finalize())


def process_file(path: str, settings: Optional[Settings] = None) -> List[FinalClientState]:
    """Run the whole pipeline over a CSV file and return the final client states."""
    try:
        input_bytes = os.path.getsize(path)
    except OSError as e:
        raise InputError(f"Cannot read input file {path}: {e.strerror or e}") from e

    pipeline = LedgerPipeline(settings)
    return asyncio.run(pipeline.run(read_records(path), input_bytes))
