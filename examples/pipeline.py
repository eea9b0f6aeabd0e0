"""
Demo script for the streaming pipeline framework.

Run with: uv run examples/pipeline.py [--fatal] [--async] [--timeout]
"""

import asyncio
import random

from streamflow.pipeline import (
    CancelToken,
    LoggingObserver,
    Pipeline,
    ProgressObserver,
    Sink,
    Source,
    Transform,
)
from streamflow.pipeline.base import DONE, ReadResult
from streamflow.utils.logging import console, get_logger


class MockDataSource(Source):
    """Generate mock file paths."""

    def __init__(self, num_items: int = 50, **kwargs):
        super().__init__(object_mode=True, **kwargs)
        self.num_items = num_items
        self.index = 0

    async def _read(self) -> ReadResult:
        if self.index >= self.num_items:
            return DONE
        await asyncio.sleep(0.005)  # Simulate scanning delay
        self.index += 1
        return ReadResult(f"item_{self.index - 1:04d}.dat")


class MockLoader(Transform):
    """Simulate loading data with random filtering."""

    def __init__(self, filter_rate: float = 0.1, **kwargs):
        super().__init__(object_mode=True, **kwargs)
        self.filter_rate = filter_rate
        self.logger = get_logger("MockLoader")

    async def transform(self, item: str) -> list[dict]:
        await asyncio.sleep(random.uniform(0.005, 0.015))  # Simulate I/O

        # Random filtering
        if random.random() < self.filter_rate:
            self.logger.debug(f"Filtered: {item}")
            return []

        self.logger.debug(f"Loaded: {item}")
        return [{"path": item, "data": [random.random() for _ in range(10)]}]


class MockProcessor(Transform):
    """Simulate processing with random splitting."""

    def __init__(self, split_rate: float = 0.2, max_split: int = 3, **kwargs):
        super().__init__(object_mode=True, **kwargs)
        self.split_rate = split_rate
        self.max_split = max_split

    def transform(self, item: dict):
        num_outputs = random.randint(2, self.max_split) if random.random() < self.split_rate else 1
        for i in range(num_outputs):
            yield {
                "path": item["path"],
                "variant": i,
                "result": sum(item["data"]) * random.uniform(0.9, 1.1),
            }


class MockLLMProcessor(Transform):
    """Simulate slow async LLM API calls; the sink throttles the whole chain behind it."""

    def __init__(self, latency_range: tuple[float, float] = (0.02, 0.08), **kwargs):
        super().__init__(object_mode=True, **kwargs)
        self.latency_range = latency_range

    async def transform(self, item: dict) -> list[dict]:
        latency = random.uniform(*self.latency_range)
        await asyncio.sleep(latency)  # Simulate async API call
        return [{"path": item["path"], "response": f"Generated response for {item['path']}"}]


class FaultyProcessor(Transform):
    """Processor that fails after a few items."""

    def __init__(self, **kwargs):
        super().__init__(object_mode=True, **kwargs)
        self.count = 0

    def transform(self, item: dict) -> list[dict]:
        self.count += 1
        if self.count >= 5:
            raise RuntimeError("I am tired of processing!")
        return [item]


class MockSink(Sink):
    """Simulate writing results, several writes in flight at once."""

    def __init__(self, **kwargs):
        super().__init__(object_mode=True, write_concurrency=4, **kwargs)
        self.logger = get_logger("MockSink")
        self.count = 0

    async def _write(self, item: dict) -> None:
        await asyncio.sleep(random.uniform(0.01, 0.03))  # Simulate I/O
        self.count += 1
        self.logger.debug(f"Written: {item['path']}:{item.get('variant', 0)}")

    async def _finalize(self) -> None:
        self.logger.info(f"Sink wrote {self.count} items")


async def main(test_fatal_error: bool = False, test_async: bool = False, test_timeout: bool = False):
    console.rule("[bold]Pipeline Demo: Mock Data Processing[/bold]")

    if test_fatal_error:
        stages = [MockLoader(name="Loading"), FaultyProcessor(name="FaultyProcessing")]
    elif test_async:
        stages = [MockLoader(filter_rate=0.0, name="Loading"), MockLLMProcessor(name="LLM Processing")]
    else:
        stages = [MockLoader(name="Loading"), MockProcessor(name="Processing")]

    token = CancelToken()
    pipeline = Pipeline(
        MockDataSource(num_items=50 if test_async else 100, name="Scanning", high_water_mark=8),
        stages,
        MockSink(name="Writing"),
        cancel_token=token,
        timeout=0.5 if test_timeout else None,
    )
    pipeline.events.subscribe(LoggingObserver())

    with ProgressObserver(pipeline.events):
        result = await pipeline.run()

    console.rule("[bold]Final Statistics[/bold]")
    console.print(f"  Aborted: {result.aborted}")
    if result.error_message:
        console.print(f"  Error: {result.error_message} (at {result.failed_stage})")
    console.print(f"  Elapsed time: {result.elapsed_time:.2f}s")
    for name, stats in result.stage_stats.items():
        console.print(f"  {name}: in={stats.chunks_in} out={stats.chunks_out} saturations={stats.saturations}")


if __name__ == "__main__":
    import sys

    asyncio.run(
        main(
            test_fatal_error="--fatal" in sys.argv,
            test_async="--async" in sys.argv,
            test_timeout="--timeout" in sys.argv,
        )
    )
