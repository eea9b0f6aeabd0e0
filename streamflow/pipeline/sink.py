"""
Sink: the consuming side of a stage.
"""

import asyncio
from collections import deque
from typing import Any

from ..utils.logging import get_logger
from .base import Stage, StageState
from .errors import ConsumerFault, StageClosedError, StreamError
from .flow import FlowController, chunk_weight, default_high_water_mark, freeze_chunk

logger = get_logger(__name__)


class Sink(Stage):
    """
    A stage that consumes chunks.

    ``write()`` is synchronous: it buffers the chunk and reports whether the caller may keep
    writing (True) or should ``await drain()`` first (False). A background flush task hands
    buffered chunks to ``_write`` one at a time, in order. Chunks count towards the buffered
    amount until their ``_write`` has completed.

    ``cork()`` holds writes back; the outermost ``uncork()`` delivers everything written in
    between through a single ``_writev`` call. Writes issued while that batch is being
    delivered go into the next batch.

    With ``write_concurrency > 1`` up to that many ``_write`` calls run at once. They are
    issued in order but may complete out of order.
    """

    def __init__(
        self,
        name: str | None = None,
        high_water_mark: int | None = None,
        object_mode: bool = False,
        write_concurrency: int = 1,
    ):
        super().__init__(name)
        self._init_writable(high_water_mark, object_mode, write_concurrency)

    def _init_writable(
        self, high_water_mark: int | None, object_mode: bool, write_concurrency: int
    ) -> None:
        if write_concurrency < 1:
            raise ValueError(f"write_concurrency must be >= 1, got {write_concurrency}")
        self.writable_object_mode = object_mode
        self.write_concurrency = write_concurrency
        self.input_flow = FlowController(
            high_water_mark or default_high_water_mark(object_mode),
            object_mode,
            on_saturated=self._emit_saturated,
            on_drained=self._emit_drained,
        )
        self._batches: deque[list[tuple[Any, int]]] = deque()
        self._corked: list[tuple[Any, int]] = []
        self._cork_depth = 0
        self._closing = False
        self._flusher: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self._slots: asyncio.Semaphore | None = None

    # --- Subclass hooks ---

    async def _write(self, chunk: Any) -> None:
        """Deliver one chunk downstream."""
        raise NotImplementedError

    async def _writev(self, chunks: list[Any]) -> None:
        """Deliver a corked batch. Defaults to one ``_write`` per chunk."""
        for chunk in chunks:
            await self._write(chunk)

    async def _finalize(self) -> None:
        """Called once every buffered chunk was delivered, before COMPLETED."""

    async def _end_input(self) -> None:
        await self._finalize()
        await self._terminate(StageState.COMPLETED)

    def _count_delivered(self, count: int) -> None:
        self.stats.chunks_out += count

    # --- Public contract ---

    def write(self, chunk: Any) -> bool:
        """
        Accept a chunk.

        Returns:
            True if the caller may keep writing, False if it should await drain().

        Raises:
            StageClosedError: close() was already called.
        """
        if self._closing or self.state is StageState.COMPLETED:
            raise StageClosedError("write() after close()", stage=self.name)
        self._raise_if_failed()
        if self.state is StageState.IDLE:
            self.start()

        chunk = freeze_chunk(chunk, self.writable_object_mode)
        weight = chunk_weight(chunk, self.writable_object_mode)
        self.stats.chunks_in += 1
        if self._cork_depth:
            self._corked.append((chunk, weight))
        else:
            self._batches.append([(chunk, weight)])
            self._kick()
        return self.input_flow.add(weight)

    async def drain(self) -> None:
        """Wait until the buffered amount is back below the high-water mark."""
        while self.input_flow.saturated:
            self._raise_if_failed()
            await self.input_flow.wait_drained()
        self._raise_if_failed()

    async def close(self, error: BaseException | None = None) -> None:
        """
        End the input.

        Without an error, every buffered chunk is delivered first and the sink becomes
        COMPLETED. With an error, the sink becomes ERRORED immediately.
        """
        if error is not None:
            await self._terminate(StageState.ERRORED, error)
            return
        if self.state.terminal:
            self._raise_if_failed()
            return
        if self._closing:
            await self.wait_terminated()
            self._raise_if_failed()
            return

        self._closing = True
        if self.state is StageState.IDLE:
            self.start()
        self._cork_depth = 1
        self.uncork()
        await self._wait_flushed()
        self._raise_if_failed()
        try:
            await self._end_input()
        except StreamError as e:
            await self._terminate(StageState.ERRORED, e)
            raise
        except Exception as e:
            fault = ConsumerFault(f"{type(e).__name__}: {e}", stage=self.name)
            await self._terminate(StageState.ERRORED, fault)
            raise fault from e

    @property
    def closed(self) -> bool:
        return self._closing or self.state.terminal

    def cork(self) -> None:
        self._cork_depth += 1

    def uncork(self) -> None:
        if self._cork_depth == 0:
            return
        self._cork_depth -= 1
        if self._cork_depth == 0 and self._corked:
            batch, self._corked = self._corked, []
            self._batches.append(batch)
            self._kick()

    @property
    def corked(self) -> bool:
        return self._cork_depth > 0

    @property
    def writable_length(self) -> int:
        return sum(len(batch) for batch in self._batches) + len(self._corked)

    # --- Flushing ---

    def _kick(self) -> None:
        if self._flusher is None or self._flusher.done():
            self._flusher = asyncio.create_task(self._flush_loop())

    async def _flush_loop(self) -> None:
        while self._batches and not self.state.terminal:
            batch = self._batches.popleft()
            if self.write_concurrency == 1:
                await self._flush_batch(batch)
                continue
            if self._slots is None:
                self._slots = asyncio.Semaphore(self.write_concurrency)
            await self._slots.acquire()
            task = asyncio.create_task(self._flush_batch(batch, release_slot=True))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _flush_batch(self, batch: list[tuple[Any, int]], release_slot: bool = False) -> None:
        try:
            if len(batch) == 1:
                await self._write(batch[0][0])
            else:
                await self._writev([chunk for chunk, _ in batch])
        except StreamError as e:
            await self._terminate(StageState.ERRORED, e)
        except Exception as e:
            logger.debug(f"{self.name}: write failed: {e}")
            fault = ConsumerFault(f"{type(e).__name__}: {e}", stage=self.name)
            fault.__cause__ = e
            await self._terminate(StageState.ERRORED, fault)
        else:
            self._count_delivered(len(batch))
            self.input_flow.release(sum(weight for _, weight in batch))
        finally:
            if release_slot and self._slots is not None:
                self._slots.release()

    async def _wait_flushed(self) -> None:
        while not self.state.terminal:
            pending = set(self._in_flight)
            if self._flusher is not None and not self._flusher.done():
                pending.add(self._flusher)
            if not pending:
                if not self._batches:
                    return
                self._kick()
                continue
            await asyncio.wait(pending)

    def _on_terminal(self) -> None:
        self.input_flow.wake()
        if self.state is StageState.COMPLETED:
            return
        current = asyncio.current_task()
        tasks = set(self._in_flight)
        if self._flusher is not None:
            tasks.add(self._flusher)
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
