"""
Source: the producing side of a stage.
"""

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Callable
from typing import Any

from ..utils.logging import get_logger
from .base import DONE, ReadResult, Stage, StageState
from .errors import ConcurrentAccessError, ProducerFault, StageClosedError, StreamError
from .flow import FlowController, chunk_weight, default_high_water_mark, freeze_chunk

logger = get_logger(__name__)


class Source(Stage):
    """
    A stage that produces chunks on demand.

    Pull style: subclasses override ``_read()`` and return ``ReadResult(chunk)`` or ``DONE``.
    Push style: producers call ``push(chunk)`` / ``end()`` and consumers are served from an
    internal buffer whose size is governed by ``output_flow``. ``push`` returns False once
    that buffer reaches its high-water mark; well-behaved producers then await
    ``wait_writable()``.

    Only one ``pull()`` may be outstanding at a time.
    """

    def __init__(
        self,
        name: str | None = None,
        high_water_mark: int | None = None,
        object_mode: bool = False,
    ):
        super().__init__(name)
        self._init_readable(high_water_mark, object_mode)

    def _init_readable(self, high_water_mark: int | None, object_mode: bool) -> None:
        self.readable_object_mode = object_mode
        self.output_flow = FlowController(
            high_water_mark or default_high_water_mark(object_mode),
            object_mode,
            on_saturated=self._emit_saturated,
            on_drained=self._emit_drained,
        )
        self._queue: deque[tuple[Any, int]] = deque()
        self._ended = False
        self._done = False
        self._pulling = False
        self._readable = asyncio.Event()
        self._available_listeners: list[Callable[[], None]] = []

    # --- Pull side ---

    async def pull(self) -> ReadResult:
        """
        Return the next chunk, or DONE once the stream is exhausted.

        Raises:
            ConcurrentAccessError: Another pull() is still outstanding.
            ProducerFault: The underlying producer failed. The source is ERRORED and
                every later pull raises the same error.
        """
        if self._pulling:
            raise ConcurrentAccessError(
                "pull() called while another pull() is outstanding", stage=self.name
            )
        if self._done:
            return DONE
        self._raise_if_failed()
        if self.state is StageState.IDLE:
            self.start()

        self._pulling = True
        try:
            result = await self._read()
        except StreamError as e:
            await self._terminate(StageState.ERRORED, e)
            raise
        except Exception as e:
            fault = ProducerFault(f"{type(e).__name__}: {e}", stage=self.name)
            await self._terminate(StageState.ERRORED, fault)
            raise fault from e
        finally:
            self._pulling = False

        # cancelled while the read was suspended
        self._raise_if_failed()
        if result.done:
            self._done = True
            await self._terminate(StageState.COMPLETED)
            return DONE
        self.stats.chunks_out += 1
        return result

    async def _read(self) -> ReadResult:
        """Serve the next chunk from the push buffer."""
        while True:
            if self._queue:
                chunk, weight = self._queue.popleft()
                self.output_flow.release(weight)
                return ReadResult(chunk)
            if self._ended:
                return DONE
            self._raise_if_failed()
            self._readable.clear()
            await self._readable.wait()

    async def __aiter__(self) -> AsyncIterator[Any]:
        while True:
            result = await self.pull()
            if result.done:
                return
            yield result.chunk

    # --- Push side ---

    def push(self, chunk: Any) -> bool:
        """
        Buffer a chunk for consumers.

        Returns:
            False once the output buffer is at or above its high-water mark.
        """
        if self._ended or self.state.terminal:
            raise StageClosedError("push() after the stream was ended", stage=self.name)
        chunk = freeze_chunk(chunk, self.readable_object_mode)
        weight = chunk_weight(chunk, self.readable_object_mode)
        self._queue.append((chunk, weight))
        self._count_pushed()
        below = self.output_flow.add(weight)
        self._readable.set()
        for listener in list(self._available_listeners):
            listener()
        return below

    def end(self) -> None:
        """Signal that no more chunks will be pushed."""
        self._ended = True
        self._readable.set()

    async def wait_writable(self) -> None:
        """Suspend a push-style producer until the output buffer drains."""
        while self.output_flow.saturated:
            self._raise_if_failed()
            await self.output_flow.wait_drained()
        self._raise_if_failed()

    async def fail(self, error: BaseException) -> None:
        """Report a producer failure from push-style code."""
        if not isinstance(error, StreamError):
            fault = ProducerFault(f"{type(error).__name__}: {error}", stage=self.name)
            fault.__cause__ = error
            error = fault
        await self._terminate(StageState.ERRORED, error)

    def on_available(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener()`` after every pushed chunk. Returns an unsubscribe callable."""
        self._available_listeners.append(listener)

        def remove():
            if listener in self._available_listeners:
                self._available_listeners.remove(listener)

        return remove

    def _count_pushed(self) -> None:
        self.stats.chunks_in += 1

    @property
    def readable_length(self) -> int:
        return len(self._queue)

    def _on_terminal(self) -> None:
        self._readable.set()
        self.output_flow.wake()


class PushSource(Source):
    """A source fed entirely through ``push()`` / ``end()``."""
