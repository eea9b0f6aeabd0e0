"""
Pipe: moves chunks from one Source into one Sink, honouring backpressure.
"""

import asyncio
from collections.abc import Callable

from ..utils.logging import get_logger
from .base import Stage, StageState
from .errors import CancellationFault, ModeMismatchError
from .events import EventBus, EventType
from .sink import Sink
from .source import Source

logger = get_logger(__name__)


def check_modes(source: Source, sink: Sink) -> None:
    """Adjacent stages must agree on byte vs. object mode."""
    if source.readable_object_mode != sink.writable_object_mode:
        def describe(object_mode: bool) -> str:
            return "object" if object_mode else "byte"

        raise ModeMismatchError(
            f"Cannot connect {source.name} ({describe(source.readable_object_mode)} mode) "
            f"to {sink.name} ({describe(sink.writable_object_mode)} mode); "
            f"insert a mode-converting transform"
        )


def _start(stage: Stage) -> None:
    # another pipe may have torn the stage down before this one got to run
    failed = stage.state in (StageState.ERRORED, StageState.CANCELLED)
    if failed and isinstance(stage.error, Exception):
        raise stage.error
    stage.start()


class Pipe:
    """
    Single-hop driver: pull from the source, write to the sink, wait for drain when the
    sink reports saturation, close the sink once the source is done.

    At most one chunk is in the pipe's hands at any time, so chunks reach the sink in the
    order they were pulled. On failure the source is cancelled and the sink closed with
    the error, and ``run()`` re-raises that first error. Failures raised while tearing
    down are logged and kept in ``secondary_errors``.
    """

    def __init__(
        self,
        source: Source,
        sink: Sink,
        events: EventBus | None = None,
        on_failure: Callable[[BaseException, Stage], None] | None = None,
    ):
        check_modes(source, sink)
        self.source = source
        self.sink = sink
        self.events = events or EventBus()
        self.on_failure = on_failure
        self.name = f"{source.name} -> {sink.name}"
        self.pulls = 0
        self.chunks = 0
        self.error: BaseException | None = None
        self.secondary_errors: list[BaseException] = []

    async def run(self) -> int:
        """
        Drive the pipe to completion.

        Returns:
            Number of chunks moved.
        """
        source, sink = self.source, self.sink
        origin: Stage = source
        try:
            _start(source)
            origin = sink
            _start(sink)
            while True:
                origin = source
                self.pulls += 1
                result = await source.pull()
                origin = sink
                if result.done:
                    await sink.close()
                    break
                self.chunks += 1
                if not sink.write(result.chunk):
                    await sink.drain()
                if self.events.has_listeners:
                    self.events.emit_type(EventType.CHUNK, sink.name)
        except asyncio.CancelledError:
            await self._teardown(CancellationFault(f"pipe {self.name} was cancelled"))
            raise
        except Exception as e:
            self.error = e
            logger.debug(f"Pipe {self.name} failed at {origin.name}: {e}")
            if self.on_failure is not None:
                self.on_failure(e, origin)
            await self._teardown(e)
            raise
        logger.debug(f"Pipe {self.name} finished after {self.chunks} chunks")
        return self.chunks

    async def _teardown(self, error: BaseException) -> None:
        try:
            await self.source.cancel(error)
        except Exception as e:
            self._record_secondary(e)
        try:
            await self.sink.close(error)
        except Exception as e:
            self._record_secondary(e)

    def _record_secondary(self, exc: BaseException) -> None:
        logger.warning(f"Pipe {self.name}: secondary fault {type(exc).__name__}: {exc}")
        self.secondary_errors.append(exc)
