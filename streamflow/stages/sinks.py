import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from streamflow.pipeline import Sink
from streamflow.utils.logging import get_logger

logger = get_logger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class WriterSink(Sink):
    """
    Byte-mode sink over a writer object.

    The writer exposes ``write(data)``, optionally returning False to ask for a pause, in
    which case its ``drain()`` is awaited before the next write. ``flush()`` is called
    once all data was written and ``close()`` on termination when ``close_writer`` is set.
    Any of these may be coroutines. A corked batch reaches the writer as a single write.
    With ``threaded`` blocking ``write`` and ``flush`` calls run in a worker thread.
    """

    def __init__(self, writer: Any, close_writer: bool = True, threaded: bool = False, **kwargs):
        kwargs.setdefault("object_mode", False)
        super().__init__(**kwargs)
        self.writer = writer
        self.close_writer = close_writer
        self.threaded = threaded
        self.bytes_written = 0
        self.write_calls = 0

    async def _write(self, chunk: bytes) -> None:
        self.write_calls += 1
        accepted = await self._call(self.writer.write, chunk)
        self.bytes_written += len(chunk)
        if accepted is False and hasattr(self.writer, "drain"):
            await _maybe_await(self.writer.drain())

    async def _writev(self, chunks: list[bytes]) -> None:
        await self._write(b"".join(chunks))

    async def _finalize(self) -> None:
        flush = getattr(self.writer, "flush", None)
        if flush is not None:
            await self._call(flush)

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self.threaded:
            return await _maybe_await(await asyncio.to_thread(fn, *args))
        return await _maybe_await(fn(*args))

    async def _destroy(self, error: BaseException | None) -> None:
        if not self.close_writer:
            return
        close = getattr(self.writer, "close", None)
        if close is not None:
            await _maybe_await(close())
        wait_closed = getattr(self.writer, "wait_closed", None)
        if wait_closed is not None:
            await wait_closed()
        logger.debug(f"{self.name}: closed writer after {self.bytes_written} bytes")


class CallbackSink(Sink):
    """Hands every chunk to ``fn(chunk)``, a plain function or a coroutine function."""

    def __init__(self, fn: Callable[[Any], Any], **kwargs):
        super().__init__(**kwargs)
        self.fn = fn

    async def _write(self, chunk: Any) -> None:
        await _maybe_await(self.fn(chunk))


class CollectSink(Sink):
    """
    Collects chunks into ``items``.

    ``flushes`` records the size of every delivery, so a corked batch of three chunks
    shows up as a single ``3``.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.items: list[Any] = []
        self.flushes: list[int] = []
        self.finalized = False

    async def _write(self, chunk: Any) -> None:
        self.items.append(chunk)
        self.flushes.append(1)

    async def _writev(self, chunks: list[Any]) -> None:
        self.items.extend(chunks)
        self.flushes.append(len(chunks))

    async def _finalize(self) -> None:
        self.finalized = True

    def joined(self) -> Any:
        """Concatenate collected bytes or strings."""
        if not self.items:
            return "" if self.writable_object_mode else b""
        return self.items[0][:0].join(self.items)
