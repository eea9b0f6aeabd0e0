import asyncio
import inspect
from collections.abc import AsyncIterable, Iterable
from typing import Any

from streamflow.pipeline import DONE, ReadResult, Source
from streamflow.utils.logging import get_logger

logger = get_logger(__name__)


class IterableSource(Source):
    """Pulls chunks from a sync or async iterable, one item per pull."""

    def __init__(self, iterable: Iterable[Any] | AsyncIterable[Any], **kwargs):
        super().__init__(**kwargs)
        if isinstance(iterable, AsyncIterable):
            self._aiterator = aiter(iterable)
            self._iterator = None
        else:
            self._aiterator = None
            self._iterator = iter(iterable)

    async def _read(self) -> ReadResult:
        if self._aiterator is not None:
            try:
                return ReadResult(await anext(self._aiterator))
            except StopAsyncIteration:
                return DONE
        try:
            return ReadResult(next(self._iterator))  # type: ignore[arg-type]
        except StopIteration:
            return DONE

    async def _destroy(self, error: BaseException | None) -> None:
        # release generator resources (finally blocks) when stopped early;
        # a generator suspended inside a pull is closed by the task cancellation instead
        if self._aiterator is not None:
            if self._pulling:
                return
            aclose = getattr(self._aiterator, "aclose", None)
            if aclose is not None:
                await aclose()
        elif self._iterator is not None:
            close = getattr(self._iterator, "close", None)
            if close is not None:
                close()


class ReaderSource(Source):
    """
    Byte-mode source over a reader object.

    The reader exposes ``read(max_bytes)`` (plain or coroutine) that returns ``b""`` at end
    of stream, e.g. an open binary file or an ``asyncio.StreamReader``. When
    ``close_reader`` is set the reader's ``close()`` is called once the source terminates,
    whatever the outcome. With ``threaded`` a blocking ``read`` runs in a worker thread so
    that file reads do not stall the event loop.
    """

    def __init__(
        self,
        reader: Any,
        chunk_size: int = 64 * 1024,
        close_reader: bool = True,
        threaded: bool = False,
        **kwargs,
    ):
        kwargs.setdefault("object_mode", False)
        super().__init__(**kwargs)
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.reader = reader
        self.chunk_size = chunk_size
        self.close_reader = close_reader
        self.threaded = threaded
        self.bytes_read = 0

    async def _read(self) -> ReadResult:
        if self.threaded:
            data = await asyncio.to_thread(self.reader.read, self.chunk_size)
        else:
            data = self.reader.read(self.chunk_size)
        if inspect.isawaitable(data):
            data = await data
        if not data:
            return DONE
        self.bytes_read += len(data)
        return ReadResult(data)

    async def _destroy(self, error: BaseException | None) -> None:
        if not self.close_reader:
            return
        close = getattr(self.reader, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result
        logger.debug(f"{self.name}: closed reader after {self.bytes_read} bytes")
