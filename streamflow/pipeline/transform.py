"""
Transform: a stage that is a Sink on its input side and a Source on its output side.
"""

import inspect
from collections.abc import Callable
from typing import Any

from .base import Stage
from .errors import StreamError, TransformFault
from .sink import Sink
from .source import Source

_SINGLE_CHUNK_TYPES = (bytes, bytearray, memoryview, str)


class Transform(Sink, Source):
    """
    Maps every input chunk to zero, one or many output chunks.

    The mapping can be passed as ``transform_fn`` or implemented by overriding
    ``transform(chunk)``; trailing state is emitted by ``flush_fn`` / ``flush()`` once the
    input ends. Either may be a plain function, a coroutine function, a generator or an
    async generator. They return (or yield) an iterable of output chunks; ``None`` means
    no output, and a returned ``bytes``/``str`` is a single chunk. Without a mapping the
    transform passes chunks through unchanged.

    Inputs are processed strictly in order: every output of input ``i`` is emitted before
    input ``i + 1`` is mapped. The output side has its own high-water mark; when it is
    reached, mapping waits for downstream pulls, which in turn stops the input side from
    draining.

    The input and output sides may use different modes (``writable_object_mode`` /
    ``readable_object_mode``), which is how a pipeline converts between bytes and objects.
    """

    def __init__(
        self,
        transform_fn: Callable[[Any], Any] | None = None,
        flush_fn: Callable[[], Any] | None = None,
        *,
        name: str | None = None,
        high_water_mark: int | None = None,
        object_mode: bool = False,
        readable_object_mode: bool | None = None,
        writable_object_mode: bool | None = None,
        readable_high_water_mark: int | None = None,
        writable_high_water_mark: int | None = None,
    ):
        Stage.__init__(self, name)
        readable_mode = object_mode if readable_object_mode is None else readable_object_mode
        writable_mode = object_mode if writable_object_mode is None else writable_object_mode
        # a shared mark only makes sense when both sides count in the same unit
        shared_mark = high_water_mark if readable_mode == writable_mode else None
        self._init_writable(writable_high_water_mark or shared_mark, writable_mode, 1)
        self._init_readable(readable_high_water_mark or shared_mark, readable_mode)
        self._transform_fn = transform_fn
        self._flush_fn = flush_fn

    def transform(self, chunk: Any) -> Any:
        if self._transform_fn is None:
            return (chunk,)
        return self._transform_fn(chunk)

    def flush(self) -> Any:
        if self._flush_fn is None:
            return None
        return self._flush_fn()

    async def _write(self, chunk: Any) -> None:
        await self._run_mapping(self.transform, chunk)

    async def _end_input(self) -> None:
        await self._run_mapping(self.flush)
        self.end()

    async def _run_mapping(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
            if result is None:
                return
            if isinstance(result, _SINGLE_CHUNK_TYPES):
                await self._emit(result)
            elif hasattr(result, "__aiter__"):
                try:
                    async for output in result:
                        await self._emit(output)
                finally:
                    aclose = getattr(result, "aclose", None)
                    if aclose is not None:
                        await aclose()
            else:
                for output in result:
                    await self._emit(output)
        except StreamError:
            raise
        except Exception as e:
            raise TransformFault(f"{type(e).__name__}: {e}", stage=self.name) from e

    async def _emit(self, chunk: Any) -> None:
        while self.output_flow.saturated:
            self._raise_if_failed()
            await self.output_flow.wait_drained()
        self._raise_if_failed()
        self.push(chunk)

    # a transform counts writes as input and pulls as output
    def _count_delivered(self, count: int) -> None:
        pass

    def _count_pushed(self) -> None:
        pass

    def _on_terminal(self) -> None:
        Sink._on_terminal(self)
        Source._on_terminal(self)
