"""
Chunk accounting and the per-stage flow controller.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from .errors import ChunkTypeError

DEFAULT_HIGH_WATER_MARK = 16 * 1024  # bytes
DEFAULT_OBJECT_HIGH_WATER_MARK = 16  # chunks

_BYTES_LIKE = (bytes, bytearray, memoryview)


def default_high_water_mark(object_mode: bool) -> int:
    return DEFAULT_OBJECT_HIGH_WATER_MARK if object_mode else DEFAULT_HIGH_WATER_MARK


def chunk_weight(chunk: Any, object_mode: bool) -> int:
    """Accounting weight of a chunk: 1 in object mode, its byte length otherwise."""
    if object_mode:
        return 1
    if isinstance(chunk, memoryview):
        return chunk.nbytes
    if isinstance(chunk, _BYTES_LIKE):
        return len(chunk)
    raise ChunkTypeError(
        f"Byte-mode stages only accept bytes-like chunks, got {type(chunk).__name__}"
    )


def freeze_chunk(chunk: Any, object_mode: bool) -> Any:
    """Validate a chunk crossing a stage boundary.

    Mutable byte buffers are copied so the receiving stage never aliases a buffer the
    sender may still modify. Object-mode chunks are passed through untouched.
    """
    if object_mode:
        return chunk
    if isinstance(chunk, bytes):
        return chunk
    if isinstance(chunk, (bytearray, memoryview)):
        return bytes(chunk)
    raise ChunkTypeError(
        f"Byte-mode stages only accept bytes-like chunks, got {type(chunk).__name__}"
    )


class FlowController:
    """
    Backpressure bookkeeping for one side of one stage.

    Tracks the amount of buffered, not yet consumed data against a high-water mark.
    The stage is saturated while ``buffered_amount >= high_water_mark``; waiters on
    ``wait_drained`` are released once it drops back below.

    A controller is owned by exactly one stage and only that stage mutates it.
    """

    def __init__(
        self,
        high_water_mark: int,
        object_mode: bool = False,
        on_saturated: Callable[[], None] | None = None,
        on_drained: Callable[[], None] | None = None,
    ):
        if high_water_mark < 1:
            raise ValueError(f"high_water_mark must be >= 1, got {high_water_mark}")
        self.high_water_mark = high_water_mark
        self.object_mode = object_mode
        self.buffered_amount = 0
        self.on_saturated = on_saturated
        self.on_drained = on_drained
        self._drained = asyncio.Event()
        self._drained.set()

    @property
    def saturated(self) -> bool:
        return self.buffered_amount >= self.high_water_mark

    def add(self, amount: int) -> bool:
        """Account for newly buffered data.

        Returns:
            True if the controller is still below its high-water mark.
        """
        was_saturated = self.saturated
        self.buffered_amount += amount
        if self.saturated:
            self._drained.clear()
            if not was_saturated and self.on_saturated is not None:
                self.on_saturated()
            return False
        return True

    def release(self, amount: int) -> None:
        """Account for data that left the buffer."""
        assert amount <= self.buffered_amount, (
            f"release({amount}) would make buffered_amount negative "
            f"(currently {self.buffered_amount})"
        )
        was_saturated = self.saturated
        self.buffered_amount -= amount
        if not self.saturated:
            self._drained.set()
            if was_saturated and self.on_drained is not None:
                self.on_drained()

    async def wait_drained(self) -> None:
        """Suspend while saturated. Returns immediately otherwise."""
        if not self.saturated:
            return
        await self._drained.wait()

    def wake(self) -> None:
        """Release every waiter regardless of the buffered amount.

        Used when the owning stage terminates, so nobody waits on a drain that can
        never happen. Waiters must re-check the stage state after waking.
        """
        self._drained.set()

    def __repr__(self) -> str:
        unit = "chunks" if self.object_mode else "bytes"
        return f"<FlowController {self.buffered_amount}/{self.high_water_mark} {unit}>"
