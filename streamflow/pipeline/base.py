"""
Stage lifecycle shared by sources, sinks and transforms.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..utils.logging import get_logger
from .config import StageStats
from .errors import CancellationFault, StageClosedError, StreamError
from .events import EventBus, EventType

logger = get_logger(__name__)


class StageState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (StageState.COMPLETED, StageState.ERRORED, StageState.CANCELLED)


_TERMINAL_EVENTS = {
    StageState.COMPLETED: EventType.COMPLETED,
    StageState.ERRORED: EventType.ERRORED,
    StageState.CANCELLED: EventType.CANCELLED,
}


@dataclass(frozen=True)
class ReadResult:
    """Outcome of Source.pull(): a chunk, or the end-of-stream marker.

    ``done`` is separate from the data so that ``None`` stays a legal object-mode chunk.
    """

    chunk: Any = None
    done: bool = False


DONE = ReadResult(done=True)


class Stage:
    """
    Base class for every pipeline stage.

    Lifecycle: IDLE -> ACTIVE -> COMPLETED | ERRORED | CANCELLED. Transitions are one-way
    and the first terminal transition wins. Resource release happens in ``_destroy``, which
    runs exactly once, on that first terminal transition.
    """

    def __init__(self, name: str | None = None):
        self.name = name or type(self).__name__
        self.state = StageState.IDLE
        self.error: BaseException | None = None
        self.secondary_errors: list[BaseException] = []
        self.stats = StageStats()
        self.events = EventBus()
        self._terminal_listeners: list[Callable[["Stage"], None]] = []
        self._terminated = asyncio.Event()
        self._release: asyncio.Task | None = None

    def attach(self, events: EventBus) -> None:
        """Route this stage's lifecycle events to a shared bus."""
        self.events = events

    def start(self) -> None:
        """Move an idle stage to ACTIVE. No-op if already active."""
        if self.state is StageState.ACTIVE:
            return
        if self.state.terminal:
            raise StageClosedError(
                f"Cannot restart a stage in terminal state '{self.state.value}'",
                stage=self.name,
            )
        self.state = StageState.ACTIVE
        logger.debug(f"{self.name}: started")
        self.events.emit_type(EventType.STARTED, self.name)

    @property
    def terminated(self) -> bool:
        return self.state.terminal

    async def wait_terminated(self) -> StageState:
        await self._terminated.wait()
        return self.state

    def add_terminal_listener(self, listener: Callable[["Stage"], None]) -> Callable[[], None]:
        """Call ``listener(stage)`` synchronously on the first terminal transition."""
        self._terminal_listeners.append(listener)

        def remove():
            if listener in self._terminal_listeners:
                self._terminal_listeners.remove(listener)

        return remove

    async def cancel(self, reason: Any = None) -> None:
        """Stop the stage and release its resources. Idempotent."""
        await self._terminate(StageState.CANCELLED, self._as_cancellation(reason))

    def _as_cancellation(self, reason: Any) -> BaseException:
        if isinstance(reason, BaseException):
            return reason
        return CancellationFault(str(reason) if reason is not None else "cancelled", stage=self.name)

    async def _terminate(self, state: StageState, error: BaseException | None = None) -> bool:
        """Perform the first terminal transition. Returns False if already terminal."""
        if self.state.terminal:
            return False
        previous = self.state
        self.state = state
        self.error = error
        logger.debug(f"{self.name}: {previous.value} -> {state.value}")

        self._on_terminal()
        self._terminated.set()
        self.events.emit_type(_TERMINAL_EVENTS[state], self.name, error)
        for listener in list(self._terminal_listeners):
            try:
                listener(self)
            except Exception as e:
                self._record_secondary(e)

        # once started, resource release runs to completion even if the caller is cancelled
        self._release = asyncio.create_task(self._release_resources(error))
        await asyncio.shield(self._release)
        return True

    async def _release_resources(self, error: BaseException | None) -> None:
        try:
            await self._destroy(error)
        except Exception as e:
            self._record_secondary(e)

    async def wait_released(self) -> None:
        """Wait for ``_destroy`` to finish. Returns at once if the stage never terminated."""
        if self._release is not None:
            await asyncio.shield(self._release)

    def _on_terminal(self) -> None:
        """Synchronous hook run on the terminal transition, before listeners fire."""

    async def _destroy(self, error: BaseException | None) -> None:
        """Release underlying resources. Called exactly once."""

    def _record_secondary(self, exc: BaseException) -> None:
        logger.warning(f"{self.name}: secondary fault {type(exc).__name__}: {exc}")
        self.secondary_errors.append(exc)

    def _raise_if_failed(self) -> None:
        if self.state in (StageState.ERRORED, StageState.CANCELLED):
            if self.error is not None:
                raise self.error
            raise StreamError(f"Stage is {self.state.value}", stage=self.name)

    def _emit_saturated(self) -> None:
        self.stats.saturations += 1
        self.events.emit_type(EventType.SATURATED, self.name)

    def _emit_drained(self) -> None:
        self.events.emit_type(EventType.DRAINED, self.name)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} '{self.name}' {self.state.value}>"
