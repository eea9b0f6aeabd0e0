"""
Lifecycle events emitted by stages and pipes, and the bus observers subscribe to.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from ..utils.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    STARTED = "stage-started"
    SATURATED = "stage-saturated"
    DRAINED = "stage-drained"
    COMPLETED = "stage-completed"
    ERRORED = "stage-errored"
    CANCELLED = "stage-cancelled"
    CHUNK = "chunk"


@dataclass(frozen=True)
class StageEvent:
    """A single lifecycle event.

    Attributes:
        type: What happened.
        stage: Name of the stage the event is about.
        reason: The error for ERRORED/CANCELLED events, None otherwise.
        timestamp: time.monotonic() at emission.
    """

    type: EventType
    stage: str
    reason: BaseException | None = None
    timestamp: float = field(default_factory=time.monotonic)


Listener = Callable[[StageEvent], None]


class EventBus:
    """Synchronous fan-out of StageEvents to subscribed listeners.

    Listener failures are logged and swallowed; observers never break a pipeline.
    """

    def __init__(self):
        self._listeners: list[Listener] = []

    @property
    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: StageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Event listener {listener!r} failed on {event.type.value}: {e}")

    def emit_type(
        self, event_type: EventType, stage: str, reason: BaseException | None = None
    ) -> None:
        if self._listeners:
            self.emit(StageEvent(event_type, stage, reason))


class LoggingObserver:
    """Writes every lifecycle event (except per-chunk events) to a logger."""

    def __init__(self, name: str = "streamflow.events"):
        self.logger = get_logger(name)

    def __call__(self, event: StageEvent) -> None:
        if event.type is EventType.CHUNK:
            return
        if event.type is EventType.ERRORED:
            self.logger.error(f"{event.stage}: {event.type.value} ({event.reason})")
        elif event.type is EventType.CANCELLED:
            self.logger.info(f"{event.stage}: {event.type.value} ({event.reason})")
        else:
            self.logger.debug(f"{event.stage}: {event.type.value}")


class EventRecorder:
    """Keeps every event in memory, in emission order."""

    def __init__(self, include_chunks: bool = False):
        self.include_chunks = include_chunks
        self.events: list[StageEvent] = []

    def __call__(self, event: StageEvent) -> None:
        if event.type is EventType.CHUNK and not self.include_chunks:
            return
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[StageEvent]:
        return [e for e in self.events if e.type is event_type]

    def for_stage(self, stage: str) -> list[EventType]:
        return [e.type for e in self.events if e.stage == stage]
