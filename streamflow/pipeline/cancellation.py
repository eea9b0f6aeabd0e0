"""
Cooperative cancellation token used to stop a running pipeline from the outside.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from .errors import CancellationFault, DeadlineExceeded


class CancelToken:
    """
    A one-shot cancellation signal.

    Anything can trigger it (a timer, a user action, a parent scope); the pipeline treats
    the signal as an opaque trigger and only looks at the attached reason.
    """

    def __init__(self):
        self._reason: CancellationFault | None = None
        self._callbacks: list[Callable[[CancellationFault], None]] = []
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> CancellationFault | None:
        return self._reason

    def cancel(self, reason: Any = None) -> bool:
        """Signal cancellation. Returns False if the token was already cancelled."""
        if self._reason is not None:
            return False
        if isinstance(reason, CancellationFault):
            fault = reason
        else:
            fault = CancellationFault(str(reason) if reason is not None else "cancelled")
            if isinstance(reason, BaseException):
                fault.__cause__ = reason
        self._reason = fault
        self._event.set()
        for callback in list(self._callbacks):
            callback(fault)
        return True

    def add_callback(self, callback: Callable[[CancellationFault], None]) -> Callable[[], None]:
        """Run ``callback(reason)`` on cancellation (immediately if already cancelled)."""
        if self._reason is not None:
            callback(self._reason)
            return lambda: None
        self._callbacks.append(callback)

        def remove():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    async def wait(self) -> CancellationFault:
        await self._event.wait()
        assert self._reason is not None
        return self._reason

    def cancel_after(self, delay: float) -> asyncio.TimerHandle:
        """Cancel with DeadlineExceeded once ``delay`` seconds have elapsed."""
        loop = asyncio.get_running_loop()
        return loop.call_later(
            delay, self.cancel, DeadlineExceeded(f"deadline of {delay:g}s exceeded")
        )

    @classmethod
    def linked(cls, parent: "CancelToken") -> "CancelToken":
        """A child token cancelled together with ``parent`` (but not the other way round)."""
        child = cls()
        parent.add_callback(child.cancel)
        return child

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason}" if self._reason else "active"
        return f"<CancelToken {state}>"
