"""Timer interface used by the drivers.

A running :class:`asyncio.AbstractEventLoop` already satisfies
:class:`Scheduler`: ``loop.time()`` is monotonic and ``loop.call_later()``
returns a cancellable :class:`asyncio.TimerHandle`. Tests substitute a manual
clock that only advances when told to.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def time(self) -> float:
        """Monotonic time in seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` once, ``delay`` seconds from now."""
        ...


def cancel(handle: TimerHandle | None) -> None:
    """Cancel ``handle`` if there is one."""
    if handle is not None:
        handle.cancel()
