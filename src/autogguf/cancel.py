"""Run-wide cancellation.

A CancellationSignal is a one-shot latch: once requested it stays requested,
and every waiter, including ones that start waiting later, wakes up.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from types import FrameType
from typing import TypeVar

from .errors import RunCancelledError

T = TypeVar("T")

_INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)
_Handler = Callable[[int, FrameType | None], object] | int | None


class CancellationSignal:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def request(self) -> None:
        self._event.set()

    def is_requested(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        _ = await self._event.wait()


async def run_cancellable(
    awaitable: Awaitable[T],
    cancellation: CancellationSignal,
    label: str,
) -> T:
    """Await `awaitable` unless cancellation is requested first.

    The losing side is cancelled and awaited before returning.
    """
    if cancellation.is_requested():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RunCancelledError(f"{label} cancelled")

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancellation.wait())
    try:
        done, _ = await asyncio.wait(
            {work, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        for task in (work, waiter):
            _ = task.cancel()
        _ = await asyncio.gather(work, waiter, return_exceptions=True)
        raise

    if work in done:
        _ = waiter.cancel()
        _ = await asyncio.gather(waiter, return_exceptions=True)
        return work.result()

    _ = work.cancel()
    _ = await asyncio.gather(work, return_exceptions=True)
    raise RunCancelledError(f"{label} cancelled")


def install_interrupt_handler(
    cancellation: CancellationSignal,
    escalation: CancellationSignal | None = None,
) -> Callable[[], None]:
    """Route SIGINT/SIGTERM to `cancellation`.

    A repeated interrupt requests `escalation` as well. Returns a callable
    that restores the previous handlers.
    """
    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        if cancellation.is_requested() and escalation is not None:
            escalation.request()
        cancellation.request()

    installed: list[signal.Signals] = []
    previous: dict[signal.Signals, _Handler] = {}
    for sig in _INTERRUPT_SIGNALS:
        try:
            loop.add_signal_handler(sig, on_interrupt)
        except (NotImplementedError, RuntimeError):
            # No loop-level signal support (e.g. Windows)
            previous[sig] = signal.signal(
                sig, lambda _signum, _frame: loop.call_soon_threadsafe(on_interrupt)
            )
            continue
        installed.append(sig)

    def remove() -> None:
        for sig in installed:
            _ = loop.remove_signal_handler(sig)
        for sig, handler in previous.items():
            _ = signal.signal(sig, handler)

    return remove
