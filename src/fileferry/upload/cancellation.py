"""Out-of-band cancellation of in-flight transfers.

Each transfer registers an :class:`asyncio.Event` under its file id for the
duration of the attempt, including time spent queued for a concurrency
slot. :meth:`CancellationRegistry.cancel` sets the events of one file;
:meth:`CancellationRegistry.cancel_all` sets every registered event.
Transfers that start after a cancel are unaffected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class CancellationRegistry:
    """Tracks cancel signals for in-flight transfers by file id."""

    def __init__(self) -> None:
        self._signals: dict[str, set[asyncio.Event]] = {}

    @contextmanager
    def watch(self, file_id: str) -> Iterator[asyncio.Event]:
        """Register a cancel signal for one transfer attempt of *file_id*."""
        signal = asyncio.Event()
        self._signals.setdefault(file_id, set()).add(signal)
        try:
            yield signal
        finally:
            pending = self._signals.get(file_id)
            if pending is not None:
                pending.discard(signal)
                if not pending:
                    del self._signals[file_id]

    def cancel(self, file_id: str) -> bool:
        """Signal every in-flight attempt for *file_id*.

        Returns:
            ``True`` if at least one transfer was signalled.
        """
        signals = self._signals.get(file_id)
        if not signals:
            logger.debug("Cancel requested for idle file %s", file_id)
            return False
        logger.warning("Cancelling upload of %s", file_id)
        for signal in signals:
            signal.set()
        return True

    def cancel_all(self) -> int:
        """Signal every queued or in-flight transfer. Returns the number of files signalled."""
        count = len(self._signals)
        if count:
            logger.warning("Cancelling %d in-flight uploads", count)
        for signals in self._signals.values():
            for signal in signals:
                signal.set()
        return count

    def in_flight(self) -> list[str]:
        return list(self._signals)


async def run_cancellable(coro, signal: asyncio.Event):
    """Await *coro* unless *signal* fires first.

    Returns:
        Tuple ``(cancelled, result)``; ``result`` is ``None`` when cancelled.
        Exceptions raised by *coro* propagate.
    """
    task = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    # a signal raised in the same pass as completion still cancels
    if task.done() and not signal.is_set():
        return False, task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Cancelled operation raised while unwinding", exc_info=True)
    return True, None
