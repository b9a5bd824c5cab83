"""In-memory sequential job queue (single-process, asyncio).

Guarantees at most one running task per queue instance, in strict enqueue order,
even when callers fire and forget.

Tail-chain strategy:
 - ``_tail`` is the task created by the most recent ``enqueue``.
 - A new task first waits for the previous tail to settle (success, failure or
   cancellation alike), then runs its own work.
 - The returned handle resolves/rejects with that work's own outcome only.

A failing task never poisons the chain: ``asyncio.wait`` does not re-raise, and a
done-callback retrieves the exception so it neither leaks into the next task nor
triggers the loop's "exception was never retrieved" warning.

Counters (``depth``, ``completed``, ``failed``) are updated inside the task body,
so they are already current when an awaiting caller resumes.

Two instances exist at runtime: ``browser-session`` (the bank portal) and
``facilitator-wallet`` (on-chain signing/submission). They may run concurrently
with each other, never with themselves.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Set, TypeVar

from app.utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class SequentialJobQueue:
    def __init__(self, name: str) -> None:
        self.name = name
        self._tail: Optional[asyncio.Task] = None
        self._seq_counter = 0
        self._unsettled: Set[asyncio.Task] = set()
        self._completed = 0
        self._failed = 0
        self._shutdown = False

    # ----------------------------- internal helpers ----------------------------- #
    def _next_seq(self) -> int:
        self._seq_counter += 1
        return self._seq_counter

    def _on_done(self, handle: asyncio.Task) -> None:
        # _run keeps the counters; a task cancelled before its first step never entered it
        if handle in self._unsettled:
            self._unsettled.discard(handle)
            self._failed += 1
            logger.warning("Queued task cancelled before start", queue=self.name, task=handle.get_name())
            return
        if not handle.cancelled():
            handle.exception()  # marks the exception as retrieved

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, task: Callable[[], Awaitable[T]]) -> "asyncio.Task[T]":
        """Schedule ``task`` after everything already queued; must run inside the event loop."""
        if self._shutdown:
            raise RuntimeError(f"Queue '{self.name}' shutdown")
        previous = self._tail
        seq = self._next_seq()

        async def _run() -> T:
            try:
                if previous is not None and not previous.done():
                    await asyncio.wait([previous])
                result = await task()
            except asyncio.CancelledError:
                self._failed += 1
                logger.warning("Queued task cancelled", queue=self.name, seq=seq)
                raise
            except Exception as e:
                self._failed += 1
                logger.debug(
                    "Queued task failed; error forwarded to its caller only",
                    queue=self.name,
                    seq=seq,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            else:
                self._completed += 1
                return result
            finally:
                self._unsettled.discard(asyncio.current_task())

        handle = asyncio.get_running_loop().create_task(_run(), name=f"{self.name}-{seq}")
        self._tail = handle
        self._unsettled.add(handle)
        handle.add_done_callback(self._on_done)
        if len(self._unsettled) > 1:
            logger.debug("Task waiting behind queued work", queue=self.name, depth=len(self._unsettled), seq=seq)
        return handle

    def shutdown(self) -> None:
        """Reject further enqueues; already queued tasks still run."""
        self._shutdown = True

    async def drain(self) -> None:
        """Wait until the current tail (and therefore everything before it) settles."""
        tail = self._tail
        if tail is not None and not tail.done():
            await asyncio.wait([tail])

    # ----------------------------- inspection ----------------------------- #
    def depth(self) -> int:
        return len(self._unsettled)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        return {
            "name": self.name,
            "depth": len(self._unsettled),
            "completed": self._completed,
            "failed": self._failed,
            "shutdown": self._shutdown,
        }


__all__ = ["SequentialJobQueue"]
