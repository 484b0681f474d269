"""Cooperative cancellation for wormhole runs.

A :class:`RunContext` is a cancellation signal with an optional deadline.
Contexts form a tree: cancelling a parent cancels every child, and a child may
carry its own deadline so that whichever fires first wins. The engine creates
one root context per process, wires SIGINT/SIGTERM to it, and derives a child
with the execution timeout for every action.

Cancellation is cooperative. Nothing is interrupted by force: work checks
:meth:`RunContext.check`, waits on :meth:`RunContext.wait`, or runs under
:meth:`RunContext.guard`.

Example:
    ctx = RunContext()
    install_signal_handlers(ctx)

    with ctx.with_timeout(300) as action_ctx:
        await action.run(action_ctx, conn, config)
"""

import asyncio
import logging
import signal
from typing import Any, Awaitable, TypeVar

from .exceptions import ContextCancelledError, DeadlineExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_MESSAGE = "context canceled"
DEADLINE_MESSAGE = "context deadline exceeded"


class RunContext:
    """A cancellable context with an optional deadline.

    Attributes:
        parent: Parent context (None for the root)
        timeout: Deadline relative to creation, in seconds (None for no deadline)
    """

    def __init__(self, parent: "RunContext | None" = None, timeout: float | None = None) -> None:
        self.parent = parent
        self.timeout = timeout
        self._done = asyncio.Event()
        self._reason: type[ContextCancelledError] | None = None
        self._message = ""
        self._children: set[RunContext] = set()
        self._timer: asyncio.TimerHandle | None = None

        if parent is not None:
            if parent.cancelled():
                self._cancel(parent._reason, parent._message)
                return
            parent._children.add(self)

        if timeout is not None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(
                timeout, self._cancel, DeadlineExceededError, DEADLINE_MESSAGE
            )

    def with_timeout(self, timeout: float) -> "RunContext":
        """Derive a child context that also expires after ``timeout`` seconds."""
        return RunContext(parent=self, timeout=timeout)

    def child(self) -> "RunContext":
        """Derive a child context without a deadline of its own."""
        return RunContext(parent=self)

    def cancel(self) -> None:
        """Cancel this context and all of its children."""
        self._cancel(ContextCancelledError, CANCELLED_MESSAGE)

    def release(self) -> None:
        """Release resources tied to this context.

        Stops the deadline timer and detaches from the parent. The context
        counts as cancelled afterwards, like any finished scope.
        """
        self.cancel()

    def _cancel(self, reason: type[ContextCancelledError] | None, message: str) -> None:
        if self._reason is not None or reason is None:
            return
        self._reason = reason
        self._message = message
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._done.set()
        for child in list(self._children):
            child._cancel(reason, message)
        self._children.clear()
        if self.parent is not None:
            self.parent._children.discard(self)

    def cancelled(self) -> bool:
        """Return True once the context was cancelled or its deadline expired."""
        return self._reason is not None

    def deadline_exceeded(self) -> bool:
        """Return True if the context ended because a deadline expired."""
        return self._reason is DeadlineExceededError

    def error(self, detail: str | None = None) -> ContextCancelledError | None:
        """Build the error describing why this context ended.

        Args:
            detail: Optional in-flight error message to combine with the reason

        Returns:
            A fresh ContextCancelledError (or DeadlineExceededError), or None
            if the context is still live
        """
        if self._reason is None:
            return None
        message = f"{detail}: {self._message}" if detail else self._message
        return self._reason(message)

    def check(self) -> None:
        """Raise the context's error if it has ended."""
        err = self.error()
        if err is not None:
            raise err

    async def wait(self) -> None:
        """Block until the context is cancelled."""
        await self._done.wait()

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the context fires first.

        If the context is cancelled before ``aw`` completes, ``aw`` is
        cancelled and the context's error is raised.
        """
        if self.cancelled():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise self.error()
        work = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._done.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                await asyncio.gather(work, return_exceptions=True)
        if work.cancelled() and self.cancelled():
            raise self.error()
        return work.result()

    def __enter__(self) -> "RunContext":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()

    def __repr__(self) -> str:
        state = self._message if self._reason else "active"
        return f"RunContext(timeout={self.timeout!r}, state={state!r})"


def install_signal_handlers(
    ctx: RunContext,
    signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM),
) -> None:
    """Cancel ``ctx`` when the process receives an interrupt or termination signal.

    Must be called from inside the running event loop.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: int) -> None:
        logger.warning(
            f"Received signal {signal.Signals(sig).name!r}. Exiting as soon as possible!"
        )
        ctx.cancel()

    for sig in signals:
        loop.add_signal_handler(sig, _handle, sig)


def remove_signal_handlers(
    signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM),
) -> None:
    """Undo :func:`install_signal_handlers`."""
    loop = asyncio.get_running_loop()
    for sig in signals:
        loop.remove_signal_handler(sig)
