"""Cooperative cancellation for a single analysis run.

One token is created per run and handed to every cancellable collaborator.
Collaborators either poll it between steps or wrap their awaits with
:meth:`CancellationToken.run`, which abandons the awaited work as soon as the
token fires.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, TypeVar

from profilestream.errors import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """Signal shared between the controller and its collaborators."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Fire the token. Later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._message())

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            OperationCancelledError: The token fired before the work finished.
                The work itself is cancelled.
        """
        if self.is_cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelledError(self._message())

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await work
        raise OperationCancelledError(self._message())

    def _message(self) -> str:
        return f"Operation was cancelled: {self.reason}" if self.reason else "Operation was cancelled"
