"""
Completion barrier for a group of futures.

A ``CompletionGroup`` resolves once it has been closed *and* every future
added to it has finished. It fails with the first failure recorded, otherwise
it succeeds. Forgetting to ``close()`` a group means it never resolves.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generator, Optional, Set

from sequent.exception import GroupClosedError


class CompletionGroup:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._closed = False
        self._failure: Optional[BaseException] = None
        self._outstanding: Set[asyncio.Future] = set()
        self._future: asyncio.Future = self._loop.create_future()

    def add(self, future: asyncio.Future) -> asyncio.Future:
        """Track a future until it finishes

        Args:
            future (asyncio.Future): The future to wait on

        Raises:
            GroupClosedError: If the group has already been closed

        Returns:
            asyncio.Future: The same future
        """
        if self._closed:
            raise GroupClosedError("This completion group is closed")

        self._outstanding.add(future)
        future.add_done_callback(self._completed)
        return future

    def close(self) -> None:
        """Signal that no further futures will be added"""
        if self._closed:
            raise GroupClosedError("This completion group is already closed")
        self._closed = True
        self._maybe_done()

    def fail(self, exc: BaseException) -> None:
        """Record a failure that did not come from a tracked future.

        Only the first failure is kept; later ones are discarded.
        """
        if self._failure is None:
            self._failure = exc

    def _completed(self, future: asyncio.Future) -> None:
        self._outstanding.discard(future)
        if future.cancelled():
            self.fail(asyncio.CancelledError())
        else:
            exc = future.exception()
            if exc is not None:
                self.fail(exc)
        self._maybe_done()

    def _maybe_done(self) -> None:
        if not self._closed or self._outstanding or self._future.done():
            return
        if self._failure is not None:
            self._future.set_exception(self._failure)
        else:
            self._future.set_result(None)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    def done(self) -> bool:
        return self._future.done()

    def add_done_callback(
        self, callback: Callable[[asyncio.Future], Any]
    ) -> None:
        self._future.add_done_callback(callback)

    def __await__(self) -> Generator[Any, None, None]:
        return self._future.__await__()

    def __repr__(self) -> str:
        status = "closed" if self._closed else "open"
        return (
            f"<{self.__class__.__name__} {status} "
            f"outstanding={len(self._outstanding)}>"
        )
