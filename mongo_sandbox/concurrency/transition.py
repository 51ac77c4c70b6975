"""In-flight transition coalescing.

A Transition represents one kind of state change (start, stop) on a single
owner. While an action is running, later callers attach to the same shared
future instead of running the action again, and every caller observes the
same outcome. Once the action settles the slot is cleared, so the next call
begins a fresh transition.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class Transition(Generic[T]):
    """A single-slot, one-shot broadcast of an in-flight action's outcome."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._future: asyncio.Future[T] | None = None
        self._log = logger.bind(transition=name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def in_flight(self) -> bool:
        """Whether an action is currently running."""
        return self._future is not None

    async def join(self) -> T:
        """Await the in-flight action's outcome.

        Raises:
            RuntimeError: If nothing is in flight
        """
        future = self._future
        if future is None:
            raise RuntimeError(f"No {self._name} transition in flight")

        self._log.debug("transition.join")
        # a cancelled waiter must not cancel the shared outcome
        return await asyncio.shield(future)

    async def settle(self) -> None:
        """Wait for any in-flight action to finish, ignoring its outcome."""
        future = self._future
        if future is None:
            return
        await asyncio.wait([future])

    async def run(self, action: Callable[[], Awaitable[T]]) -> T:
        """Run `action`, or join the one already in flight."""
        if self._future is not None:
            return await self.join()

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._future = future
        try:
            result = await action()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # mark retrieved; the caller below re-raises it
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._future = None
