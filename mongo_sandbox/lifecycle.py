"""Lifecycle - the four test-run checkpoints around a shared Sandbox.

    before_all   start the sandbox and verify it is empty (safe)
    before_each  nothing
    after_each   purge all documents, but only once verified safe
    after_all    honour the minimum uptime, then stop the sandbox
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog

from mongo_sandbox.errors import UnsafeStateError

if TYPE_CHECKING:
    from mongo_sandbox.managers.sandbox import Sandbox

logger = structlog.get_logger()

# covers a first-time binary download plus launching the topology
DOWNLOAD_TIMEOUT_SECONDS = 90.0


@runtime_checkable
class DeadlineContext(Protocol):
    """A test-framework context able to widen its own deadline."""

    def extend_deadline(self, seconds: float) -> None: ...


class Lifecycle:
    """A simple encapsulation of methods for a test framework lifecycle.

    The guard does not own the sandbox; several guards may wrap the same
    shared instance.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        context: DeadlineContext | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sandbox = sandbox
        self.context = context

        self._clock = clock
        self._sleep = sleep
        self._is_safe = False
        self._started_at: float | None = None
        self._log = logger.bind(component="lifecycle")

    @property
    def is_safe(self) -> bool:
        """Whether before_all verified the sandbox started empty."""
        return self._is_safe

    @property
    def started_at(self) -> float | None:
        """Clock reading taken when the sandbox was verified safe."""
        return self._started_at

    async def before_all(self, context: DeadlineContext | None = None) -> Lifecycle:
        """To be invoked at the start of the global test run.

        Raises:
            UnsafeStateError: If the sandbox database already holds documents
        """
        context = context or self.context

        self._is_safe = False
        self._started_at = None

        # a first-time download and the topology launch can both be slow
        if isinstance(context, DeadlineContext):
            context.extend_deadline(DOWNLOAD_TIMEOUT_SECONDS)
            self._log.debug("lifecycle.deadline_extended", seconds=DOWNLOAD_TIMEOUT_SECONDS)

        await self.sandbox.start()

        if await self.sandbox.has_documents():
            # under mock conditions we should NEVER find real data;
            #   finding any means we are probably connected to a real database
            self._log.error("lifecycle.unsafe", port=self.sandbox.port)
            raise UnsafeStateError(
                "Lifecycle.before_all: mock database contains Documents",
                details={"database": self.sandbox.config.database},
            )

        self._is_safe = True
        self._started_at = self._clock()
        self._log.info("lifecycle.started", port=self.sandbox.port)
        return self

    async def before_each(self, context: DeadlineContext | None = None) -> Lifecycle:
        """To be invoked at the start of each test case."""
        return self

    async def after_each(self, context: DeadlineContext | None = None) -> Lifecycle:
        """To be invoked at the end of each test case.

        Purges all documents, but never from a sandbox not verified safe.
        """
        if not self._is_safe:
            return self

        await self.sandbox.purge_documents()
        self._log.debug("lifecycle.purged")
        return self

    async def after_all(self, context: DeadlineContext | None = None) -> Lifecycle:
        """To be invoked at the end of the global test run.

        Keeps the topology up for at least `minimum_uptime_ms` so background
        work triggered near startup (eg. index builds) is not cut off.
        """
        remaining = self.remaining_uptime()
        if remaining > 0:
            self._log.info(
                "lifecycle.minimum_uptime",
                minimum_uptime_ms=self.sandbox.config.minimum_uptime_ms,
                remaining_seconds=remaining,
            )
            await self._sleep(remaining)

        try:
            await self.sandbox.stop()
        finally:
            self._is_safe = False
        self._log.info("lifecycle.stopped")
        return self

    def remaining_uptime(self) -> float:
        """Seconds left before the minimum uptime floor is met."""
        if self._started_at is None:
            return 0.0
        minimum = self.sandbox.config.minimum_uptime_ms / 1000.0
        return max(0.0, (self._started_at + minimum) - self._clock())

    async def __aenter__(self) -> Lifecycle:
        try:
            return await self.before_all()
        except Exception:
            # __aexit__ will not run; never leave a mongod behind
            await self.sandbox.stop()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.after_all()
