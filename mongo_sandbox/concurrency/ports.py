"""Local port reservation.

The registry only coordinates allocations within this process: it stops two
concurrent Sandbox starts from racing onto the same freshly-probed port
before either has bound it. It does not prevent another process on the host
from taking the port.
"""

from __future__ import annotations

import asyncio
import socket
import threading
from collections.abc import Awaitable, Callable
from functools import lru_cache

import structlog

from mongo_sandbox.config import DEFAULT_BASE_PORT, DEFAULT_HOST
from mongo_sandbox.errors import AllocationError

logger = structlog.get_logger()

MAX_PORT = 65535

PortProbe = Callable[[int], Awaitable[int]]


def _is_port_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
        return True


async def find_free_port(starting_from: int, *, host: str = DEFAULT_HOST) -> int:
    """Find the first port at or above `starting_from` that can be bound.

    Raises:
        AllocationError: If no port up to 65535 is free
    """

    def _scan() -> int:
        for port in range(starting_from, MAX_PORT + 1):
            if _is_port_free(host, port):
                return port
        raise AllocationError(
            f"No free port at or above {starting_from}",
            details={"starting_from": starting_from, "host": host},
        )

    return await asyncio.to_thread(_scan)


class PortRegistry:
    """Reserves and releases locally-unique port numbers.

    All mutation goes through allocate() / release(). The membership check
    and insert happen under one lock so no two callers can hold the same
    port, whichever event loop or thread they run on.
    """

    def __init__(self, probe: PortProbe | None = None) -> None:
        self._probe: PortProbe = probe or find_free_port
        self._reserved: set[int] = set()
        self._lock = threading.Lock()
        self._log = logger.bind(component="port_registry")

    @property
    def reserved(self) -> frozenset[int]:
        """Snapshot of currently reserved ports."""
        with self._lock:
            return frozenset(self._reserved)

    def is_reserved(self, port: int) -> bool:
        with self._lock:
            return port in self._reserved

    async def allocate(self, base_port: int | None = None) -> int:
        """Reserve the first free port at or above `base_port`.

        The port is recorded before it is returned, so the very next
        concurrent caller already sees it as taken.

        Args:
            base_port: Where to start probing (default: 27017)

        Returns:
            The reserved port

        Raises:
            AllocationError: If the probe fails; it is not retried
        """
        candidate = base_port or DEFAULT_BASE_PORT
        while True:
            try:
                port = await self._probe(candidate)
            except OSError as e:
                self._log.error("port.probe_failed", starting_from=candidate, error=str(e))
                raise AllocationError(
                    f"Port probe failed at or above {candidate}: {e}",
                    details={"starting_from": candidate},
                ) from e

            with self._lock:
                if port not in self._reserved:
                    self._reserved.add(port)
                    break

            # start one past there
            self._log.debug("port.collision", port=port)
            candidate = port + 1

        self._log.info("port.reserved", port=port)
        return port

    def release(self, port: int) -> bool:
        """Release a previously reserved port.

        Returns:
            True if the port had been reserved; a double release is a no-op
        """
        with self._lock:
            was_reserved = port in self._reserved
            self._reserved.discard(port)

        if was_reserved:
            self._log.info("port.released", port=port)
        return was_reserved


@lru_cache
def get_port_registry() -> PortRegistry:
    """Get the process-wide registry shared by every default-wired Sandbox."""
    return PortRegistry()
