"""Cached server capabilities with single-flight lazy fetch.

The store moves ``EMPTY -> FETCHING -> POPULATED``. A failed fetch returns
it to ``EMPTY``; a non-empty ``replace`` always lands in ``POPULATED``.
Concurrent readers arriving while the cache is empty share one fetch.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class CapabilityState(str, Enum):
    """Lifecycle of the capability cache."""

    EMPTY = "empty"
    FETCHING = "fetching"
    POPULATED = "populated"


class CapabilityStore:
    """Raw capability list advertised by a SCEP server.

    Bound to one client and one event loop. Assignments happen between
    awaits, so no reader can observe a partially written value.
    """

    def __init__(self, fetch: Callable[[], Awaitable[bytes]]) -> None:
        """Initialize an empty store.

        Args:
            fetch: Coroutine function returning the server's capability list.
        """
        self._fetch = fetch
        self._capabilities = b""
        self._inflight: asyncio.Future[bytes] | None = None

    @property
    def state(self) -> CapabilityState:
        """Current cache state."""
        if self._capabilities:
            return CapabilityState.POPULATED
        if self._inflight is not None:
            return CapabilityState.FETCHING
        return CapabilityState.EMPTY

    def snapshot(self) -> bytes:
        """Return the cached list without fetching; may be empty."""
        return self._capabilities

    def replace(self, capabilities: bytes) -> None:
        """Overwrite the cache with a freshly queried list.

        An empty answer never clears a populated cache.
        """
        if capabilities:
            self._capabilities = bytes(capabilities)

    async def ensure(self) -> bytes:
        """Return the cached list, fetching it first if the cache is empty.

        Callers arriving while a fetch is outstanding wait for it and then
        re-check the cache. Cancelling one waiter does not cancel the fetch.

        Raises:
            Exception: Whatever the fetch raised; the cache stays empty.
        """
        while not self._capabilities:
            if self._inflight is None:
                self._inflight = asyncio.ensure_future(self._run_fetch())
                self._inflight.add_done_callback(_retrieve_outcome)
            inflight = self._inflight
            caps = await asyncio.shield(inflight)
            if not caps:
                # Server advertised nothing; don't loop on an empty answer.
                return caps
        return self._capabilities

    async def _run_fetch(self) -> bytes:
        try:
            caps = await self._fetch()
            self.replace(caps)
            return caps
        finally:
            self._inflight = None

    async def supports(self, capability: str) -> bool:
        """Whether the server advertises ``capability`` (substring match)."""
        caps = await self.ensure()
        return capability.encode("utf-8") in caps

    async def aclose(self) -> None:
        """Cancel an outstanding fetch and wait until it has finished."""
        inflight = self._inflight
        if inflight is None:
            return
        inflight.cancel()
        await asyncio.wait({inflight})
        # A task cancelled before it started never ran its cleanup.
        self._inflight = None


def _retrieve_outcome(future: asyncio.Future[bytes]) -> None:
    # Marks a failure as seen even when every waiter has already given up.
    if not future.cancelled():
        future.exception()
