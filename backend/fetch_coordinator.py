"""
Nexus Scheduling Agent - Fetch Coordinator
In-flight de-duplication and a time-boxed cache per resource key.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from clock import Clock
from database import KeyValueStore
from errors import FetchError, FetchInProgress
from models import FetchState

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]

TIMESTAMP_PREFIX = "fetch:last:"


class FetchCoordinator:
    """
    One loader per key at a time; completed results are served for ``ttl`` seconds.

    A failed loader resets the key to not-connected, drops its cache and
    raises FetchError to every caller that was waiting on it. Nothing is
    retried in the background; callers offer the retry.
    """

    def __init__(self, clock: Clock, store: Optional[KeyValueStore] = None, default_ttl: float = 30.0):
        self.clock = clock
        self.store = store
        self.default_ttl = default_ttl
        self._states: Dict[str, FetchState] = {}
        self._results: Dict[str, Any] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}

    def _state(self, key: str) -> FetchState:
        if key not in self._states:
            self._states[key] = FetchState(key=key)
        return self._states[key]

    def get_state(self, key: str) -> FetchState:
        """A copy; the coordinator's own record is never handed out."""
        state = self._states.get(key)
        return state.model_copy() if state is not None else FetchState(key=key)

    def _is_fresh(self, key: str, ttl: float) -> bool:
        state = self._states.get(key)
        if state is None or state.last_fetch_at is None or key not in self._results:
            return False
        return self.clock.now() - state.last_fetch_at < timedelta(seconds=ttl)

    async def fetch(
        self,
        key: str,
        loader: Loader,
        ttl: Optional[float] = None,
        force: bool = False,
        wait: bool = True,
    ) -> Any:
        ttl = self.default_ttl if ttl is None else ttl

        pending = self._in_flight.get(key)
        if pending is not None:
            if not wait:
                raise FetchInProgress(key)
            # shield so one cancelled waiter does not cancel the shared load
            return await asyncio.shield(pending)

        if not force and self._is_fresh(key, ttl):
            return self._results[key]

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        state = self._state(key)
        state.in_flight = True

        try:
            result = await loader()
        except asyncio.CancelledError:
            state.in_flight = False
            self._in_flight.pop(key, None)
            future.cancel()
            raise
        except Exception as e:
            logger.warning(f"Fetch of {key} failed: {e}")
            self._results.pop(key, None)
            state.in_flight = False
            state.connected = False
            state.cached_result_count = 0
            state.last_fetch_at = None
            state.last_error = str(e) or type(e).__name__
            error = FetchError(key, e)
            future.set_exception(error)
            # Mark retrieved so an un-awaited future does not log a warning
            future.exception()
            self._in_flight.pop(key, None)
            raise error from e

        now = self.clock.now()
        self._results[key] = result
        state.in_flight = False
        state.connected = True
        state.last_fetch_at = now
        state.last_error = None
        state.cached_result_count = len(result) if hasattr(result, "__len__") else 1
        future.set_result(result)
        self._in_flight.pop(key, None)

        if self.store is not None:
            await self._persist_timestamp(key, now)
        return result

    async def _persist_timestamp(self, key: str, moment: datetime) -> None:
        try:
            await self.store.set(TIMESTAMP_PREFIX + key, moment.isoformat())
        except Exception as e:
            # The in-process cache is authoritative; persistence is informational
            logger.warning(f"Could not persist fetch timestamp for {key}: {e}")

    async def last_persisted_fetch(self, key: str) -> Optional[datetime]:
        if self.store is None:
            return None
        value = await self.store.get(TIMESTAMP_PREFIX + key)
        return datetime.fromisoformat(value) if value else None

    def invalidate(self, key: str) -> None:
        """Forget the key. A load still running keeps its state until it settles."""
        self._results.pop(key, None)
        if key in self._in_flight:
            self._states[key].last_fetch_at = None
        else:
            self._states.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._states if k.startswith(prefix)]:
            self.invalidate(key)

    def cached(self, key: str) -> Optional[Any]:
        return self._results.get(key)
