"""
Stampede Lock

Cooperative, polling fill-lock scoped to one cache key. Serializes the
database fallbacks of concurrent cache misses on the same key.

Two modes:

- lenient (default): wait while a lock marker exists, bounded by
  ``max_wait_seconds`` from the first check, then write our own marker
  even if the wait timed out. Two callers can both see the marker absent
  and both write it, so at most one concurrent fallback is best effort.
- strict: atomic set-if-absent with a renewable lease and an ownership
  token. A timed-out wait does not write a marker and ``acquire`` returns False;
  ``release`` only removes a marker that still carries our token.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional
from uuid import uuid4

from ...constants import LOCK_KEY_PREFIX, LOCK_MARKER_VALUE
from ...core.config import get_settings
from ...domain.cache.repository_interfaces import KeyValueStore
from ...domain.cache.value_objects import CacheKey

logger = logging.getLogger(__name__)


class StampedeLock:
    """Advisory fill-lock over a key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        prefix: str = LOCK_KEY_PREFIX,
        max_wait_seconds: Optional[float] = None,
        poll_interval_ms: Optional[int] = None,
        strict: Optional[bool] = None,
        lease_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = get_settings()
        self.store = store
        self.prefix = prefix
        self.max_wait_seconds = (
            settings.CACHE_LOCK_MAX_WAIT_SECONDS
            if max_wait_seconds is None
            else max_wait_seconds
        )
        self.poll_interval_ms = (
            settings.CACHE_LOCK_POLL_INTERVAL_MS
            if poll_interval_ms is None
            else poll_interval_ms
        )
        self.strict = settings.CACHE_LOCK_STRICT if strict is None else strict
        self.lease_seconds = (
            settings.CACHE_LOCK_LEASE_SECONDS if lease_seconds is None else lease_seconds
        )
        self._clock = clock
        self._sleep = sleep
        self._local = threading.local()

    def lock_key(self, key: str) -> str:
        return str(CacheKey.lock(key, self.prefix))

    @property
    def _tokens(self) -> Dict[str, str]:
        tokens = getattr(self._local, "tokens", None)
        if tokens is None:
            tokens = self._local.tokens = {}
        return tokens

    def acquire(
        self,
        key: str,
        max_wait_seconds: Optional[float] = None,
        poll_interval_ms: Optional[int] = None,
    ) -> bool:
        """
        Acquire the fill-lock for ``key``.

        Args:
            key: Base cache key being filled
            max_wait_seconds: Wait bound, measured from the first check
            poll_interval_ms: Sleep between checks

        Returns:
            True if the lock was free within the wait bound. In lenient mode
            a False return still leaves our marker written and the caller
            proceeds; in strict mode nothing was written.
        """
        max_wait = self.max_wait_seconds if max_wait_seconds is None else max_wait_seconds
        interval = self.poll_interval_ms if poll_interval_ms is None else poll_interval_ms
        lock_key = self.lock_key(key)

        if self.strict:
            return self._acquire_strict(lock_key, max_wait, interval)
        return self._acquire_lenient(lock_key, max_wait, interval)

    def _acquire_lenient(self, lock_key: str, max_wait: float, interval: int) -> bool:
        deadline = self._clock() + max_wait
        acquired = True

        while self.store.exists(lock_key):
            if self._clock() >= deadline:
                acquired = False
                logger.warning(
                    f"Fill lock wait timed out after {max_wait}s, proceeding without exclusivity",
                    extra={"lock_key": lock_key},
                )
                break
            self._sleep(interval / 1000.0)

        self.store.set_scalar(lock_key, LOCK_MARKER_VALUE)
        return acquired

    def _acquire_strict(self, lock_key: str, max_wait: float, interval: int) -> bool:
        deadline = self._clock() + max_wait
        token = uuid4().hex

        while True:
            if self.store.set_if_absent(lock_key, token, self.lease_seconds):
                self._tokens[lock_key] = token
                return True
            if self._clock() >= deadline:
                logger.warning(
                    f"Fill lock not acquired within {max_wait}s",
                    extra={"lock_key": lock_key},
                )
                return False
            self._sleep(interval / 1000.0)

    def release(self, key: str) -> bool:
        """
        Release the fill-lock for ``key``.

        Lenient mode deletes the marker unconditionally. Strict mode deletes
        it only while it still carries the token of this thread's acquisition.
        """
        lock_key = self.lock_key(key)

        if not self.strict:
            return self.store.delete(lock_key)

        token = self._tokens.pop(lock_key, None)
        if token is None:
            return False
        # Check-then-delete is not atomic; a lease that expires in between
        # can still remove a successor's marker.
        if self.store.get_scalar(lock_key) != token:
            logger.warning(
                "Fill lock lease expired before release", extra={"lock_key": lock_key}
            )
            return False
        return self.store.delete(lock_key)

    def renew(self, key: str, lease_seconds: Optional[int] = None) -> bool:
        """Extend the lease of a strict lock this thread still owns."""
        if not self.strict:
            return False

        lock_key = self.lock_key(key)
        token = self._tokens.get(lock_key)
        if token is None or self.store.get_scalar(lock_key) != token:
            return False
        lease = self.lease_seconds if lease_seconds is None else lease_seconds
        return self.store.expire(lock_key, lease)

    @contextmanager
    def hold(
        self,
        key: str,
        max_wait_seconds: Optional[float] = None,
        poll_interval_ms: Optional[int] = None,
    ) -> Iterator[bool]:
        """Acquire for the duration of a block; released on every exit path."""
        acquired = self.acquire(key, max_wait_seconds, poll_interval_ms)
        try:
            yield acquired
        finally:
            self.release(key)
