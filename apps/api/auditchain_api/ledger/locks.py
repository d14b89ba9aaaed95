"""Per-session mutual exclusion for local chain writes."""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any

import redis
from redis.exceptions import LockError, RedisError

from auditchain_api.exceptions import PersistenceUnavailable
from auditchain_api.settings import Settings

logger = logging.getLogger(__name__)


class SessionLocks(ABC):
    """Serializes lookup+persist of one session's chain across writers."""

    @abstractmethod
    def acquire(self, session_id: str) -> Any:
        """Acquire the session's lock and return a handle for release.

        Raises PersistenceUnavailable if the lock cannot be obtained in time.
        """

    @abstractmethod
    def release(self, session_id: str, handle: Any) -> None:
        """Release a handle returned by acquire."""

    @contextmanager
    def hold(self, session_id: str):
        handle = self.acquire(session_id)
        try:
            yield
        finally:
            self.release(session_id, handle)


class LocalSessionLocks(SessionLocks):
    """Thread locks for a single process. Unused locks are dropped."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._holders: dict[str, int] = {}

    def acquire(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(session_id, threading.Lock())
            self._holders[session_id] = self._holders.get(session_id, 0) + 1

        if lock.acquire(timeout=self.timeout):
            return lock

        self._forget(session_id)
        raise PersistenceUnavailable(f"timed out waiting for session lock {session_id}")

    def release(self, session_id: str, handle: threading.Lock) -> None:
        handle.release()
        self._forget(session_id)

    def _forget(self, session_id: str) -> None:
        with self._guard:
            remaining = self._holders.get(session_id, 1) - 1
            if remaining <= 0:
                self._holders.pop(session_id, None)
                self._locks.pop(session_id, None)
            else:
                self._holders[session_id] = remaining

    def __len__(self) -> int:
        return len(self._locks)


class RedisSessionLocks(SessionLocks):
    """Redis locks, for deployments running several API processes."""

    def __init__(self, client: redis.Redis, timeout: float = 10.0, prefix: str = "auditchain:session-lock:"):
        self.client = client
        self.timeout = timeout
        self.prefix = prefix

    def acquire(self, session_id: str):
        lock = self.client.lock(
            f"{self.prefix}{session_id}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        try:
            acquired = lock.acquire()
        except RedisError as e:
            raise PersistenceUnavailable(f"redis lock unavailable: {e}") from e
        if not acquired:
            raise PersistenceUnavailable(f"timed out waiting for session lock {session_id}")
        return lock

    def release(self, session_id: str, handle) -> None:
        try:
            handle.release()
        except (LockError, RedisError) as e:
            # Lock already expired; the unique sequence constraint still guards the chain
            logger.warning(f"Could not release session lock {session_id}: {e}")


def build_session_locks(settings: Settings) -> SessionLocks:
    """Build the configured lock backend."""
    if settings.uses_redis_locks:
        client = redis.from_url(settings.redis_url, decode_responses=False)
        return RedisSessionLocks(client, timeout=settings.session_lock_timeout_seconds)
    return LocalSessionLocks(timeout=settings.session_lock_timeout_seconds)
