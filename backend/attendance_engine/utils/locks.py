"""Per-key locks for check-and-create and decide-once sections."""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

import redis
from flask import current_app

logger = logging.getLogger(__name__)


class LocalKeyedLock:
    """In-process lock registry; one ``threading.Lock`` per live key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def active_keys(self) -> List[str]:
        with self._guard:
            return list(self._locks)


class RedisKeyedLock:
    """Cross-process lock backed by redis-py's ``Lock``."""

    PREFIX = 'attendance-engine:lock:'

    def __init__(self, client: redis.Redis, timeout: float = 30, blocking_timeout: float = 10):
        self.client = client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @classmethod
    def from_url(cls, url: str, **kwargs) -> 'RedisKeyedLock':
        return cls(redis.Redis.from_url(url), **kwargs)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.client.lock(
            self.PREFIX + key,
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout
        )
        if not lock.acquire():
            logger.warning("Timed out waiting for lock %s", key)
            raise TimeoutError(f"Could not acquire lock for {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError:
                # Lock expired while held; the critical section already finished
                logger.warning("Lock %s expired before release", key)


def init_locks(app) -> None:
    """Attach the lock registry to the app: Redis when configured, else in-process."""
    redis_url = app.config.get('REDIS_URL')
    if redis_url:
        app.extensions['attendance_keyed_lock'] = RedisKeyedLock.from_url(redis_url)
    else:
        app.extensions['attendance_keyed_lock'] = LocalKeyedLock()


def get_keyed_lock():
    """Return the lock registry of the current app."""
    return current_app.extensions['attendance_keyed_lock']
