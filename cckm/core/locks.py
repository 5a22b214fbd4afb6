"""Per-key mutual exclusion for read-modify-write remote mutations.

A single registry lock guards the key -> lock map; each key then has its own
lock held for the duration of the critical section. Locks are created on
first use and live as long as the process.

Usage:
    with acl_locks.hold(acl_lock_key(kms_id)):
        ...  # fetch ACLs, revoke, grant
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def acl_lock_key(kms_id: str) -> str:
    """Lock key serializing ACL updates of one KMS container."""
    return f"aws-acls-{kms_id}"


class LockRegistry:
    """Concurrency-safe map from resource key to an owned lock."""

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Block until the lock for `key` is free, then hold it."""
        lock = self._lock_for(key)
        logger.debug(f"[lock] waiting for {key}")
        with lock:
            logger.debug(f"[lock] acquired {key}")
            try:
                yield
            finally:
                logger.debug(f"[lock] released {key}")

    def with_lock(self, key: str, fn: Callable[[], T]) -> T:
        """Run `fn` inside the critical section for `key`."""
        with self.hold(key):
            return fn()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def __contains__(self, key: str) -> bool:
        with self._registry_lock:
            return key in self._locks


# Process-wide registry shared by every ACL reconciler
acl_locks = LockRegistry()
