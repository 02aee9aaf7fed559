from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Iterator

from cherrypicker.models import RepositoryLockKey
from cherrypicker.observability import log_event


LOGGER = logging.getLogger("cherrypicker.repo_locks")


class RepositoryLockManager:
    """One mutex per (org, repo) working copy.

    Locks are created on first use and live as long as the manager. They are not
    reentrant: a thread holding a repository must not ask for it again.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[RepositoryLockKey, threading.Lock] = {}

    def lock_for(self, org: str, repo: str) -> threading.Lock:
        key = RepositoryLockKey.of(org, repo)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, org: str, repo: str) -> Iterator[None]:
        key = RepositoryLockKey.of(org, repo)
        lock = self.lock_for(org, repo)
        wait_started = time.monotonic()
        lock.acquire()
        log_event(
            LOGGER,
            "repo_lock_acquired",
            repo_full_name=key.full_name,
            waited_seconds=round(time.monotonic() - wait_started, 3),
        )
        try:
            yield
        finally:
            lock.release()
            log_event(LOGGER, "repo_lock_released", repo_full_name=key.full_name)
