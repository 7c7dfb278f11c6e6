"""Per-user sliding-window rate limiting."""

import itertools
import logging
import math
import threading
import time
from collections import deque
from typing import Callable, Protocol

from career_ai.config import RateLimitConfig
from career_ai.models import Admission

logger = logging.getLogger(__name__)

# Idle keys are swept once every this many admissions.
SWEEP_EVERY = 256


class RateLimiter(Protocol):
    """Admission control interface used by the orchestrator."""

    def admit(self, user_id: str) -> Admission: ...


class SlidingWindowRateLimiter:
    """In-process limiter admitting at most *max_requests* per trailing window.

    Each user key owns a deque of admission timestamps and a lock, so the
    check-and-record step is atomic per user without serializing unrelated
    users. The registry lock guards the key-to-lock map; idle keys are
    evicted by :meth:`sweep`.
    """

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._admissions = itertools.count(1)

    @classmethod
    def from_config(cls, config: RateLimitConfig | None = None):
        cfg = config or RateLimitConfig()
        return cls(max_requests=cfg.max_requests, window_seconds=cfg.window_s)

    def _acquire(self, key: str) -> threading.Lock:
        """Lock *key*, retrying if the lock was evicted while we waited."""
        while True:
            with self._registry_lock:
                lock = self._locks.setdefault(key, threading.Lock())
            lock.acquire()
            if self._locks.get(key) is lock:
                return lock
            lock.release()

    def admit(self, user_id: str) -> Admission:
        """Record and allow the request if the window has room, else reject.

        Args:
            user_id: The key to throttle on.

        Returns:
            ``Admission(allowed=True)`` when the request was recorded, or
            ``Admission(allowed=False, retry_after_seconds=n)`` where *n* is
            the number of whole seconds until the oldest timestamp leaves
            the window.
        """
        lock = self._acquire(user_id)
        try:
            window = self._windows.setdefault(user_id, deque())
            now = self._clock()
            cutoff = now - self.window_seconds
            while window and window[0] <= cutoff:
                window.popleft()

            if len(window) < self.max_requests:
                window.append(now)
                admission = Admission(allowed=True)
            else:
                wait = window[0] + self.window_seconds - now
                retry_after = max(1, math.ceil(wait))
                logger.info("Rate limited %s for %ds", user_id, retry_after)
                admission = Admission(allowed=False, retry_after_seconds=retry_after)
        finally:
            lock.release()

        if next(self._admissions) % SWEEP_EVERY == 0:
            self.sweep()
        return admission

    def sweep(self) -> int:
        """Drop keys whose windows have fully expired.

        Keys whose lock is currently held are skipped and picked up by a
        later sweep.

        Returns:
            The number of keys evicted.
        """
        cutoff = self._clock() - self.window_seconds
        evicted = 0
        with self._registry_lock:
            for key, lock in list(self._locks.items()):
                if not lock.acquire(blocking=False):
                    continue
                try:
                    window = self._windows.get(key)
                    if not window or window[-1] <= cutoff:
                        self._windows.pop(key, None)
                        del self._locks[key]
                        evicted += 1
                finally:
                    lock.release()
        if evicted:
            logger.debug("Evicted %d idle rate-limit keys", evicted)
        return evicted

    def reset(self, user_id: str | None = None) -> None:
        """Forget recorded requests for one user, or for everyone."""
        with self._registry_lock:
            keys = list(self._locks) if user_id is None else [user_id]
            for key in keys:
                lock = self._locks.get(key)
                if lock is None:
                    self._windows.pop(key, None)
                    continue
                with lock:
                    self._windows.pop(key, None)
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
