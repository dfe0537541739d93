"""Adaptive batch sizing and quota backoff for one audit run.

A :class:`BatchScheduler` is owned by exactly one gateway for one run. It is
never shared: one run's backoff must not starve another run's throughput.
"""
from __future__ import annotations
import logging
import random
import threading
import time
from typing import Callable, List, Optional, Protocol

from .errors import QuotaExceeded, RunCancelled

logger = logging.getLogger(__name__)

# Markers that identify a quota / rate-limit failure in an SDK error message.
QUOTA_MARKERS = ("429", "resource_exhausted", "quota")


def is_quota_error(exc: BaseException) -> bool:
    if isinstance(exc, QuotaExceeded):
        return True
    text = str(exc).lower()
    return any(m in text for m in QUOTA_MARKERS)


class QuotaObserver(Protocol):
    """Receives the planned wait (seconds) before each backoff sleep, 0 after success."""

    def quota_wait(self, seconds: float) -> None:
        ...


class PolledQuotaStatus:
    """Observer that just remembers the last reported wait, for callers that poll."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._wait_s = 0.0
        self.history: List[float] = []

    def quota_wait(self, seconds: float) -> None:
        with self._lock:
            self._wait_s = float(seconds)
            self.history.append(float(seconds))

    @property
    def wait_seconds(self) -> float:
        with self._lock:
            return self._wait_s

    @property
    def is_waiting(self) -> bool:
        return self.wait_seconds > 0


class CallbackQuotaObserver:
    """Adapts a plain ``fn(seconds)`` callable to :class:`QuotaObserver`."""

    def __init__(self, fn: Callable[[float], None]):
        self._fn = fn

    def quota_wait(self, seconds: float) -> None:
        self._fn(seconds)


class BatchScheduler:
    """Batch size / cooldown / attempt bookkeeping (the run's BatchState).

    The batch size only ever shrinks within a run and never drops below
    ``min_batch_size``.
    """

    def __init__(
        self,
        initial_batch_size: int = 4,
        min_batch_size: int = 1,
        cooldown_s: float = 61.0,
        jitter_s: float = 2.0,
        max_attempts: int = 3,
        rng: Optional[random.Random] = None,
    ):
        if min_batch_size < 1:
            raise ValueError("min_batch_size must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.initial_batch_size = max(min_batch_size, int(initial_batch_size))
        self.current_batch_size = self.initial_batch_size
        self.min_batch_size = min_batch_size
        self.cooldown_s = cooldown_s
        self.jitter_s = jitter_s
        self.max_attempts = max_attempts
        self.attempts = 0
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings) -> "BatchScheduler":  # type: ignore[no-untyped-def]
        return cls(
            initial_batch_size=settings.batch_size,
            min_batch_size=settings.min_batch_size,
            cooldown_s=settings.quota_cooldown_s,
            jitter_s=settings.quota_jitter_s,
            max_attempts=settings.max_attempts,
        )

    def start_batch(self) -> None:
        self.attempts = 0

    def record_attempt(self) -> int:
        self.attempts += 1
        return self.attempts

    @property
    def attempts_left(self) -> bool:
        return self.attempts < self.max_attempts

    def shrink(self) -> int:
        self.current_batch_size = max(self.min_batch_size, self.current_batch_size // 2)
        return self.current_batch_size

    def backoff_delay(self) -> float:
        jitter = self._rng.uniform(0, self.jitter_s) if self.jitter_s > 0 else 0.0
        return self.cooldown_s + jitter

    def snapshot(self) -> dict:
        return {
            "current_batch_size": self.current_batch_size,
            "min_batch_size": self.min_batch_size,
            "cooldown_s": self.cooldown_s,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
        }


def cooperative_sleep(
    seconds: float,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Sleep, waking early (and raising) if the run is cancelled."""
    if cancel_event is None:
        sleep(seconds)
        return
    if cancel_event.is_set():
        raise RunCancelled("cancelled before backoff sleep")
    if sleep is time.sleep:
        woke = cancel_event.wait(seconds)
    else:
        sleep(seconds)
        woke = cancel_event.is_set()
    if woke:
        raise RunCancelled("cancelled during backoff sleep")
