from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """How long to keep polling and how long to sleep between checks."""

    timeout_seconds: float
    interval_seconds: float

    @classmethod
    def minutes(cls, timeout_minutes: float, interval_seconds: float) -> PollPolicy:
        return cls(timeout_seconds=timeout_minutes * 60, interval_seconds=interval_seconds)


@dataclass(slots=True)
class PollResult(Generic[T]):
    value: T | None
    timed_out: bool
    elapsed_seconds: float
    attempts: int


def poll_until(
    check: Callable[[], T | None],
    policy: PollPolicy,
    *,
    checkpoint: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollResult[T]:
    """Call ``check`` until it returns something other than ``None``.

    ``checkpoint`` runs at the start of every cycle, before the check and so
    before every sleep; it may raise to abandon the wait (stop requests do).
    The check always runs at least once, even with a zero timeout.
    """
    started = clock()
    attempts = 0
    while True:
        if checkpoint is not None:
            checkpoint()
        attempts += 1
        value = check()
        elapsed = clock() - started
        if value is not None:
            return PollResult(value=value, timed_out=False, elapsed_seconds=elapsed, attempts=attempts)
        remaining = policy.timeout_seconds - elapsed
        if remaining <= 0:
            return PollResult(value=None, timed_out=True, elapsed_seconds=elapsed, attempts=attempts)
        sleep(min(policy.interval_seconds, remaining))
