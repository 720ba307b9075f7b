"""
buildwatch Core - Bounded polling.

A single "poll until predicate or budget exhausted" primitive shared by the
queue resolver and the log streamer. Running out of budget is a normal
outcome reported through PollResult, never an exception.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable  # noqa: TC003
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

from loguru import logger

from buildwatch.core.exceptions import TransientFetchError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Polling budget: fixed interval, attempt cap and wall-clock deadline."""

    interval: float = 1.0  # Seconds between ticks
    max_attempts: int | None = None  # None = bounded by deadline only
    deadline: float | None = None  # Seconds from the first tick

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError(f"interval must be >= 0, got: {self.interval}")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {self.max_attempts}")
        if self.max_attempts is None and self.deadline is None:
            raise ValueError("RetryPolicy needs max_attempts or deadline")

    @classmethod
    def from_budget(cls, interval: float, budget: float) -> RetryPolicy:
        """Build a policy polling every `interval` seconds for `budget` seconds."""
        attempts = max(1, int(budget // interval)) if interval > 0 else None
        return cls(interval=interval, max_attempts=attempts, deadline=budget)

    def is_exhausted(self, attempts: int, elapsed: float) -> bool:
        """Check whether another tick is allowed."""
        if self.max_attempts is not None and attempts >= self.max_attempts:
            return True
        return self.deadline is not None and elapsed >= self.deadline


class PollStatus(StrEnum):
    """How a polling loop ended."""

    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"


@dataclass
class PollResult(Generic[T]):
    """Outcome of poll_until."""

    status: PollStatus
    attempts: int
    value: T | None = None
    errors: int = 0

    @property
    def satisfied(self) -> bool:
        return self.status == PollStatus.SATISFIED


async def poll_until(
    probe: Callable[[], Awaitable[T | None]],
    policy: RetryPolicy,
    *,
    name: str = "poll",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollResult[T]:
    """
    Call `probe` every `policy.interval` seconds until it returns a value.

    A probe returning None means "not yet". TransientFetchError raised by the
    probe is logged and the tick counts as a spent attempt; any other
    exception propagates to the caller.

    Args:
        probe: Async callable polled once per tick
        policy: Interval and budget
        name: Label used in log messages
        sleep: Suspension function between ticks
        clock: Monotonic clock used for the deadline

    Returns:
        PollResult with the probe's value, or EXHAUSTED status
    """
    started = clock()
    attempts = 0
    errors = 0

    while True:
        attempts += 1
        try:
            value = await probe()
        except TransientFetchError as e:
            errors += 1
            value = None
            logger.debug(f"🔄 {name}: attempt {attempts} failed, retrying: {e}")

        if value is not None:
            logger.debug(f"{name}: satisfied after {attempts} attempt(s)")
            return PollResult(PollStatus.SATISFIED, attempts, value, errors)

        elapsed = clock() - started
        if policy.is_exhausted(attempts, elapsed):
            logger.warning(
                f"⏱️ {name}: budget exhausted after {attempts} attempts ({elapsed:.1f}s)"
            )
            return PollResult(PollStatus.EXHAUSTED, attempts, None, errors)

        await sleep(policy.interval)
