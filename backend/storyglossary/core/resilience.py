"""Provider breakers and the retry policy for oracle calls.

Each provider has one ProviderBreaker shared by every oracle built for it.
After ``failure_threshold`` consecutive failures the breaker opens and
calls fail fast with BreakerOpenError. Once ``cooldown_seconds`` have
passed it admits up to ``trial_calls`` trial calls; that many successes
close it, any trial failure opens it again.

Transient network errors are retried with jittered exponential backoff
(tenacity) inside the breaker, so a retried call counts once.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from storyglossary.config import settings
from storyglossary.core.exceptions import OracleUnavailableError
from storyglossary.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (TimeoutError, ConnectionError)


class BreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BreakerOpenError(OracleUnavailableError):
    """The provider's breaker is open; the call was not attempted."""

    def __init__(self, provider: str, retry_in: float) -> None:
        self.provider = provider
        super().__init__(
            f"Provider '{provider}' is failing fast, retry in {retry_in:.0f}s",
            context={"provider": provider, "retry_in": round(retry_in, 1)},
        )


@dataclass
class ProviderBreaker:
    provider: str
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    trial_calls: int = 3

    state: BreakerState = field(default=BreakerState.CLOSED, init=False)
    consecutive_failures: int = field(default=0, init=False)
    trial_successes: int = field(default=0, init=False)
    opened_at: float = field(default=0.0, init=False)
    _trials_in_flight: int = field(default=0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def retry_in(self) -> float:
        """Seconds left before an open breaker admits trial calls."""
        if self.state is not BreakerState.OPEN:
            return 0.0
        return max(0.0, self.cooldown_seconds - (time.monotonic() - self.opened_at))

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func`` through the breaker.

        Raises:
            BreakerOpenError: The breaker is open or its trial slots are taken.
        """
        trial = await self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            await self._record(trial, exc)
            raise
        await self._record(trial, None)
        return result

    def reset(self) -> None:
        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.trial_successes = 0
        self.opened_at = 0.0
        self._trials_in_flight = 0

    async def _admit(self) -> bool:
        """Return True when the call is a trial call."""
        async with self._lock:
            if self.state is BreakerState.OPEN and self.retry_in() == 0.0:
                self.state = BreakerState.HALF_OPEN
                self.trial_successes = 0
                logger.info("breaker_half_open", provider=self.provider)

            if self.state is BreakerState.CLOSED:
                return False
            if self.state is BreakerState.HALF_OPEN and self._trials_in_flight < self.trial_calls:
                self._trials_in_flight += 1
                return True

            retry_in = self.retry_in()
            logger.warning("breaker_rejected", provider=self.provider, retry_in=round(retry_in, 1))
            raise BreakerOpenError(self.provider, retry_in)

    async def _record(self, trial: bool, error: Exception | None) -> None:
        async with self._lock:
            if trial:
                self._trials_in_flight -= 1

            if error is None:
                self.consecutive_failures = 0
                if self.state is BreakerState.HALF_OPEN:
                    self.trial_successes += 1
                    if self.trial_successes >= self.trial_calls:
                        self.state = BreakerState.CLOSED
                        logger.info("breaker_closed", provider=self.provider)
                return

            self.consecutive_failures += 1
            if self.state is BreakerState.HALF_OPEN or (
                self.consecutive_failures >= self.failure_threshold
            ):
                was_half_open = self.state is BreakerState.HALF_OPEN
                self.state = BreakerState.OPEN
                self.opened_at = time.monotonic()
                logger.error(
                    "breaker_opened",
                    provider=self.provider,
                    failures=self.consecutive_failures,
                    during_trial=was_half_open,
                    error=f"{type(error).__name__}: {error}",
                )


# --- Retry policy ---


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "oracle_retry",
        attempt=retry_state.attempt_number,
        wait=getattr(retry_state.next_action, "sleep", None),
        error=type(error).__name__ if error else None,
    )


def oracle_retry(max_attempts: int | None = None):
    """Retry decorator for oracle calls: transient errors only, jittered backoff."""
    return retry(
        stop=stop_after_attempt(max_attempts or settings.oracle_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.oracle_retry_initial_wait,
            max=settings.oracle_retry_max_wait,
        ),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_log_retry,
        reraise=True,
    )


# --- Provider registry ---

_BREAKERS: dict[str, ProviderBreaker] = {}


def breaker_for(provider: str) -> ProviderBreaker:
    """Shared breaker for ``provider``, created on first use."""
    breaker = _BREAKERS.get(provider)
    if breaker is None:
        breaker = ProviderBreaker(
            provider,
            failure_threshold=settings.breaker_failure_threshold,
            cooldown_seconds=settings.breaker_cooldown_seconds,
        )
        _BREAKERS[provider] = breaker
    return breaker


def breaker_states() -> dict[str, str]:
    return {name: breaker.state.value for name, breaker in sorted(_BREAKERS.items())}


def reset_breakers() -> None:
    for breaker in _BREAKERS.values():
        breaker.reset()
