"""
Cache-backed circuit breaker for provider HTTP calls.

State is shared across workers through the Django cache (Redis in
production), so a provider outage seen by one worker stops every worker
from calling it until the recovery timeout elapses.

States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Provider is failing, calls fail fast without a network call
    - HALF_OPEN: Recovery trial, one call allowed through. A trial call that
      reports nothing within the recovery timeout is replaced by a new one.

Usage:
    breaker = CircuitBreaker("wallet_a")
    if not breaker.is_available():
        raise ProviderUnavailableError("circuit open", provider="wallet_a")
    try:
        response = session.post(...)
    except requests.RequestException:
        breaker.record_failure()
        raise
    breaker.record_success()

Note:
    A cache error never blocks a payment: the breaker fails open.
"""

from __future__ import annotations

import logging
import time
from enum import Enum

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Per-provider circuit breaker.

    Args:
        name: Provider key, used in cache keys
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds the circuit stays open before a trial call
    """

    cache_ttl = 3600

    def __init__(
        self,
        name: str,
        failure_threshold: int | None = None,
        recovery_timeout: int | None = None,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold or settings.PAYMENT_CIRCUIT_FAILURE_THRESHOLD
        self.recovery_timeout = recovery_timeout or settings.PAYMENT_CIRCUIT_RECOVERY_TIMEOUT
        self._state_key = f"circuit:{name}:state"
        self._failures_key = f"circuit:{name}:failures"
        self._opened_at_key = f"circuit:{name}:opened_at"
        self._trial_started_key = f"circuit:{name}:trial_started_at"

    @property
    def state(self) -> CircuitState:
        try:
            return CircuitState(cache.get(self._state_key, CircuitState.CLOSED.value))
        except ValueError:
            return CircuitState.CLOSED

    def is_available(self) -> bool:
        """True when a call may go out (closed, or a half-open trial call)."""
        try:
            state = self.state
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.OPEN:
                opened_at = cache.get(self._opened_at_key)
                if opened_at and time.time() - opened_at >= self.recovery_timeout:
                    cache.set(self._state_key, CircuitState.HALF_OPEN.value, self.cache_ttl)
                    cache.set(self._trial_started_key, time.time(), self.cache_ttl)
                    logger.info(
                        "Circuit breaker half-open, letting one call through",
                        extra={"circuit": self.name},
                    )
                    return True
                return False
            # HALF_OPEN: one trial call in flight; allow another once it goes stale
            trial_started = cache.get(self._trial_started_key)
            if trial_started and time.time() - trial_started < self.recovery_timeout:
                return False
            cache.set(self._trial_started_key, time.time(), self.cache_ttl)
            logger.info(
                "Circuit breaker trial call went unanswered, allowing another",
                extra={"circuit": self.name},
            )
            return True
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        try:
            if self.state != CircuitState.CLOSED:
                logger.info(
                    "Circuit breaker closed after successful call",
                    extra={"circuit": self.name},
                )
            cache.set(self._state_key, CircuitState.CLOSED.value, self.cache_ttl)
            cache.set(self._failures_key, 0, self.cache_ttl)
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        try:
            if self.state == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(
                    "Circuit breaker reopened after failed trial call",
                    extra={"circuit": self.name},
                )
                return
            try:
                failures = cache.incr(self._failures_key)
            except ValueError:
                cache.set(self._failures_key, 1, self.cache_ttl)
                failures = 1
            if failures >= self.failure_threshold:
                self._open()
                logger.warning(
                    f"Circuit breaker opened after {failures} failures",
                    extra={
                        "circuit": self.name,
                        "failure_count": failures,
                        "threshold": self.failure_threshold,
                    },
                )
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    def reset(self) -> None:
        cache.delete_many(
            [self._state_key, self._failures_key, self._opened_at_key, self._trial_started_key]
        )

    def _open(self) -> None:
        cache.set(self._state_key, CircuitState.OPEN.value, self.cache_ttl)
        cache.set(self._opened_at_key, time.time(), self.cache_ttl)
