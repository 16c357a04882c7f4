"""
Concurrency control utilities for payment operations.

This module provides two complementary concurrency mechanisms:

1. **Compare-and-swap** (compare_and_swap)
   - Conditional UPDATE keyed on the values the caller read
     (status, version, owner marker)
   - Exactly one concurrent writer matches; the others see zero rows
   - Use for: every PaymentIntent transition, owner payment markers

2. **Distributed Locks** (DistributedLock)
   - Cache-based mutual exclusion across processes/servers
   - TTL prevents deadlocks from crashed processes
   - Use for: coarse-grained jobs such as a reconciliation pass

Usage:

    from payments.locks import DistributedLock, compare_and_swap

    rows = compare_and_swap(
        PaymentIntent,
        pk=intent.pk,
        expected={"status": "awaiting_provider_result", "version": 3},
        changes={"status": "settled"},
    )

    with DistributedLock("reconciliation:run", ttl=600):
        run_pass()

Note:
    Never hold a DistributedLock or a database transaction across a
    provider HTTP call.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from django.core.cache import cache
from django.db.models import F
from django.utils import timezone

from payments.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from django.db import models


# =============================================================================
# Compare-and-swap
# =============================================================================


def compare_and_swap(
    model_class: type[models.Model],
    pk: Any,
    expected: dict[str, Any],
    changes: dict[str, Any],
    bump_version: bool = True,
) -> int:
    """
    Apply ``changes`` to one row only if it still holds ``expected`` values.

    Args:
        model_class: Model to update
        pk: Primary key of the row
        expected: Field lookups that must still match (e.g. status, version)
        changes: Field values to write
        bump_version: Increment the ``version`` column in the same UPDATE

    Returns:
        Number of rows updated (0 or 1)
    """
    values = dict(changes)
    if bump_version:
        values["version"] = F("version") + 1
    if "updated_at" not in values and _has_field(model_class, "updated_at"):
        values["updated_at"] = timezone.now()
    return model_class.objects.filter(pk=pk, **expected).update(**values)


def compare_and_swap_or_raise(
    model_class: type[models.Model],
    pk: Any,
    expected: dict[str, Any],
    changes: dict[str, Any],
) -> None:
    """
    Same as compare_and_swap() but raises StaleRecordError on zero rows.
    """
    if compare_and_swap(model_class, pk, expected, changes) == 0:
        model_name = model_class.__name__
        raise StaleRecordError(
            f"{model_name} {pk} was modified by another process",
            details={"pk": str(pk), "expected": {k: str(v) for k, v in expected.items()}},
        )


def _has_field(model_class: type[models.Model], name: str) -> bool:
    return any(f.name == name for f in model_class._meta.concrete_fields)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Cache-based distributed lock with TTL.

    Uses the atomic ``cache.add`` (set-if-absent) of the shared cache
    backend (Redis in production). A random token identifies the holder
    so that a process never releases a lock it no longer owns.

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until the lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)

    Example:
        try:
            with DistributedLock("reconciliation:run", ttl=900, blocking=False):
                sweep()
        except LockAcquisitionError:
            # Another worker is already sweeping
            pass
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError: If the lock couldn't be acquired
        """
        token = str(uuid.uuid4())

        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while time.monotonic() < deadline:
                if cache.add(self.key, token, timeout=self.ttl):
                    self._token = token
                    return True
                time.sleep(0.05)
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not cache.add(self.key, token, timeout=self.ttl):
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        self._token = token
        return True

    def release(self) -> bool:
        """
        Release the lock if we still hold it.

        Safe to call multiple times. Returns False when the lock expired
        and was taken over by someone else.
        """
        if self._token is None:
            return False
        held_by_us = cache.get(self.key) == self._token
        if held_by_us:
            cache.delete(self.key)
        self._token = None
        return held_by_us

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
