"""
Helper functions shared by the payment core.

This module provides domain-agnostic utility functions for:
- Payload digests (webhook bodies are stored as digests, never verbatim)
- Exponential backoff for provider retries and status polling
- HTTP request helpers (client IP extraction)

Usage:
    from core.helpers import backoff_delay, get_client_ip, sha256_hexdigest

    digest = sha256_hexdigest(request.body)
    delay = backoff_delay(attempt=3)
    ip = get_client_ip(request)
"""

from __future__ import annotations

import hashlib
import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest


def sha256_hexdigest(data: bytes | str) -> str:
    """
    Return the SHA-256 hex digest of raw bytes (or a UTF-8 string).

    Example:
        sha256_hexdigest(b'{"id": "evt_1"}')  # 64-character hex string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def backoff_delay(
    attempt: int,
    base: float = 1.0,
    cap: float = 3600.0,
    jitter: bool = False,
) -> float:
    """
    Calculate an exponential backoff delay in seconds.

    The delay doubles with each attempt (base * 2^attempt) and is capped
    at ``cap``. With ``jitter`` enabled, up to 10% is added so that many
    workers retrying at once do not hit a provider in lockstep.

    Args:
        attempt: Zero-based attempt number
        base: Delay for the first attempt
        cap: Upper bound for the delay

    Returns:
        Delay in seconds

    Example:
        backoff_delay(0)  # 1.0
        backoff_delay(3)  # 8.0
        backoff_delay(20, cap=60)  # 60.0
    """
    attempt = max(attempt, 0)
    delay = min(base * (2**attempt), cap)
    if jitter:
        delay += delay * random.uniform(0, 0.1)
    return delay


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    Checks X-Forwarded-For header for proxy chains.
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # First entry is the original client
        return x_forwarded_for.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR", "")
