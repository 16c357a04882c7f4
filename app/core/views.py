"""
Infrastructure endpoints (health checks).
"""

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Liveness/readiness probe.

    The database is required: payment state lives there and nothing
    works without it. The cache only backs circuit breakers and the
    reconciliation lock, so a cache outage degrades the service but
    does not make it unhealthy.

    Returns:
        200 {"status": "healthy", "database": "connected", "cache": ...}
        503 when the database is unreachable
    """
    body = {"status": "healthy", "database": "unknown", "cache": "unknown"}

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        body["database"] = "connected"
    except Exception:
        body["database"] = "disconnected"
        body["status"] = "unhealthy"

    try:
        cache.set("health_check", "ok", timeout=1)
        body["cache"] = "connected" if cache.get("health_check") == "ok" else "disconnected"
    except Exception:
        body["cache"] = "disconnected"

    return JsonResponse(body, status=200 if body["status"] == "healthy" else 503)
