"""
Infrastructure endpoints.
"""

import logging

from django.db import connection
from django.http import JsonResponse
from django_redis import get_redis_connection

logger = logging.getLogger(__name__)


def _database_ok() -> bool:
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception:
        logger.exception("Health check: database unreachable")
        return False
    return True


def _redis_ok() -> bool:
    # Same connection the refund lock acquires through; the cache layer
    # swallows Redis errors so it cannot be checked via django.core.cache.
    try:
        return bool(get_redis_connection("default").ping())
    except Exception:
        logger.warning("Health check: redis unreachable", exc_info=True)
        return False


def health_check(request):
    """
    Liveness check for the load balancer.

    Without the database nothing works (503). Without Redis balances can
    still be read and payments recorded, but refunds cannot take their
    lock, so the service reports itself degraded and stays in rotation.

        {"status": "healthy", "database": "connected", "redis": "connected"}
    """
    database = _database_ok()
    redis = _redis_ok()

    if not database:
        status = "unhealthy"
    elif not redis:
        status = "degraded"
    else:
        status = "healthy"

    return JsonResponse(
        {
            "status": status,
            "database": "connected" if database else "disconnected",
            "redis": "connected" if redis else "disconnected",
        },
        status=200 if database else 503,
    )
