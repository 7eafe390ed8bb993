"""
Infrastructure endpoints that sit outside the payment plan domain.
"""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse
from django_redis import get_redis_connection
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check for Docker, Kubernetes probes and load balancers.

    The database is required. Redis backs the per-subscription webhook locks,
    so without it webhooks answer 503; it is reported but does not fail the
    probe.

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Example Response:
        {"status": "healthy", "database": "connected", "redis": "connected"}
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "redis": "unknown",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.error("Health check: database unreachable", exc_info=True)
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"

    try:
        get_redis_connection("default").ping()
        health_status["redis"] = "connected"
    except (RedisError, NotImplementedError):
        logger.warning("Health check: redis unreachable")
        health_status["redis"] = "disconnected"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JsonResponse(health_status, status=status_code)
