"""
Health check and monitoring endpoints.

Provides detailed health status for the database and Redis.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
import redis

from petitions.core.database import get_db
from petitions.core.deps import get_rate_limiter
from petitions.core.rate_limiter import RateLimiter
from petitions.core.timeutils import isoformat, utcnow

router = APIRouter(tags=["Health"])
logger = logging.getLogger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, str]:
    """
    Basic health check endpoint.

    Returns 200 OK if the service is running.
    Use this for simple uptime monitoring and load balancer health checks.
    """
    return {
        "status": "healthy",
        "timestamp": isoformat(utcnow())
    }


@router.get("/health/detailed")
def detailed_health_check(
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter)
):
    """
    Detailed health check with dependency status.

    Checks:
    - Database connectivity
    - Redis (rate limiter event log)

    Returns 200 if all systems operational, 503 otherwise.
    """
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": isoformat(utcnow()),
        "checks": {}
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful"
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": "Database connection failed"
        }

    try:
        limiter.redis_client.ping()
        health_status["checks"]["redis"] = {
            "status": "healthy",
            "message": "Redis connection successful"
        }
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        if health_status["status"] == "healthy":
            health_status["status"] = "degraded"
        health_status["checks"]["redis"] = {
            "status": "unhealthy",
            "message": "Redis connection failed; submissions are handled per RATE_LIMIT_FAIL_OPEN"
        }

    status_code = status.HTTP_200_OK if health_status["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=health_status)
