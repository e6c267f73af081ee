"""Health check endpoints."""

import logging

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import text

from dealcore_api import __version__
from dealcore_api.db.redis_client import RedisClient
from dealcore_api.db.session import engine

router = APIRouter()
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]


def check_database() -> str:
    """Check database connectivity.

    Returns:
        str: "up" if healthy, error message otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return f"down: {str(e)[:50]}"


def check_redis() -> str:
    """Check Redis connectivity.

    Returns:
        str: "up", "disabled" when REDIS_URL is unset, or an error message
    """
    if not RedisClient.is_configured():
        return "disabled"
    try:
        RedisClient.get_client().ping()
        return "up"
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return f"down: {str(e)[:50]}"


def collect_services() -> dict[str, str]:
    return {
        "api": "up",
        "database": check_database(),
        "redis": check_redis(),
    }


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Liveness plus dependency report. Always 200 (use /readyz for gating)."""
    return HealthResponse(status="healthy", version=__version__, services=collect_services())


@router.get("/readyz", response_model=HealthResponse)
def readiness_check(response: Response) -> HealthResponse:
    """503 when any configured dependency is down."""
    services = collect_services()
    if any(svc_status.startswith("down") for svc_status in services.values()):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", version=__version__, services=services)
    return HealthResponse(status="ready", version=__version__, services=services)
