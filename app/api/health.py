"""
Health check and readiness probe endpoints.
Provides liveness and readiness checks for container orchestration and monitoring.
"""
import logging
from typing import Dict, Any
from fastapi import APIRouter, HTTPException, status, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.dependencies import get_db
from api.websocket_manager import connection_registry
from core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

SERVICE_VERSION = "1.0.0"


def check_database(db: Session) -> Dict[str, Any]:
    """
    Check database connectivity.

    Args:
        db: Database session

    Returns:
        Status dict with healthy=True/False and details
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"healthy": True, "message": "Database connection OK"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"healthy": False, "message": f"Database connection failed: {str(e)}"}


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Liveness probe endpoint.

    Returns basic service status without checking dependencies.

    Example Response:
        {
            "status": "healthy",
            "service": "ultimateapp-api",
            "version": "1.0.0",
            "connected_users": 3
        }
    """
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": SERVICE_VERSION,
        "connected_users": len(connection_registry)
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe endpoint.

    Returns 200 only if the database answers, 503 otherwise.

    Raises:
        HTTPException: 503 Service Unavailable if the database is unreachable
    """
    checks = {"database": check_database(db)}

    if all(check["healthy"] for check in checks.values()):
        return {"status": "ready", "checks": checks}

    logger.warning("Readiness check failed for services: database")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"status": "not_ready", "checks": checks}
    )
