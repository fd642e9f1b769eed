"""
Health check endpoints.
"""

from datetime import datetime, timezone
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from menu_sync import __version__
from menu_sync.database.connection import SessionLocal
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - verifies the database is reachable.

    Returns 503 if it is not.
    """
    checks = {"database": False}

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            checks["database"] = True
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    if not all(checks.values()):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "checks": checks}
        )

    return {"status": "ready", "checks": checks}


@router.get("/live")
async def liveness_check():
    """Liveness check - the process is up."""
    return {"status": "alive"}
