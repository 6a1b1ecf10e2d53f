"""
Health check endpoints
"""
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from intakeflow import __version__
from intakeflow.core.config import get_settings
from intakeflow.core.database import get_session_local
from intakeflow.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint

    Returns:
        dict: Health status
    """
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "version": __version__,
    }


@router.get("/health/liveness")
async def liveness():
    return {"status": "alive"}


@router.get("/health/readiness")
async def readiness():
    """Ready when the configured audit sink can accept writes"""
    settings = get_settings()
    if settings.audit_sink != "database":
        return {"status": "ready", "audit_sink": settings.audit_sink}

    db = get_session_local()()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "audit_sink": "database", "error": type(e).__name__},
        )
    finally:
        db.close()
    return {"status": "ready", "audit_sink": "database"}
