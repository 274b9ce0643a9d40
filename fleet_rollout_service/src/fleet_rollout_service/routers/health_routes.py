# fleet_rollout_service/src/fleet_rollout_service/routers/health_routes.py
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db import get_db

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("/liveness", summary="Checks if the service is running")
async def liveness_check():
    """
    Liveness probe.

    Returns 200 OK as long as the process is serving requests.
    """
    return {"status": "alive", "service": settings.PROJECT_NAME}


@router.get("/readiness", summary="Checks if the service is ready to accept traffic")
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Readiness probe.

    Checks the database connection and reports whether the background
    workers are running.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"database": f"error - {e.__class__.__name__}"},
        )

    workers = "running" if getattr(request.app.state, "tick_scheduler", None) else "disabled"
    return {"status": "ready", "dependencies": {"database": "ok", "workers": workers}}
