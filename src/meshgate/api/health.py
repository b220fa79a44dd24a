"""Health check endpoint.

Learn: Reports the database and Redis. The control plane is not probed:
it's reached with per-session credentials, and a health check has none.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate import __version__
from meshgate.cache.redis import get_redis
from meshgate.db.engine import get_db

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = f"error: {type(e).__name__}"

    # Redis is optional; "disabled" doesn't degrade the status.
    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except RuntimeError:
        checks["redis"] = "disabled"
    except Exception as e:
        checks["redis"] = f"error: {type(e).__name__}"

    status = "healthy" if checks["database"] == "ok" and checks["redis"] in (
        "ok",
        "disabled",
    ) else "degraded"

    return {"status": status, **checks}
