"""Health check routes."""

from fastapi import APIRouter, Depends

from ... import __version__
from ...core.errors import StorageFault
from ..dependencies import get_distributor

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "healthy", "service": "lead-queue-engine", "version": __version__}


@router.get("/ready")
def ready(distributor=Depends(get_distributor)):
    """Readiness check - verifies the database is accessible."""
    try:
        with distributor.db.connection() as conn:
            conn.execute("SELECT 1")
        return {"status": "ready"}
    except StorageFault as e:
        return {"status": "not_ready", "detail": str(e)}
