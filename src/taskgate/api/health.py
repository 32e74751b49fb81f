"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and its
database is reachable. Both services mount it; the service name comes
from app.state. Errors are reported by type only.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from taskgate import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and database connectivity."""
    checks = {
        "service": request.app.state.service_name,
        "server": "ok",
        "version": __version__,
    }

    try:
        async with request.app.state.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {type(e).__name__}"

    status = "ok" if checks["database"] == "ok" else "degraded"
    return {"status": status, **checks}
