"""API route aggregation.

Each service gets its own router; main.py mounts one per app.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects every task route without relying
on each handler to ask for it. Handlers that need the identity also
declare it, and FastAPI's per-request dependency cache makes sure the
remote verification still runs only once. Health and the identity
routes are open.
"""

from fastapi import APIRouter, Depends

from taskgate.api.auth import router as auth_router
from taskgate.api.tasks import router as tasks_router
from taskgate.auth.dependencies import get_current_user

# All protected routers require a verified identity
_auth = [Depends(get_current_user)]

identity_router = APIRouter(prefix="/api")
identity_router.include_router(auth_router, tags=["auth"])

task_router = APIRouter(prefix="/api")
task_router.include_router(tasks_router, tags=["tasks"], dependencies=_auth)
