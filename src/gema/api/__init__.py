"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter for the routers that are entirely private.
Health is open. The chat router authenticates per route: the websocket
handshake has to close with its own code (4401) instead of an HTTP 401.
"""

from fastapi import APIRouter, Depends

from gema.api.chat import router as chat_router
from gema.api.discussions import router as discussions_router
from gema.api.health import router as health_router
from gema.api.notifications import router as notifications_router
from gema.auth.dependencies import get_current_identity

# All protected routers require authentication
_auth = [Depends(get_current_identity)]

api_router = APIRouter(prefix="/api/v2")

# Open routes, no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes require a valid bearer token
api_router.include_router(notifications_router, tags=["notifications"], dependencies=_auth)
api_router.include_router(discussions_router, tags=["discussion"], dependencies=_auth)
api_router.include_router(chat_router, tags=["chat"])
