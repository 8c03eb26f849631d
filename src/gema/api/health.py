"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and its
dependencies are reachable, plus a snapshot of live realtime
subscriptions. Redis is optional, so "disabled" still counts as healthy.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from gema import __version__
from gema.db.engine import get_db
from gema.realtime.pubsub import get_redis

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis
    client = get_redis()
    if client is None:
        checks["redis"] = "disabled"
    else:
        try:
            await client.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    healthy = checks["database"] == "ok" and checks["redis"] in ("ok", "disabled")
    state = request.app.state
    return {
        "status": "healthy" if healthy else "degraded",
        **checks,
        "realtime": {
            "notification_subscribers": state.notifications.subscriber_count(),
            "chat_subscribers": state.chat.subscriber_count(),
        },
    }
