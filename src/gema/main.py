"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis relay, database).
Middleware, CORS, exception handlers, and routers all registered here.

The two subscription registries are created per app and kept on
app.state:
- app.state.notifications — keyed by recipient user id (SSE)
- app.state.chat — keyed by room id (websockets)
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from gema import __version__
from gema.api import api_router
from gema.config import settings
from gema.logs import configure_logging
from gema.realtime.registry import SubscriptionRegistry
from gema.services.errors import (
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs
    at shutdown. Redis is optional — without it the app works with
    in-process delivery only.
    """
    logger.info(
        "gema.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from gema.realtime.pubsub import RealtimeRelay, close_redis, init_redis

    relay_task = None
    if settings.redis_url:
        try:
            client = await init_redis(settings.redis_url)
            logger.info("gema.redis_connected", url=settings.redis_url)
        except Exception as e:
            logger.warning("gema.redis_unavailable", error=str(e))
        else:
            relay = RealtimeRelay(
                client,
                settings.realtime_channel,
                app.state.notifications,
                app.state.chat,
            )
            app.state.relay = relay
            relay_task = asyncio.create_task(relay.run())

    yield

    # Shutdown
    logger.info("gema.shutdown")

    if relay_task is not None:
        relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
    app.state.relay = None

    # Close Redis
    await close_redis()

    # Close database engine
    from gema.db.engine import engine
    await engine.dispose()


# ─── Error envelope ───────────────────────────────────────


def _error(status_code: int, error: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 → 400 with the first error as `<field>: <msg>`."""
    errors = exc.errors()
    if not errors:
        return _error(400, "invalid request")
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
    msg = first.get("msg", "invalid value")
    return _error(400, f"{'.'.join(loc)}: {msg}" if loc else msg)


_SERVICE_STATUS = (
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (InvalidInputError, 400),
)


async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    for error_type, status_code in _SERVICE_STATUS:
        if isinstance(exc, error_type):
            return _error(status_code, str(exc))
    return _error(400, str(exc))


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging(settings.log_level, settings.json_logs)

    app = FastAPI(
        title=settings.app_name,
        description="Realtime notifications, chat, and discussions for the GEMA platform",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.notifications = SubscriptionRegistry(
        buffer_size=settings.notification_buffer_size, name="notifications"
    )
    app.state.chat = SubscriptionRegistry(buffer_size=settings.chat_buffer_size, name="chat")
    app.state.relay = None

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → Correlation → handler

    from gema.middleware.correlation import CorrelationIdMiddleware
    from gema.middleware.rate_limit import RateLimitMiddleware
    from gema.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        rpm=settings.rate_limit_rpm,
        key_prefix=settings.realtime_channel,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: gema.main:app)
app = create_app()
