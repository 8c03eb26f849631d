"""Test fixtures — a throwaway SQLite database per test, real JWTs.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own SQLite file under tmp_path (aiosqlite driver)
2. The engine uses NullPool, so no connection outlives the event loop
   that opened it. That matters because websocket tests drive the app
   through Starlette's TestClient, which runs it on a portal thread
   with its own loop.
3. get_db is overridden to hand out sessions from that engine — routes
   commit for real, and the file is discarded afterwards.

Auth is NOT overridden: tests mint real tokens with create_access_token,
so the whole bearer pipeline runs on every request.
"""

import os

# Must be set before gema.config is imported.
os.environ.setdefault("GEMA_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GEMA_JWT_SECRET", "test-secret-not-for-production")
os.environ["GEMA_REDIS_URL"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sse_starlette.sse import AppStatus
from starlette.testclient import TestClient

from gema.auth.jwt import create_access_token
from gema.db.engine import get_db
from gema.db.models import Base
from gema.main import create_app


@pytest.fixture()
def db_engine(tmp_path):
    """Fresh schema in a per-test SQLite file.

    Tables are created through a plain sync engine so no event loop is
    needed at fixture setup.
    """
    path = tmp_path / "gema-test.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


@pytest.fixture()
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """Direct session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def app(session_factory):
    """A fresh app (and fresh registries) wired to the test database."""
    application = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client over ASGITransport — no server, no lifespan."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def ws_client(app):
    """Synchronous TestClient for websocket tests."""
    return TestClient(app)


@pytest.fixture()
def token_for():
    """Mint a real bearer token: token_for("42", "teacher")."""
    def _make(user_id: str, role: str = "student") -> str:
        return create_access_token(user_id, role=role)
    return _make


@pytest.fixture()
def auth_headers(token_for):
    """Authorization headers: auth_headers("42", "admin")."""
    def _make(user_id: str, role: str = "student") -> dict:
        return {"Authorization": f"Bearer {token_for(user_id, role)}"}
    return _make


@pytest.fixture(autouse=True)
def server_exit():
    """Reset sse_starlette's process-wide shutdown flag around each test.

    Its exit event binds to the loop that first waits on it, and every
    test gets a new loop. The returned callable does what uvicorn's
    signal handler does on SIGTERM.
    """
    AppStatus.should_exit = False
    AppStatus.should_exit_event = None

    def _signal() -> None:
        AppStatus.should_exit = True
        if AppStatus.should_exit_event is not None:
            AppStatus.should_exit_event.set()

    yield _signal
    AppStatus.should_exit = False
    AppStatus.should_exit_event = None
