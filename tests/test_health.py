"""Health endpoint tests."""

import pytest


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    """Health endpoint should return server status and version."""
    resp = await client.get("/api/v2/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert "version" in data


@pytest.mark.asyncio
async def test_health_reports_dependencies(client):
    """Database is checked; Redis is optional and reported as disabled."""
    data = (await client.get("/api/v2/health")).json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["redis"] == "disabled"


@pytest.mark.asyncio
async def test_health_counts_realtime_subscribers(app, client):
    """Live subscriptions show up in the realtime section."""
    _, unsub_n = app.state.notifications.subscribe("42")
    _, unsub_c = app.state.chat.subscribe("room-42")
    _, unsub_c2 = app.state.chat.subscribe("room-42")
    try:
        data = (await client.get("/api/v2/health")).json()
        assert data["realtime"] == {"notification_subscribers": 1, "chat_subscribers": 2}
    finally:
        unsub_n()
        unsub_c()
        unsub_c2()

    data = (await client.get("/api/v2/health")).json()
    assert data["realtime"] == {"notification_subscribers": 0, "chat_subscribers": 0}


@pytest.mark.asyncio
async def test_health_needs_no_auth(client):
    resp = await client.get("/api/v2/health")
    assert resp.status_code == 200
