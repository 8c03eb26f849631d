"""GEMA CLI — poke the realtime API from a terminal.

Usage:
    gema token 42 --role teacher                 # Mint a development token
    gema init-db                                 # Create tables
    gema notify 42 "Assignment graded"           # Publish a notification (admin)
    gema notifications                           # List your notifications
    gema tail                                    # Follow the live SSE stream
    gema history room-42 --limit 20              # Print chat history
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8080"


def _api_url() -> str:
    return os.environ.get("GEMA_API_URL", DEFAULT_API_URL).rstrip("/")


def _token(token: Optional[str]) -> str:
    """Resolve the bearer token from --token or GEMA_TOKEN."""
    value = token or os.environ.get("GEMA_TOKEN")
    if not value:
        click.secho(
            "Error: --token required (or set GEMA_TOKEN; mint one with `gema token`)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return value


def _client(token: str, timeout: Optional[float] = 30.0) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the GEMA backend."""
    return httpx.AsyncClient(
        base_url=_api_url(),
        timeout=timeout,
        headers={"Authorization": f"Bearer {token}"},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Inside an already running loop (CliRunner in async tests) the
    coroutine is offloaded to a worker thread with its own loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _data(response: httpx.Response):
    """Unwrap the {"success", "data"} envelope or exit with its error."""
    try:
        body = response.json()
    except ValueError:
        response.raise_for_status()
        raise
    if response.is_error or not body.get("success", False):
        click.secho(f"Error ({response.status_code}): {body.get('error', body)}", fg="red", err=True)
        sys.exit(1)
    return body.get("data")


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def parse_sse_lines(lines):
    """Yield (event, data) pairs from an iterable of SSE lines.

    Comment lines (keep-alives) are skipped.
    """
    event, data = "message", []
    for line in lines:
        if line == "":
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].strip())


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="gema")
def main():
    """GEMA — realtime notifications, chat, and discussions."""


# ---------------------------------------------------------------------------
# Local commands
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id")
@click.option("--role", "-r", default="student", help="Role claim (admin, teacher, student)")
@click.option("--minutes", "-m", type=int, default=None, help="Token lifetime override")
def token(user_id: str, role: str, minutes: Optional[int]):
    """Mint a development access token for USER_ID (uses GEMA_JWT_SECRET)."""
    from gema.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, role=role, expires_minutes=minutes))


@main.command("init-db")
def init_db():
    """Create all tables for the configured GEMA_DATABASE_URL."""
    from gema.db.engine import engine, init_models

    async def _impl():
        try:
            await init_models()
        finally:
            await engine.dispose()

    _run(_impl())
    click.secho("Tables created", fg="green")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id")
@click.argument("message")
@click.option("--type", "-t", "type_", default="general", help="Notification type")
@click.option("--token", help="Bearer token (or set GEMA_TOKEN)")
def notify(user_id: str, message: str, type_: str, token: Optional[str]):
    """Publish a notification to USER_ID (admin/teacher token required)."""
    _run(_notify_impl(user_id, message, type_, _token(token)))


async def _notify_impl(user_id: str, message: str, type_: str, token: str):
    async with _client(token) as c:
        r = await c.post("/api/v2/notifications", json={
            "user_id": user_id,
            "type": type_,
            "message": message,
        })
        data = _data(r)
    click.secho(f"Notification #{data['id']} published to {data['user_id']}", fg="green")


@main.command()
@click.option("--limit", "-l", default=20, help="Max results")
@click.option("--token", help="Bearer token (or set GEMA_TOKEN)")
def notifications(limit: int, token: Optional[str]):
    """List your notifications, newest first."""
    _run(_notifications_impl(limit, _token(token)))


async def _notifications_impl(limit: int, token: str):
    async with _client(token) as c:
        r = await c.get("/api/v2/notifications", params={"limit": limit})
        items = _data(r) or []

    if not items:
        click.echo("No notifications.")
        return

    rows = [{**n, "read": "yes" if n["read"] else ""} for n in items]
    _print_table(rows, [
        ("ID", "id", 6),
        ("TYPE", "type", 18),
        ("READ", "read", 4),
        ("CREATED", "created_at", 20),
        ("MESSAGE", "message", 50),
    ])


@main.command()
@click.option("--token", help="Bearer token (or set GEMA_TOKEN)")
def tail(token: Optional[str]):
    """Follow your live notification stream until interrupted."""
    try:
        _run(_tail_impl(_token(token)))
    except KeyboardInterrupt:
        click.echo()


async def _tail_impl(token: str):
    async with _client(token, timeout=None) as c:
        async with c.stream("GET", "/api/v2/notifications/stream") as r:
            if r.is_error:
                await r.aread()
                _data(r)
            click.secho("Streaming notifications (Ctrl+C to stop)...", dim=True)

            buffered: list[str] = []
            async for line in r.aiter_lines():
                line = line.rstrip("\r")
                buffered.append(line)
                if line != "":
                    continue
                for event, data in parse_sse_lines(buffered):
                    if event == "notification":
                        n = json.loads(data)
                        click.echo(
                            f"[{n['created_at']}] "
                            f"{click.style(n['type'], fg='cyan')} #{n['id']}: {n['message']}"
                        )
                buffered = []


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@main.command()
@click.argument("room_id")
@click.option("--before", "-b", help="Only messages older than this RFC 3339 timestamp")
@click.option("--limit", "-l", default=50, help="Max results (1-100)")
@click.option("--token", help="Bearer token (or set GEMA_TOKEN)")
def history(room_id: str, before: Optional[str], limit: int, token: Optional[str]):
    """Print a page of chat history for ROOM_ID, oldest first."""
    _run(_history_impl(room_id, before, limit, _token(token)))


async def _history_impl(room_id: str, before: Optional[str], limit: int, token: str):
    params: dict = {"room_id": room_id, "limit": limit}
    if before:
        params["before"] = before

    async with _client(token) as c:
        r = await c.get("/api/v2/chat/history", params=params)
        messages = _data(r) or []

    if not messages:
        click.echo("No messages.")
        return

    for m in messages:
        sender = click.style(m["sender_id"], bold=True)
        click.echo(f"[{m['created_at']}] {sender}: {m['content']}")
    click.secho(f"\nOldest shown: {messages[0]['created_at']} (pass as --before for the previous page)", dim=True)
