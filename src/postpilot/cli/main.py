"""PostPilot CLI — run the server and administer sessions.

Usage:
    postpilot serve                      # Run the API with uvicorn
    postpilot init-db                    # Create tables (dev / tests; prod uses alembic)
    postpilot purge-sessions             # Delete expired refresh sessions
    postpilot revoke-all alice@example.com   # Log a user out everywhere
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click
from sqlalchemy.exc import OperationalError

from postpilot.config import settings
from postpilot.db.engine import Database
from postpilot.errors import StoreUnavailableError
from postpilot.services.session_service import SessionManager


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


async def _with_database(url: str, fn):
    database = Database(url)
    await database.open()
    try:
        return await fn(database)
    finally:
        await database.close()


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


@click.group()
@click.option(
    "--database-url",
    envvar="POSTPILOT_DATABASE_URL",
    default=None,
    help="Override the configured database URL.",
)
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str]) -> None:
    """PostPilot backend administration."""
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url or settings.database_url


@cli.command()
@click.option("--host", default=None, help="Bind address.")
@click.option("--port", default=None, type=int, help="Port.")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes.")
def serve(host: Optional[str], port: Optional[int], reload: bool) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run(
        "postpilot.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create all tables."""

    async def go(database: Database):
        await database.create_all()

    try:
        _run(_with_database(ctx.obj["database_url"], go))
    except OperationalError as e:
        _fail(f"database unavailable: {e.orig}")
    click.secho("Tables created.", fg="green")


@cli.command("purge-sessions")
@click.pass_context
def purge_sessions(ctx: click.Context) -> None:
    """Delete expired refresh sessions and retired token records."""

    async def go(database: Database) -> int:
        async with database.session() as db:
            return await SessionManager(db).purge_expired()

    try:
        removed = _run(_with_database(ctx.obj["database_url"], go))
    except StoreUnavailableError as e:
        _fail(str(e))
        return
    click.echo(f"Purged {removed} expired session(s).")


@cli.command("revoke-all")
@click.argument("email")
@click.pass_context
def revoke_all(ctx: click.Context, email: str) -> None:
    """Revoke every session of the user with EMAIL."""

    async def go(database: Database) -> Optional[int]:
        async with database.session() as db:
            manager = SessionManager(db)
            user = await manager.store.find_principal_by_credential(email)
            if user is None:
                return None
            return await manager.revoke_all(user.id)

    try:
        removed = _run(_with_database(ctx.obj["database_url"], go))
    except StoreUnavailableError as e:
        _fail(str(e))
        return
    if removed is None:
        _fail(f"no user with email {email}")
        return
    click.echo(f"Revoked {removed} session(s) for {email}.")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
