from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Optional

import typer
from loguru import logger

from write_consistency.backend import AsyncBackend, PostgresSchemaCache, row_select
from write_consistency.config import OrchestrationSettings, get_settings
from write_consistency.orchestration import (
    CircuitOpenError,
    MutationGuard,
    OrchestrationError,
    RetriesExhaustedError,
    VerificationTimeoutError,
    refresh_advisory,
    verify_write,
)

app = typer.Typer(help="write-consistency operational CLI")

# ---------------------------
# Common options
# ---------------------------


def dsn_opt() -> Optional[str]:
    return typer.Option(
        None, "--dsn", envvar="WRITE_CONSISTENCY_DATABASE_URL", help="PostgreSQL DSN"
    )


def _backend(dsn: Optional[str], settings: OrchestrationSettings) -> AsyncBackend:
    dsn = dsn or settings.database_url
    if not dsn:
        logger.error("No DSN: pass --dsn or set WRITE_CONSISTENCY_DATABASE_URL")
        raise typer.Exit(2)
    return AsyncBackend(
        {
            "dsn": dsn,
            "app_name": settings.app_name,
            "statement_timeout_ms": settings.statement_timeout_ms or 0,
        }
    )


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Loguru level (default from settings)"),
):
    level = (log_level or get_settings().log_level).upper()
    logger.remove()
    logger.add(sys.stderr, level=level)


# ---------------------------
# Commands
# ---------------------------


@app.command("ping")
def ping(dsn: Optional[str] = dsn_opt()):
    """Health read through circuit breaker and retry."""
    settings = get_settings()

    async def run() -> bool:
        async with _backend(dsn, settings) as db:
            guard = MutationGuard(
                name="ping",
                breaker=settings.circuit_breaker("ping"),
                retry_policy=settings.retry_policy(),
            )
            return await guard.call(db.health)

    try:
        ok = asyncio.run(run())
    except (RetriesExhaustedError, CircuitOpenError) as e:
        logger.error(f"Ping failed: {e}")
        typer.echo(json.dumps({"ok": False, "error": str(e)}, indent=2))
        raise typer.Exit(1)
    typer.echo(json.dumps({"ok": ok}, indent=2))


@app.command("refresh-schema")
def refresh_schema(dsn: Optional[str] = dsn_opt()):
    """Ask PostgREST to reload its schema cache (advisory)."""
    settings = get_settings()

    async def run() -> bool:
        async with _backend(dsn, settings) as db:
            return await refresh_advisory(PostgresSchemaCache(db))

    ok = asyncio.run(run())
    if ok:
        logger.success("Schema reload requested")
    else:
        logger.warning("Schema reload could not be requested")
    typer.echo(json.dumps({"refreshed": ok}, indent=2))


@app.command("verify-row")
def verify_row(
    table: str = typer.Argument(..., help="Table to read"),
    column: str = typer.Option(..., "--column", help="Key column"),
    value: str = typer.Option(..., "--value", help="Key value"),
    expect: list[str] = typer.Option(
        [], "--expect", help="col=value that must hold (repeatable; compared as text)"
    ),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts"),
    interval_ms: Optional[int] = typer.Option(None, "--interval-ms"),
    dsn: Optional[str] = dsn_opt(),
):
    """Poll until a row is visible (and matches --expect), or time out."""
    settings = get_settings()
    expected = _parse_expectations(expect)

    def predicate(row: Optional[dict[str, Any]]) -> bool:
        if row is None:
            return False
        return all(str(row.get(k)) == v for k, v in expected.items())

    async def run():
        async with _backend(dsn, settings) as db:
            query = row_select(table, column)
            return await verify_write(
                lambda: db.fetch_one(query, (value,)),
                predicate,
                max_attempts=max_attempts or settings.verify_max_attempts,
                interval_ms=settings.verify_interval_ms if interval_ms is None else interval_ms,
                cache=PostgresSchemaCache(db),
                name=f"verify:{table}",
            )

    try:
        result = asyncio.run(run())
    except VerificationTimeoutError as e:
        logger.error(f"{e}")
        typer.echo(json.dumps({"verified": False, "attempts": e.attempts}, indent=2))
        raise typer.Exit(1)
    except OrchestrationError as e:
        logger.error(f"Verification aborted: {type(e).__name__}: {e}")
        raise typer.Exit(1)

    typer.echo(
        json.dumps(
            {"verified": True, "attempts": result.attempts, "row": result.value},
            indent=2,
            default=str,
        )
    )


@app.command("settings")
def show_settings():
    """Print effective settings as JSON."""
    data = get_settings().model_dump()
    if data.get("database_url"):
        data["database_url"] = "***"
    typer.echo(json.dumps(data, indent=2))


def _parse_expectations(pairs: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, val = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected col=value, got {pair!r}", param_hint="--expect")
        out[key.strip()] = val.strip()
    return out


if __name__ == "__main__":
    app()
