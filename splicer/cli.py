#!/usr/bin/env python3
"""
Branch Splicer - Command Line

Usage:
    splicer splice submission.json           # Splice one submission
    splicer splice - < submission.json       # ... read from stdin
    splicer init-db                          # Create ledger tables + header rows
    splicer show-routing                     # Print the effective routing table
    splicer serve --port 8888                # Run the intake API

A submission file is either a JSON array (the answer vector) or an object
{"answers": [...], "response_row": 17}.

Environment:
    SPLICER_DB_URL: Postgres connection string (unset = in-memory dry run)
    SPLICER_ROUTING_FILE: JSON routing table (unset = built-in table)
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict

import click

from splicer.config.routing import get_routing_table
from splicer.config.settings import configure_logging, get_settings
from splicer.core.errors import SpliceError
from splicer.services.splice import Submission, run_splice
from splicer.stores.session import PostgresBackend, build_backend


def _load_submission(raw: str) -> Submission:
    data = json.loads(raw)
    if isinstance(data, list):
        return Submission.from_answers(data)
    if isinstance(data, dict) and isinstance(data.get("answers"), list):
        return Submission.from_answers(data["answers"], response_row=data.get("response_row"))
    raise click.BadParameter("expected a JSON array or an object with an 'answers' array")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """Route form submissions into branch ledgers."""
    settings = get_settings()
    if verbose:
        settings = settings.model_copy(update={"LOG_LEVEL": "DEBUG"})
    configure_logging(settings)


@cli.command()
@click.argument("source", type=click.File("r"))
def splice(source) -> None:
    """Splice one submission read from SOURCE (path or '-')."""
    try:
        submission = _load_submission(source.read())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}") from e

    settings = get_settings()
    backend = build_backend(settings)
    try:
        result = run_splice(
            submission,
            backend,
            get_routing_table(),
            settings.SPLICER_LOCK_TIMEOUT_MS,
            settings.SPLICER_LOCK_BACKOFF_MAX_SECONDS,
        )
    except SpliceError as e:
        click.echo(f"Splice failed: {e.message}", err=True)
        sys.exit(1)
    finally:
        backend.close()

    summary = {
        "identity": result.identity,
        "new_identity": result.new_identity,
        "unique_count": result.unique_count,
        "lock_wait_ms": round(result.lock_wait_ms, 2),
        "written": [asdict(w) for w in result.written],
        "skipped": [s.switch_index for s in result.skipped],
    }
    click.echo(json.dumps(summary, indent=2))


@cli.command("init-db")
@click.option(
    "--headers",
    type=click.File("r"),
    default=None,
    help="JSON object mapping ledger name to its header (question) row",
)
def init_db(headers) -> None:
    """Create the ledger schema and header rows in Postgres."""
    settings = get_settings()
    if not settings.SPLICER_DB_URL:
        click.echo("SPLICER_DB_URL is not set", err=True)
        sys.exit(1)

    header_rows = json.load(headers) if headers else {}
    backend = PostgresBackend(
        settings.SPLICER_DB_URL,
        schema=settings.SPLICER_DB_SCHEMA,
        analytics_name=settings.SPLICER_ANALYTICS_LEDGER,
        lock_name=settings.SPLICER_LOCK_NAME,
    )
    try:
        created = backend.initialize(get_routing_table(), header_rows)
    finally:
        backend.close()
    click.echo(f"Schema {settings.SPLICER_DB_SCHEMA} ready; {len(created)} header rows created")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: HOST)")
@click.option("--port", type=int, default=None, help="Bind port (default: PORT)")
def serve(host: str | None, port: int | None) -> None:
    """Run the intake API under uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "splicer.main:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


@cli.command("show-routing")
def show_routing() -> None:
    """Print the effective routing table as JSON."""
    click.echo(get_routing_table().model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
