from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_groups, render_partitions, render_records, render_session


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the sensor bucket store service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between status checks when waiting for a session.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait when polling a session.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        poll_interval=poll_interval,
        poll_timeout=timeout,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    location: Optional[str] = typer.Option(
        None, "--location", "-l", help="Location tag (defaults to SENSOR_LOCATION or laboratory)."
    ),
    count: Optional[int] = typer.Option(
        None, "--count", "-n", min=1, help="Number of records to insert (defaults to INGEST_MAX_COUNT on the service)."
    ),
    wait: bool = typer.Option(
        False,
        "--wait/--no-wait",
        help="Wait for the session to finish and display its summary.",
    ),
) -> None:
    """Start an ingestion session on the service."""
    state = _get_state(ctx)
    location = location or state.config.location
    typer.echo(f"Starting session for {location!r} on {state.config.base_url} ...")
    session_id = state.client.start_session(location, count)
    typer.secho(f"Session started. session_id={session_id}", fg=typer.colors.GREEN)

    if not wait:
        return

    interval = state.config.poll_interval
    poll_timeout = state.config.poll_timeout
    typer.echo(f"Waiting for session (interval={interval}s, timeout={poll_timeout}s)...")
    payload = state.client.poll_session(session_id, interval=interval, timeout=poll_timeout)
    typer.echo()
    render_session(payload)
    if payload.get("state") == "failed":
        raise typer.Exit(code=1)


@app.command("session")
def session_command(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Identifier returned from the ingest command."),
) -> None:
    """Show progress for an ingestion session."""
    state = _get_state(ctx)
    render_session(state.client.get_session(session_id))


@app.command("cancel")
def cancel_command(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Identifier returned from the ingest command."),
) -> None:
    """Stop a running ingestion session."""
    state = _get_state(ctx)
    payload = state.client.cancel_session(session_id)
    typer.secho(f"Cancel requested for {session_id}.", fg=typer.colors.YELLOW)
    render_session(payload)


@app.command("partitions")
def partitions_command(ctx: typer.Context) -> None:
    """List partitions and their record counts."""
    state = _get_state(ctx)
    render_partitions(state.client.list_partitions())


@app.command("latest")
def latest_command(
    ctx: typer.Context,
    partition: str = typer.Argument(..., help="Partition name, e.g. temp_gte_20."),
    limit: int = typer.Option(10, "--limit", min=1, help="Maximum number of records."),
) -> None:
    """Show the newest records of a partition."""
    state = _get_state(ctx)
    render_records(partition, state.client.latest(partition, limit))


@app.command("aggregate")
def aggregate_command(
    ctx: typer.Context,
    partition: str = typer.Argument(..., help="Partition name, e.g. temp_gte_20."),
    boundaries: List[float] = typer.Option(
        ..., "--boundary", "-B", help="Group boundary; repeat in ascending order."
    ),
    limit: int = typer.Option(4, "--limit", min=1, help="Maximum number of groups."),
    min_value: float = typer.Option(0.0, "--min-value", help="Only group values above this."),
    show_documents: bool = typer.Option(False, "--documents", help="Print each group's records."),
) -> None:
    """Re-bucket a partition by the given boundaries."""
    state = _get_state(ctx)
    groups = state.client.aggregate(partition, boundaries, result_limit=limit, min_value=min_value)
    render_groups(partition, groups, show_documents=show_documents)


@app.command("classify")
def classify_command(
    ctx: typer.Context,
    value: float = typer.Argument(..., help="Reading value to classify."),
) -> None:
    """Show the ingestion partition a value would be written to."""
    state = _get_state(ctx)
    payload = state.client.classify(value)
    typer.echo(f"{payload.get('value')} -> {payload.get('label')} ({payload.get('partition')})")
