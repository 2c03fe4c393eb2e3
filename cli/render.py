from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _record_line(record: Dict[str, Any]) -> str:
    return (
        f"  - {record.get('observed_at')} value={record.get('value')} "
        f"location={record.get('location')} id={record.get('_id')}"
    )


def render_session(payload: Dict[str, Any]) -> None:
    echo_heading("Ingestion Session")
    echo_key_values(
        [
            ("session_id", payload.get("session_id")),
            ("location", payload.get("location")),
            ("state", payload.get("state")),
            ("max_count", payload.get("max_count")),
            ("inserted_count", payload.get("inserted_count")),
            ("skipped_count", payload.get("skipped_count")),
            ("created_at", payload.get("created_at")),
            ("finished_at", payload.get("finished_at")),
        ]
    )

    per_partition = payload.get("per_partition") or {}
    typer.echo()
    echo_heading("Partitions")
    if per_partition:
        for name, count in sorted(per_partition.items()):
            typer.echo(f"  - {name}: {count}")
    else:
        typer.echo("No records written.")

    error = payload.get("error")
    if error:
        typer.echo()
        typer.secho(f"error: {error}", fg=typer.colors.RED)


def render_partitions(partitions: Dict[str, int]) -> None:
    echo_heading("Partitions")
    if not partitions:
        typer.echo("No partitions yet.")
        return
    for name, count in sorted(partitions.items()):
        typer.echo(f"  - {name}: {count}")


def render_records(partition: str, records: List[Dict[str, Any]]) -> None:
    echo_heading(f"Latest records in {partition}")
    if not records:
        typer.echo("No records found.")
        return
    for record in records:
        typer.echo(_record_line(record))


def render_groups(partition: str, groups: List[Dict[str, Any]], show_documents: bool = False) -> None:
    echo_heading(f"Groups for {partition}")
    if not groups:
        typer.echo("No matching records.")
        return
    for group in groups:
        typer.echo(f"{group.get('label')}: {group.get('count')}")
        if show_documents:
            for record in group.get("documents") or []:
                typer.echo(_record_line(record))
