"""CLI command for querying a running instance.

Usage:
    leasekeeper leader
    leasekeeper leader --url http://10.0.0.12:4040
"""

from __future__ import annotations

import httpx
import typer

app = typer.Typer(help="Show the leader reported by a running instance")


@app.callback(invoke_without_command=True)
def leader(
    url: str = typer.Option(
        "http://localhost:4040",
        "--url",
        "-u",
        help="Base URL of a leasekeeper status server",
    ),
    timeout: float = typer.Option(
        5.0,
        "--timeout",
        "-t",
        help="Request timeout in seconds",
    ),
) -> None:
    """Print the current leader identity (empty line if none is known)."""
    try:
        response = httpx.get(f"{url.rstrip('/')}/api/leader", timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        typer.echo(f"HTTP error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(response.json().get("leader", ""))
