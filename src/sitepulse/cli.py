# src/sitepulse/cli.py
"""
sitepulse Command Line Interface (CLI).

This module implements the operator-facing terminal interface using `typer`
and `rich`.

Features
--------
- **serve**: Run the gateway under uvicorn.
- **sample**: Take a few snapshots locally and render them as a table, to
  check host counters on a new machine without starting the server.
- **codex-sync**: Push a usage payload to a running gateway (what the local
  usage-sync job does on a schedule).

Usage
-----
    $ sitepulse serve --port 8000 --reload
    $ sitepulse sample --count 5 --interval 1
    $ sitepulse codex-sync runtime/codex/codex-usage.json --url http://localhost:8000
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Annotated

import httpx
import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sitepulse import __version__
from sitepulse.core.contracts.producers import CodexUsageSyncPayload
from sitepulse.core.contracts.snapshot import Snapshot
from sitepulse.core.counters import HostCounters
from sitepulse.core.sampler import SnapshotSampler

load_dotenv()

app = typer.Typer(
    help="sitepulse: live site statistics and cursor relay.",
    rich_markup_mode="markdown",
)
console = Console()


# --------------------------------------------------------------------------- #
# Helpers: Rendering
# --------------------------------------------------------------------------- #


def _render_snapshots(snapshots: list[Snapshot]) -> Table:
    table = Table(title=f"sitepulse {__version__} snapshots")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Uptime (s)", justify="right")
    table.add_column("CPU %", justify="right", style="cyan")
    table.add_column("RSS (MB)", justify="right", style="magenta")
    table.add_column("System mem %", justify="right", style="yellow")

    for i, snap in enumerate(snapshots, start=1):
        table.add_row(
            str(i),
            str(snap.timestamp),
            str(snap.uptime_seconds),
            f"{snap.cpu_usage_percent:.1f}",
            f"{snap.memory_rss_mb:.1f}",
            f"{snap.system_memory_used_percent:.1f}",
        )
    return table


# --------------------------------------------------------------------------- #
# Commands
# --------------------------------------------------------------------------- #


@app.command()  # type: ignore[misc]
def serve(
    host: Annotated[str, typer.Option("--host", help="Interface to bind.")] = "0.0.0.0",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind.")] = 8000,
    reload: Annotated[
        bool, typer.Option("--reload/--no-reload", help="Restart on code changes.")
    ] = False,
) -> None:
    """Run the gateway with uvicorn."""
    from sitepulse.api.server import main

    console.print(
        Panel.fit(
            f"[bold cyan]sitepulse {__version__}[/bold cyan]\nListening on {host}:{port}",
            border_style="cyan",
        )
    )
    main(host=host, port=port, reload=reload)


@app.command()  # type: ignore[misc]
def sample(
    count: Annotated[
        int, typer.Option("--count", "-n", min=1, help="Number of snapshots to take.")
    ] = 3,
    interval: Annotated[
        float, typer.Option("--interval", "-i", min=0.0, help="Seconds between snapshots.")
    ] = 1.0,
) -> None:
    """
    Take `count` snapshots with a local sampler and print them.

    CPU usage is measured since the previous read, so the first row may show 0.
    """
    sampler = SnapshotSampler(capacity=count, counters=HostCounters())
    for i in range(count):
        if i:
            time.sleep(interval)
        sampler.sample()

    console.print(_render_snapshots(list(sampler.get_history())))


@app.command("codex-sync")  # type: ignore[misc]
def codex_sync(
    file: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            help="Usage payload JSON produced by the local usage job.",
        ),
    ],
    url: Annotated[str, typer.Option("--url", help="Base URL of the running gateway.")],
    token: Annotated[
        str | None,
        typer.Option("--token", envvar="CODEX_SYNC_TOKEN", help="Bearer token for the sync API."),
    ] = None,
    timeout: Annotated[float, typer.Option("--timeout", help="Request timeout (s).")] = 10.0,
) -> None:
    """Validate a usage payload locally and POST it to `/api/codex/sync`."""
    try:
        payload = CodexUsageSyncPayload.model_validate_json(file.read_text(encoding="utf-8"))
    except ValidationError as e:
        console.print(f"[bold red]❌ Invalid payload:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    if not token:
        console.print("[bold red]❌ No token:[/bold red] pass --token or set CODEX_SYNC_TOKEN")
        raise typer.Exit(code=1)

    endpoint = url.rstrip("/") + "/api/codex/sync"
    try:
        response = httpx.post(
            endpoint,
            json=payload.to_wire(),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[bold red]❌ Sync failed:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    body = response.json()
    stale = "[yellow]stale[/yellow]" if body.get("isStale") else "[green]fresh[/green]"
    console.print(
        f"[bold green]✅ Synced[/bold green] {len(payload.daily)} daily points "
        f"to {endpoint} ({stale})"
    )


if __name__ == "__main__":
    app()
