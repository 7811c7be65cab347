# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Rich output formatters for the CLI."""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dockrelay.errors import DockRelayError

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

_console = Console()
_err_console = Console(stderr=True)


def format_state(state: dict[str, Any], *, json_output: bool = False) -> None:
    """Print the readiness state as a rich table or JSON."""
    if json_output:
        click_echo_json(state)
        return

    containers = state.get("containers") or {}
    table = Table(title=f"Logger: {state.get('status', 'unknown')}")
    table.add_column("Container", style="cyan")
    table.add_column("Status")
    for container_id, entry in containers.items():
        status = entry.get("status", "")
        style = "green" if status in ("listening", "finished") else "yellow"
        table.add_row(container_id[:12], f"[{style}]{status}[/{style}]")
    _console.print(table)


def format_error(err: DockRelayError) -> None:
    """Print an error as a rich panel with suggestions."""
    title, suggestion = _error_info(err)
    lines = [str(err)]
    if suggestion:
        lines.append(f"\n[dim]{suggestion}[/dim]")

    panel = Panel(
        "\n".join(lines),
        title=f"[red]{title}[/red]",
        expand=False,
    )
    _err_console.print(panel)


def _error_info(err: DockRelayError) -> tuple[str, str]:
    """Map an error to a title and suggestion string."""
    from dockrelay.errors import (  # noqa: PLC0415
        ConfigError,
        EngineNotRunning,
        SocketConnectionError,
    )

    if isinstance(err, EngineNotRunning):
        return "Engine Not Found", "Start Docker or Podman and try again."
    if isinstance(err, SocketConnectionError):
        return "Connection Failed", "Check --socket or DOCKRELAY_SOCKET."
    if isinstance(err, ConfigError):
        return "Configuration Error", "Fix dockrelay.yaml or the DOCKRELAY_* variables."
    return "Error", ""


def print_success(msg: str) -> None:
    """Print a success message with a checkmark."""
    _console.print(f"[green]✓[/green] {msg}")


def print_not_ready(msg: str) -> None:
    """Print a not-ready message with a cross."""
    _console.print(f"[yellow]✗[/yellow] {msg}")


def click_echo_json(data: object) -> None:
    """Serialize data to JSON and echo to stdout."""
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")
