# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""CLI entry point for dockrelay."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import click

from dockrelay import __version__
from dockrelay._config import RelayConfig, load_config
from dockrelay._log import configure_logging
from dockrelay.errors import ConfigError


@dataclasses.dataclass
class CliContext:
    """Shared state passed through Click's context object."""

    config: RelayConfig = dataclasses.field(default_factory=RelayConfig)
    verbose: bool = False


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to a dockrelay.yaml file.",
)
@click.option(
    "--socket",
    envvar="DOCKRELAY_SOCKET",
    default=None,
    help="Path to container engine socket.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug diagnostics.")
@click.version_option(version=__version__, prog_name="dockrelay")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    socket: str | None,
    *,
    verbose: bool,
) -> None:
    """Forward container stdout/stderr into step logs."""
    from dockrelay.cli._output import format_error  # noqa: PLC0415

    try:
        config = load_config(config_path)
    except ConfigError as exc:
        format_error(exc)
        raise SystemExit(2) from exc
    if socket:
        config = dataclasses.replace(config, socket=socket)
    configure_logging("debug" if verbose else config.log_level, json_output=config.log_json)
    ctx.obj = CliContext(config=config, verbose=verbose)


# --- Register commands ---

from dockrelay.cli._commands import mask_cmd, ready_cmd, run_cmd, wait_cmd  # noqa: E402

cli.add_command(run_cmd)
cli.add_command(ready_cmd)
cli.add_command(wait_cmd)
cli.add_command(mask_cmd)
