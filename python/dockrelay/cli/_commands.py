# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""CLI command implementations."""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from dockrelay.cli.main import CliContext

from dockrelay.cli._output import format_error, format_state, print_not_ready, print_success
from dockrelay.errors import ConfigError, DockRelayError


def _get_ctx(ctx: click.Context) -> CliContext:
    """Extract the CliContext from Click's context object."""
    return ctx.obj  # type: ignore[no-any-return]


@click.command("run")
@click.pass_context
def run_cmd(ctx: click.Context) -> None:
    """Forward logs of this logger id's containers until interrupted."""
    from dockrelay.forwarder import LogForwarder  # noqa: PLC0415
    from dockrelay.state import StateStore  # noqa: PLC0415
    from dockrelay.step_logger import FileTaskLogger, MaskRegistry  # noqa: PLC0415

    config = _get_ctx(ctx).config
    if not config.logger_id:
        format_error(ConfigError("logger_id is missing (set DOCKRELAY_LOGGER_ID)"))
        raise SystemExit(2)

    task_logger = FileTaskLogger(
        Path(config.output_dir),
        masks=MaskRegistry(Path(config.masks_path)),
        rate_limited=config.rate_limited,
        timestamps=config.timestamps,
    )
    state = StateStore(Path(config.state_path))
    state.save()
    forwarder = LogForwarder(config, task_logger, state)
    try:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(forwarder.run())
    except DockRelayError as exc:
        format_error(exc)
        raise SystemExit(1) from exc
    finally:
        task_logger.close()


@click.command("ready")
@click.argument("container_id", required=False, default=None)
@click.option("--json", "json_output", is_flag=True, help="Print the state as JSON.")
@click.pass_context
def ready_cmd(ctx: click.Context, container_id: str | None, *, json_output: bool) -> None:
    """Exit 0 if the logger (or CONTAINER_ID) is ready, 1 otherwise."""
    from dockrelay.state import is_container_ready, is_logger_ready, read_state  # noqa: PLC0415

    state = read_state(Path(_get_ctx(ctx).config.state_path))
    if json_output:
        format_state(state, json_output=True)
    elif _get_ctx(ctx).verbose:
        format_state(state)

    if container_id:
        ready = is_container_ready(state, container_id)
        subject = f"Container {container_id}"
    else:
        ready = is_logger_ready(state)
        subject = "Logger"

    if not json_output:
        if ready:
            print_success(f"{subject} is ready")
        else:
            print_not_ready(f"{subject} is not ready")
    raise SystemExit(0 if ready else 1)


@click.command("wait")
@click.argument("timeout_ms", type=click.IntRange(min=0))
@click.pass_context
def wait_cmd(ctx: click.Context, timeout_ms: int) -> None:
    """Block until no logs were written for TIMEOUT_MS milliseconds."""
    from dockrelay.state import wait_until_finished  # noqa: PLC0415

    path = Path(_get_ctx(ctx).config.state_path)
    asyncio.run(wait_until_finished(path, timeout_ms))
    print_success(f"No logs written for the last {timeout_ms} ms")


@click.command("mask")
@click.argument("key")
@click.argument("value")
@click.pass_context
def mask_cmd(ctx: click.Context, key: str, value: str) -> None:
    """Hide VALUE from forwarded logs from now on."""
    from dockrelay.step_logger import MaskRegistry  # noqa: PLC0415

    registry = MaskRegistry(Path(_get_ctx(ctx).config.masks_path))
    try:
        registry.add(key, value)
    except OSError as exc:
        click.echo(f"could not create mask for secret: {key}, due to error: {exc}", err=True)
        raise SystemExit(1) from exc
    print_success(f"Updated masks with secret: {key}")
