# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""structlog configuration for the relay's own diagnostics.

Diagnostics go to stderr and never mix with forwarded container output.
"""

from __future__ import annotations

import logging
import sys

import structlog


def _resolve_level(level: str | None) -> int:
    value = logging.getLevelName((level or "info").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str | None = "info", *, json_output: bool = False) -> None:
    """Configure structlog once for the process.

    ``json_output`` renders one JSON object per event, otherwise events are
    rendered for a terminal.
    """
    processors: list[structlog.types.Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
