# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Per-step and per-workflow log size limits."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

from dockrelay.types import LogChunk

if TYPE_CHECKING:
    from collections.abc import Callable

STEP_SCOPE = "this step"
WORKFLOW_SCOPE = "the workflow"


def limit_warning(scope: str) -> str:
    """Return the in-band warning injected once a size limit is hit."""
    return (
        f"\x1b[01;93mLog size exceeded for {scope}.\n"
        "The step will continue to execute until it finished "
        "but new logs will not be stored.\x1b[0m\r\n"
    )


def never_exceeded() -> bool:
    return False


@dataclasses.dataclass
class SizeAccounting:
    """Mutable byte counters owned by one session.

    ``size`` is the UTF-8 byte count of every delivered chunk except the
    limit warning itself.  ``limit`` of ``None`` means unlimited.
    """

    limit: int | None = None
    size: int = 0
    notified: bool = False
    workflow_exceeded: Callable[[], bool] = never_exceeded

    @property
    def step_exceeded(self) -> bool:
        """True when this session logged more than its own limit."""
        return self.limit is not None and self.size > self.limit


class SizeLimiter:
    """Gate deciding, per chunk, whether to pass, warn once, or discard."""

    def __init__(
        self,
        accounting: SizeAccounting,
        on_logged: Callable[[int], None] | None = None,
    ) -> None:
        self.accounting = accounting
        self._on_logged = on_logged

    def gate(self, chunk: LogChunk) -> LogChunk | None:
        """Return the chunk to deliver, the one-time warning, or ``None``."""
        acc = self.accounting
        if acc.limit and not chunk.is_error:
            step_exceeded = acc.step_exceeded
            if step_exceeded or acc.workflow_exceeded():
                if acc.notified:
                    return None
                acc.notified = True
                scope = STEP_SCOPE if step_exceeded else WORKFLOW_SCOPE
                return LogChunk(limit_warning(scope), is_error=False, step=chunk.step)
        self._count(chunk.size)
        return chunk

    def _count(self, n: int) -> None:
        self.accounting.size += n
        if self._on_logged is not None:
            self._on_logged(n)
