# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Transform stages for staged log pipelines.

A stage takes one :class:`LogChunk` and returns one chunk, or ``None`` to
drop it.  Stages never reorder chunks.  A :class:`StageChain` runs its
stages in order and writes survivors to a destination.
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from dockrelay._limits import SizeLimiter
    from dockrelay.types import Destination, LogChunk

MASK = "****"


class Stage:
    """Base class for pipeline stages.  The default passes chunks through."""

    def process(self, chunk: LogChunk) -> LogChunk | None:
        return chunk


class SizeLimitStage(Stage):
    """Apply a session's :class:`SizeLimiter`."""

    def __init__(self, limiter: SizeLimiter) -> None:
        self._limiter = limiter

    def process(self, chunk: LogChunk) -> LogChunk | None:
        return self._limiter.gate(chunk)


def colorize_error(text: str) -> str:
    """Wrap *text* in the ANSI red escape used for stderr output."""
    return f"\x1b[31m{text}\x1b[0m"


class ColorizeErrorStage(Stage):
    """Color error-origin chunks red."""

    def process(self, chunk: LogChunk) -> LogChunk | None:
        if not chunk.is_error:
            return chunk
        return dataclasses.replace(chunk, text=colorize_error(chunk.text))


class MaskStage(Stage):
    """Replace secret values with ``****``.

    *secrets* is called for every chunk so masks registered while the
    session runs apply to later output.
    """

    def __init__(self, secrets: Callable[[], Iterable[str]]) -> None:
        self._secrets = secrets

    def process(self, chunk: LogChunk) -> LogChunk | None:
        text = mask_text(chunk.text, self._secrets())
        if text == chunk.text:
            return chunk
        return dataclasses.replace(chunk, text=text)


def mask_text(text: str, secrets: Iterable[str]) -> str:
    """Replace every non-empty secret in *text*, longest first."""
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, MASK)
    return text


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc)


class TimestampStage(Stage):
    """Prefix every output line with an ISO 8601 timestamp."""

    def __init__(self, clock: Callable[[], datetime.datetime] = _utc_now) -> None:
        self._clock = clock
        self._at_line_start = True

    def process(self, chunk: LogChunk) -> LogChunk | None:
        if not chunk.text:
            return chunk
        prefix = self._clock().isoformat() + " "
        lines = chunk.text.split("\n")
        out: list[str] = []
        for i, line in enumerate(lines):
            starts_line = self._at_line_start if i == 0 else True
            # a trailing "" after the final newline is not a line yet
            if i == len(lines) - 1 and not line:
                out.append(line)
                continue
            out.append(prefix + line if starts_line else line)
        self._at_line_start = chunk.text.endswith("\n")
        return dataclasses.replace(chunk, text="\n".join(out))


class StepNameStage(Stage):
    """Tag chunks with the step they belong to."""

    def __init__(self, step: str) -> None:
        self._step = step

    def process(self, chunk: LogChunk) -> LogChunk | None:
        return dataclasses.replace(chunk, step=self._step)


class StageChain:
    """Ordered stages feeding one destination.

    With ``end_destination=False`` ending the chain leaves the destination
    open, which is how sessions share one destination.
    """

    def __init__(
        self,
        stages: list[Stage],
        destination: Destination,
        *,
        end_destination: bool = True,
    ) -> None:
        self.stages = stages
        self._destination = destination
        self._end_destination = end_destination
        self.ended = False

    def write(self, chunk: LogChunk) -> None:
        if self.ended:
            msg = "write after end"
            raise RuntimeError(msg)
        current: LogChunk | None = chunk
        for stage in self.stages:
            current = stage.process(current)
            if current is None:
                return
        self._destination.write(current)

    def end(self) -> None:
        if self.ended:
            return
        self.ended = True
        if self._end_destination:
            self._destination.end()
