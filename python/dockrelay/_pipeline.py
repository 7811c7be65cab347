# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Deliver gated chunks to a step logger.

Two modes:

* direct: every chunk is gated, colorized if it came from stderr, and
  written with ``step_logger.write(text)``.
* staged: stdout and stderr each get their own :class:`StageChain`
  (size limit, colorize for stderr, mask, optional timestamps, step name)
  writing into the step logger's shared ``write_stream()`` destination.
  Ending a chain never ends the shared destination.

Staged mode is selected when the step logger sets ``rate_limited``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from dockrelay._stages import ColorizeErrorStage, SizeLimitStage, StageChain, colorize_error

if TYPE_CHECKING:
    from dockrelay._limits import SizeLimiter
    from dockrelay._stages import Stage
    from dockrelay.types import LogChunk, StepLogger


class DirectPipeline:
    """Gate, colorize, and write each chunk inline."""

    staged = False

    def __init__(self, step_logger: StepLogger, limiter: SizeLimiter) -> None:
        self._step_logger = step_logger
        self._limiter = limiter

    def push(self, chunk: LogChunk) -> None:
        gated = self._limiter.gate(chunk)
        if gated is None:
            return
        text = colorize_error(gated.text) if gated.is_error else gated.text
        self._step_logger.write(text)

    def end_stream(self, *, is_error: bool) -> None:
        """Nothing is buffered in direct mode."""


class StagedPipeline:
    """Per-stream stage chains joined into one shared destination.

    Every instance asks the step logger for new stage objects, so two
    sessions never share a stage.
    """

    staged = True

    def __init__(self, step_logger: StepLogger, limiter: SizeLimiter) -> None:
        destination = step_logger.write_stream()
        self.stdout = StageChain(
            _chain_stages(step_logger, limiter, is_error=False),
            destination,
            end_destination=False,
        )
        self.stderr = StageChain(
            _chain_stages(step_logger, limiter, is_error=True),
            destination,
            end_destination=False,
        )

    def push(self, chunk: LogChunk) -> None:
        chain = self.stderr if chunk.is_error else self.stdout
        chain.write(chunk)

    def end_stream(self, *, is_error: bool) -> None:
        chain = self.stderr if is_error else self.stdout
        chain.end()


def _chain_stages(step_logger: StepLogger, limiter: SizeLimiter, *, is_error: bool) -> list[Stage]:
    stages: list[Stage] = [SizeLimitStage(limiter)]
    if is_error:
        stages.append(ColorizeErrorStage())
    stages.append(step_logger.create_masking_stage())
    if step_logger.timestamps:
        stages.append(step_logger.create_timestamp_stage())
    stages.append(step_logger.step_name_stage())
    return stages


def build_pipeline(
    step_logger: StepLogger, limiter: SizeLimiter
) -> DirectPipeline | StagedPipeline:
    """Return the pipeline mode the step logger asks for."""
    if step_logger.rate_limited:
        return StagedPipeline(step_logger, limiter)
    return DirectPipeline(step_logger, limiter)
