# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""File-backed step loggers.

A :class:`FileTaskLogger` owns one :class:`FileStepLogger` per step name.
Each step logger appends finished log text to ``<output_dir>/<step>.log``
and offers the stage factories staged pipelines need.  All writes are
synchronous filesystem writes.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

from dockrelay._stages import MaskStage, StepNameStage, TimestampStage, mask_text

if TYPE_CHECKING:
    from pathlib import Path
    from typing import TextIO

    from dockrelay.types import LogChunk

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class MaskRegistry:
    """Secret values to hide from forwarded output.

    Backed by a JSON object ``{key: value}`` on disk so secrets added by
    another process (``dockrelay mask``) apply to running sessions.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._masks: dict[str, str] = {}
        self._mtime: float | None = None

    def add(self, key: str, value: str) -> None:
        """Register *value* under *key* and persist the registry."""
        self._refresh()
        self._masks[key] = value
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._masks))
            self._mtime = self._path.stat().st_mtime

    def values(self) -> list[str]:
        """Return every registered secret value."""
        self._refresh()
        return [v for v in self._masks.values() if v]

    def _refresh(self) -> None:
        if self._path is None:
            return
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            return
        if mtime == self._mtime:
            return
        try:
            data = json.loads(self._path.read_text() or "{}")
        except json.JSONDecodeError:
            return
        if isinstance(data, dict):
            self._masks = {str(k): str(v) for k, v in data.items()}
        self._mtime = mtime


class StepDestination:
    """Shared destination every staged session of a step writes into."""

    def __init__(self, step_logger: FileStepLogger) -> None:
        self._step_logger = step_logger
        self.closed = False

    def write(self, chunk: LogChunk) -> None:
        if self.closed:
            msg = "write to closed destination"
            raise RuntimeError(msg)
        self._step_logger.append(chunk.text)

    def end(self) -> None:
        self.closed = True


class FileStepLogger:
    """Append one step's log text to a file."""

    def __init__(
        self,
        name: str,
        path: Path,
        masks: MaskRegistry,
        *,
        rate_limited: bool = False,
        timestamps: bool = False,
    ) -> None:
        self.name = name
        self.path = path
        self.rate_limited = rate_limited
        self.timestamps = timestamps
        self._masks = masks
        self._handle: TextIO | None = None
        self._destination: StepDestination | None = None

    def write(self, text: str) -> None:
        """Mask *text* and append it."""
        self.append(mask_text(text, self._masks.values()))

    def append(self, text: str) -> None:
        """Append *text* as is."""
        if self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self.path.open("a", encoding="utf-8")
        self._handle.write(text)
        self._handle.flush()

    def write_stream(self) -> StepDestination:
        """Return the step's shared destination, creating it once."""
        if self._destination is None:
            self._destination = StepDestination(self)
        return self._destination

    def create_masking_stage(self) -> MaskStage:
        return MaskStage(self._masks.values)

    def create_timestamp_stage(self) -> TimestampStage:
        return TimestampStage()

    def step_name_stage(self) -> StepNameStage:
        return StepNameStage(self.name)

    def close(self) -> None:
        """End the shared destination and close the file."""
        if self._destination is not None:
            self._destination.end()
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class FileTaskLogger:
    """Create step loggers under one output directory."""

    def __init__(
        self,
        output_dir: Path,
        *,
        masks: MaskRegistry | None = None,
        rate_limited: bool = False,
        timestamps: bool = False,
    ) -> None:
        self.output_dir = output_dir
        self.masks = masks if masks is not None else MaskRegistry()
        self.rate_limited = rate_limited
        self.timestamps = timestamps
        self.log_size = 0
        self.steps: dict[str, FileStepLogger] = {}

    def create(self, step_name: str) -> FileStepLogger:
        """Return the step logger for *step_name*, creating it once."""
        step = self.steps.get(step_name)
        if step is None:
            filename = _UNSAFE.sub("_", step_name) or "step"
            step = FileStepLogger(
                step_name,
                self.output_dir / f"{filename}.log",
                self.masks,
                rate_limited=self.rate_limited,
                timestamps=self.timestamps,
            )
            self.steps[step_name] = step
        return step

    def set_log_size(self, size: int) -> None:
        """Record the total bytes logged across all steps."""
        self.log_size = size

    def close(self) -> None:
        for step in self.steps.values():
            step.close()

