"""Shared fixtures for dockrelay tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
import structlog
from dockrelay._source import ByteSource
from dockrelay._stages import MaskStage, StepNameStage, TimestampStage
from dockrelay.types import LogChunk

if TYPE_CHECKING:
    from collections.abc import Iterator


class RecordingDestination:
    """Shared destination that remembers what it received."""

    def __init__(self) -> None:
        self.chunks: list[LogChunk] = []
        self.ended = 0

    def write(self, chunk: LogChunk) -> None:
        self.chunks.append(chunk)

    def end(self) -> None:
        self.ended += 1


class RecordingStepLogger:
    """Step logger double recording direct writes and stage factory calls."""

    def __init__(self, *, rate_limited: bool = False, timestamps: bool = False) -> None:
        self.rate_limited = rate_limited
        self.timestamps = timestamps
        self.written: list[str] = []
        self.destination = RecordingDestination()
        self.masks: list[str] = []
        self.stages_created = 0

    def write(self, text: str) -> None:
        self.written.append(text)

    def write_stream(self) -> RecordingDestination:
        return self.destination

    def create_masking_stage(self) -> MaskStage:
        self.stages_created += 1
        return MaskStage(lambda: self.masks)

    def create_timestamp_stage(self) -> TimestampStage:
        self.stages_created += 1
        return TimestampStage()

    def step_name_stage(self) -> StepNameStage:
        self.stages_created += 1
        return StepNameStage("build")


class FakeContainer:
    """Container double handing out test-controlled byte sources."""

    def __init__(self, *, tty: bool = False) -> None:
        self.tty = tty
        self.stdout = ByteSource("stdout")
        self.stderr = ByteSource("stderr")
        self.inspect_calls = 0
        self.attach_calls: list[dict[str, Any]] = []
        self.logs_calls: list[dict[str, Any]] = []
        self.inspect_errors: list[BaseException] = []

    async def inspect(self) -> dict[str, Any]:
        self.inspect_calls += 1
        if self.inspect_errors:
            raise self.inspect_errors.pop(0)
        return {"Id": "cid", "Config": {"Tty": self.tty}}

    async def attach(
        self, *, stdout: bool, stderr: bool, stream: bool = True, tty: bool = False
    ) -> ByteSource:
        self.attach_calls.append({"stdout": stdout, "stderr": stderr, "stream": stream, "tty": tty})
        return self.stdout if stdout else self.stderr

    async def logs(self, *, follow: bool, stdout: bool, stderr: bool) -> ByteSource:
        self.logs_calls.append({"follow": follow, "stdout": stdout, "stderr": stderr})
        return self.stdout


@pytest.fixture
def step_logger() -> RecordingStepLogger:
    return RecordingStepLogger()


@pytest.fixture
def staged_step_logger() -> RecordingStepLogger:
    return RecordingStepLogger(rate_limited=True)


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo logging configuration done by CLI invocations."""
    yield
    structlog.reset_defaults()
