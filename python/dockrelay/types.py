# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dockrelay._source import ByteSource
    from dockrelay._stages import Stage


class LoggerStrategy(str, enum.Enum):
    """How a container's byte stream is obtained."""

    ATTACH = "attach"
    LOGS = "logs"

    @classmethod
    def parse(cls, value: object) -> LoggerStrategy:
        """Return the strategy named by *value*, raising on unknown names."""
        from dockrelay.errors import StrategyNotSupported  # noqa: PLC0415

        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise StrategyNotSupported(value) from None


class HandlingStatus(str, enum.Enum):
    """Per-container handling status recorded in the readiness state."""

    INITIALIZING = "initializing"
    LISTENING = "listening"
    WAITING_FOR_START = "waiting_for_start"
    FINISHED = "finished"
    FAILED = "failed"


@dataclasses.dataclass(frozen=True)
class LogChunk:
    """One decoded piece of container output."""

    text: str
    is_error: bool = False
    step: str | None = None

    @property
    def size(self) -> int:
        """UTF-8 byte length of the text."""
        return len(self.text.encode("utf-8"))


class ContainerInterface(Protocol):
    """Container runtime operations a session consumes."""

    async def inspect(self) -> dict[str, Any]: ...

    async def attach(
        self, *, stdout: bool, stderr: bool, stream: bool = True, tty: bool = False
    ) -> ByteSource: ...

    async def logs(self, *, follow: bool, stdout: bool, stderr: bool) -> ByteSource: ...


class Destination(Protocol):
    """Shared writable destination used by staged pipelines."""

    def write(self, chunk: LogChunk) -> None: ...

    def end(self) -> None: ...


@runtime_checkable
class StepLogger(Protocol):
    """Sink for one step's finished log text.

    Direct pipelines only call ``write``.  Staged pipelines, selected by
    ``rate_limited``, write into ``write_stream()`` through stages built by
    the factories.
    """

    rate_limited: bool
    timestamps: bool

    def write(self, text: str) -> None: ...

    def write_stream(self) -> Destination: ...

    def create_masking_stage(self) -> Stage: ...

    def create_timestamp_stage(self) -> Stage: ...

    def step_name_stage(self) -> Stage: ...
