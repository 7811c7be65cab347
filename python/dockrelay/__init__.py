# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

from __future__ import annotations

from importlib.metadata import version

from dockrelay._completion import CompletionTracker
from dockrelay._config import RelayConfig, load_config
from dockrelay._limits import SizeAccounting, SizeLimiter, limit_warning
from dockrelay._pipeline import DirectPipeline, StagedPipeline, build_pipeline
from dockrelay._router import StreamRouter
from dockrelay._session import ContainerStreamSession, SessionConfig
from dockrelay._source import ByteSource
from dockrelay._stream import FrameDecoder, TtyDecoder
from dockrelay.errors import (
    ConfigError,
    ContainerError,
    ContainerNotFound,
    DockRelayError,
    EngineNotRunning,
    FrameTooLarge,
    SessionSetupError,
    SocketCommunicationError,
    SocketConnectionError,
    SocketError,
    StrategyNotSupported,
)
from dockrelay.forwarder import LogForwarder
from dockrelay.types import HandlingStatus, LogChunk, LoggerStrategy

__version__ = version("dockrelay")


def get_version() -> str:
    """Return the dockrelay package version string."""
    return __version__


__all__ = [
    "ByteSource",
    "CompletionTracker",
    "ConfigError",
    "ContainerError",
    "ContainerNotFound",
    "ContainerStreamSession",
    "DirectPipeline",
    "DockRelayError",
    "EngineNotRunning",
    "FrameDecoder",
    "FrameTooLarge",
    "HandlingStatus",
    "LogChunk",
    "LogForwarder",
    "LoggerStrategy",
    "RelayConfig",
    "SessionConfig",
    "SessionSetupError",
    "SizeAccounting",
    "SizeLimiter",
    "SocketCommunicationError",
    "SocketConnectionError",
    "SocketError",
    "StagedPipeline",
    "StrategyNotSupported",
    "StreamRouter",
    "TtyDecoder",
    "__version__",
    "build_pipeline",
    "get_version",
    "limit_warning",
    "load_config",
]
