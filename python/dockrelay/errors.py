# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

from __future__ import annotations


class DockRelayError(Exception):
    """Base exception for all dockrelay errors."""


class ConfigError(DockRelayError):
    """Invalid configuration value."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid configuration: {detail}")


class SocketError(DockRelayError):
    """Error related to socket communication with the container engine."""


class SocketConnectionError(SocketError):
    """Cannot connect to the container engine socket."""

    def __init__(self, socket_path: str, detail: str = "") -> None:
        self.socket_path = socket_path
        msg = f"Cannot connect to socket at {socket_path}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class SocketCommunicationError(SocketError):
    """Error during communication over the socket."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        msg = "Socket communication error"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class EngineNotRunning(SocketError):
    """No container engine socket found."""

    def __init__(self) -> None:
        super().__init__(
            "No container engine socket found. "
            "Is Docker or Podman running? "
            "Set DOCKRELAY_SOCKET to point at the engine socket."
        )


class ContainerError(DockRelayError):
    """Error related to a specific container."""

    def __init__(self, container_id: str, detail: str = "") -> None:
        self.container_id = container_id
        msg = f"Container {container_id}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ContainerNotFound(ContainerError):
    """Container does not exist (HTTP 404)."""

    def __init__(self, container_id: str) -> None:
        super().__init__(container_id, "not found")


class StrategyNotSupported(DockRelayError):
    """Logging strategy is neither ``attach`` nor ``logs``."""

    def __init__(self, strategy: object) -> None:
        self.strategy = strategy
        super().__init__(f"Strategy: {strategy} is not supported")


class FrameTooLarge(DockRelayError):
    """A multiplexed frame header announced an implausible payload length."""

    def __init__(self, length: int, limit: int) -> None:
        self.length = length
        self.limit = limit
        super().__init__(f"Frame payload of {length} bytes exceeds limit of {limit} bytes")


class SessionSetupError(ContainerError):
    """A container session could not be set up.

    ``phase`` names the step that failed (``inspect``, ``strategy``,
    ``attach`` or ``logs``) and ``__cause__`` holds the underlying error.
    """

    def __init__(self, container_id: str, phase: str, cause: BaseException) -> None:
        self.phase = phase
        self.cause = cause
        super().__init__(container_id, f"failed to {phase}: {cause}")
