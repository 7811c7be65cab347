# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Accept a build's containers and run one log session per container.

Containers are matched by labels:

* ``dockrelay.logger-id`` must equal the forwarder's ``logger_id``
* ``dockrelay.step-name`` names the step the output belongs to
* ``dockrelay.strategy`` is ``attach`` or ``logs``
* ``dockrelay.log-size-limit`` (optional) is the step's limit in MB

The forwarder sums the size of every session for the workflow-wide limit
and reports the total to the task logger.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from dockrelay import _socket_client as sc
from dockrelay._docker import DockerContainer
from dockrelay._session import ContainerStreamSession, SessionConfig
from dockrelay.errors import EngineNotRunning, SessionSetupError
from dockrelay.types import HandlingStatus, LoggerStrategy

if TYPE_CHECKING:
    from collections.abc import Callable

    from dockrelay._config import RelayConfig
    from dockrelay.state import StateStore
    from dockrelay.step_logger import FileTaskLogger
    from dockrelay.types import ContainerInterface

log = structlog.get_logger(__name__)

LABEL_LOGGER_ID = "dockrelay.logger-id"
LABEL_STEP_NAME = "dockrelay.step-name"
LABEL_STRATEGY = "dockrelay.strategy"
LABEL_LOG_SIZE_LIMIT = "dockrelay.log-size-limit"

EVENT_CREATE = "create"
EVENT_START = "start"


def _labels(container: dict[str, Any]) -> dict[str, str]:
    labels = container.get("Labels")
    if labels is None:
        labels = (container.get("Actor") or {}).get("Attributes")
    return labels or {}


def _status(container: dict[str, Any]) -> str | None:
    for key in ("status", "Action", "State", "Status"):
        value = container.get(key)
        if value:
            return str(value)
    return None


def parse_size_limit(value: str | None) -> int | None:
    """Convert a megabyte label value to bytes; ``None`` if unset or invalid."""
    if not value:
        return None
    try:
        return int(value) * 1_000_000
    except ValueError:
        log.error("invalid_log_size_limit", value=value)
        return None


class LogForwarder:
    """Own every session of one build."""

    def __init__(
        self,
        config: RelayConfig,
        task_logger: FileTaskLogger,
        state: StateStore,
        container_factory: Callable[[str], ContainerInterface] | None = None,
    ) -> None:
        self.config = config
        self.task_logger = task_logger
        self.state = state
        self.sessions: dict[str, ContainerStreamSession] = {}
        self.log_size = 0
        self._container_factory = container_factory
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------

    def total_log_size(self) -> int:
        """Bytes logged by all sessions together."""
        return sum(session.log_size for session in self.sessions.values())

    def workflow_exceeded(self) -> bool:
        """True when a workflow limit is set and the total passed it."""
        limit = self.config.log_size_limit
        return bool(limit) and self.total_log_size() > (limit or 0)

    # ------------------------------------------------------------------
    # Container handling
    # ------------------------------------------------------------------

    def _skip_reason(self, container: dict[str, Any]) -> str | None:  # noqa: PLR0911
        container_id = container.get("Id") or container.get("id")
        labels = _labels(container)
        if not container_id:
            return "missing id"
        previous = self.state.container_status(container_id)
        if previous is not None and previous != HandlingStatus.WAITING_FOR_START.value:
            return "already handled"
        status = _status(container)
        if not status:
            return "missing status"
        if labels.get(LABEL_LOGGER_ID) != self.config.logger_id:
            return "foreign logger id"
        if not labels.get(LABEL_STEP_NAME):
            return "missing step name"
        strategy = labels.get(LABEL_STRATEGY)
        if not strategy:
            return "missing strategy"
        if strategy not in {s.value for s in LoggerStrategy}:
            return "unsupported strategy"
        if status == EVENT_CREATE and strategy == LoggerStrategy.LOGS.value:
            self.state.set_container(container_id, HandlingStatus.WAITING_FOR_START)
            return "waiting for start"
        return None

    async def handle_container(self, container: dict[str, Any]) -> ContainerStreamSession | None:
        """Start a session for *container* if its labels select it."""
        reason = self._skip_reason(container)
        container_id: str = container.get("Id") or container.get("id") or ""
        if reason is not None:
            log.info("container_skipped", container_id=container_id, reason=reason)
            return None

        labels = _labels(container)
        self.state.set_container(container_id, HandlingStatus.INITIALIZING)
        log.info("handling_container", container_id=container_id, status=_status(container))

        step_logger = self.task_logger.create(labels[LABEL_STEP_NAME])
        session = ContainerStreamSession(
            SessionConfig(
                container_id=container_id,
                container=self._container(container_id),
                step_logger=step_logger,
                strategy=labels[LABEL_STRATEGY],
                log_size_limit=parse_size_limit(labels.get(LABEL_LOG_SIZE_LIMIT)),
                workflow_exceeded=self.workflow_exceeded,
                setup_attempts=self.config.setup_attempts,
                setup_retry_delay=self.config.setup_retry_delay,
                max_frame_size=self.config.max_frame_size,
            )
        )
        self.sessions[container_id] = session
        session.on_message_logged(self._message_logged)
        session.on_end(self._session_ended)
        session.on_error(self._session_error)

        try:
            await session.start()
        except SessionSetupError as exc:
            log.error(
                "session_failed",
                container_id=container_id,
                phase=exc.phase,
                error=str(exc.cause),
            )
            self.state.set_container(container_id, HandlingStatus.FAILED)
            return session

        if not session.finished:
            self.state.set_container(container_id, HandlingStatus.LISTENING)
        return session

    def _container(self, container_id: str) -> ContainerInterface:
        if self._container_factory is not None:
            return self._container_factory(container_id)
        return DockerContainer(self._socket(), container_id)

    def _message_logged(self, _session: ContainerStreamSession, _nbytes: int) -> None:
        self.log_size = self.total_log_size()
        self.task_logger.set_log_size(self.log_size)
        self.state.logs_written()

    def _session_ended(self, session: ContainerStreamSession) -> None:
        self.state.set_container(session.container_id, HandlingStatus.FINISHED)

    def _session_error(self, session: ContainerStreamSession, exc: BaseException) -> None:
        log.error("stream_abandoned", container_id=session.container_id, error=str(exc))

    # ------------------------------------------------------------------
    # Engine integration
    # ------------------------------------------------------------------

    def _socket(self) -> str:
        socket_path = self.config.socket or sc.detect_socket()
        if socket_path is None:
            raise EngineNotRunning
        return socket_path

    def spawn(self, container: dict[str, Any]) -> asyncio.Task[Any]:
        """Handle *container* in a background task."""
        task = asyncio.get_running_loop().create_task(self.handle_container(container))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle_existing(self) -> None:
        """Handle containers that already run with this forwarder's logger id."""
        log.info("finding_existing_containers")
        containers = await sc.list_containers(
            self._socket(),
            label_filter=f"{LABEL_LOGGER_ID}={self.config.logger_id}",
        )
        for container in containers:
            self.spawn(container)

    async def run(self) -> None:
        """Follow engine events until cancelled."""
        socket_path = self._socket()
        await sc.ping(socket_path)
        log.info("forwarder_started", logger_id=self.config.logger_id, socket=socket_path)
        events = await sc.stream_events(socket_path, event_types=[EVENT_CREATE, EVENT_START])
        self.state.set_status("ready")
        if self.config.find_existing_containers:
            await self.handle_existing()
        async for event in events:
            self.spawn(event)

    async def drain(self) -> None:
        """Wait for pending container setups, then for every session to end."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for session in list(self.sessions.values()):
            if session.router is not None:
                await session.wait()
