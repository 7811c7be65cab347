# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""One container's log session.

:meth:`ContainerStreamSession.start` inspects the container, picks the
attach or logs strategy, obtains the raw stream(s) and wires them through
a :class:`StreamRouter` into the session's pipeline.  Setup is retried a
fixed number of times with a fixed delay; an unsupported strategy is never
retried.  Once every stream has ended the ``end`` callbacks fire once.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import TYPE_CHECKING

import structlog

from dockrelay._callbacks import CallbackRegistry
from dockrelay._completion import CompletionTracker
from dockrelay._limits import SizeAccounting, SizeLimiter, never_exceeded
from dockrelay._pipeline import build_pipeline
from dockrelay._router import StreamRouter
from dockrelay._stream import DEFAULT_MAX_FRAME_SIZE
from dockrelay.errors import DockRelayError, SessionSetupError, StrategyNotSupported
from dockrelay.types import LoggerStrategy

if TYPE_CHECKING:
    from collections.abc import Callable

    from dockrelay._source import ByteSource
    from dockrelay.types import ContainerInterface, StepLogger

log = structlog.get_logger(__name__)


@dataclasses.dataclass(frozen=True)
class SessionConfig:
    """Everything a session needs, fixed at construction.

    ``log_size_limit`` is in bytes; ``None`` means unlimited.
    ``workflow_exceeded`` reports whether all sessions of the build together
    passed the workflow limit.
    """

    container_id: str
    container: ContainerInterface
    step_logger: StepLogger
    strategy: LoggerStrategy | str
    log_size_limit: int | None = None
    workflow_exceeded: Callable[[], bool] = never_exceeded
    setup_attempts: int = 3
    setup_retry_delay: float = 1.0
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE


class ContainerStreamSession:
    """Forward one container's stdout/stderr to its step logger."""

    def __init__(self, config: SessionConfig) -> None:
        self.config = config
        self.container_id = config.container_id
        self.tty: bool | None = None
        self.accounting = SizeAccounting(
            limit=config.log_size_limit,
            workflow_exceeded=config.workflow_exceeded,
        )
        self.callbacks = CallbackRegistry()
        self.tracker = CompletionTracker(self._complete)
        self.router: StreamRouter | None = None
        self._phase = "inspect"
        self._done = asyncio.Event()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_message_logged(self, fn: Callable[..., object]) -> None:
        """Register fn(session, nbytes), called for every counted chunk."""
        self.callbacks.on_message_logged(fn)

    def on_end(self, fn: Callable[..., object]) -> None:
        """Register fn(session), called once when all streams ended."""
        self.callbacks.on_end(fn)

    def on_error(self, fn: Callable[..., object]) -> None:
        """Register fn(session, exc), called when a stream is abandoned."""
        self.callbacks.on_error(fn)

    @property
    def log_size(self) -> int:
        """Bytes logged by this session so far."""
        return self.accounting.size

    @property
    def finished(self) -> bool:
        """True once every stream of the session has ended."""
        return self.tracker.complete

    async def wait(self, timeout: float | None = None) -> None:
        """Block until every stream of the session has ended."""
        if timeout is not None:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        else:
            await self._done.wait()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to the container and start forwarding its output.

        Raises:
            SessionSetupError: If setup failed for good.  ``phase`` says
                which step failed and ``__cause__`` holds the last error.

        """
        attempts = max(self.config.setup_attempts, 1)
        last_exc: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                stdout, stderr = await self._connect()
            except StrategyNotSupported as exc:
                log.error("unsupported_strategy", container_id=self.container_id, error=str(exc))
                raise SessionSetupError(self.container_id, "strategy", exc) from exc
            except (DockRelayError, OSError) as exc:
                last_exc = exc
                log.warning(
                    "session_setup_failed",
                    container_id=self.container_id,
                    phase=self._phase,
                    attempt=attempt,
                    attempts=attempts,
                    error=str(exc),
                )
                if attempt < attempts:
                    await asyncio.sleep(self.config.setup_retry_delay)
                continue
            self._wire(stdout, stderr)
            return

        assert last_exc is not None  # noqa: S101
        raise SessionSetupError(self.container_id, self._phase, last_exc) from last_exc

    async def _connect(self) -> tuple[ByteSource, ByteSource | None]:
        container = self.config.container
        self._phase = "inspect"
        inspected = await container.inspect()
        if self.tty is None:
            self.tty = bool((inspected.get("Config") or {}).get("Tty", False))

        self._phase = "strategy"
        strategy = LoggerStrategy.parse(self.config.strategy)

        if strategy is LoggerStrategy.ATTACH:
            self._phase = "attach"
            results = await asyncio.gather(
                container.attach(stdout=True, stderr=False, stream=True, tty=self.tty),
                container.attach(stdout=False, stderr=True, stream=True, tty=self.tty),
                return_exceptions=True,
            )
            failures = [r for r in results if isinstance(r, BaseException)]
            if failures:
                # the surviving stream would otherwise buffer output forever
                for result in results:
                    if not isinstance(result, BaseException):
                        await result.close()
                raise failures[0]
            stdout, stderr = results
            return stdout, stderr  # type: ignore[return-value]

        self._phase = "logs"
        stdout = await container.logs(follow=True, stdout=True, stderr=True)
        return stdout, None

    def _wire(self, stdout: ByteSource, stderr: ByteSource | None) -> None:
        limiter = SizeLimiter(self.accounting, on_logged=self._message_logged)
        pipeline = build_pipeline(self.config.step_logger, limiter)
        self.router = StreamRouter(
            self.container_id,
            pipeline,
            self.tracker,
            tty=bool(self.tty),
            max_frame_size=self.config.max_frame_size,
            on_error=self._stream_error,
        )
        self.router.bind(stdout, stderr)
        log.info(
            "attached_stream",
            container_id=self.container_id,
            tty=self.tty,
            staged=pipeline.staged,
        )

    # ------------------------------------------------------------------
    # Internal event plumbing
    # ------------------------------------------------------------------

    def _message_logged(self, nbytes: int) -> None:
        self.callbacks.dispatch_message_logged(self, nbytes)

    def _stream_error(self, exc: BaseException) -> None:
        self.callbacks.dispatch_error(self, exc)

    def _complete(self) -> None:
        log.info("all_streams_ended", container_id=self.container_id, log_size=self.log_size)
        self._done.set()
        self.callbacks.dispatch_end(self)
