"""Unit tests for ContainerStreamSession with a fake container."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeContainer, RecordingStepLogger
from dockrelay._session import ContainerStreamSession, SessionConfig
from dockrelay._source import ByteSource, source_from_reader
from dockrelay._stream import STREAM_STDOUT, make_frame
from dockrelay.errors import (
    SessionSetupError,
    SocketCommunicationError,
    StrategyNotSupported,
)
from dockrelay.types import LoggerStrategy


def _session(
    container: FakeContainer,
    step_logger: RecordingStepLogger,
    strategy: LoggerStrategy | str = LoggerStrategy.ATTACH,
    **kwargs: object,
) -> ContainerStreamSession:
    config = SessionConfig(
        container_id="cid",
        container=container,
        step_logger=step_logger,
        strategy=strategy,
        setup_retry_delay=0,
        **kwargs,  # type: ignore[arg-type]
    )
    return ContainerStreamSession(config)


async def test_tty_attach_dual_streams(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    session = _session(container, step_logger)
    ends: list[object] = []
    session.on_end(ends.append)

    await session.start()
    assert session.tty is True
    assert container.attach_calls == [
        {"stdout": True, "stderr": False, "stream": True, "tty": True},
        {"stdout": False, "stderr": True, "stream": True, "tty": True},
    ]

    container.stdout.feed(b"message")
    container.stdout.feed_eof()
    container.stderr.feed(b"error")
    container.stderr.feed_eof()

    assert step_logger.written == ["message", "\x1b[31merror\x1b[0m"]
    assert ends == [session]
    assert session.finished is True
    await session.wait(timeout=1)


async def test_logs_strategy_single_framed_stream(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=False)
    session = _session(container, step_logger, strategy="logs")
    await session.start()

    assert container.logs_calls == [{"follow": True, "stdout": True, "stderr": True}]
    assert session.tracker.handled_streams == 1

    container.stdout.feed(make_frame(STREAM_STDOUT, b"abcd") + make_frame(STREAM_STDOUT, b"xyz"))
    container.stdout.feed_eof()
    assert step_logger.written == ["abcd", "xyz"]
    assert session.finished is True


async def test_message_logged_reports_bytes(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    session = _session(container, step_logger)
    logged: list[int] = []
    session.on_message_logged(lambda _s, n: logged.append(n))
    await session.start()
    container.stdout.feed(b"hello")
    container.stderr.feed(b"oops")
    assert logged == [5, 4]
    assert session.log_size == 9


async def test_step_limit_warning_once(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    session = _session(container, step_logger, log_size_limit=4)
    await session.start()
    container.stdout.feed(b"12345")
    container.stdout.feed(b"more")
    container.stdout.feed(b"more")
    assert step_logger.written[0] == "12345"
    assert "Log size exceeded for this step." in step_logger.written[1]
    assert len(step_logger.written) == 2


async def test_workflow_predicate_consulted(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    session = _session(
        container, step_logger, log_size_limit=1000, workflow_exceeded=lambda: True
    )
    await session.start()
    container.stdout.feed(b"message")
    assert "Log size exceeded for the workflow." in step_logger.written[0]
    assert session.log_size == 0


async def test_staged_mode_session(staged_step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    session = _session(container, staged_step_logger)
    await session.start()
    container.stdout.feed(b"a")
    container.stdout.feed_eof()
    container.stderr.feed_eof()
    assert [c.step for c in staged_step_logger.destination.chunks] == ["build"]
    assert staged_step_logger.destination.ended == 0
    assert session.finished is True


async def test_unsupported_strategy_not_retried(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer()
    session = _session(container, step_logger, strategy="tail")
    with pytest.raises(SessionSetupError) as exc_info:
        await session.start()
    assert exc_info.value.phase == "strategy"
    assert isinstance(exc_info.value.__cause__, StrategyNotSupported)
    assert container.inspect_calls == 1


async def test_transient_inspect_error_retried(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    container.inspect_errors = [SocketCommunicationError("boom")]
    session = _session(container, step_logger, setup_attempts=3)
    await session.start()
    assert container.inspect_calls == 2
    assert session.router is not None


async def test_retries_exhausted(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer()
    container.inspect_errors = [SocketCommunicationError(str(i)) for i in range(3)]
    session = _session(container, step_logger, setup_attempts=3)
    with pytest.raises(SessionSetupError) as exc_info:
        await session.start()
    assert exc_info.value.phase == "inspect"
    assert exc_info.value.container_id == "cid"
    assert str(exc_info.value.cause) == "Socket communication error: 2"
    assert container.inspect_calls == 3


async def test_retry_waits_fixed_delay(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer()
    container.inspect_errors = [OSError("refused"), OSError("refused")]
    session = ContainerStreamSession(
        SessionConfig(
            container_id="cid",
            container=container,
            step_logger=step_logger,
            strategy="attach",
            setup_attempts=3,
            setup_retry_delay=2.5,
        )
    )
    with patch("dockrelay._session.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await session.start()
    assert [call.args[0] for call in sleep.await_args_list] == [2.5, 2.5]


async def test_attach_failure_reports_phase(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer()
    container.attach = AsyncMock(side_effect=SocketCommunicationError("gone"))  # type: ignore[method-assign]
    session = _session(container, step_logger, setup_attempts=1)
    with pytest.raises(SessionSetupError) as exc_info:
        await session.start()
    assert exc_info.value.phase == "attach"


async def test_tty_read_once(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    real_attach = container.attach
    failed: list[bool] = []

    async def flaky_attach(**kwargs: object) -> object:
        if not failed:
            failed.append(True)
            container.tty = False
            raise OSError("reset")
        return await real_attach(**kwargs)  # type: ignore[arg-type]

    container.attach = flaky_attach  # type: ignore[method-assign]
    session = _session(container, step_logger, setup_attempts=2)
    await session.start()
    assert container.inspect_calls == 2
    assert session.tty is True
    assert all(call["tty"] is True for call in container.attach_calls)


async def test_callback_errors_suppressed(step_logger: RecordingStepLogger) -> None:
    container = FakeContainer(tty=True)
    session = _session(container, step_logger)

    def bad(_s: object, _n: int) -> None:
        raise ValueError

    session.on_message_logged(bad)
    await session.start()
    container.stdout.feed(b"x")
    assert step_logger.written == ["x"]


class _StreamingContainer(FakeContainer):
    """Hands out freshly pumped sources; the first stderr attach fails."""

    def __init__(self) -> None:
        super().__init__(tty=True)
        self.readers: list[asyncio.StreamReader] = []
        self.closed: list[str] = []
        self.stderr_failures = 1

    async def attach(
        self, *, stdout: bool, stderr: bool, stream: bool = True, tty: bool = False
    ) -> ByteSource:
        self.attach_calls.append({"stdout": stdout, "stderr": stderr, "stream": stream, "tty": tty})
        name = "stdout" if stdout else "stderr"
        if stderr and self.stderr_failures:
            self.stderr_failures -= 1
            raise SocketCommunicationError("attach refused")
        reader = asyncio.StreamReader()
        reader.feed_data(f"{name} output".encode())
        self.readers.append(reader)
        return source_from_reader(reader, name, on_close=lambda: self.closed.append(name))


async def test_half_failed_attach_releases_surviving_stream(
    step_logger: RecordingStepLogger,
) -> None:
    container = _StreamingContainer()
    session = _session(container, step_logger, setup_attempts=2)
    await session.start()

    assert len(container.attach_calls) == 4
    assert container.closed == ["stdout"]
    assert session.router is not None
    assert len(session.router.streams) == 2

    for reader in container.readers:
        reader.feed_eof()
    await session.wait(timeout=1)
    assert sorted(step_logger.written) == sorted(
        ["stdout output", "\x1b[31mstderr output\x1b[0m"]
    )
