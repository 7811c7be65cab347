"""Unit tests for DockerContainer with a mocked socket client."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

from dockrelay._docker import DockerContainer

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


def _make_mock_writer() -> MagicMock:
    writer = MagicMock()
    writer.wait_closed = AsyncMock()
    return writer


async def _chunks(*parts: bytes) -> AsyncGenerator[bytes, None]:
    for part in parts:
        yield part


async def test_inspect_delegates() -> None:
    with patch(
        "dockrelay._docker.sc.inspect_container",
        new_callable=AsyncMock,
        return_value={"Config": {"Tty": False}},
    ) as inspect:
        result = await DockerContainer("/tmp/s.sock", "abc").inspect()
    assert result == {"Config": {"Tty": False}}
    inspect.assert_awaited_once_with("/tmp/s.sock", "abc")


async def test_attach_pumps_source_and_closes_writer() -> None:
    writer = _make_mock_writer()
    with patch(
        "dockrelay._docker.sc.attach_container",
        new_callable=AsyncMock,
        return_value=(_chunks(b"one", b"two"), writer),
    ) as attach:
        source = await DockerContainer("/tmp/s.sock", "abc").attach(stdout=False, stderr=True)

    received: list[bytes] = []
    ended: list[bool] = []
    source.on_data(received.append)
    source.on_end(lambda: ended.append(True))
    await source.wait_pumped()

    assert source.name == "stderr"
    assert received == [b"one", b"two"]
    assert ended == [True]
    writer.close.assert_called_once()
    assert attach.await_args.kwargs == {"stdout": False, "stderr": True, "stream": True}


async def test_logs_pumps_source() -> None:
    writer = _make_mock_writer()
    with patch(
        "dockrelay._docker.sc.container_logs",
        new_callable=AsyncMock,
        return_value=(_chunks(b"frame"), writer),
    ):
        source = await DockerContainer("/tmp/s.sock", "abc").logs(
            follow=True, stdout=True, stderr=True
        )
    received: list[bytes] = []
    source.on_data(received.append)
    await source.wait_pumped()
    assert source.name == "stdout"
    assert received == [b"frame"]
    assert source.ended is False
