# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Container interface backed by the engine socket client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from dockrelay import _socket_client as sc
from dockrelay._source import ByteSource

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncGenerator


class DockerContainer:
    """Inspect, attach to, and read logs of one engine container."""

    def __init__(self, socket_path: str, container_id: str) -> None:
        self.socket_path = socket_path
        self.container_id = container_id

    async def inspect(self) -> dict[str, Any]:
        return await sc.inspect_container(self.socket_path, self.container_id)

    async def attach(
        self,
        *,
        stdout: bool,
        stderr: bool,
        stream: bool = True,
        tty: bool = False,  # noqa: ARG002
    ) -> ByteSource:
        """Attach to the container; TTY mode is decided by the container itself."""
        gen, writer = await sc.attach_container(
            self.socket_path,
            self.container_id,
            stdout=stdout,
            stderr=stderr,
            stream=stream,
        )
        return _pumped("stderr" if stderr and not stdout else "stdout", gen, writer)

    async def logs(self, *, follow: bool, stdout: bool, stderr: bool) -> ByteSource:
        gen, writer = await sc.container_logs(
            self.socket_path,
            self.container_id,
            follow=follow,
            stdout=stdout,
            stderr=stderr,
        )
        return _pumped("stdout", gen, writer)


def _pumped(
    name: str,
    gen: AsyncGenerator[bytes, None],
    writer: asyncio.StreamWriter,
) -> ByteSource:
    source = ByteSource(name)
    source.pump(lambda: gen, on_close=lambda: sc.close_writer(writer))
    return source
