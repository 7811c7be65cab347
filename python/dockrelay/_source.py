# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Push-based byte sources.

A :class:`ByteSource` hands bytes to whoever subscribed with :meth:`on_data`
and signals end-of-stream once through :meth:`on_end`.  Data fed before the
first data handler is registered is held back and delivered on subscription,
so a source can start reading before the pipeline is wired to it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from dockrelay.errors import DockRelayError

if TYPE_CHECKING:
    from collections.abc import Callable

log = structlog.get_logger(__name__)

_READ_SIZE = 65536


class ByteSource:
    """A single raw stream of container output."""

    def __init__(self, name: str = "stdout") -> None:
        self.name = name
        self._data_handlers: list[Callable[[bytes], None]] = []
        self._end_handlers: list[Callable[[], None]] = []
        self._pending: list[bytes] = []
        self._eof = False
        self._end_fired = False
        self._task: asyncio.Task[None] | None = None
        self._on_close: Callable[[], object] | None = None

    @property
    def ended(self) -> bool:
        """True once end-of-stream has been delivered to subscribers."""
        return self._end_fired

    def on_data(self, handler: Callable[[bytes], None]) -> None:
        """Subscribe *handler* to every chunk of bytes, in arrival order."""
        self._data_handlers.append(handler)
        self._flush()

    def on_end(self, handler: Callable[[], None]) -> None:
        """Subscribe *handler* to the end-of-stream signal."""
        self._end_handlers.append(handler)
        self._flush()

    def feed(self, data: bytes) -> None:
        """Push *data* into the source."""
        if self._eof:
            msg = "feed after end of stream"
            raise RuntimeError(msg)
        if not data:
            return
        self._pending.append(bytes(data))
        self._flush()

    def feed_eof(self) -> None:
        """Mark the source as finished."""
        self._eof = True
        self._flush()

    def _flush(self) -> None:
        if self._data_handlers:
            while self._pending:
                data = self._pending.pop(0)
                for handler in list(self._data_handlers):
                    handler(data)
        if self._eof and not self._pending and self._end_handlers and not self._end_fired:
            self._end_fired = True
            for handler in list(self._end_handlers):
                handler()

    # ------------------------------------------------------------------
    # asyncio integration
    # ------------------------------------------------------------------

    def pump(
        self,
        chunks: asyncio.StreamReader | Callable[[], object],
        on_close: Callable[[], object] | None = None,
    ) -> asyncio.Task[None]:
        """Start a background task feeding this source.

        *chunks* is either a ``StreamReader`` or a zero-argument factory
        returning an async iterator of ``bytes``.  ``on_close`` runs once
        after the last byte, e.g. to close the socket writer.
        """
        self._on_close = on_close
        self._task = asyncio.get_running_loop().create_task(self._pump(chunks))
        return self._task

    async def _pump(self, chunks: asyncio.StreamReader | Callable[[], object]) -> None:
        try:
            if isinstance(chunks, asyncio.StreamReader):
                while True:
                    data = await chunks.read(_READ_SIZE)
                    if not data:
                        break
                    self.feed(data)
            else:
                async for data in chunks():  # type: ignore[attr-defined]
                    self.feed(data)
        except (OSError, EOFError, DockRelayError) as exc:
            log.error("stream_read_failed", stream=self.name, error=str(exc))
        finally:
            self.feed_eof()
            await self._release()

    async def _release(self) -> None:
        on_close, self._on_close = self._on_close, None
        if on_close is not None:
            result = on_close()
            if asyncio.iscoroutine(result):
                await result

    async def close(self) -> None:
        """Stop pumping, drop held-back bytes and release the connection.

        Used for a source nobody will subscribe to, such as one stream of a
        half-failed attach.
        """
        self._pending.clear()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._release()

    async def wait_pumped(self) -> None:
        """Wait for the background pump task, if any, to finish."""
        if self._task is not None:
            await self._task


def source_from_reader(
    reader: asyncio.StreamReader,
    name: str = "stdout",
    on_close: Callable[[], object] | None = None,
) -> ByteSource:
    """Create a :class:`ByteSource` pumped from an asyncio ``StreamReader``."""
    source = ByteSource(name)
    source.pump(reader, on_close)
    return source
