# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Bind raw stdout/stderr sources to a session's pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from dockrelay._stream import DEFAULT_MAX_FRAME_SIZE, make_decoder
from dockrelay.errors import FrameTooLarge
from dockrelay.types import LogChunk

if TYPE_CHECKING:
    from collections.abc import Callable

    from dockrelay._completion import CompletionTracker
    from dockrelay._pipeline import DirectPipeline, StagedPipeline
    from dockrelay._source import ByteSource

log = structlog.get_logger(__name__)


class _RoutedStream:
    """One source, its decoder, and its origin tag."""

    def __init__(
        self,
        router: StreamRouter,
        source: ByteSource,
        *,
        is_error: bool,
    ) -> None:
        self._router = router
        self.source = source
        self.is_error = is_error
        self._decoder = make_decoder(tty=router.tty, max_frame_size=router.max_frame_size)
        self._done = False

    def on_data(self, data: bytes) -> None:
        if self._done:
            return
        try:
            for text in self._decoder.decode(data):
                self._router.pipeline.push(LogChunk(text, is_error=self.is_error))
        except FrameTooLarge as exc:
            log.error(
                "frame_rejected",
                container_id=self._router.container_id,
                stream=self.source.name,
                error=str(exc),
            )
            self._router.report_error(exc)
            self.on_end()

    def on_end(self) -> None:
        if self._done:
            return
        self._done = True
        log.info("stream_ended", container_id=self._router.container_id, stream=self.source.name)
        self._router.pipeline.end_stream(is_error=self.is_error)
        self._router.tracker.stream_ended()


class StreamRouter:
    """Decode one or two sources and tag each chunk with its origin.

    Chunks read from *stderr* are error-tagged.  Without *stderr* nothing
    is tagged as an error.  Order is kept within a source only.
    """

    def __init__(  # noqa: PLR0913
        self,
        container_id: str,
        pipeline: DirectPipeline | StagedPipeline,
        tracker: CompletionTracker,
        *,
        tty: bool,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
        on_error: Callable[[BaseException], object] | None = None,
    ) -> None:
        self.container_id = container_id
        self.pipeline = pipeline
        self.tracker = tracker
        self.tty = tty
        self.max_frame_size = max_frame_size
        self._on_error = on_error
        self.streams: list[_RoutedStream] = []

    def bind(self, stdout: ByteSource, stderr: ByteSource | None = None) -> None:
        """Register the sources with the tracker, then subscribe to them."""
        self.streams.append(_RoutedStream(self, stdout, is_error=False))
        if stderr is not None:
            self.streams.append(_RoutedStream(self, stderr, is_error=True))
        self.tracker.register(len(self.streams))
        for stream in self.streams:
            stream.source.on_data(stream.on_data)
            stream.source.on_end(stream.on_end)
            log.info(
                "listening_on_stream",
                container_id=self.container_id,
                stream=stream.source.name,
                tty=self.tty,
            )

    def report_error(self, exc: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(exc)
