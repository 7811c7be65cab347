# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Track end-of-stream across the streams of one session."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


class CompletionTracker:
    """Fires ``on_complete`` once every registered stream has ended.

    Streams are registered during session setup.  Extra end signals after
    completion are ignored, so the terminal callback runs exactly once.
    """

    def __init__(self, on_complete: Callable[[], object] | None = None) -> None:
        self.handled_streams = 0
        self.finished_streams = 0
        self._complete = False
        self._on_complete = on_complete

    @property
    def complete(self) -> bool:
        """True once all registered streams have ended."""
        return self._complete

    def register(self, count: int = 1) -> None:
        """Register *count* more streams to wait for."""
        if self.finished_streams:
            msg = "cannot register streams after one has finished"
            raise RuntimeError(msg)
        self.handled_streams += count

    def stream_ended(self) -> None:
        """Record one stream's end, completing when all have ended."""
        if self._complete or self.finished_streams >= self.handled_streams:
            return
        self.finished_streams += 1
        if self.finished_streams == self.handled_streams:
            self._complete = True
            if self._on_complete is not None:
                self._on_complete()
