# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Callback registry for session events."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


class CallbackRegistry:
    """Registry for message-logged/end/error callbacks on a session.

    Errors in callbacks are suppressed to avoid breaking the stream read loop.
    """

    def __init__(self) -> None:
        self._logged_cbs: list[Callable[..., object]] = []
        self._end_cbs: list[Callable[..., object]] = []
        self._error_cbs: list[Callable[..., object]] = []

    def on_message_logged(self, fn: Callable[..., object]) -> None:
        """Register a callback for accepted chunks: fn(session, nbytes)."""
        self._logged_cbs.append(fn)

    def on_end(self, fn: Callable[..., object]) -> None:
        """Register a callback fired once all streams ended: fn(session)."""
        self._end_cbs.append(fn)

    def on_error(self, fn: Callable[..., object]) -> None:
        """Register a callback for stream errors: fn(session, exc)."""
        self._error_cbs.append(fn)

    def dispatch_message_logged(self, session: object, nbytes: int) -> None:
        """Fire all message-logged callbacks, suppressing errors."""
        for fn in self._logged_cbs:
            with contextlib.suppress(Exception):
                fn(session, nbytes)

    def dispatch_end(self, session: object) -> None:
        """Fire all end callbacks, suppressing errors."""
        for fn in self._end_cbs:
            with contextlib.suppress(Exception):
                fn(session)

    def dispatch_error(self, session: object, exc: BaseException) -> None:
        """Fire all error callbacks, suppressing errors."""
        for fn in self._error_cbs:
            with contextlib.suppress(Exception):
                fn(session, exc)
