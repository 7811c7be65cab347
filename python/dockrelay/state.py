# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Readiness state shared with the CLI checks through a JSON file.

The forwarder records its own status, every handled container's status,
and when logs were last written.  The checks (``dockrelay ready`` and
``dockrelay wait``) only read the file.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Any

import structlog

from dockrelay.types import HandlingStatus

log = structlog.get_logger(__name__)

LOGGER_READY = "ready"
_READY_CONTAINER_STATUSES = frozenset(
    {
        HandlingStatus.LISTENING.value,
        HandlingStatus.WAITING_FOR_START.value,
        HandlingStatus.FINISHED.value,
    }
)
_LOGS_DATE_INTERVAL_MS = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class StateStore:
    """In-memory state mirrored to *path* on every change."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.status = "init"
        self.containers: dict[str, dict[str, str]] = {}
        self.last_logs_date = _now_ms()
        self._written_logs_date = 0
        self._pending_save: asyncio.TimerHandle | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "containers": self.containers,
            "last_logs_date": self.last_logs_date,
        }

    def set_status(self, status: str) -> None:
        self.status = status
        self.save()

    def set_container(self, container_id: str, status: HandlingStatus) -> None:
        self.containers[container_id] = {"status": status.value}
        self.save()

    def container_status(self, container_id: str) -> str | None:
        entry = self.containers.get(container_id)
        return entry["status"] if entry else None

    def logs_written(self) -> None:
        """Update ``last_logs_date``, saving at most once per second.

        A throttled update is saved once the interval has passed, so the
        file always ends up with the latest date.
        """
        self.last_logs_date = _now_ms()
        elapsed = self.last_logs_date - self._written_logs_date
        if elapsed >= _LOGS_DATE_INTERVAL_MS:
            self.save()
        elif self._pending_save is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            delay = (_LOGS_DATE_INTERVAL_MS - elapsed) / 1000
            self._pending_save = loop.call_later(delay, self.save)

    def save(self) -> None:
        """Write the state atomically."""
        if self._pending_save is not None:
            self._pending_save.cancel()
            self._pending_save = None
        data = json.dumps(self.to_dict())
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(data)
            os.replace(tmp, self.path)
        except OSError as exc:
            log.error("state_write_failed", path=str(self.path), error=str(exc))
            return
        self._written_logs_date = self.last_logs_date


def read_state(path: Path) -> dict[str, Any]:
    """Read the state file, returning ``{}`` when missing or unreadable."""
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def is_logger_ready(state: dict[str, Any]) -> bool:
    """True once the forwarder finished starting up."""
    return state.get("status") == LOGGER_READY


def is_container_ready(state: dict[str, Any], container_id: str) -> bool:
    """True once the forwarder listens to (or finished) *container_id*."""
    entry = (state.get("containers") or {}).get(container_id) or {}
    return entry.get("status") in _READY_CONTAINER_STATUSES


async def wait_until_finished(
    path: Path,
    timeout_ms: int,
    *,
    poll_interval: float = 0.1,
) -> None:
    """Return once no logs were written for *timeout_ms* milliseconds."""
    while True:
        state = read_state(path)
        last = int(state.get("last_logs_date") or 0)
        if _now_ms() - last > timeout_ms:
            log.info("logs_idle", timeout_ms=timeout_ms, last_logs_date=last)
            return
        await asyncio.sleep(poll_interval)
