# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Async HTTP-over-Unix-socket client for Docker/Podman.

Each function opens its own connection to the Unix socket, performs the
HTTP request, and closes the connection.  Streaming calls (attach, logs,
events) hand the open connection to the caller instead.

Uses unversioned Docker-compatible API paths for Docker + Podman
compatibility.
"""

from __future__ import annotations

import asyncio
import json
import os
import pathlib
import urllib.parse
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

from dockrelay.errors import (
    ContainerNotFound,
    SocketCommunicationError,
    SocketConnectionError,
)

# ---------------------------------------------------------------------------
# Socket detection
# ---------------------------------------------------------------------------


def detect_socket() -> str | None:
    """Auto-detect an available container engine socket.

    Detection order:
    1. ``DOCKRELAY_SOCKET`` env var
    2. Docker: ``/var/run/docker.sock``
    3. Podman rootless: ``$XDG_RUNTIME_DIR/podman/podman.sock``
    4. Podman system: ``/run/podman/podman.sock``

    Returns:
        The path to the first socket found, or ``None``.

    """
    explicit = os.environ.get("DOCKRELAY_SOCKET")
    if explicit and pathlib.Path(explicit).exists():
        return explicit

    xdg = os.environ.get("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    candidates = [
        pathlib.Path("/var/run/docker.sock"),
        pathlib.Path(xdg) / "podman" / "podman.sock",
        pathlib.Path("/run/podman/podman.sock"),
    ]
    for candidate in candidates:
        if candidate.exists():
            return str(candidate)
    return None


# ---------------------------------------------------------------------------
# Raw HTTP helpers
# ---------------------------------------------------------------------------


async def _open_connection(
    socket_path: str,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open an async connection to a Unix socket."""
    try:
        return await asyncio.open_unix_connection(socket_path)
    except (OSError, ConnectionRefusedError) as exc:
        raise SocketConnectionError(socket_path, str(exc)) from exc


async def _send_request(
    writer: asyncio.StreamWriter,
    method: str,
    path: str,
    body: bytes | None = None,
    extra_headers: dict[str, str] | None = None,
) -> None:
    """Write an HTTP/1.1 request to the writer."""
    lines = [
        f"{method} {path} HTTP/1.1",
        "Host: localhost",
    ]
    if body is not None:
        lines.append("Content-Type: application/json")
        lines.append(f"Content-Length: {len(body)}")
    if extra_headers:
        lines.extend(f"{key}: {value}" for key, value in extra_headers.items())
    else:
        lines.append("Connection: close")
    lines.append("")
    lines.append("")

    writer.write("\r\n".join(lines).encode("ascii"))
    if body is not None:
        writer.write(body)
    await writer.drain()


async def _read_status_line(reader: asyncio.StreamReader) -> int:
    """Read the HTTP status line and return the status code."""
    line = await reader.readline()
    if not line:
        msg = "empty response"
        raise SocketCommunicationError(msg)
    parts = line.decode("ascii", errors="replace").split(None, 2)
    if len(parts) < 2:  # noqa: PLR2004
        msg = f"malformed status line: {line!r}"
        raise SocketCommunicationError(msg)
    return int(parts[1])


async def _read_headers(reader: asyncio.StreamReader) -> dict[str, str]:
    """Read HTTP headers until the blank line."""
    headers: dict[str, str] = {}
    while True:
        line = await reader.readline()
        stripped = line.strip()
        if not stripped:
            break
        decoded = stripped.decode("ascii", errors="replace")
        if ":" in decoded:
            key, value = decoded.split(":", 1)
            headers[key.strip().lower()] = value.strip()
    return headers


async def _read_body(
    reader: asyncio.StreamReader,
    headers: dict[str, str],
) -> bytes:
    """Read the HTTP response body, handling Content-Length and chunked TE."""
    if _is_chunked(headers):
        return b"".join([chunk async for chunk in iter_chunked(reader)])

    content_length_str = headers.get("content-length")
    if content_length_str is not None:
        return await _read_exact_body(reader, int(content_length_str))

    # No Content-Length, no chunked: read until EOF
    parts: list[bytes] = []
    while True:
        chunk = await reader.read(65536)
        if not chunk:
            break
        parts.append(chunk)
    return b"".join(parts)


async def _read_exact_body(reader: asyncio.StreamReader, length: int) -> bytes:
    """Read exactly ``length`` bytes from the reader."""
    data = b""
    while len(data) < length:
        chunk = await reader.read(length - len(data))
        if not chunk:
            break
        data += chunk
    return data


def _is_chunked(headers: dict[str, str]) -> bool:
    return headers.get("transfer-encoding", "").lower() == "chunked"


async def iter_chunked(reader: asyncio.StreamReader) -> AsyncGenerator[bytes, None]:
    """Yield the body of a chunked transfer-encoded response chunk by chunk.

    HTTP chunk boundaries carry no meaning for the payload; frames may span
    several chunks.
    """
    while True:
        size_line = await reader.readline()
        if not size_line:
            return
        size_str = size_line.strip().decode("ascii", errors="replace").split(";", 1)[0]
        if not size_str:
            continue
        chunk_size = int(size_str, 16)
        if chunk_size == 0:
            await reader.readline()  # trailing CRLF
            return
        chunk_data = await _read_exact_body(reader, chunk_size)
        await reader.readline()  # trailing CRLF after chunk
        if chunk_data:
            yield chunk_data


async def iter_raw(reader: asyncio.StreamReader) -> AsyncGenerator[bytes, None]:
    """Yield bytes from a raw (not chunked) response until EOF."""
    while True:
        chunk = await reader.read(65536)
        if not chunk:
            return
        yield chunk


async def _request(
    socket_path: str,
    method: str,
    path: str,
    body: dict[str, Any] | None = None,
) -> tuple[int, bytes]:
    """Make an HTTP request and return (status_code, response_body).

    Opens a new connection per call.
    """
    reader, writer = await _open_connection(socket_path)
    try:
        body_bytes = json.dumps(body).encode("utf-8") if body is not None else None
        await _send_request(writer, method, path, body_bytes)

        status = await _read_status_line(reader)
        headers = await _read_headers(reader)
        response_body = await _read_body(reader, headers)
    except SocketConnectionError:
        raise
    except (OSError, asyncio.IncompleteReadError) as exc:
        raise SocketCommunicationError(str(exc)) from exc
    else:
        return status, response_body
    finally:
        writer.close()
        await writer.wait_closed()


async def _request_stream(
    socket_path: str,
    method: str,
    path: str,
    extra_headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, str], asyncio.StreamReader, asyncio.StreamWriter]:
    """Make an HTTP request and return (status, headers, reader, writer) for streaming.

    The caller is responsible for closing the writer.
    """
    reader, writer = await _open_connection(socket_path)
    try:
        await _send_request(writer, method, path, extra_headers=extra_headers)
        status = await _read_status_line(reader)
        headers = await _read_headers(reader)
    except Exception:
        writer.close()
        await writer.wait_closed()
        raise
    else:
        return status, headers, reader, writer


async def close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    await writer.wait_closed()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _check_container_response(
    status: int,
    body: bytes,
    container_id: str,
) -> None:
    """Raise appropriate errors based on HTTP status codes."""
    if status < 400:  # noqa: PLR2004
        return
    if status == 404:  # noqa: PLR2004
        raise ContainerNotFound(container_id)
    msg = f"HTTP {status}: {body.decode('utf-8', errors='replace')}"
    raise SocketCommunicationError(msg)


async def _open_container_stream(
    socket_path: str,
    container_id: str,
    method: str,
    path: str,
    extra_headers: dict[str, str] | None = None,
) -> tuple[AsyncGenerator[bytes, None], asyncio.StreamWriter]:
    status, headers, reader, writer = await _request_stream(
        socket_path, method, path, extra_headers
    )
    if status >= 400:  # noqa: PLR2004
        rest = await reader.read(65536)
        await close_writer(writer)
        _check_container_response(status, rest, container_id)
    gen = iter_chunked(reader) if _is_chunked(headers) else iter_raw(reader)
    return gen, writer


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def ping(socket_path: str) -> str:
    """Ping the container engine.

    Returns:
        ``"OK"`` on success.

    """
    status, body = await _request(socket_path, "GET", "/_ping")
    if status != 200:  # noqa: PLR2004
        msg = f"ping failed: HTTP {status}"
        raise SocketCommunicationError(msg)
    return body.decode("ascii").strip()


async def inspect_container(socket_path: str, container_id: str) -> dict[str, Any]:
    """Inspect a container, returning its full JSON state."""
    status, body = await _request(socket_path, "GET", f"/containers/{container_id}/json")
    _check_container_response(status, body, container_id)
    return json.loads(body)  # type: ignore[no-any-return]


async def attach_container(
    socket_path: str,
    container_id: str,
    *,
    stdout: bool,
    stderr: bool,
    stream: bool = True,
) -> tuple[AsyncGenerator[bytes, None], asyncio.StreamWriter]:
    """Attach to a container and return a (byte_generator, writer) pair.

    Uses ``POST /containers/{id}/attach``.  The engine hijacks the
    connection; the bytes that follow are the container's raw output.
    The caller must close the writer when done.
    """
    params = urllib.parse.urlencode(
        {
            "stream": int(stream),
            "stdout": int(stdout),
            "stderr": int(stderr),
        }
    )
    return await _open_container_stream(
        socket_path,
        container_id,
        "POST",
        f"/containers/{container_id}/attach?{params}",
        {"Connection": "Upgrade", "Upgrade": "tcp"},
    )


async def container_logs(
    socket_path: str,
    container_id: str,
    *,
    follow: bool,
    stdout: bool,
    stderr: bool,
) -> tuple[AsyncGenerator[bytes, None], asyncio.StreamWriter]:
    """Read a container's logs and return a (byte_generator, writer) pair.

    Uses ``GET /containers/{id}/logs``.  Docker wraps the stream in chunked
    transfer encoding; Podman may send it raw.  Both are handled.
    """
    params = urllib.parse.urlencode(
        {
            "follow": int(follow),
            "stdout": int(stdout),
            "stderr": int(stderr),
        }
    )
    return await _open_container_stream(
        socket_path,
        container_id,
        "GET",
        f"/containers/{container_id}/logs?{params}",
    )


async def list_containers(
    socket_path: str,
    *,
    label_filter: str | None = None,
) -> list[dict[str, Any]]:
    """List running containers, optionally filtered by label.

    Uses ``GET /containers/json``.
    """
    path = "/containers/json"
    if label_filter is not None:
        filters = json.dumps({"label": [label_filter]})
        path = f"{path}?filters={urllib.parse.quote(filters)}"
    status, body = await _request(socket_path, "GET", path)
    if status >= 400:  # noqa: PLR2004
        msg = f"list containers failed: HTTP {status}: {body.decode('utf-8', errors='replace')}"
        raise SocketCommunicationError(msg)
    return json.loads(body)  # type: ignore[no-any-return]


async def stream_events(
    socket_path: str,
    *,
    event_types: list[str] | None = None,
) -> AsyncGenerator[dict[str, Any], None]:
    """Subscribe to ``GET /events`` and return an iterator over the events.

    The request is sent and its status checked before this returns, so
    events happening after the call are not missed.  Events are
    newline-delimited JSON objects that may span several HTTP chunks.
    """
    filters: dict[str, list[str]] = {"type": ["container"]}
    if event_types:
        filters["event"] = event_types
    path = f"/events?filters={urllib.parse.quote(json.dumps(filters))}"
    status, headers, reader, writer = await _request_stream(socket_path, "GET", path)
    if status >= 400:  # noqa: PLR2004
        rest = await reader.read(65536)
        await close_writer(writer)
        msg = f"events failed: HTTP {status}: {rest.decode('utf-8', errors='replace')}"
        raise SocketCommunicationError(msg)
    gen = iter_chunked(reader) if _is_chunked(headers) else iter_raw(reader)
    return _iter_events(gen, writer)


async def _iter_events(
    chunks: AsyncGenerator[bytes, None],
    writer: asyncio.StreamWriter,
) -> AsyncGenerator[dict[str, Any], None]:
    try:
        buf = b""
        async for chunk in chunks:
            buf += chunk
            while b"\n" in buf:
                line, buf = buf.split(b"\n", 1)
                if line.strip():
                    yield json.loads(line)
    finally:
        await close_writer(writer)
