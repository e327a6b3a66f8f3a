"""HTTP Server-Sent Events client transport.

:func:`sse_stream_factory` builds a stream factory for
:class:`~streamrelay.client.reconnect.ReconnectingStream` on top of an
``httpx.AsyncClient``. Heartbeat frames are skipped, and payloads that fail
to decode are logged and dropped while the connection stays open.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from streamrelay.exceptions import PayloadError

logger = logging.getLogger("streamrelay.client.sse")

DEFAULT_SKIP_EVENTS = frozenset({"heartbeat"})


@dataclass(frozen=True)
class SSEMessage:
    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None


async def parse_sse_lines(lines: AsyncIterable[str]) -> AsyncIterator[SSEMessage]:
    """Group SSE lines into messages.

    A blank line dispatches the pending message; blocks without ``data``
    lines are discarded. Comment lines (leading ``:``) are ignored. The last
    seen ``id`` carries over to later messages.
    """
    event = ""
    data_lines: list[str] = []
    last_id: str | None = None
    retry: int | None = None

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data_lines:
                yield SSEMessage(event or "message", "\n".join(data_lines), last_id, retry)
            event, data_lines, retry = "", [], None
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            last_id = value
        elif field == "retry" and value.isdigit():
            retry = int(value)


def sse_stream_factory(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    skip_events: frozenset[str] = DEFAULT_SKIP_EVENTS,
    decode: Callable[[str], Any] = json.loads,
    on_payload_error: Callable[[PayloadError], None] | None = None,
) -> Callable[[Mapping[str, Any] | None], Awaitable[AsyncIterator[Any]]]:
    """Return a factory that opens *url* and yields decoded event payloads.

    The factory's argument is sent as query parameters. A non-2xx response
    raises ``httpx.HTTPStatusError`` before any item is produced, which the
    reconnection controller treats as a connection error.
    """
    request_headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
    if headers:
        request_headers.update(headers)

    async def _events(response: httpx.Response) -> AsyncIterator[Any]:
        try:
            async for message in parse_sse_lines(response.aiter_lines()):
                if message.event in skip_events:
                    continue
                try:
                    yield decode(message.data)
                except ValueError as exc:
                    error = PayloadError(f"Failed to parse SSE event: {exc}")
                    logger.error("%s", error.message)
                    if on_payload_error is not None:
                        on_payload_error(error)
        finally:
            await response.aclose()

    async def factory(params: Mapping[str, Any] | None = None) -> AsyncIterator[Any]:
        request = client.build_request("GET", url, params=params, headers=request_headers)
        response = await client.send(request, stream=True)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            await response.aclose()
            raise
        logger.debug("SSE connection opened: %s", url)
        return _events(response)

    return factory
