"""SSE route handler factory.

Wires a :class:`~streamrelay.server.channels.Channel` to one inbound HTTP
connection: a queue session is registered for the lifetime of the response
stream, channel broadcasts are forwarded as SSE frames, and a heartbeat is
sent whenever the session has been idle for ``heartbeat_interval`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from streamrelay.models import event_to_json
from streamrelay.server.channels import DEFAULT_EVENT_NAME, Channel, QueueSession

logger = logging.getLogger("streamrelay.server.routes")

HEARTBEAT_FRAME = "event: heartbeat\ndata: {}\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(data: str, event: str | None = None, event_id: str | None = None) -> str:
    """Frame *data* as one SSE message; multi-line data gets one ``data:`` line each."""
    lines: list[str] = []
    if event:
        lines.append(f"event: {event}")
    if event_id:
        lines.append(f"id: {event_id}")
    for line in data.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def create_sse_route_handler(
    get_channel: Callable[[dict[str, Any]], Channel[Any]],
    *,
    validate_params: Callable[[dict[str, Any]], bool] | None = None,
    get_initial_event: Callable[[dict[str, Any]], Any] | None = None,
    on_disconnect: Callable[[dict[str, Any]], None] | None = None,
    heartbeat_interval: float = 15.0,
    session_queue_size: int = 100,
) -> Callable[[Request], Awaitable[Response]]:
    """Build an async endpoint streaming a channel's broadcasts.

    Path parameters are passed to every callback as a plain dict. Invalid
    parameters produce a 400; a failure while resolving the channel or the
    initial event produces a 500. When the client goes away the session is
    deregistered before ``on_disconnect`` runs, so the callback can safely
    call ``ChannelRegistry.cleanup_if_empty``.
    """

    async def _stream(
        channel: Channel[Any], params: dict[str, Any], initial_event: Any
    ) -> AsyncIterator[str]:
        session = QueueSession(maxsize=session_queue_size)
        channel.register(session)
        logger.debug("SSE session registered", extra={"channel_key": channel.key})
        try:
            if initial_event is not None:
                yield format_sse(event_to_json(initial_event), DEFAULT_EVENT_NAME)
            else:
                # Immediate heartbeat so the client receives headers right away
                yield HEARTBEAT_FRAME
            while True:
                try:
                    outbound = await session.next_event(timeout=heartbeat_interval)
                except asyncio.TimeoutError:
                    yield HEARTBEAT_FRAME
                    continue
                yield format_sse(event_to_json(outbound.data), outbound.event_name)
        finally:
            channel.deregister(session)
            logger.debug("SSE session deregistered", extra={"channel_key": channel.key})
            if on_disconnect is not None:
                try:
                    on_disconnect(params)
                except Exception:
                    logger.exception(
                        "SSE disconnect callback failed", extra={"channel_key": channel.key}
                    )

    async def handler(request: Request) -> Response:
        params = dict(request.path_params)
        try:
            if validate_params is not None and not validate_params(params):
                return PlainTextResponse("Invalid parameters", status_code=400)
            channel = get_channel(params)
            initial_event = get_initial_event(params) if get_initial_event is not None else None
        except Exception as exc:
            logger.warning("Failed to establish SSE connection: %s", exc, exc_info=True)
            return PlainTextResponse(
                f"Failed to establish SSE connection: {exc}", status_code=500
            )

        return StreamingResponse(
            _stream(channel, params, initial_event),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return handler
