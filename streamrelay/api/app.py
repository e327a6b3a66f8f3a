"""Reference FastAPI application for StreamRelay.

Endpoints:
  GET    /health                              Health check
  POST   /resources/{resource_id}/events      Publish an event to a resource
  GET    /resources/{resource_id}/sessions    Active SSE session count for a resource
  GET    /resources/{resource_id}/stream      SSE stream of a resource's events (channel sessions)
  GET    /resources/{resource_id}/feed        SSE stream of a resource's events (topic subscription)
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

import streamrelay
from streamrelay.config import settings
from streamrelay.exceptions import InvalidParametersError, StreamRelayError
from streamrelay.logging_config import log_startup_info, setup_logging
from streamrelay.models import SSEEvent, event_to_json
from streamrelay.server.broadcaster import Subscription, create_event_broadcaster
from streamrelay.server.channels import DEFAULT_EVENT_NAME, ChannelRegistry
from streamrelay.server.routes import SSE_HEADERS, create_sse_route_handler, format_sse

logger = logging.getLogger("streamrelay")

# ---------------------------------------------------------------------------
# Relay state
# ---------------------------------------------------------------------------

_registry: ChannelRegistry[SSEEvent] = ChannelRegistry(
    key_prefix=settings.channel_key_prefix,
    key_suffix=settings.channel_key_suffix,
)
_broadcaster = create_event_broadcaster(settings.broadcaster_config())


def _valid_resource_id(params: dict[str, Any]) -> bool:
    resource_id = params.get("resource_id")
    return bool(resource_id) and ":" not in resource_id


def _release_channel(params: dict[str, Any]) -> None:
    _registry.cleanup_if_empty(params["resource_id"])


async def _topic_frames(subscription: Subscription[Any]) -> AsyncIterator[str]:
    async with subscription:
        async for event in subscription:
            yield format_sse(event_to_json(event), DEFAULT_EVENT_NAME)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    log_startup_info()
    yield
    logger.info("Shutdown complete")


app = FastAPI(
    title="StreamRelay",
    description="In-process server-sent event fan-out keyed by resource.",
    version=streamrelay.__version__,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
@app.exception_handler(StreamRelayError)
async def streamrelay_error_handler(request: Request, exc: StreamRelayError) -> JSONResponse:
    """Centralized handler for custom StreamRelay exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_type,
            "message": exc.message,
            "request_id": request_id,
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request logging middleware (also sets request_id on state for error handler)
# ---------------------------------------------------------------------------
@app.middleware("http")
async def request_logging_middleware(request: Request, call_next) -> Response:
    request_id = str(uuid4())[:8]
    request.state.request_id = request_id
    start = time.monotonic()
    response: Response = await call_next(request)
    elapsed_ms = round((time.monotonic() - start) * 1000, 1)
    logger.info(
        "%s %s %s %.1fms [%s]",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request_id,
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "duration_ms": elapsed_ms,
        },
    )
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health():
    return {
        "status": "ok",
        "version": streamrelay.__version__,
        "broadcaster": settings.broadcaster_type,
        "channels": len(_registry),
    }


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@app.post("/resources/{resource_id}/events", status_code=202, tags=["Resources"])
async def publish_event(resource_id: str, event: SSEEvent):
    if not _valid_resource_id({"resource_id": resource_id}):
        raise InvalidParametersError(f"Invalid resource id: {resource_id!r}")
    _registry.publish(resource_id, event)
    _broadcaster.publish(_registry.build_key(resource_id), event)
    return {
        "resource_id": resource_id,
        "type": event.type,
        "sessions": _registry.get_session_count(resource_id),
    }


@app.get("/resources/{resource_id}/sessions", tags=["Resources"])
async def session_count(resource_id: str):
    return {"resource_id": resource_id, "sessions": _registry.get_session_count(resource_id)}


app.add_api_route(
    "/resources/{resource_id}/stream",
    create_sse_route_handler(
        lambda params: _registry.get_channel(params["resource_id"]),
        validate_params=_valid_resource_id,
        on_disconnect=_release_channel,
        heartbeat_interval=settings.heartbeat_interval,
        session_queue_size=settings.session_queue_size,
    ),
    methods=["GET"],
    tags=["Resources"],
    summary="SSE stream of a resource's events",
)


@app.get("/resources/{resource_id}/feed", tags=["Resources"])
async def topic_feed(resource_id: str):
    """Stream a resource's events straight from the topic broadcaster.

    Unlike ``/stream`` there is no channel session and no heartbeat; the
    subscription is released when the client disconnects.
    """
    if not _valid_resource_id({"resource_id": resource_id}):
        raise InvalidParametersError(f"Invalid resource id: {resource_id!r}")
    topic = _registry.build_key(resource_id)
    logger.debug("Topic feed opened", extra={"topic": topic})
    return StreamingResponse(
        _topic_frames(_broadcaster.subscribe(topic)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
