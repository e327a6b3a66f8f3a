"""Client-side stream consumption: reconnection, visibility and cache invalidation."""

from streamrelay.client.invalidation import (
    make_query_invalidation_handler,
    make_stream_cache_handler,
    normalize_query_keys,
)
from streamrelay.client.reconnect import (
    ConnectionState,
    ReconnectingStream,
    ReconnectOptions,
    StreamMeta,
    start_stream,
)
from streamrelay.client.sse import SSEMessage, parse_sse_lines, sse_stream_factory
from streamrelay.client.visibility import AlwaysActiveGate, ManualVisibilityGate, VisibilityGate

__all__ = [
    "AlwaysActiveGate",
    "ConnectionState",
    "ManualVisibilityGate",
    "ReconnectOptions",
    "ReconnectingStream",
    "SSEMessage",
    "StreamMeta",
    "VisibilityGate",
    "make_query_invalidation_handler",
    "make_stream_cache_handler",
    "normalize_query_keys",
    "parse_sse_lines",
    "sse_stream_factory",
    "start_stream",
]
