"""Server-side fan-out: topic broadcaster, channel registry and SSE route glue."""

from streamrelay.server.broadcaster import (
    EventBroadcaster,
    MemoryBroadcaster,
    MemoryBroadcasterConfig,
    RedisBroadcasterConfig,
    Subscription,
    create_event_broadcaster,
)
from streamrelay.server.channels import Channel, ChannelRegistry, QueueSession, Session
from streamrelay.server.routes import create_sse_route_handler, format_sse

__all__ = [
    "Channel",
    "ChannelRegistry",
    "EventBroadcaster",
    "MemoryBroadcaster",
    "MemoryBroadcasterConfig",
    "QueueSession",
    "RedisBroadcasterConfig",
    "Session",
    "Subscription",
    "create_event_broadcaster",
    "create_sse_route_handler",
    "format_sse",
]
