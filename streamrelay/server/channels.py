"""Resource-keyed broadcast channels.

A :class:`ChannelRegistry` owns one :class:`Channel` per composite key
``prefix:resource_id:suffix`` (empty segments omitted). Channels hold the set
of registered sessions and fan each published event out to all of them.

Channels are never removed automatically when their last session leaves;
callers reclaim them with :meth:`ChannelRegistry.cleanup_if_empty`. After a
cleanup the next :meth:`ChannelRegistry.get_channel` for the same key returns
a new instance.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger("streamrelay.server.channels")

TEvent = TypeVar("TEvent")

DEFAULT_EVENT_NAME = "message"


@runtime_checkable
class Session(Protocol):
    """Opaque handle for one physical consumer of a channel."""

    def push(self, data: Any, event_name: str = DEFAULT_EVENT_NAME) -> None:
        """Hand *data* to the transport without blocking."""
        ...


@dataclass(frozen=True)
class OutboundEvent:
    """An event queued for one session, tagged with its SSE event name."""

    data: Any
    event_name: str = DEFAULT_EVENT_NAME


class QueueSession:
    """Session backed by an :class:`asyncio.Queue`.

    :meth:`push` uses ``put_nowait``; when the queue is full the event is
    dropped for this session only (backpressure). ``maxsize=0`` is unbounded.
    Sessions compare by identity.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self.queue: asyncio.Queue[OutboundEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def push(self, data: Any, event_name: str = DEFAULT_EVENT_NAME) -> None:
        try:
            self.queue.put_nowait(OutboundEvent(data, event_name))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Session queue full, dropping %s event", event_name, extra={"dropped": self.dropped}
            )

    async def next_event(self, timeout: float | None = None) -> OutboundEvent:
        """Wait for the next queued event; raises ``asyncio.TimeoutError`` on timeout."""
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)


class Channel(Generic[TEvent]):
    """All active sessions listening to one resource."""

    def __init__(self, key: str) -> None:
        self.key = key
        self._sessions: dict[int, Session] = {}
        self._lock = threading.Lock()

    def register(self, session: Session) -> None:
        with self._lock:
            self._sessions[id(session)] = session

    def deregister(self, session: Session) -> None:
        with self._lock:
            self._sessions.pop(id(session), None)

    @property
    def active_sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def broadcast(self, event: TEvent, event_name: str = DEFAULT_EVENT_NAME) -> None:
        """Push *event* to every registered session."""
        for session in self.active_sessions:
            session.push(event, event_name)

    def __repr__(self) -> str:
        return f"Channel(key={self.key!r}, sessions={self.session_count})"


class ChannelRegistry(Generic[TEvent]):
    """Map of channel key to :class:`Channel` for one event domain.

    Construct one registry per logical domain and pass it explicitly; the
    key prefix and suffix keep unrelated domains apart when keys are shared.
    """

    def __init__(self, key_prefix: str = "", key_suffix: str = "") -> None:
        self.key_prefix = key_prefix
        self.key_suffix = key_suffix
        self._channels: dict[str, Channel[TEvent]] = {}
        self._lock = threading.Lock()

    def build_key(self, resource_id: str) -> str:
        """Join the non-empty segments of ``prefix:resource_id:suffix``."""
        parts = [self.key_prefix, resource_id, self.key_suffix]
        return ":".join(p for p in parts if p)

    def get_channel(self, resource_id: str) -> Channel[TEvent]:
        """Return the channel for *resource_id*, creating it on first use."""
        key = self.build_key(resource_id)
        with self._lock:
            channel = self._channels.get(key)
            if channel is None:
                channel = Channel(key)
                self._channels[key] = channel
                logger.debug("Channel created", extra={"channel_key": key})
        return channel

    def publish(
        self, resource_id: str, event: TEvent, event_name: str = DEFAULT_EVENT_NAME
    ) -> None:
        self.get_channel(resource_id).broadcast(event, event_name)

    def get_session_count(self, resource_id: str) -> int:
        """Return the session count without creating a channel."""
        with self._lock:
            channel = self._channels.get(self.build_key(resource_id))
        return channel.session_count if channel is not None else 0

    def cleanup_if_empty(self, resource_id: str) -> bool:
        """Remove the channel if it has no sessions; returns True if removed."""
        key = self.build_key(resource_id)
        with self._lock:
            channel = self._channels.get(key)
            if channel is None or channel.session_count > 0:
                return False
            del self._channels[key]
        logger.debug("Channel cleaned up", extra={"channel_key": key})
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def __contains__(self, resource_id: object) -> bool:
        if not isinstance(resource_id, str):
            return False
        with self._lock:
            return self.build_key(resource_id) in self._channels
