"""Topic-keyed event broadcaster with pull-based subscriptions.

Each call to :meth:`MemoryBroadcaster.subscribe` returns an independent
:class:`Subscription` backed by its own unbounded :class:`asyncio.Queue`.
:meth:`MemoryBroadcaster.publish` is synchronous and uses ``put_nowait`` so a
slow consumer never blocks the producer or other subscribers. Events published
to a topic with no listeners are dropped.

The listener is registered when the subscription starts consuming and removed
exactly once when it is closed: explicitly via :meth:`Subscription.aclose`,
by cancelling the consuming task mid-wait, or by the consumer leaving its
``async for`` loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncGenerator
from typing import Annotated, Any, Generic, Literal, Protocol, TypeVar, Union, runtime_checkable

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from streamrelay.exceptions import BackendNotImplementedError, ConfigurationError

logger = logging.getLogger("streamrelay.server.broadcaster")

T = TypeVar("T")

DEFAULT_KEEP_ALIVE_SECONDS: float = 30.0

_CLOSED = object()


@runtime_checkable
class EventBroadcaster(Protocol):
    """Protocol shared by all broadcaster backends."""

    def subscribe(self, topic: str) -> "Subscription[Any]":
        """Return a new lazily-consumed subscription to *topic*."""
        ...

    def publish(self, topic: str, data: Any) -> None:
        """Deliver *data* to every listener currently subscribed to *topic*."""
        ...

    def get_listener_count(self, topic: str) -> int:
        """Return the number of registered listeners on *topic*."""
        ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MemoryBroadcasterConfig(BaseModel):
    type: Literal["memory"] = "memory"
    max_listeners: int = Field(default=100, ge=1)
    keep_alive_seconds: float = Field(default=DEFAULT_KEEP_ALIVE_SECONDS, gt=0)


class RedisBroadcasterConfig(BaseModel):
    type: Literal["redis"]
    url: str
    token: str = ""


BroadcasterConfig = Annotated[
    Union[MemoryBroadcasterConfig, RedisBroadcasterConfig],
    Field(discriminator="type"),
]

_config_adapter: TypeAdapter[Any] = TypeAdapter(BroadcasterConfig)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class Subscription(Generic[T]):
    """One listener on one topic: a pending queue plus its consumption loop.

    Iterating suspends until an event is published or the subscription is
    closed. The keep-alive timeout only re-parks the waiter; it never yields
    a value or ends iteration. Each ``async for`` runs a fresh generator whose
    ``finally`` closes the subscription, so breaking out of the loop releases
    the listener once the generator is finalized.
    """

    def __init__(self, broadcaster: MemoryBroadcaster, topic: str, keep_alive: float) -> None:
        self.topic = topic
        self._broadcaster = broadcaster
        self._keep_alive = keep_alive
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._registered = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, data: Any) -> None:
        self._queue.put_nowait(data)

    def __aiter__(self) -> AsyncGenerator[T, None]:
        return self._iterate()

    async def _iterate(self) -> AsyncGenerator[T, None]:
        if self._closed:
            return
        if not self._registered:
            self._registered = True
            self._broadcaster._add_listener(self)
        try:
            while True:
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=self._keep_alive)
                except asyncio.TimeoutError:
                    continue
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._close()

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._registered:
            self._broadcaster._remove_listener(self)
        self._queue.put_nowait(_CLOSED)

    async def aclose(self) -> None:
        """Stop the subscription and unblock any pending receive."""
        self._close()

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._close()


class MemoryBroadcaster:
    """Single-process broadcaster keyed by an arbitrary topic string.

    Thread-safety is ensured via a :class:`threading.Lock` around the
    topic map mutations. Delivery itself happens on the caller's event loop.
    """

    def __init__(
        self,
        max_listeners: int = 100,
        keep_alive_seconds: float = DEFAULT_KEEP_ALIVE_SECONDS,
    ) -> None:
        self.max_listeners = max_listeners
        self.keep_alive_seconds = keep_alive_seconds
        self._topics: dict[str, set[Subscription[Any]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str) -> Subscription[Any]:
        """Create a new subscription; it registers on first iteration."""
        return Subscription(self, topic, self.keep_alive_seconds)

    def publish(self, topic: str, data: Any) -> None:
        """Push *data* to every listener on *topic* (non-blocking)."""
        with self._lock:
            listeners = list(self._topics.get(topic, ()))
        for listener in listeners:
            listener._deliver(data)

    def get_listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def _add_listener(self, subscription: Subscription[Any]) -> None:
        with self._lock:
            listeners = self._topics.setdefault(subscription.topic, set())
            listeners.add(subscription)
            count = len(listeners)
        logger.debug("Listener added", extra={"topic": subscription.topic})
        if count > self.max_listeners:
            logger.warning(
                "Topic %s has %d listeners (max_listeners=%d), possible subscription leak",
                subscription.topic,
                count,
                self.max_listeners,
                extra={"topic": subscription.topic},
            )

    def _remove_listener(self, subscription: Subscription[Any]) -> None:
        with self._lock:
            listeners = self._topics.get(subscription.topic)
            if listeners is None:
                return
            listeners.discard(subscription)
            if not listeners:
                del self._topics[subscription.topic]
        logger.debug("Listener removed", extra={"topic": subscription.topic})


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_event_broadcaster(
    config: MemoryBroadcasterConfig | RedisBroadcasterConfig | dict[str, Any],
) -> MemoryBroadcaster:
    """Create a broadcaster from a validated config.

    Accepts a config model or a plain mapping with a ``type`` discriminator.
    Fails fast with :class:`ConfigurationError` on invalid input and with
    :class:`BackendNotImplementedError` for the redis backend.
    """
    if isinstance(config, dict):
        try:
            config = _config_adapter.validate_python(config)
        except ValidationError as exc:
            msg = f"Invalid broadcaster config: {exc.errors(include_url=False)}"
            raise ConfigurationError(msg) from exc

    if isinstance(config, MemoryBroadcasterConfig):
        return MemoryBroadcaster(
            max_listeners=config.max_listeners,
            keep_alive_seconds=config.keep_alive_seconds,
        )

    if isinstance(config, RedisBroadcasterConfig):
        msg = (
            "Redis broadcaster not yet implemented. Events only fan out within a single "
            "process; use the 'memory' broadcaster or provide a message-bus backend."
        )
        raise BackendNotImplementedError(msg)

    msg = f"Unknown broadcaster type: {getattr(config, 'type', config)!r}"
    raise ConfigurationError(msg)
