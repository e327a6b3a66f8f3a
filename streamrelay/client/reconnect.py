"""Auto-reconnecting consumption of a live event stream.

:class:`ReconnectingStream` opens a stream through an injected factory,
forwards each item to a handler, and on end-of-stream or error schedules a
new connection after a capped, jittered exponential backoff. It pauses while
the visibility gate reports the context as inactive and resumes when it
becomes active again.

State transitions::

    IDLE -> CONNECTING -> CONNECTED -> RECONNECTING -> CONNECTING ...
    RECONNECTING -> STOPPED         retries exhausted or refused by should_retry
    any -> STOPPED                  stop() or external cancellation
    any -> IDLE                     visibility gate went inactive

All work for one controller runs in a single asyncio task. Cancelling that
task aborts an in-flight connect, an in-flight next-item wait, or an armed
backoff timer alike.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

from streamrelay.backoff import calculate_backoff_with_jitter
from streamrelay.client.visibility import AlwaysActiveGate, VisibilityGate
from streamrelay.config import settings
from streamrelay.exceptions import PayloadError

logger = logging.getLogger("streamrelay.client.reconnect")

TItem = TypeVar("TItem")

StreamFactory = Callable[[Any], Union[AsyncIterator[Any], Awaitable[AsyncIterator[Any]]]]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass(frozen=True)
class StreamMeta:
    """Per-connection metadata passed alongside every item."""

    reconnect_attempt: int


@dataclass
class ReconnectOptions:
    """Retry and pause policy.

    Delays are in milliseconds and default to ``SR_RECONNECT_BASE_DELAY_MS``
    and ``SR_RECONNECT_MAX_DELAY_MS``. ``max_retries=None`` retries forever.
    ``should_retry(error, attempt)`` returning False stops without
    reporting max retries.
    """

    max_retries: int | None = None
    base_delay: float = field(default_factory=lambda: settings.reconnect_base_delay_ms)
    max_delay: float = field(default_factory=lambda: settings.reconnect_max_delay_ms)
    jitter_percent: float = 0.25
    pause_when_inactive: bool = True
    should_retry: Callable[[Exception, int], bool] | None = None


class ReconnectingStream(Generic[TItem]):
    """Drive one logical stream consumption across disconnects."""

    def __init__(
        self,
        factory: StreamFactory,
        on_item: Callable[[TItem, StreamMeta], None],
        *,
        params: Any = None,
        on_connect: Callable[[], None] | None = None,
        on_disconnect: Callable[[], None] | None = None,
        on_error: Callable[[Exception, int], None] | None = None,
        on_max_retries_reached: Callable[[Exception], None] | None = None,
        on_payload_error: Callable[[PayloadError], None] | None = None,
        on_state_change: Callable[[ConnectionState], None] | None = None,
        options: ReconnectOptions | None = None,
        visibility: VisibilityGate | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.factory = factory
        self.params = params
        self.options = options or ReconnectOptions()
        self.visibility: VisibilityGate = visibility or AlwaysActiveGate()
        self._on_item = on_item
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._on_error = on_error
        self._on_max_retries_reached = on_max_retries_reached
        self._on_payload_error = on_payload_error
        self._on_state_change = on_state_change
        self._cancel_event = cancel_event

        self._state = ConnectionState.IDLE
        self._attempt = 0
        self._last_error: Exception | None = None
        self._enabled = False
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._cancel_watcher: asyncio.Task[None] | None = None
        self._unsubscribe_visibility: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        """Reconnects preceding the current connection (0 = first connection)."""
        return self._attempt

    reconnect_attempt = attempt

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_reconnecting(self) -> bool:
        return self._state is ConnectionState.RECONNECTING

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Enable the controller; connects now if the context is active.

        Must be called from a running event loop. Starting a stopped
        controller is a fresh enable and resets the attempt counter.
        """
        if self._enabled:
            return
        self._enabled = True
        self._attempt = 0
        self._last_error = None
        if self.options.pause_when_inactive:
            self._unsubscribe_visibility = self.visibility.subscribe(self._on_visibility_change)
        if self._cancel_event is not None:
            self._cancel_watcher = asyncio.get_running_loop().create_task(self._watch_cancel())
        if self._should_stream():
            self._spawn()
        else:
            self._set_state(ConnectionState.IDLE)

    def stop(self) -> None:
        """Disable and tear down; no callback fires once this returns."""
        if not self._enabled:
            return
        self._enabled = False
        self._cancel_run()
        if self._unsubscribe_visibility is not None:
            self._unsubscribe_visibility()
            self._unsubscribe_visibility = None
        watcher, self._cancel_watcher = self._cancel_watcher, None
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()
        self._set_state(ConnectionState.STOPPED)

    def reconnect(self) -> None:
        """Abort any connection or timer, reset the attempt counter and connect again."""
        self._cancel_run()
        self._attempt = 0
        self._last_error = None
        if self._should_stream():
            self._spawn()
        elif self._enabled:
            self._set_state(ConnectionState.IDLE)

    async def wait_closed(self) -> None:
        """Wait until the current run task finishes (stopped or torn down)."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _should_stream(self) -> bool:
        if not self._enabled:
            return False
        return not self.options.pause_when_inactive or self.visibility.is_active()

    def _spawn(self) -> None:
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))
        self._set_state(ConnectionState.CONNECTING)

    def _cancel_run(self) -> None:
        # Bumping the generation silences any callback the old run could still reach.
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def _is_current(self, generation: int) -> bool:
        return self._enabled and generation == self._generation

    def _set_state(self, state: ConnectionState, generation: int | None = None) -> None:
        if generation is not None and not self._is_current(generation):
            return
        if state is self._state:
            return
        self._state = state
        self._emit(self._on_state_change, state)

    def _emit(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Stream callback %r failed", callback)

    def _on_visibility_change(self, active: bool) -> None:
        if not self._enabled or self._state is ConnectionState.STOPPED:
            return
        if active:
            if self._task is None:
                logger.debug("Context active, resuming stream", extra={"attempt": self._attempt})
                self._spawn()
        else:
            logger.debug("Context inactive, pausing stream", extra={"attempt": self._attempt})
            self._cancel_run()
            self._set_state(ConnectionState.IDLE)

    async def _watch_cancel(self) -> None:
        assert self._cancel_event is not None
        await self._cancel_event.wait()
        logger.debug("External cancellation requested")
        self.stop()

    async def _run(self, generation: int) -> None:
        while True:
            self._set_state(ConnectionState.CONNECTING, generation)
            error: Exception | None = None
            try:
                await self._consume(generation)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = exc
            if not self._is_current(generation):
                return
            if not self._handle_disconnect(error, generation):
                return

            delay = calculate_backoff_with_jitter(
                self._attempt,
                self.options.base_delay,
                self.options.max_delay,
                self.options.jitter_percent,
            )
            logger.info(
                "Reconnecting in %dms (attempt %d)",
                delay,
                self._attempt,
                extra={"attempt": self._attempt},
            )
            await asyncio.sleep(delay / 1000)
            if not self._is_current(generation):
                return

    async def _consume(self, generation: int) -> None:
        result = self.factory(self.params)
        stream = await result if inspect.isawaitable(result) else result
        try:
            if not self._is_current(generation):
                return
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED, generation)
            self._emit(self._on_connect)
            meta = StreamMeta(reconnect_attempt=self._attempt)
            async for item in stream:
                if not self._is_current(generation):
                    break
                try:
                    self._on_item(item, meta)
                except PayloadError as exc:
                    logger.error(
                        "Dropping malformed stream item: %s", exc, extra={"attempt": self._attempt}
                    )
                    self._emit(self._on_payload_error, exc)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _handle_disconnect(self, error: Exception | None, generation: int) -> bool:
        """Record a lost connection; returns True when a retry should be scheduled."""
        self._set_state(ConnectionState.RECONNECTING, generation)
        if error is None:
            # A server may close a stream and expect the client to resume.
            logger.info("Stream ended, scheduling reconnect", extra={"attempt": self._attempt})
            self._emit(self._on_disconnect)
            if not self._is_current(generation):
                return False
            self._attempt += 1
            return True

        self._last_error = error
        logger.warning(
            "Stream error: %s", error, extra={"attempt": self._attempt}, exc_info=error
        )
        self._emit(self._on_disconnect)
        self._emit(self._on_error, error, self._attempt)
        if not self._is_current(generation):
            return False

        retry_allowed = True
        if self.options.should_retry is not None:
            retry_allowed = bool(self.options.should_retry(error, self._attempt))
        below_max = self.options.max_retries is None or self._attempt < self.options.max_retries

        if retry_allowed and below_max:
            self._attempt += 1
            return True

        self._set_state(ConnectionState.STOPPED, generation)
        if not below_max:
            logger.warning(
                "Max retries reached after %d attempts", self._attempt, extra={"attempt": self._attempt}
            )
            self._emit(self._on_max_retries_reached, error)
        return False


def start_stream(
    factory: StreamFactory,
    on_item: Callable[[Any, StreamMeta], None],
    **kwargs: Any,
) -> ReconnectingStream[Any]:
    """Construct a :class:`ReconnectingStream` and start it."""
    stream: ReconnectingStream[Any] = ReconnectingStream(factory, on_item, **kwargs)
    stream.start()
    return stream
