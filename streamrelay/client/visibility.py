"""Visibility gates report whether the consuming context is actively observing.

Hosts without a notion of visibility (servers, CLIs, tests) use
:class:`AlwaysActiveGate`. Hosts that learn about focus or foreground changes
drive a :class:`ManualVisibilityGate`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger("streamrelay.client.visibility")

VisibilityListener = Callable[[bool], None]


@runtime_checkable
class VisibilityGate(Protocol):
    """Protocol for visibility sources consulted by the reconnection controller."""

    def is_active(self) -> bool:
        ...

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        """Register *listener* for transitions; returns an unsubscribe callable."""
        ...


class AlwaysActiveGate:
    """Gate for contexts that cannot determine visibility: always active."""

    def is_active(self) -> bool:
        return True

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        return lambda: None


class ManualVisibilityGate:
    """Gate whose state is set by the host; listeners fire only on change."""

    def __init__(self, active: bool = True) -> None:
        self._active = active
        self._listeners: list[VisibilityListener] = []
        self._lock = threading.Lock()

    def is_active(self) -> bool:
        return self._active

    def set_active(self, active: bool) -> None:
        with self._lock:
            if active == self._active:
                return
            self._active = active
            listeners = list(self._listeners)
        logger.debug("Visibility changed to %s", "active" if active else "inactive")
        for listener in listeners:
            listener(active)

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe
