"""Item handlers that keep a query cache in sync with a live stream.

The cache client is any object with an ``invalidate(key)`` method (and
``set_data`` when used with ``update_cache`` callbacks). An empty key result
always means "invalidate nothing", never "invalidate everything".
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol, Union, runtime_checkable

from streamrelay.client.reconnect import StreamMeta

logger = logging.getLogger("streamrelay.client.invalidation")

QueryKey = Sequence[Any]
QueryKeys = Union[QueryKey, Sequence[QueryKey], Callable[[Any], Any]]


@runtime_checkable
class QueryClient(Protocol):
    def invalidate(self, key: QueryKey) -> None:
        ...


def normalize_query_keys(keys: Any) -> list[QueryKey]:
    """Return a list of keys from one key or a list of keys.

    ``["comments", 1]`` is a single key; ``[["comments", 1], ["counts"]]`` is
    two. ``None`` and empty sequences yield no keys.
    """
    if not keys:
        return []
    first = keys[0]
    if isinstance(first, (list, tuple)):
        return [k for k in keys if k]
    return [keys]


def make_query_invalidation_handler(
    query_client: QueryClient,
    query_keys: QueryKeys,
) -> Callable[[Any, StreamMeta | None], None]:
    """Build an item handler invalidating *query_keys* for every item.

    *query_keys* may be a single key, a list of keys, or a callable mapping
    the item to either.
    """

    def handle(item: Any, meta: StreamMeta | None = None) -> None:
        keys = query_keys(item) if callable(query_keys) else query_keys
        normalized = normalize_query_keys(keys)
        if not normalized:
            return
        logger.debug("Invalidating %d query keys", len(normalized))
        for key in normalized:
            query_client.invalidate(key)

    return handle


def make_stream_cache_handler(
    query_client: Any,
    *,
    invalidate: Callable[[Any, Any], None] | None = None,
    update_cache: Callable[[Any, Any], None] | None = None,
    on_item: Callable[[Any, StreamMeta], None] | None = None,
) -> Callable[[Any, StreamMeta], None]:
    """Compose cache update, invalidation and a custom handler, in that order."""

    def handle(item: Any, meta: StreamMeta) -> None:
        if update_cache is not None:
            update_cache(item, query_client)
        if invalidate is not None:
            invalidate(item, query_client)
        if on_item is not None:
            on_item(item, meta)

    return handle
