"""Tests for query-cache invalidation handlers."""

from __future__ import annotations

from streamrelay.client.invalidation import (
    QueryClient,
    make_query_invalidation_handler,
    make_stream_cache_handler,
    normalize_query_keys,
)
from streamrelay.client.reconnect import StreamMeta


class FakeQueryClient:
    def __init__(self):
        self.invalidated = []
        self.data = {}

    def invalidate(self, key):
        self.invalidated.append(list(key))

    def set_data(self, key, value):
        self.data[tuple(key)] = value


EVENT = {"type": "comment-added", "discussionId": "d1", "commentCount": 3}
META = StreamMeta(reconnect_attempt=0)


class TestNormalize:
    def test_single_key(self):
        assert normalize_query_keys(["comments", "d1"]) == [["comments", "d1"]]

    def test_many_keys(self):
        keys = [["comments", "d1"], ("counts", "d1")]
        assert normalize_query_keys(keys) == keys

    def test_empty(self):
        assert normalize_query_keys([]) == []
        assert normalize_query_keys(None) == []


class TestQueryInvalidationHandler:
    def test_fake_client_satisfies_protocol(self):
        assert isinstance(FakeQueryClient(), QueryClient)

    def test_static_single_key(self):
        qc = FakeQueryClient()
        make_query_invalidation_handler(qc, ["infiniteComments", "d1"])(EVENT, META)
        assert qc.invalidated == [["infiniteComments", "d1"]]

    def test_dynamic_keys(self):
        qc = FakeQueryClient()
        handler = make_query_invalidation_handler(
            qc,
            lambda e: [["infiniteComments", e["discussionId"]], ["counts", e["discussionId"]]],
        )
        handler(EVENT, META)
        assert qc.invalidated == [["infiniteComments", "d1"], ["counts", "d1"]]

    def test_empty_key_result_invalidates_nothing(self):
        qc = FakeQueryClient()
        make_query_invalidation_handler(qc, lambda e: [])(EVENT, META)
        make_query_invalidation_handler(qc, [])(EVENT)
        make_query_invalidation_handler(qc, lambda e: None)(EVENT)
        assert qc.invalidated == []


class TestStreamCacheHandler:
    def test_update_then_invalidate_then_custom(self):
        qc = FakeQueryClient()
        order = []

        def update(event, client):
            order.append("update")
            client.set_data(["counts", event["discussionId"]], event["commentCount"])

        def invalidate(event, client):
            order.append("invalidate")
            client.invalidate(["comments", event["discussionId"]])

        handler = make_stream_cache_handler(
            qc,
            update_cache=update,
            invalidate=invalidate,
            on_item=lambda e, m: order.append(("custom", m.reconnect_attempt)),
        )
        handler(EVENT, StreamMeta(reconnect_attempt=2))
        assert order == ["update", "invalidate", ("custom", 2)]
        assert qc.data == {("counts", "d1"): 3}
        assert qc.invalidated == [["comments", "d1"]]

    def test_no_callbacks_is_noop(self):
        qc = FakeQueryClient()
        make_stream_cache_handler(qc)(EVENT, META)
        assert qc.invalidated == []
        assert qc.data == {}
