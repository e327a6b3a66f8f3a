"""HTTP tests for the reference application."""

from __future__ import annotations

import asyncio

import pytest

import streamrelay.api.app as app_module
from streamrelay.models import SSEEvent, event_to_json
from streamrelay.server.channels import QueueSession


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["channels"] == 0
        assert "x-request-id" in resp.headers


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_reaches_registered_session(self, client):
        session = QueueSession()
        app_module._registry.get_channel("doc-1").register(session)

        resp = await client.post(
            "/resources/doc-1/events", json={"type": "doc-updated", "revision": 4}
        )
        assert resp.status_code == 202
        assert resp.json() == {"resource_id": "doc-1", "type": "doc-updated", "sessions": 1}

        outbound = await session.next_event(timeout=1)
        assert outbound.event_name == "message"
        assert outbound.data.type == "doc-updated"
        assert outbound.data.revision == 4

    @pytest.mark.asyncio
    async def test_publish_requires_type(self, client):
        resp = await client.post("/resources/doc-1/events", json={"revision": 4})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_resource_id_uses_error_handler(self, client):
        resp = await client.post("/resources/a:b/events", json={"type": "x"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "invalid_parameters"
        assert body["request_id"] != "unknown"

    @pytest.mark.asyncio
    async def test_session_count_does_not_create_channel(self, client):
        resp = await client.get("/resources/nobody/sessions")
        assert resp.json() == {"resource_id": "nobody", "sessions": 0}
        assert len(app_module._registry) == 0


class TestStreamRoute:
    @pytest.mark.asyncio
    async def test_invalid_stream_params_rejected(self, client):
        resp = await client.get("/resources/a:b/stream")
        assert resp.status_code == 400
        assert resp.text == "Invalid parameters"


class TestTopicFeed:
    @pytest.mark.asyncio
    async def test_published_event_reaches_feed_subscriber(self, client, wait_until):
        topic = app_module._registry.build_key("doc-1")
        response = await app_module.topic_feed("doc-1")
        assert response.media_type == "text/event-stream"
        body = response.body_iterator

        pending = asyncio.ensure_future(body.__anext__())
        await wait_until(lambda: app_module._broadcaster.get_listener_count(topic) == 1)

        resp = await client.post("/resources/doc-1/events", json={"type": "doc-updated"})
        assert resp.status_code == 202

        frame = await asyncio.wait_for(pending, timeout=1)
        assert frame.startswith("event: message\ndata: ")
        assert '"type":"doc-updated"' in frame

        await body.aclose()
        assert app_module._broadcaster.get_listener_count(topic) == 0

    @pytest.mark.asyncio
    async def test_invalid_feed_params_rejected(self, client):
        resp = await client.get("/resources/a:b/feed")
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_parameters"


def test_event_model_allows_extra_fields():
    event = SSEEvent(type="comment-added", discussionId="d1", timestamp=1)
    assert event_to_json(event) == '{"type":"comment-added","timestamp":1,"discussionId":"d1"}'
    assert event_to_json({"type": "x"}) == '{"type":"x"}'
