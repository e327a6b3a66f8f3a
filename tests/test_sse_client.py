"""Tests for the SSE line parser and the httpx stream factory."""

from __future__ import annotations

import httpx
import pytest

from streamrelay.client.reconnect import ConnectionState, ReconnectOptions, start_stream
from streamrelay.client.sse import SSEMessage, parse_sse_lines, sse_stream_factory


async def _lines(*lines):
    for line in lines:
        yield line


async def _parse(*lines):
    return [m async for m in parse_sse_lines(_lines(*lines))]


class TestParseSSELines:
    @pytest.mark.asyncio
    async def test_basic_message(self):
        assert await _parse("data: hello", "") == [SSEMessage(data="hello")]

    @pytest.mark.asyncio
    async def test_event_id_retry_and_multiline(self):
        messages = await _parse(
            ": comment",
            "event: update",
            "id: 42",
            "retry: 3000",
            "data: one",
            "data:two",
            "",
        )
        assert messages == [SSEMessage(event="update", data="one\ntwo", id="42", retry=3000)]

    @pytest.mark.asyncio
    async def test_blocks_without_data_are_skipped(self):
        assert await _parse("event: ping", "", "data: x", "") == [SSEMessage(data="x")]

    @pytest.mark.asyncio
    async def test_id_carries_over_and_event_resets(self):
        messages = await _parse("event: a", "id: 1", "data: x", "", "data: y", "")
        assert messages == [
            SSEMessage(event="a", data="x", id="1"),
            SSEMessage(event="message", data="y", id="1"),
        ]

    @pytest.mark.asyncio
    async def test_trailing_partial_block_discarded(self):
        assert await _parse("data: complete", "", "data: partial") == [
            SSEMessage(data="complete")
        ]


def _client(body: bytes, status: int = 200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, content=body, headers={"content-type": "text/event-stream"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://relay")


class TestSSEStreamFactory:
    @pytest.mark.asyncio
    async def test_decodes_and_skips_heartbeats(self):
        body = (
            b"event: heartbeat\ndata: {}\n\n"
            b'event: message\ndata: {"type": "comment-added", "n": 1}\n\n'
            b'data: {"type": "comment-added", "n": 2}\n\n'
        )
        seen = []
        async with _client(body, seen=seen) as client:
            factory = sse_stream_factory(client, "/resources/1/stream")
            stream = await factory({"since": "5"})
            items = [item async for item in stream]
        assert [i["n"] for i in items] == [1, 2]
        assert seen[0].headers["accept"] == "text/event-stream"
        assert seen[0].url.params["since"] == "5"

    @pytest.mark.asyncio
    async def test_malformed_payload_dropped(self, caplog):
        body = b"data: {not json\n\n" b'data: {"type": "ok"}\n\n'
        errors = []
        async with _client(body) as client:
            factory = sse_stream_factory(client, "/s", on_payload_error=errors.append)
            items = [item async for item in await factory(None)]
        assert items == [{"type": "ok"}]
        assert len(errors) == 1
        assert "Failed to parse SSE event" in errors[0].message
        assert any("Failed to parse SSE event" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_http_error_raised_before_streaming(self):
        async with _client(b"nope", status=503) as client:
            factory = sse_stream_factory(client, "/s")
            with pytest.raises(httpx.HTTPStatusError):
                await factory(None)

    @pytest.mark.asyncio
    async def test_drives_reconnecting_stream(self, wait_until):
        body = b'data: {"type": "tick"}\n\n'
        received = []
        async with _client(body) as client:
            stream = start_stream(
                sse_stream_factory(client, "/s"),
                lambda item, meta: received.append((item["type"], meta.reconnect_attempt)),
                options=ReconnectOptions(base_delay=1, max_delay=2, jitter_percent=0),
            )
            # Each response ends after one event, so the controller keeps resuming.
            await wait_until(lambda: len(received) >= 2)
            stream.stop()
        assert received[:2] == [("tick", 0), ("tick", 1)]
        assert stream.state is ConnectionState.STOPPED
