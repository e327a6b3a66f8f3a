"""Shared fixtures for StreamRelay tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import streamrelay.api.app as app_module
from streamrelay.server.broadcaster import MemoryBroadcaster
from streamrelay.server.channels import ChannelRegistry


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def wait_until():
    """Poll a predicate on the event loop until it holds (or fail)."""
    return _wait_until


@pytest.fixture
def broadcaster():
    return MemoryBroadcaster(max_listeners=10, keep_alive_seconds=0.05)


@pytest.fixture
def registry():
    return ChannelRegistry(key_prefix="discussion", key_suffix="comments")


@pytest_asyncio.fixture
async def client(monkeypatch):
    """HTTP test client wired to a fresh channel registry."""
    fresh = ChannelRegistry(key_prefix="resource")
    monkeypatch.setattr(app_module, "_registry", fresh)
    monkeypatch.setattr(app_module, "_broadcaster", MemoryBroadcaster())
    transport = ASGITransport(app=app_module.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
