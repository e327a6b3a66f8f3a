"""Event payload model shared by the server and client sides.

The relay itself is generic over payloads and never inspects them; this
model is the default shape: a ``type`` discriminator, a millisecond
timestamp, and any domain-specific fields.
"""

from __future__ import annotations

import json
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now_ms() -> int:
    return int(time.time() * 1000)


class SSEEvent(BaseModel):
    """Generic server-sent event with free-form extra fields."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1, description="Event discriminator")
    timestamp: int = Field(default_factory=_now_ms, description="Epoch milliseconds")


def event_to_json(event: Any) -> str:
    """Serialize an event payload for the wire."""
    if isinstance(event, BaseModel):
        return event.model_dump_json()
    return json.dumps(event, separators=(",", ":"), default=str)
