from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    MESSAGE_RECORDED = "message_recorded"
    PROVIDER_FALLBACK = "provider_fallback"
    GENERATION_STARTED = "generation_started"
    POLL_STARTED = "poll_started"
    POLL_COMPLETED = "poll_completed"
    POLL_FAILED = "poll_failed"
    POLL_TIMED_OUT = "poll_timed_out"
    POLL_CANCELLED = "poll_cancelled"
    CONVERSATION_REFRESHED = "conversation_refreshed"
    ANSWER_RECEIVED = "answer_received"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"
