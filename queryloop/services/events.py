"""Session-scoped fan-out of conversation events.

Independently running parts of a session (poller, reconciler, HTTP stream)
exchange updates through an ``EventChannel`` owned by the session context,
one subscriber queue per listener.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict

from queryloop.models.events import SSEEvent


class EventChannel:
    def __init__(self, max_queue_size: int = 256):
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, set[asyncio.Queue[SSEEvent]]] = defaultdict(set)

    def subscribe(self, conversation_id: str) -> asyncio.Queue[SSEEvent]:
        queue: asyncio.Queue[SSEEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers[conversation_id].add(queue)
        return queue

    def unsubscribe(self, conversation_id: str, queue: asyncio.Queue[SSEEvent]) -> None:
        queues = self._subscribers.get(conversation_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[conversation_id]

    def publish(self, conversation_id: str, event: SSEEvent) -> None:
        for queue in list(self._subscribers.get(conversation_id, ())):
            if queue.full():
                # Slow consumer: drop its oldest event rather than block the publisher.
                queue.get_nowait()
            queue.put_nowait(event)

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._subscribers.get(conversation_id, ()))
