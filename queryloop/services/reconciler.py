"""Single writer of the in-memory conversation mirror.

Every change to a mirrored conversation goes through ``apply``; the diff
is always taken against the last-applied snapshot so applying the same
snapshot twice is a no-op for signals and derived flags.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from queryloop.config import settings
from queryloop.errors import ConversationNotFoundError
from queryloop.models.conversation import Conversation, Reaction
from queryloop.services import streaming
from queryloop.services.events import EventChannel
from queryloop.services.logger import logger
from queryloop.services.poller import PollRegistry


@dataclass
class ReconcileResult:
    conversation: Conversation
    newly_answered: list[str] = field(default_factory=list)
    all_answered: bool = False
    answer_signalled: bool = False


def _all_answered(conversation: Conversation | None) -> bool:
    if conversation is None or not conversation.messages:
        return False
    return all(m.has_answer for m in conversation.messages)


class StateReconciler:
    def __init__(
        self,
        store: Any,
        polls: PollRegistry,
        events: EventChannel | None = None,
        max_conversations: int | None = None,
    ):
        self._store = store
        self._polls = polls
        self._events = events
        self._max_conversations = (
            settings.mirror_max_conversations if max_conversations is None else max_conversations
        )
        self._snapshots: OrderedDict[str, Conversation] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    async def refresh(self, conversation_id: str) -> ReconcileResult:
        """Fetch the conversation with its messages and replace the mirror."""
        # Serialized per conversation so an older fetch never lands after a newer one.
        async with self._lock(conversation_id):
            row = await self._store.get_conversation(conversation_id)
            if row is not None:
                return self.apply(Conversation.from_row(row))
        self.forget(conversation_id)
        raise ConversationNotFoundError(conversation_id)

    def apply(self, snapshot: Conversation) -> ReconcileResult:
        previous = self._snapshots.get(snapshot.id)
        pending_before = (
            {m.id for m in previous.messages if not m.has_answer} if previous else set()
        )
        newly_answered = [
            m.id for m in snapshot.messages if m.has_answer and m.id in pending_before
        ]
        all_answered = _all_answered(snapshot)
        signalled = bool(newly_answered) or (all_answered and not _all_answered(previous))

        self._snapshots[snapshot.id] = snapshot
        self._snapshots.move_to_end(snapshot.id)
        self._evict(keep=snapshot.id)

        loading_id = self.loading_message_id(snapshot.id)
        self._publish(snapshot.id, streaming.conversation_refreshed(len(snapshot.messages), loading_id))
        if signalled:
            logger.info(
                f"Answer received for {snapshot.id}: new={newly_answered} all_answered={all_answered}"
            )
            self._publish(snapshot.id, streaming.answer_received(newly_answered, all_answered))
            self._polls.notify_answer(snapshot.id, newly_answered, all_answered)

        return ReconcileResult(
            conversation=snapshot,
            newly_answered=newly_answered,
            all_answered=all_answered,
            answer_signalled=signalled,
        )

    def view(self, conversation_id: str) -> Conversation | None:
        return self._snapshots.get(conversation_id)

    def reactions(self, conversation_id: str) -> dict[str, Reaction]:
        conversation = self._snapshots.get(conversation_id)
        if conversation is None:
            return {}
        return {m.id: Reaction(liked=m.liked, disliked=m.disliked) for m in conversation.messages}

    def loading_message_id(self, conversation_id: str) -> str | None:
        """The last message, if it is unanswered and a poller is active."""
        conversation = self._snapshots.get(conversation_id)
        if conversation is None or not conversation.messages:
            return None
        last = conversation.messages[-1]
        if last.has_answer or not self._polls.is_polling(conversation_id):
            return None
        return last.id

    def loading_flags(self, conversation_id: str) -> dict[str, bool]:
        conversation = self._snapshots.get(conversation_id)
        if conversation is None:
            return {}
        loading_id = self.loading_message_id(conversation_id)
        return {m.id: m.id == loading_id for m in conversation.messages}

    def forget(self, conversation_id: str) -> None:
        self._snapshots.pop(conversation_id, None)
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]

    def clear(self) -> None:
        self._snapshots.clear()
        self._locks.clear()

    def _evict(self, keep: str) -> None:
        # Least recently applied first; never the polled ones.
        for conversation_id in list(self._snapshots):
            if len(self._snapshots) <= self._max_conversations:
                return
            if conversation_id == keep or self._polls.is_polling(conversation_id):
                continue
            self.forget(conversation_id)

    def _publish(self, conversation_id: str, event) -> None:
        if self._events is not None:
            self._events.publish(conversation_id, event)
