from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from queryloop.errors import ConversationNotFoundError
from queryloop.models.conversation import Conversation
from queryloop.models.events import EventType
from queryloop.services.poller import PollRegistry, PollState
from queryloop.services.reconciler import StateReconciler


def _drain(queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.mark.asyncio
async def test_refresh_unknown_conversation_raises(make_context):
    ctx = make_context()

    with pytest.raises(ConversationNotFoundError):
        await ctx.reconciler.refresh("missing")


@pytest.mark.asyncio
async def test_refresh_replaces_mirror_and_orders_messages(make_context, store):
    ctx = make_context()
    store.add_conversation("conv-1")
    first = store.add_chat("conv-1", "q1", answer="a1")
    second = store.add_chat("conv-1", "q2")
    store.chats.reverse()

    result = await ctx.reconciler.refresh("conv-1")

    assert [m.id for m in result.conversation.messages] == [first, second]
    assert ctx.reconciler.view("conv-1") is result.conversation


@pytest.mark.asyncio
async def test_new_answer_is_signalled_once(make_context, store):
    ctx = make_context()
    store.add_conversation("conv-1")
    message_id = store.add_chat("conv-1", "q1")
    queue = ctx.events.subscribe("conv-1")

    first = await ctx.reconciler.refresh("conv-1")
    store.answer(message_id, "Heat pumps move heat rather than generate it.")
    second = await ctx.reconciler.refresh("conv-1")
    third = await ctx.reconciler.refresh("conv-1")

    assert first.answer_signalled is False
    assert second.newly_answered == [message_id]
    assert second.answer_signalled is True
    assert third.answer_signalled is False
    answers = [e for e in _drain(queue) if e.event == EventType.ANSWER_RECEIVED]
    assert len(answers) == 1
    assert answers[0].data == {"message_ids": [message_id], "all_answered": True}


@pytest.mark.asyncio
async def test_applying_same_snapshot_twice_is_idempotent(make_context, store):
    ctx = make_context(interval=5.0)
    store.add_conversation("conv-1")
    store.add_chat("conv-1", "q1", answer="a1")
    store.add_chat("conv-1", "q2")
    ctx.polls.start("conv-1", "job-1")
    snapshot = Conversation.from_row(await store.get_conversation("conv-1"))

    ctx.reconciler.apply(snapshot)
    flags_once = ctx.reconciler.loading_flags("conv-1")
    again = ctx.reconciler.apply(snapshot)

    assert ctx.reconciler.loading_flags("conv-1") == flags_once
    assert again.answer_signalled is False
    assert again.newly_answered == []
    await ctx.aclose()


@pytest.mark.asyncio
async def test_fully_answered_conversation_signals_only_on_transition(make_context, store):
    ctx = make_context()
    store.add_conversation("conv-1")
    store.add_chat("conv-1", "q1", answer="a1")

    loaded = await ctx.reconciler.refresh("conv-1")
    reloaded = await ctx.reconciler.refresh("conv-1")

    assert loaded.all_answered and loaded.answer_signalled
    assert reloaded.all_answered and not reloaded.answer_signalled


@pytest.mark.asyncio
async def test_new_message_already_answered_does_not_signal(make_context, store):
    ctx = make_context()
    store.add_conversation("conv-1")
    store.add_chat("conv-1", "q1", answer="a1")
    await ctx.reconciler.refresh("conv-1")

    store.add_chat("conv-1", "what does the file say", answer="It is a lease.")
    result = await ctx.reconciler.refresh("conv-1")

    assert result.newly_answered == []
    assert result.answer_signalled is False


@pytest.mark.asyncio
async def test_loading_only_on_last_unanswered_message_while_polling(make_context, store):
    ctx = make_context(interval=5.0)
    store.add_conversation("conv-1")
    older = store.add_chat("conv-1", "q1")
    latest = store.add_chat("conv-1", "q2")
    await ctx.reconciler.refresh("conv-1")

    assert ctx.reconciler.loading_message_id("conv-1") is None

    ctx.polls.start("conv-1", "job-1", message_id=latest)
    assert ctx.reconciler.loading_flags("conv-1") == {older: False, latest: True}

    ctx.polls.cancel("conv-1")
    assert ctx.reconciler.loading_flags("conv-1") == {older: False, latest: False}
    await ctx.aclose()


@pytest.mark.asyncio
async def test_answer_signal_completes_active_poller(make_context, store, job_runner):
    ctx = make_context(interval=5.0)
    store.add_conversation("conv-1")
    message_id = store.add_chat("conv-1", "q1")
    await ctx.reconciler.refresh("conv-1")
    poller = ctx.polls.start("conv-1", "job-1", message_id=message_id)

    store.answer(message_id, "done")
    await ctx.reconciler.refresh("conv-1")

    assert await asyncio.wait_for(poller.wait(), timeout=1.0) == PollState.COMPLETED
    assert job_runner.status_calls == []
    assert ctx.reconciler.loading_message_id("conv-1") is None


@pytest.mark.asyncio
async def test_reactions_follow_fetched_rows(make_context, store):
    ctx = make_context()
    store.add_conversation("conv-1")
    liked = store.add_chat("conv-1", "q1", answer="a1")
    plain = store.add_chat("conv-1", "q2", answer="a2")
    await store.update_reaction(liked, True, False)

    await ctx.reconciler.refresh("conv-1")
    reactions = ctx.reconciler.reactions("conv-1")

    assert reactions[liked].liked is True and reactions[liked].disliked is False
    assert reactions[plain].liked is False


@pytest.mark.asyncio
async def test_forget_drops_mirror(make_context, store):
    ctx = make_context()
    store.add_conversation("conv-1")
    await ctx.reconciler.refresh("conv-1")

    ctx.reconciler.forget("conv-1")

    assert ctx.reconciler.view("conv-1") is None
    assert ctx.reconciler.loading_flags("conv-1") == {}


@pytest.mark.asyncio
async def test_unknown_conversation_leaves_no_lock_behind(make_context):
    ctx = make_context()

    with pytest.raises(ConversationNotFoundError):
        await ctx.reconciler.refresh("ghost")

    assert "ghost" not in ctx.reconciler._locks


@pytest.mark.asyncio
async def test_mirror_evicts_least_recently_refreshed(store, job_runner):
    polls = PollRegistry(job_runner, refresh=AsyncMock(), interval=5.0)
    reconciler = StateReconciler(store, polls, max_conversations=2)
    for cid in ("conv-1", "conv-2", "conv-3"):
        store.add_conversation(cid)

    await reconciler.refresh("conv-1")
    await reconciler.refresh("conv-2")
    await reconciler.refresh("conv-1")
    await reconciler.refresh("conv-3")

    assert reconciler.view("conv-2") is None
    assert reconciler.view("conv-1") is not None
    assert reconciler.view("conv-3") is not None
    assert set(reconciler._locks) == {"conv-1", "conv-3"}


@pytest.mark.asyncio
async def test_mirror_keeps_conversations_that_are_polling(store, job_runner):
    polls = PollRegistry(job_runner, refresh=AsyncMock(), interval=5.0)
    reconciler = StateReconciler(store, polls, max_conversations=1)
    store.add_conversation("conv-1")
    store.add_chat("conv-1", "pending question")
    store.add_conversation("conv-2")

    await reconciler.refresh("conv-1")
    polls.start("conv-1", "job-1")
    await reconciler.refresh("conv-2")

    assert reconciler.view("conv-1") is not None
    assert reconciler.loading_message_id("conv-1") == "msg-1"
    await polls.cancel_all()


@pytest.mark.asyncio
async def test_leaving_a_conversation_cancels_polling_and_drops_mirror(make_context, store):
    ctx = make_context(interval=5.0)
    store.add_conversation("conv-1")
    message_id = store.add_chat("conv-1", "pending question")
    await ctx.reconciler.refresh("conv-1")
    poller = ctx.polls.start("conv-1", "job-1", message_id)

    assert ctx.orchestrator.cancel_polling("conv-1") is True

    assert await poller.wait() == PollState.CANCELLED
    assert ctx.polls.get("conv-1") is None
    assert ctx.reconciler.view("conv-1") is None
    assert "conv-1" not in ctx.reconciler._locks
