from __future__ import annotations

import json as _json

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from queryloop.api.deps import get_context, http_error
from queryloop.errors import QueryLoopError
from queryloop.models.conversation import Conversation
from queryloop.models.schemas import (
    ConversationCreateRequest,
    ConversationResponse,
    ConversationSummary,
    FileContextResponse,
    PollerCancelResponse,
    QueryRequest,
    ReactionRequest,
    ReactionResponse,
    SubmissionResponse,
    UploadedFile,
)
from queryloop.services import logger as log_service
from queryloop.services import streaming
from queryloop.services.orchestrator import QueryContext, SubmissionOutcome

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def _view(ctx: QueryContext, conversation: Conversation) -> ConversationResponse:
    return ConversationResponse.from_view(
        conversation,
        ctx.reconciler.loading_flags(conversation.id),
        ctx.polls.is_polling(conversation.id),
        ctx.reconciler.reactions(conversation.id),
    )


def _submission(outcome: SubmissionOutcome) -> SubmissionResponse:
    return SubmissionResponse(
        conversation_id=outcome.conversation_id,
        message_id=outcome.message.id,
        route=outcome.route.value,
        use_direct_model=outcome.use_direct_model,
        job_handle=outcome.job_handle,
    )


@router.post("", response_model=SubmissionResponse)
async def create_conversation(
    request: ConversationCreateRequest, ctx: QueryContext = Depends(get_context)
):
    """Create a conversation and submit its first query."""
    try:
        _, outcome = await ctx.orchestrator.create_conversation(
            request.query,
            request.mode,
            request.model,
            request.user_email,
            [f.to_ref() for f in request.uploaded_files],
        )
    except QueryLoopError as e:
        raise http_error(e)
    return _submission(outcome)


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(user_email: str | None = None, ctx: QueryContext = Depends(get_context)):
    try:
        conversations = await ctx.orchestrator.list_conversations(user_email)
    except QueryLoopError as e:
        raise http_error(e)
    return [
        ConversationSummary(
            id=c.id, query=c.query, mode=c.mode, model=c.model, created_at=c.created_at
        )
        for c in conversations
    ]


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(conversation_id: str, ctx: QueryContext = Depends(get_context)):
    try:
        conversation = await ctx.orchestrator.refresh(conversation_id)
    except QueryLoopError as e:
        raise http_error(e)
    return _view(ctx, conversation)


@router.post("/{conversation_id}/queries", response_model=SubmissionResponse)
async def submit_query(
    conversation_id: str, request: QueryRequest, ctx: QueryContext = Depends(get_context)
):
    try:
        outcome = await ctx.orchestrator.submit(
            conversation_id,
            request.query,
            [f.to_ref() for f in request.uploaded_files],
            mode=request.mode,
        )
    except QueryLoopError as e:
        raise http_error(e)
    return _submission(outcome)


@router.post("/{conversation_id}/refresh", response_model=ConversationResponse)
async def refresh_conversation(conversation_id: str, ctx: QueryContext = Depends(get_context)):
    """Manual refresh, e.g. after a poll timed out."""
    try:
        conversation = await ctx.orchestrator.refresh(conversation_id)
    except QueryLoopError as e:
        raise http_error(e)
    return _view(ctx, conversation)


@router.get("/{conversation_id}/stream")
async def stream_conversation(conversation_id: str, ctx: QueryContext = Depends(get_context)):
    """SSE endpoint that streams poller and reconciler events."""
    queue = ctx.events.subscribe(conversation_id)

    async def event_generator():
        log_service.log_event(
            event_type="stream_opened",
            message="Conversation stream opened",
            conversation_id=conversation_id,
        )
        try:
            while True:
                event = await queue.get()
                yield {
                    "event": event.event.value,
                    "data": _json.dumps(event.data),
                }
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in conversation stream",
                error=str(e),
                conversation_id=conversation_id,
            )
            error_event = streaming.error("Conversation stream failed unexpectedly.")
            yield {
                "event": error_event.event.value,
                "data": _json.dumps(error_event.data),
            }
        finally:
            ctx.events.unsubscribe(conversation_id, queue)

    return EventSourceResponse(event_generator())


@router.post("/{conversation_id}/messages/{message_id}/reaction", response_model=ReactionResponse)
async def react_to_message(
    conversation_id: str,
    message_id: str,
    request: ReactionRequest,
    ctx: QueryContext = Depends(get_context),
):
    try:
        reaction = await ctx.orchestrator.react(conversation_id, message_id, request.reaction)
    except QueryLoopError as e:
        raise http_error(e)
    return ReactionResponse(message_id=message_id, liked=reaction.liked, disliked=reaction.disliked)


@router.get("/{conversation_id}/files", response_model=FileContextResponse)
async def get_file_context(conversation_id: str, ctx: QueryContext = Depends(get_context)):
    try:
        files = ctx.orchestrator.file_context(conversation_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid conversation id")
    return FileContextResponse(
        conversation_id=conversation_id, files=[UploadedFile.from_ref(f) for f in files]
    )


@router.delete("/{conversation_id}/files", response_model=FileContextResponse)
async def clear_file_context(conversation_id: str, ctx: QueryContext = Depends(get_context)):
    """Forget the conversation's file set. Uploaded files themselves are untouched."""
    try:
        ctx.orchestrator.clear_file_context(conversation_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid conversation id")
    return FileContextResponse(conversation_id=conversation_id, files=[])


@router.delete("/{conversation_id}/poller", response_model=PollerCancelResponse)
async def cancel_poller(conversation_id: str, ctx: QueryContext = Depends(get_context)):
    cancelled = ctx.orchestrator.cancel_polling(conversation_id)
    return PollerCancelResponse(conversation_id=conversation_id, cancelled=cancelled)
