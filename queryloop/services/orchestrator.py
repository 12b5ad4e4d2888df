"""Wires one query through routing, search, persistence, generation and polling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from queryloop.config import settings
from queryloop.errors import MessageNotFoundError, QueryLoopError
from queryloop.models.conversation import (
    Conversation,
    Message,
    QueryMode,
    Reaction,
    Route,
    UploadedFileRef,
)
from queryloop.services import streaming
from queryloop.services.events import EventChannel
from queryloop.services.file_context import FileContextStore
from queryloop.services.logger import logger
from queryloop.services.poller import CompletionPoller, PollRegistry
from queryloop.services.query_router import RouteDecision, route_query, validate_submission
from queryloop.services.reconciler import StateReconciler
from queryloop.services.submission import JobSubmission
from queryloop.tools import file_analysis, search_provider
from queryloop.tools.job_runner import JobRunner

DEFAULT_FILE_PROMPT = "Summarize the attached files."


@dataclass
class SubmissionOutcome:
    conversation_id: str
    message: Message
    route: Route
    use_direct_model: bool = False
    job_handle: str | None = None
    poller: CompletionPoller | None = None


class QueryOrchestrator:
    def __init__(
        self,
        *,
        store: Any,
        submission: JobSubmission,
        reconciler: StateReconciler,
        polls: PollRegistry,
        file_context: FileContextStore,
        events: EventChannel,
    ):
        self._store = store
        self._submission = submission
        self._reconciler = reconciler
        self._polls = polls
        self._file_context = file_context
        self._events = events

    # --- Submissions ---

    async def create_conversation(
        self,
        query: str,
        mode: QueryMode = QueryMode.SEARCH,
        model: str | None = None,
        user_email: str | None = None,
        uploaded_files: list[UploadedFileRef] | None = None,
    ) -> tuple[Conversation, SubmissionOutcome]:
        """Create a conversation and submit its first query."""
        conversation = await self._submission.create_conversation(
            query, mode, model or settings.default_model, user_email, uploaded_files
        )
        outcome = await self.submit(
            conversation.id,
            query,
            uploaded_files or conversation.uploaded_files,
            mode=mode,
            model=conversation.model,
        )
        return conversation, outcome

    async def submit(
        self,
        conversation_id: str,
        text: str,
        fresh_files: list[UploadedFileRef] | None = None,
        *,
        mode: QueryMode | None = None,
        model: str | None = None,
    ) -> SubmissionOutcome:
        try:
            conversation = (await self._reconciler.refresh(conversation_id)).conversation
            fresh = list(fresh_files or [])
            if not fresh and not conversation.messages:
                # First turn of a conversation created with attachments.
                fresh = list(conversation.uploaded_files)
            validate_submission(text, fresh)

            decision = route_query(
                text,
                fresh,
                self._file_context.read(conversation_id),
                mode or conversation.mode,
                conversation.uploaded_files,
            )
            logger.info(
                f"Routing query for {conversation_id} to {decision.route.value}"
                + (" (stored files)" if decision.reused_stored_files else "")
                + (" (file question)" if decision.file_question else "")
            )
            if decision.route == Route.FILE_ANALYSIS:
                return await self._submit_file_analysis(conversation, text, decision)
            return await self._submit_generation(
                conversation,
                text,
                decision.route,
                model or conversation.model or settings.default_model,
            )
        except QueryLoopError as e:
            self._events.publish(conversation_id, streaming.error(e.message, e.code))
            raise

    async def _submit_file_analysis(
        self, conversation: Conversation, text: str, decision: RouteDecision
    ) -> SubmissionOutcome:
        history = conversation.messages if decision.include_history else None
        analysis = await file_analysis.analyze(
            text.strip() or DEFAULT_FILE_PROMPT, decision.files, conversation.id, history
        )
        message = await self._submission.record_message(
            conversation.id,
            text,
            analysis.items,
            answer=analysis.answer,
            uploaded_files=decision.files,
        )
        self._file_context.write(conversation.id, decision.files)
        self._events.publish(
            conversation.id,
            streaming.message_recorded(message.id, Route.FILE_ANALYSIS.value, len(message.results)),
        )
        await self._reconciler.refresh(conversation.id)
        return SubmissionOutcome(conversation.id, message, Route.FILE_ANALYSIS)

    async def _submit_generation(
        self, conversation: Conversation, text: str, route: Route, model: str
    ) -> SubmissionOutcome:
        if route == Route.RESEARCH:
            result = await search_provider.research(text, user_email=conversation.user_email or None)
            if result.job_handle:
                # Remote synthesis runs against its own record; ours still needs a job.
                logger.debug(f"Research backend started run {result.job_handle} for {conversation.id}")
        else:
            result = await search_provider.search(text)

        use_direct_model = result.unavailable
        if use_direct_model:
            self._events.publish(conversation.id, streaming.provider_fallback(result.provider, result.reason))

        message = await self._submission.record_message(
            conversation.id,
            text,
            [] if use_direct_model else result.items,
            used_direct_model=use_direct_model,
        )
        self._events.publish(
            conversation.id,
            streaming.message_recorded(message.id, route.value, len(message.results)),
        )
        # The mirror must hold the pending message before any answer can land.
        await self._reconciler.refresh(conversation.id)

        handle = await self._submission.start_generation(message, model, use_direct_model)
        self._events.publish(
            conversation.id, streaming.generation_started(message.id, handle, use_direct_model)
        )
        poller = self._polls.start(conversation.id, handle, message_id=message.id)
        return SubmissionOutcome(
            conversation.id,
            message,
            route,
            use_direct_model=use_direct_model,
            job_handle=handle,
            poller=poller,
        )

    # --- Reads and user actions ---

    async def refresh(self, conversation_id: str) -> Conversation:
        return (await self._reconciler.refresh(conversation_id)).conversation

    async def list_conversations(self, user_email: str | None = None) -> list[Conversation]:
        rows = await self._store.list_conversations(user_email)
        return [Conversation.from_row(row) for row in rows]

    async def react(self, conversation_id: str, message_id: str, reaction: str) -> Reaction:
        """Toggle like/dislike on a message. The two are mutually exclusive."""
        conversation = self._reconciler.view(conversation_id) or await self.refresh(conversation_id)
        message = next((m for m in conversation.messages if m.id == message_id), None)
        if message is None:
            raise MessageNotFoundError(message_id)

        if reaction == "like":
            liked = not message.liked
            disliked = False if liked else message.disliked
        else:
            disliked = not message.disliked
            liked = False if disliked else message.liked

        await self._store.update_reaction(message_id, liked, disliked)
        await self._reconciler.refresh(conversation_id)
        return Reaction(liked=liked, disliked=disliked)

    def cancel_polling(self, conversation_id: str) -> bool:
        """The user left the conversation: stop polling and drop its mirror."""
        cancelled = self._polls.cancel(conversation_id)
        self._reconciler.forget(conversation_id)
        return cancelled

    def file_context(self, conversation_id: str) -> list[UploadedFileRef]:
        return self._file_context.read(conversation_id)

    def clear_file_context(self, conversation_id: str) -> None:
        self._file_context.clear(conversation_id)
        logger.info(f"Cleared file context for {conversation_id}")


@dataclass
class QueryContext:
    """Everything one session needs, built once and passed down."""

    store: Any
    job_runner: JobRunner
    events: EventChannel
    polls: PollRegistry
    reconciler: StateReconciler
    file_context: FileContextStore
    submission: JobSubmission
    orchestrator: QueryOrchestrator

    @classmethod
    def create(
        cls,
        store: Any = None,
        job_runner: JobRunner | None = None,
        file_context: FileContextStore | None = None,
        **poller_options: Any,
    ) -> QueryContext:
        if store is None:
            from queryloop.services import supabase as store
        job_runner = job_runner or JobRunner()
        file_context = file_context or FileContextStore()
        events = EventChannel()
        polls = PollRegistry(job_runner, publish=events.publish, **poller_options)
        reconciler = StateReconciler(store, polls, events)
        polls.bind_refresh(reconciler.refresh)
        submission = JobSubmission(store, job_runner)
        orchestrator = QueryOrchestrator(
            store=store,
            submission=submission,
            reconciler=reconciler,
            polls=polls,
            file_context=file_context,
            events=events,
        )
        return cls(
            store=store,
            job_runner=job_runner,
            events=events,
            polls=polls,
            reconciler=reconciler,
            file_context=file_context,
            submission=submission,
            orchestrator=orchestrator,
        )

    async def aclose(self) -> None:
        await self.polls.cancel_all()
        self.reconciler.clear()
        await self.job_runner.aclose()
