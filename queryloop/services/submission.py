"""Make exchanges durable and hand generation off to the job runner."""

from __future__ import annotations

from typing import Any, Awaitable, Callable
from uuid import uuid4

from queryloop.errors import JobSubmissionError, PersistenceError, SchemaDriftError
from queryloop.models.conversation import (
    Conversation,
    Message,
    QueryMode,
    SearchResultItem,
    UploadedFileRef,
)
from queryloop.services import logger as log_service
from queryloop.services.logger import logger
from queryloop.services.query_router import validate_submission
from queryloop.tools.job_runner import JobRunner


async def insert_with_drift_retry(
    insert: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]],
    row: dict[str, Any],
    optional: tuple[str, ...],
) -> dict[str, Any]:
    """Insert ``row``, retrying once without the optional column the store rejected.

    The first attempt failed without creating a row, so the retry can
    create at most one.
    """
    try:
        return await insert(row)
    except SchemaDriftError as e:
        dropped = [e.field] if e.field else [c for c in optional if c in row]
        if not dropped:
            raise
        logger.warning(f"Store rejected optional column(s) {dropped}; retrying without them")
        retry_row = {k: v for k, v in row.items() if k not in dropped}
        return await insert(retry_row)


class JobSubmission:
    def __init__(self, store: Any, job_runner: JobRunner):
        self._store = store
        self._job_runner = job_runner

    async def create_conversation(
        self,
        query: str,
        mode: QueryMode,
        model: str,
        user_email: str | None = None,
        uploaded_files: list[UploadedFileRef] | None = None,
    ) -> Conversation:
        files = uploaded_files or []
        validate_submission(query, files)
        row: dict[str, Any] = {
            "libId": str(uuid4()),
            "searchInput": query or "",
            "userEmail": user_email or "anonymous",
            "type": mode.value,
            "selectedModel": model,
        }
        if files:
            row["uploadedFiles"] = [f.to_dict() for f in files]

        created = await insert_with_drift_retry(
            self._store.create_conversation, row, ("uploadedFiles",)
        )
        conversation = Conversation.from_row({**row, **created})
        if not conversation.uploaded_files and files:
            # Column missing on this deployment; keep the refs for the first query.
            conversation.uploaded_files = list(files)
        log_service.log_event(
            event_type="conversation_created",
            message="Conversation created",
            conversation_id=conversation.id,
            mode=mode.value,
            files=len(files),
        )
        return conversation

    async def record_message(
        self,
        conversation_id: str,
        user_text: str,
        results: list[SearchResultItem],
        *,
        answer: str | None = None,
        uploaded_files: list[UploadedFileRef] | None = None,
        used_direct_model: bool | None = None,
    ) -> Message:
        row: dict[str, Any] = {
            "libId": conversation_id,
            "userSearchInput": user_text,
            "searchResult": [item.to_row() for item in results],
        }
        if answer is not None:
            row["aiResp"] = answer
        if uploaded_files:
            row["uploadedFiles"] = [f.to_dict() for f in uploaded_files]
        if used_direct_model is not None:
            row["usedDirectModel"] = used_direct_model

        created = await insert_with_drift_retry(
            self._store.insert_chat, row, ("uploadedFiles", "usedDirectModel")
        )
        if not created.get("id"):
            raise PersistenceError("Failed to save search data. Please try again.")
        return Message.from_row({**row, **created})

    async def start_generation(self, message: Message, model: str, use_direct_model: bool) -> str:
        """Start generation for an already-recorded message and return the job handle."""
        handle = await self._job_runner.submit(
            query=message.user_text,
            results=message.results,
            message_id=message.id,
            model=model,
            use_direct_model=use_direct_model,
        )
        if not handle:
            raise JobSubmissionError("AI service did not return a job handle.")
        log_service.log_event(
            event_type="generation_started",
            message="Generation job submitted",
            conversation_id=message.conversation_id,
            message_id=message.id,
            job_handle=handle,
            use_direct_model=use_direct_model,
        )
        return handle
