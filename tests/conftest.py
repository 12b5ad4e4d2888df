from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from queryloop.errors import SchemaDriftError
from queryloop.services.file_context import FileContextStore
from queryloop.services.orchestrator import QueryContext
from queryloop.tools.job_runner import JobStatus


class FakeStore:
    """In-memory stand-in for the Supabase Library/Chats tables."""

    def __init__(self):
        self.libraries: dict[str, dict[str, Any]] = {}
        self.chats: list[dict[str, Any]] = []
        self.reject_columns: set[str] = set()
        self.insert_attempts: list[tuple[str, dict[str, Any]]] = []
        self.fetches = 0
        self.reactions: list[tuple[str, bool, bool]] = []
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def _check(self, table: str, row: dict[str, Any]) -> None:
        self.insert_attempts.append((table, dict(row)))
        for column in sorted(self.reject_columns):
            if column in row:
                raise SchemaDriftError(
                    f"Could not find the '{column}' column of '{table}' in the schema cache",
                    field=column,
                )

    async def create_conversation(self, row: dict[str, Any]) -> dict[str, Any]:
        self._check("Library", row)
        stored = {**row, "created_at": self._tick()}
        self.libraries[row["libId"]] = stored
        return dict(stored)

    async def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        self.fetches += 1
        library = self.libraries.get(conversation_id)
        if library is None:
            return None
        chats = [dict(c) for c in self.chats if c["libId"] == conversation_id]
        return {**library, "Chats": chats}

    async def list_conversations(self, user_email: str | None = None) -> list[dict[str, Any]]:
        rows = [
            dict(r)
            for r in self.libraries.values()
            if user_email is None or r.get("userEmail") == user_email
        ]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def insert_chat(self, row: dict[str, Any]) -> dict[str, Any]:
        self._check("Chats", row)
        stored = {
            "aiResp": None,
            "liked": False,
            "disliked": False,
            **row,
            "id": f"msg-{len(self.chats) + 1}",
            "created_at": self._tick(),
        }
        self.chats.append(stored)
        return dict(stored)

    async def update_reaction(self, message_id: str, liked: bool, disliked: bool) -> None:
        self.reactions.append((message_id, liked, disliked))
        for chat in self.chats:
            if chat["id"] == message_id:
                chat["liked"] = liked
                chat["disliked"] = disliked

    # Test helpers

    def add_conversation(
        self,
        conversation_id: str = "conv-1",
        mode: str = "search",
        uploaded_files: list[dict[str, Any]] | None = None,
    ) -> str:
        self.libraries[conversation_id] = {
            "libId": conversation_id,
            "searchInput": "first question",
            "userEmail": "user@example.com",
            "type": mode,
            "selectedModel": "provider-8/gemini-2.0-flash",
            "uploadedFiles": uploaded_files,
            "created_at": self._tick(),
        }
        return conversation_id

    def add_chat(self, conversation_id: str, text: str, answer: str | None = None) -> str:
        message_id = f"msg-{len(self.chats) + 1}"
        self.chats.append(
            {
                "id": message_id,
                "libId": conversation_id,
                "userSearchInput": text,
                "searchResult": [],
                "aiResp": answer,
                "liked": False,
                "disliked": False,
                "created_at": self._tick(),
            }
        )
        return message_id

    def answer(self, message_id: str, text: str) -> None:
        for chat in self.chats:
            if chat["id"] == message_id:
                chat["aiResp"] = text


class FakeJobRunner:
    """Scripted job runner: each status call consumes the next scripted outcome."""

    def __init__(self, statuses: list[Any] | None = None):
        self.statuses: list[Any] = list(statuses or [])
        self.status_calls: list[str] = []
        self.submissions: list[dict[str, Any]] = []
        self.on_status: Callable[[str, int], None] | None = None
        self.closed = False

    async def submit(self, **kwargs: Any) -> str:
        self.submissions.append(kwargs)
        return f"job-{len(self.submissions)}"

    async def status(self, handle: str) -> JobStatus:
        self.status_calls.append(handle)
        if self.on_status is not None:
            self.on_status(handle, len(self.status_calls))
        outcome = self.statuses.pop(0) if self.statuses else JobStatus.RUNNING
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def job_runner() -> FakeJobRunner:
    return FakeJobRunner()


@pytest.fixture
def file_store(tmp_path) -> FileContextStore:
    return FileContextStore(tmp_path / "conversation_files")


@pytest.fixture
def make_context(store, job_runner, file_store):
    def _make(**poller_options: Any) -> QueryContext:
        options = {
            "interval": 0.01,
            "max_attempts": 20,
            "timeout": 2.0,
            "format_error_limit": 2,
            **poller_options,
        }
        return QueryContext.create(
            store=store, job_runner=job_runner, file_context=file_store, **options
        )

    return _make
