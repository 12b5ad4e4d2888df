from __future__ import annotations

from dataclasses import dataclass, field

from queryloop.errors import EmptyQueryError
from queryloop.models.conversation import QueryMode, Route, UploadedFileRef

# Tunable heuristic: plain substring match, English only.
FILE_KEYWORDS = (
    "file",
    "document",
    "image",
    "pdf",
    "analyze",
    "uploaded",
    "attachment",
    "content",
)


@dataclass(frozen=True)
class RouteDecision:
    route: Route
    files: list[UploadedFileRef] = field(default_factory=list)
    include_history: bool = False
    reused_stored_files: bool = False
    file_question: bool = False


def validate_submission(text: str, files: list[UploadedFileRef]) -> None:
    if not (text or "").strip() and not files:
        raise EmptyQueryError()


def mentions_files(text: str) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in FILE_KEYWORDS)


def route_query(
    text: str,
    fresh_files: list[UploadedFileRef],
    stored_files: list[UploadedFileRef],
    mode: QueryMode,
    conversation_files: list[UploadedFileRef] | None = None,
) -> RouteDecision:
    """Pick the execution path for one submission.

    Files are looked up in order: fresh attachments, then the files the
    conversation was created with, then the stored file context. Any of them
    sends the query to file analysis whatever the mode flag says. Only a
    conversation with no files at all follows the mode flag.
    """
    file_question = mentions_files(text)
    if fresh_files:
        return RouteDecision(
            Route.FILE_ANALYSIS,
            files=list(fresh_files),
            include_history=True,
            file_question=file_question,
        )

    reused = list(conversation_files or []) or list(stored_files)
    if reused:
        return RouteDecision(
            Route.FILE_ANALYSIS,
            files=reused,
            include_history=True,
            reused_stored_files=True,
            file_question=file_question,
        )

    if mode == QueryMode.RESEARCH:
        return RouteDecision(Route.RESEARCH, file_question=file_question)
    return RouteDecision(Route.SEARCH, file_question=file_question)
