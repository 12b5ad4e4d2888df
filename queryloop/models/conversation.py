from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class QueryMode(str, Enum):
    SEARCH = "search"
    RESEARCH = "research"


class Route(str, Enum):
    SEARCH = "search"
    RESEARCH = "research"
    FILE_ANALYSIS = "file_analysis"


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class SearchResultItem:
    """Canonical source shape shared by every provider.

    Missing fields are empty strings, never ``None``.
    """

    title: str = ""
    description: str = ""
    source_name: str = ""
    url: str = ""
    image_url: str = ""
    thumbnail_url: str = ""

    def to_row(self) -> dict[str, str]:
        # Column names of the stored Chats.searchResult JSON
        return {
            "title": self.title,
            "description": self.description,
            "name": self.source_name,
            "image": self.image_url,
            "url": self.url,
            "thumbnail": self.thumbnail_url,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SearchResultItem:
        return cls(
            title=_text(row.get("title")),
            description=_text(row.get("description")),
            source_name=_text(row.get("name")),
            url=_text(row.get("url")),
            image_url=_text(row.get("image")),
            thumbnail_url=_text(row.get("thumbnail")),
        )


@dataclass(frozen=True)
class UploadedFileRef:
    path: str
    public_url: str
    file_name: str
    file_type: str = ""
    file_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "publicUrl": self.public_url,
            "fileName": self.file_name,
            "fileType": self.file_type,
            "fileSize": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UploadedFileRef:
        size = data.get("fileSize", 0)
        return cls(
            path=_text(data.get("path")),
            public_url=_text(data.get("publicUrl")),
            file_name=_text(data.get("fileName")),
            file_type=_text(data.get("fileType")),
            file_size=size if isinstance(size, int) else 0,
        )


@dataclass(frozen=True)
class Reaction:
    liked: bool = False
    disliked: bool = False


@dataclass
class Message:
    id: str
    conversation_id: str
    user_text: str
    results: list[SearchResultItem] = field(default_factory=list)
    answer: str | None = None
    liked: bool = False
    disliked: bool = False
    created_at: datetime | None = None

    @property
    def has_answer(self) -> bool:
        return bool(self.answer)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Message:
        raw_results = row.get("searchResult")
        results = [
            SearchResultItem.from_row(item)
            for item in (raw_results if isinstance(raw_results, list) else [])
            if isinstance(item, dict)
        ]
        answer = row.get("aiResp")
        return cls(
            id=str(row.get("id")),
            conversation_id=str(row.get("libId", "")),
            user_text=_text(row.get("userSearchInput")),
            results=results,
            answer=answer if isinstance(answer, str) and answer else None,
            liked=bool(row.get("liked")),
            disliked=bool(row.get("disliked")),
            created_at=_parse_timestamp(row.get("created_at")),
        )


@dataclass
class Conversation:
    id: str
    query: str
    mode: QueryMode
    model: str
    user_email: str = ""
    uploaded_files: list[UploadedFileRef] = field(default_factory=list)
    created_at: datetime | None = None
    messages: list[Message] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Conversation:
        raw_files = row.get("uploadedFiles")
        raw_chats = row.get("Chats")
        messages = [
            Message.from_row(chat)
            for chat in (raw_chats if isinstance(raw_chats, list) else [])
            if isinstance(chat, dict)
        ]
        messages.sort(key=lambda m: m.created_at.timestamp() if m.created_at else float("inf"))
        try:
            mode = QueryMode(row.get("type") or QueryMode.SEARCH.value)
        except ValueError:
            mode = QueryMode.SEARCH
        return cls(
            id=str(row.get("libId")),
            query=_text(row.get("searchInput")),
            mode=mode,
            model=_text(row.get("selectedModel")),
            user_email=_text(row.get("userEmail")),
            uploaded_files=[
                UploadedFileRef.from_dict(f)
                for f in (raw_files if isinstance(raw_files, list) else [])
                if isinstance(f, dict)
            ],
            created_at=_parse_timestamp(row.get("created_at")),
            messages=messages,
        )


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
