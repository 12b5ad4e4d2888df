from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from queryloop.config import settings
from queryloop.errors import FileAnalysisError
from queryloop.models.conversation import Message, SearchResultItem, UploadedFileRef
from queryloop.tools.normalize import from_file_citation


@dataclass
class FileAnalysis:
    answer: str
    items: list[SearchResultItem] = field(default_factory=list)


def history_payload(history: list[Message]) -> list[dict[str, Any]]:
    return [
        {"userSearchInput": m.user_text, "aiResp": m.answer or ""}
        for m in history
    ]


async def analyze(
    prompt: str,
    files: list[UploadedFileRef],
    conversation_id: str,
    history: list[Message] | None = None,
) -> FileAnalysis:
    """Answer ``prompt`` grounded in ``files``, with prior turns as context."""
    try:
        async with httpx.AsyncClient(timeout=settings.file_analysis_timeout_seconds) as client:
            response = await client.post(
                settings.file_analysis_url,
                json={
                    "prompt": prompt,
                    "filePaths": [f.to_dict() for f in files],
                    "libId": conversation_id,
                    "conversationHistory": history_payload(history or []),
                },
            )
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise FileAnalysisError("File analysis failed. Please try again.") from e

    if not isinstance(payload, dict):
        raise FileAnalysisError("File analysis returned an unexpected response.")

    answer = payload.get("aiResponse") or payload.get("answer")
    if not isinstance(answer, str) or not answer.strip():
        raise FileAnalysisError("File analysis returned no answer.")

    citations = payload.get("searchResult")
    items = [
        from_file_citation(c)
        for c in (citations if isinstance(citations, list) else [])
        if isinstance(c, dict)
    ]
    return FileAnalysis(answer=answer, items=items)
