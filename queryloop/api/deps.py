from __future__ import annotations

from fastapi import HTTPException, Request

from queryloop.errors import QueryLoopError
from queryloop.services.orchestrator import QueryContext


def get_context(request: Request) -> QueryContext:
    """The session context built by the application lifespan."""
    return request.app.state.context


def http_error(e: QueryLoopError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.message)


def get_available_models() -> list[dict[str, str]]:
    """Return the list of models the generation job can be asked to use."""
    return [
        {
            "id": "provider-8/gemini-2.0-flash",
            "name": "Gemini 2.0 Flash",
            "description": "Default model. Fast answers grounded in the search results.",
        },
        {
            "id": "provider-6/gpt-oss-20b",
            "name": "GPT 5",
            "description": "Strong general reasoning for longer, more involved questions.",
        },
        {
            "id": "provider-2/deepseek-v3",
            "name": "DeepSeek V3",
            "description": "Good at technical and code-heavy questions.",
        },
        {
            "id": "provider-6/qwen3-32b",
            "name": "Qwen3 32B",
            "description": "Balanced open model for everyday research.",
        },
        {
            "id": "provider-8/llama-4-scout",
            "name": "Llama 4 Scout",
            "description": "Lightweight model for quick lookups.",
        },
        {
            "id": "gemini-2.5-flash",
            "name": "Gemini 2.5 Flash",
            "description": "Newer Gemini model with better synthesis over many sources.",
        },
    ]
