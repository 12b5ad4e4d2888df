from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from queryloop.config import settings
from queryloop.models.conversation import SearchResultItem
from queryloop.tools.normalize import from_tavily_item


def is_configured() -> bool:
    return bool(settings.tavily_api_key)


async def search(
    query: str,
    *,
    max_results: int | None = None,
    search_depth: str = "basic",
    topic: str = "general",
) -> list[SearchResultItem]:
    """Execute a Tavily web search and return normalized results."""
    if not is_configured():
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results or settings.search_max_results,
        "topic": topic,
    }
    response = await client.search(**kwargs)

    return [
        from_tavily_item(r)
        for r in response.get("results", [])
        if isinstance(r, dict)
    ]
