"""External search adapter.

``search`` and ``research`` never raise for provider trouble: transport
errors, timeouts, missing credentials and explicit "unavailable" responses
all come back as ``ProviderResult(unavailable=True)``, which the orchestrator
turns into the direct-model fallback.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any

import httpx

from queryloop.config import settings
from queryloop.models.conversation import SearchResultItem
from queryloop.services.logger import log_provider_fallback, logger
from queryloop.tools import google_search, tavily_search
from queryloop.tools.normalize import from_research_source

WEB_BACKENDS: dict[str, ModuleType] = {
    "google": google_search,
    "tavily": tavily_search,
}

RESEARCH_ANGLES = (
    "{query}",
    "comprehensive overview of {query}",
    "latest developments and updates on {query}",
    "expert analysis of {query}",
    "detailed explanation of {query}",
    "pros and cons of {query}",
    "statistics and data about {query}",
    "common misconceptions about {query}",
    "future trends in {query}",
    "best practices for {query}",
)


@dataclass
class ProviderResult:
    items: list[SearchResultItem] = field(default_factory=list)
    unavailable: bool = False
    provider: str = ""
    job_handle: str | None = None
    reason: str | None = None


def _unavailable(provider: str, reason: str) -> ProviderResult:
    log_provider_fallback(provider, reason)
    return ProviderResult(unavailable=True, provider=provider, reason=reason)


def _web_backend() -> tuple[str, ModuleType | None]:
    name = settings.search_provider.lower().strip()
    return name, WEB_BACKENDS.get(name)


async def search(query: str) -> ProviderResult:
    name, backend = _web_backend()
    if backend is None:
        return _unavailable(name, f"unsupported SEARCH_PROVIDER: {settings.search_provider}")
    if not backend.is_configured():
        return _unavailable(name, "credentials not configured")

    try:
        items = await backend.search(query, max_results=settings.search_max_results)
    except Exception as e:
        return _unavailable(name, str(e) or type(e).__name__)
    return ProviderResult(items=items, provider=name)


def research_angles(query: str, diversity: bool, limit: int | None = None) -> list[str]:
    if not diversity:
        return [query]
    angles = [template.format(query=query) for template in RESEARCH_ANGLES]
    return angles[: max(limit or settings.research_max_angles, 1)]


def _dedupe(items: list[SearchResultItem], max_sources: int) -> list[SearchResultItem]:
    seen: set[str] = set()
    unique: list[SearchResultItem] = []
    for item in items:
        if not item.url or item.url in seen:
            continue
        seen.add(item.url)
        unique.append(item)
        if len(unique) >= max_sources:
            break
    return unique


async def _fanout_research(query: str, max_sources: int, diversity: bool) -> ProviderResult:
    name, backend = _web_backend()
    provider = f"{name}-fanout"
    if backend is None or not backend.is_configured():
        return _unavailable(provider, "web search backend not configured")

    semaphore = asyncio.Semaphore(max(settings.research_max_parallel_requests, 1))

    async def run(angle: str) -> list[SearchResultItem] | None:
        async with semaphore:
            try:
                return await backend.search(angle, max_results=settings.search_max_results)
            except Exception as e:
                logger.warning(f"Research angle failed ({angle[:60]}): {e}")
                return None

    batches = await asyncio.gather(*(run(angle) for angle in research_angles(query, diversity)))
    if all(batch is None for batch in batches):
        return _unavailable(provider, "all research searches failed")

    collected = [item for batch in batches if batch for item in batch]
    items = _dedupe(collected, max_sources)
    if not items:
        return _unavailable(provider, "no sources found")
    logger.info(f"Research collected {len(collected)} results, {len(items)} unique sources")
    return ProviderResult(items=items, provider=provider)


def _remote_payload_unavailable(payload: dict[str, Any], sources: list[Any]) -> bool:
    if payload.get("unavailable") or payload.get("googleApiUnavailable"):
        return True
    return bool(payload.get("useDirectModel")) and not sources


async def _remote_research(
    query: str, max_sources: int, diversity: bool, user_email: str | None
) -> ProviderResult:
    provider = "research-api"
    try:
        async with httpx.AsyncClient(timeout=settings.research_timeout_seconds) as client:
            response = await client.post(
                settings.research_api_url,
                json={
                    "searchInput": query,
                    "maxSources": max_sources,
                    "includeDiversity": diversity,
                    "user_email": user_email,
                },
            )
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        return _unavailable(provider, str(e) or type(e).__name__)

    if not isinstance(payload, dict):
        return _unavailable(provider, "malformed research response")

    raw_sources = payload.get("searchResult") or payload.get("sources") or []
    sources = raw_sources if isinstance(raw_sources, list) else []
    if _remote_payload_unavailable(payload, sources):
        return _unavailable(provider, str(payload.get("message") or "research provider unavailable"))

    items = [from_research_source(s) for s in sources if isinstance(s, dict)][:max_sources]
    run_id = payload.get("runId")
    return ProviderResult(
        items=items,
        provider=provider,
        job_handle=run_id if isinstance(run_id, str) and run_id else None,
    )


async def research(
    query: str,
    *,
    max_sources: int | None = None,
    diversity: bool | None = None,
    user_email: str | None = None,
) -> ProviderResult:
    max_sources = max_sources or settings.research_max_sources
    diversity = settings.research_diversity if diversity is None else diversity
    try:
        if settings.research_api_url:
            return await _remote_research(query, max_sources, diversity, user_email)
        return await _fanout_research(query, max_sources, diversity)
    except Exception as e:
        return _unavailable("research", str(e) or type(e).__name__)
