from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

import httpx

from queryloop.config import settings
from queryloop.models.conversation import SearchResultItem
from queryloop.services.logger import logger
from queryloop.tools.normalize import from_google_item

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"


def credentials() -> list[tuple[str, str]]:
    """Key/cx pairs in rotation order. Extra keys reuse the last cx id."""
    keys = settings.google_api_key_list
    cx_ids = settings.google_cx_id_list
    if not keys or not cx_ids:
        return []
    return [(key, cx_ids[min(i, len(cx_ids) - 1)]) for i, key in enumerate(keys)]


def is_configured() -> bool:
    return bool(credentials())


async def _request(client: httpx.AsyncClient, params: dict[str, Any]) -> dict[str, Any]:
    """Run one Custom Search request, rotating keys until one succeeds."""
    last_error: Exception | None = None
    for index, (key, cx) in enumerate(credentials()):
        try:
            response = await client.get(GOOGLE_SEARCH_URL, params={**params, "key": key, "cx": cx})
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            last_error = e
            logger.warning(f"Google API key {index + 1} failed: {e}")
    if last_error is None:
        raise RuntimeError("Google API credentials are not configured")
    raise last_error


async def search(query: str, *, max_results: int | None = None) -> list[SearchResultItem]:
    """Run web and image searches concurrently and merge them.

    Image hits only backfill ``image_url``/``thumbnail_url`` on web results
    that have none; the web search failing fails the whole call.
    """
    num = min(max_results or settings.search_max_results, 10)
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
        web, images = await asyncio.gather(
            _request(client, {"q": query, "num": num}),
            _request(client, {"q": query, "searchType": "image", "num": settings.search_image_results}),
            return_exceptions=True,
        )

    if isinstance(web, BaseException):
        raise web

    items = [from_google_item(raw) for raw in web.get("items", []) or [] if isinstance(raw, dict)]
    if isinstance(images, BaseException):
        logger.warning(f"Google image search failed: {images}")
        return items

    thumbs = [
        raw.get("image", {}).get("thumbnailLink", "")
        for raw in images.get("items", []) or []
        if isinstance(raw, dict) and isinstance(raw.get("image"), dict)
    ]
    thumbs = [t for t in thumbs if isinstance(t, str) and t]
    merged: list[SearchResultItem] = []
    for item in items:
        if not item.image_url and not item.thumbnail_url and thumbs:
            thumb = thumbs.pop(0)
            item = replace(item, image_url=thumb, thumbnail_url=thumb)
        merged.append(item)
    return merged
