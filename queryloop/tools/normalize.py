"""Map each provider's item schema onto ``SearchResultItem``.

One function per provider; downstream code never looks at provider fields.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from queryloop.models.conversation import SearchResultItem


def _str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _first(mapping: Any, key: str, field: str) -> str:
    """Return ``mapping[key][0][field]`` or an empty string."""
    if not isinstance(mapping, dict):
        return ""
    entries = mapping.get(key)
    if not isinstance(entries, list) or not entries or not isinstance(entries[0], dict):
        return ""
    return _str(entries[0].get(field))


def _domain(url: str) -> str:
    return urlparse(url).netloc if url else ""


def from_google_item(item: dict[str, Any]) -> SearchResultItem:
    pagemap = item.get("pagemap")
    url = _str(item.get("link"))
    return SearchResultItem(
        title=_str(item.get("title")),
        description=_str(item.get("snippet")),
        source_name=_first(pagemap, "person", "name") or _str(item.get("displayLink")) or _domain(url),
        url=url,
        image_url=_first(pagemap, "imageobject", "url") or _first(pagemap, "cse_image", "src"),
        thumbnail_url=_first(pagemap, "cse_thumbnail", "src"),
    )


def from_tavily_item(item: dict[str, Any]) -> SearchResultItem:
    url = _str(item.get("url"))
    return SearchResultItem(
        title=_str(item.get("title")),
        description=_str(item.get("content")),
        source_name=_domain(url),
        url=url,
    )


def from_research_source(source: dict[str, Any]) -> SearchResultItem:
    """Research sources may carry a summary and key points; prefer those."""
    summary = _str(source.get("summary"))
    raw_points = source.get("keyPoints")
    key_points = [_str(p) for p in raw_points if _str(p)] if isinstance(raw_points, list) else []
    description = summary or _str(source.get("description")) or _str(source.get("snippet"))
    if key_points:
        points = "; ".join(key_points)
        description = f"{description} Key points: {points}" if description else f"Key points: {points}"
    url = _str(source.get("url")) or _str(source.get("link"))
    thumbnail = _str(source.get("thumbnail"))
    return SearchResultItem(
        title=_str(source.get("title")),
        description=description,
        source_name=_str(source.get("displayLink")) or _str(source.get("name")) or _domain(url),
        url=url,
        image_url=_str(source.get("image")) or thumbnail,
        thumbnail_url=thumbnail,
    )


def from_file_citation(item: dict[str, Any]) -> SearchResultItem:
    return SearchResultItem(
        title=_str(item.get("title")),
        description=_str(item.get("description")) or _str(item.get("snippet")),
        source_name=_str(item.get("displayLink")),
        url=_str(item.get("url")),
    )
