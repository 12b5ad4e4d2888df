from __future__ import annotations

from queryloop.models.conversation import SearchResultItem
from queryloop.tools.normalize import (
    from_file_citation,
    from_google_item,
    from_research_source,
    from_tavily_item,
)


def test_google_item_prefers_pagemap_fields():
    item = from_google_item(
        {
            "title": "Rust 1.80 released",
            "snippet": "The Rust team is happy to announce...",
            "link": "https://blog.rust-lang.org/2024/07/25/Rust-1.80.0.html",
            "displayLink": "blog.rust-lang.org",
            "pagemap": {
                "person": [{"name": "The Rust Release Team"}],
                "cse_image": [{"src": "https://blog.rust-lang.org/cover.png"}],
                "cse_thumbnail": [{"src": "https://encrypted-tbn0.gstatic.com/x"}],
            },
        }
    )

    assert item.source_name == "The Rust Release Team"
    assert item.image_url == "https://blog.rust-lang.org/cover.png"
    assert item.thumbnail_url == "https://encrypted-tbn0.gstatic.com/x"
    assert item.description.startswith("The Rust team")


def test_google_item_missing_fields_become_empty_strings():
    item = from_google_item({"link": "https://example.org/page", "pagemap": {"cse_image": []}})

    assert item == SearchResultItem(source_name="example.org", url="https://example.org/page")


def test_tavily_item_uses_domain_as_source_name():
    item = from_tavily_item(
        {"title": "Docs", "url": "https://docs.python.org/3/library/asyncio.html", "content": "asyncio is..."}
    )

    assert item.source_name == "docs.python.org"
    assert item.description == "asyncio is..."
    assert item.image_url == ""


def test_research_source_appends_key_points_to_summary():
    item = from_research_source(
        {
            "title": "Battery chemistry",
            "url": "https://example.com/lfp",
            "summary": "LFP cells trade density for cycle life.",
            "keyPoints": ["3000+ cycles", "", "lower cost"],
            "thumbnail": "https://example.com/t.jpg",
        }
    )

    assert item.description == "LFP cells trade density for cycle life. Key points: 3000+ cycles; lower cost"
    assert item.image_url == "https://example.com/t.jpg"
    assert item.source_name == "example.com"


def test_file_citation_ignores_non_string_values():
    item = from_file_citation({"title": None, "snippet": "page 3", "url": 42})

    assert item.title == ""
    assert item.description == "page 3"
    assert item.url == ""
