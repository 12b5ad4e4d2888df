from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from queryloop.config import settings
from queryloop.tools import google_search

WEB_ITEMS = [
    {
        "title": "With thumbnail",
        "link": "https://a.example/1",
        "snippet": "first",
        "displayLink": "a.example",
        "pagemap": {"cse_thumbnail": [{"src": "https://thumbs/a.jpg"}]},
    },
    {"title": "Bare", "link": "https://b.example/2", "snippet": "second", "displayLink": "b.example"},
]
IMAGE_ITEMS = [{"image": {"thumbnailLink": "https://thumbs/img-1.jpg"}}]


class FakeGoogleClient:
    def __init__(self, bad_keys=(), fail_images: bool = False):
        self.bad_keys = set(bad_keys)
        self.fail_images = fail_images
        self.calls: list[dict] = []

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def get(self, url, params=None):
        self.calls.append(params)
        request = httpx.Request("GET", url)
        if params["key"] in self.bad_keys:
            return httpx.Response(429, json={"error": {"message": "quota"}}, request=request)
        if params.get("searchType") == "image":
            if self.fail_images:
                raise httpx.ReadTimeout("image search timed out")
            return httpx.Response(200, json={"items": IMAGE_ITEMS}, request=request)
        return httpx.Response(200, json={"items": WEB_ITEMS}, request=request)


@pytest.fixture
def google_credentials():
    with (
        patch.object(settings, "google_api_keys", "key-1, key-2"),
        patch.object(settings, "google_cx_ids", "cx-1"),
    ):
        yield


def test_credentials_pair_extra_keys_with_last_cx(google_credentials):
    assert google_search.credentials() == [("key-1", "cx-1"), ("key-2", "cx-1")]


@pytest.mark.asyncio
async def test_search_rotates_to_next_key_on_failure(google_credentials):
    fake = FakeGoogleClient(bad_keys={"key-1"})
    with patch("queryloop.tools.google_search.httpx.AsyncClient", new=fake):
        items = await google_search.search("rust release")

    assert [i.url for i in items] == ["https://a.example/1", "https://b.example/2"]
    assert {c["key"] for c in fake.calls} == {"key-1", "key-2"}


@pytest.mark.asyncio
async def test_image_hits_backfill_results_without_images(google_credentials):
    fake = FakeGoogleClient()
    with patch("queryloop.tools.google_search.httpx.AsyncClient", new=fake):
        items = await google_search.search("rust release")

    assert items[0].thumbnail_url == "https://thumbs/a.jpg"
    assert items[0].image_url == ""
    assert items[1].image_url == "https://thumbs/img-1.jpg"
    assert items[1].thumbnail_url == "https://thumbs/img-1.jpg"


@pytest.mark.asyncio
async def test_image_failure_keeps_web_results(google_credentials):
    fake = FakeGoogleClient(fail_images=True)
    with patch("queryloop.tools.google_search.httpx.AsyncClient", new=fake):
        items = await google_search.search("rust release")

    assert len(items) == 2
    assert items[1].image_url == ""


@pytest.mark.asyncio
async def test_all_keys_failing_raises(google_credentials):
    fake = FakeGoogleClient(bad_keys={"key-1", "key-2"})
    with patch("queryloop.tools.google_search.httpx.AsyncClient", new=fake):
        with pytest.raises(httpx.HTTPStatusError):
            await google_search.search("rust release")
