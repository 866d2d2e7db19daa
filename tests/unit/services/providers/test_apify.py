from __future__ import annotations

import json

import httpx
import pytest

from app.services.providers.apify import (
    ApifyClient,
    ApifyEnrichmentProvider,
    ApifySearchProvider,
    map_run_status,
    match_key,
    metadata_for,
    normalize_dataset_items,
)
from app.services.providers.errors import ProviderPollError, ProviderUnavailableError
from app.services.providers.types import (
    PROVIDER_STATUS_FAILED,
    PROVIDER_STATUS_RUNNING,
    PROVIDER_STATUS_SUCCEEDED,
    RawItem,
    SearchParams,
)

PARAMS = SearchParams(keywords=("keto coffee",), sources=("web", "youtube"))


def _search_provider(handler, *, token: str = "apify-token") -> ApifySearchProvider:
    client = ApifyClient(token=token, base_url="https://apify.test/v2", transport=httpx.MockTransport(handler))
    return ApifySearchProvider(client=client, actor_id="search-actor")


def _dataset_page(term: str, results: list[dict]) -> dict:
    return {"searchQuery": {"term": term}, "organicResults": results}


@pytest.mark.parametrize(
    ("raw_status", "expected"),
    [
        ("SUCCEEDED", PROVIDER_STATUS_SUCCEEDED),
        ("FAILED", PROVIDER_STATUS_FAILED),
        ("ABORTED", PROVIDER_STATUS_FAILED),
        ("TIMED-OUT", PROVIDER_STATUS_FAILED),
        ("RUNNING", PROVIDER_STATUS_RUNNING),
        ("READY", PROVIDER_STATUS_RUNNING),
        (None, PROVIDER_STATUS_RUNNING),
    ],
)
def test_map_run_status(raw_status, expected) -> None:
    assert map_run_status(raw_status) == expected


def test_normalize_dataset_items_flattens_organic_results() -> None:
    items = normalize_dataset_items(
        [
            _dataset_page(
                '"keto coffee review"',
                [
                    {"url": "https://www.blog.example/keto", "title": "Keto blog", "position": 1},
                    {"url": "https://www.youtube.com/watch?v=abc123", "title": "Video", "position": 2},
                    {"url": "", "title": "No link"},
                ],
            ),
            {"unrelated": True},
        ]
    )

    assert [item.link for item in items] == [
        "https://www.blog.example/keto",
        "https://www.youtube.com/watch?v=abc123",
    ]
    assert items[0].source == "web"
    assert items[0].domain == "blog.example"
    assert items[1].source == "youtube"
    assert items[1].search_query == '"keto coffee review"'


@pytest.mark.asyncio
async def test_start_posts_actor_input_and_returns_run_id() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["token"] = request.url.params.get("token")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "run_1"}})

    run_id = await _search_provider(handler).start(PARAMS)

    assert run_id == "run_1"
    assert seen["path"] == "/v2/acts/search-actor/runs"
    assert seen["token"] == "apify-token"
    assert "keto coffee" in seen["body"]["queries"]
    assert seen["body"]["resultsPerPage"] == 10


@pytest.mark.asyncio
async def test_start_without_token_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ProviderUnavailableError):
        await _search_provider(handler, token="").start(PARAMS)


@pytest.mark.asyncio
async def test_start_maps_http_errors_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "busy"})

    with pytest.raises(ProviderUnavailableError):
        await _search_provider(handler).start(PARAMS)


@pytest.mark.asyncio
async def test_poll_returns_items_once_succeeded() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/actor-runs/run_1"):
            return httpx.Response(200, json={"data": {"status": "SUCCEEDED", "defaultDatasetId": "ds_1"}})
        assert request.url.path.endswith("/datasets/ds_1/items")
        return httpx.Response(
            200,
            json=[_dataset_page("keto coffee", [{"url": "https://a.example/x", "title": "A", "position": 1}])],
        )

    result = await _search_provider(handler).poll("run_1")

    assert result.status == PROVIDER_STATUS_SUCCEEDED
    assert [item.link for item in result.items] == ["https://a.example/x"]


@pytest.mark.asyncio
async def test_poll_reports_failure_reason_verbatim() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"status": "TIMED-OUT"}})

    result = await _search_provider(handler).poll("run_1")

    assert result.status == PROVIDER_STATUS_FAILED
    assert result.failure_reason == "TIMED-OUT"


@pytest.mark.asyncio
async def test_poll_raises_when_run_cannot_be_read() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(ProviderPollError):
        await _search_provider(handler).poll("run_1")


def test_normalize_dataset_items_skips_malformed_records() -> None:
    items = normalize_dataset_items(
        [
            {"searchQuery": "keto coffee", "organicResults": [{"url": "https://a.example/x"}, "junk", {"url": 7}]},
            "not a record",
            {"searchQuery": {"term": 3}, "organicResults": [{"url": "https://b.example/y"}]},
        ]
    )

    assert [item.link for item in items] == ["https://a.example/x", "https://b.example/y"]
    assert items[0].search_query == "keto coffee"
    assert items[1].search_query is None


@pytest.mark.asyncio
async def test_poll_raises_poll_error_on_non_json_dataset() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/actor-runs/run_1"):
            return httpx.Response(200, json={"data": {"status": "SUCCEEDED", "defaultDatasetId": "ds_1"}})
        return httpx.Response(200, text="<html>gateway error</html>")

    with pytest.raises(ProviderPollError):
        await _search_provider(handler).poll("run_1")


@pytest.mark.asyncio
async def test_start_maps_non_json_body_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, text="created")

    with pytest.raises(ProviderUnavailableError):
        await _search_provider(handler).start(PARAMS)


def test_match_key_survives_url_rewrites() -> None:
    assert match_key("youtube", "https://m.youtube.com/watch?v=abc&t=3") == "yt:abc"
    assert match_key("youtube", "https://youtu.be/abc") == "yt:abc"
    assert match_key("instagram", "https://www.instagram.com/KetoQueen/") == "ig:ketoqueen"
    assert match_key("tiktok", "https://www.tiktok.com/@keto/video/123?lang=en") == "tt:123"
    assert match_key("instagram", "https://instagram.com/p/xyz/") == "url:instagram.com/p/xyz"


@pytest.mark.asyncio
async def test_enrichment_finishes_only_when_every_run_is_terminal() -> None:
    statuses = {"yt_run": "SUCCEEDED", "ig_run": "RUNNING"}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/runs"):
            actor = path.split("/")[-2]
            return httpx.Response(201, json={"data": {"id": "yt_run" if actor == "yt-actor" else "ig_run"}})
        if "/actor-runs/" in path:
            run_id = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"data": {"status": statuses[run_id], "defaultDatasetId": f"ds_{run_id}"}})
        return httpx.Response(
            200,
            json=[
                {
                    "url": "https://www.youtube.com/watch?v=abc",
                    "channelName": "Keto Kitchen",
                    "channelUrl": "https://www.youtube.com/@ketokitchen",
                    "numberOfSubscribers": 1200,
                }
            ],
        )

    client = ApifyClient(token="t", base_url="https://apify.test/v2", transport=httpx.MockTransport(handler))
    provider = ApifyEnrichmentProvider(client=client, actor_ids={"youtube": "yt-actor", "instagram": "ig-actor"})
    items = [
        RawItem(link="https://www.youtube.com/watch?v=abc", title="Video", source="youtube"),
        RawItem(link="https://www.instagram.com/ketoqueen/", title="Profile", source="instagram"),
        RawItem(link="https://blog.example/post", title="Blog", source="web"),
    ]

    handle = await provider.start(items)
    assert handle == {"youtube": "yt_run", "instagram": "ig_run"}

    first = await provider.poll(handle)
    assert first.finished is False
    metadata = metadata_for(items[0], first.metadata_by_key)
    assert metadata is not None
    assert metadata["person_name"] == "Keto Kitchen"
    assert metadata["channel"]["subscribers"] == 1200
    assert metadata_for(items[2], first.metadata_by_key) is None

    statuses["ig_run"] = "FAILED"
    second = await provider.poll(handle)
    assert second.finished is True
    assert second.failed_sources == ("instagram",)
