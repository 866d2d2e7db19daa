from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx

from app.logging_utils import structured_log
from app.services.providers.errors import ProviderPollError, ProviderResponseError, ProviderUnavailableError
from app.services.providers.queries import build_queries, location_config
from app.services.providers.types import (
    PROVIDER_STATUS_FAILED,
    PROVIDER_STATUS_RUNNING,
    PROVIDER_STATUS_SUCCEEDED,
    SOCIAL_SOURCES,
    SOURCE_INSTAGRAM,
    SOURCE_TIKTOK,
    SOURCE_WEB,
    SOURCE_YOUTUBE,
    EnrichmentPoll,
    ProviderPoll,
    RawItem,
    SearchParams,
)

logger = logging.getLogger(__name__)

APIFY_FAILED_STATUSES = {"FAILED", "ABORTED", "TIMED-OUT"}
_INSTAGRAM_RESERVED_PATHS = {"p", "reel", "reels", "stories", "explore", "tv"}
_TIKTOK_VIDEO_RE = re.compile(r"/video/(\d+)")


class ApifyClient:
    """Async Apify REST client: actor runs, run status and dataset items."""

    def __init__(
        self,
        *,
        token: str,
        base_url: str = "https://api.apify.com/v2",
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @staticmethod
    def _json_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderResponseError(
                f"Provider returned a non-JSON body ({response.status_code})."
            ) from exc

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            params={"token": self.token},
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )

    async def start_actor_run(self, actor_id: str, *, input_payload: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(f"/acts/{actor_id}/runs", json=input_payload)
        response.raise_for_status()
        payload = self._json_body(response)
        data = payload.get("data") if isinstance(payload, dict) else None
        return data if isinstance(data, dict) else {}

    async def fetch_run(self, run_id: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get(f"/actor-runs/{run_id}")
        response.raise_for_status()
        payload = self._json_body(response)
        data = payload.get("data") if isinstance(payload, dict) else None
        return data if isinstance(data, dict) else {}

    async def fetch_dataset_items(self, dataset_id: str, *, limit: int | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"format": "json", "clean": "true"}
        if limit:
            params["limit"] = limit
        async with self._client() as client:
            response = await client.get(f"/datasets/{dataset_id}/items", params=params)
        response.raise_for_status()
        data = self._json_body(response)
        return data if isinstance(data, list) else []


def map_run_status(raw_status: str | None) -> str:
    status = (raw_status or "").upper()
    if status == "SUCCEEDED":
        return PROVIDER_STATUS_SUCCEEDED
    if status in APIFY_FAILED_STATUSES:
        return PROVIDER_STATUS_FAILED
    return PROVIDER_STATUS_RUNNING


def classify_source(url: str) -> str:
    lowered = url.lower()
    if "youtube.com" in lowered or "youtu.be" in lowered:
        return SOURCE_YOUTUBE
    if "instagram.com" in lowered:
        return SOURCE_INSTAGRAM
    if "tiktok.com" in lowered:
        return SOURCE_TIKTOK
    return SOURCE_WEB


def extract_domain(url: str) -> str:
    host = urlparse(url if "://" in url else f"https://{url}").hostname or url
    return host.lower().removeprefix("www.")


def _search_term(search_query: Any) -> str | None:
    # Either {"term": ...} or a bare string.
    if isinstance(search_query, dict):
        term = search_query.get("term")
        return term if isinstance(term, str) else None
    return search_query if isinstance(search_query, str) else None


def normalize_dataset_items(dataset_items: list[dict[str, Any]]) -> list[RawItem]:
    """Flatten the search actor's per-page records into one item per organic result."""
    items: list[RawItem] = []
    for record in dataset_items:
        if not isinstance(record, dict):
            continue
        organic_results = record.get("organicResults")
        if not isinstance(organic_results, list):
            continue
        search_query = _search_term(record.get("searchQuery"))
        for organic in organic_results:
            if not isinstance(organic, dict):
                continue
            url = organic.get("url")
            url = url.strip() if isinstance(url, str) else ""
            if not url:
                continue
            items.append(
                RawItem(
                    link=url,
                    title=organic.get("title") or "",
                    source=classify_source(url),
                    domain=extract_domain(url),
                    snippet=organic.get("description") or None,
                    rank=organic.get("position"),
                    search_query=search_query,
                    published=organic.get("date"),
                )
            )
    return items


class ApifySearchProvider:
    def __init__(
        self,
        *,
        client: ApifyClient,
        actor_id: str,
        results_per_page: int = 10,
        max_pages_per_query: int = 5,
    ) -> None:
        self._client = client
        self._actor_id = actor_id
        self._results_per_page = results_per_page
        self._max_pages_per_query = max_pages_per_query

    def build_input(self, params: SearchParams) -> dict[str, Any]:
        queries = build_queries(params)
        location = location_config(params.target_country, params.target_language)
        return {
            "queries": "\n".join(query.query for query in queries),
            "resultsPerPage": self._results_per_page,
            "maxPagesPerQuery": self._max_pages_per_query,
            "languageCode": location.language_code,
            "countryCode": location.country_code,
            "searchLanguage": location.language_code,
            "mobileResults": False,
            "includeUnfilteredResults": False,
            "saveHtml": False,
            "saveHtmlToKeyValueStore": False,
            "includeIcons": False,
            "maximumLeadsEnrichmentRecords": 0,
            "focusOnPaidAds": False,
            "forceExactMatch": False,
        }

    async def start(self, params: SearchParams) -> str:
        if not self._client.configured:
            raise ProviderUnavailableError("APIFY_API_TOKEN is not configured.")
        actor_input = self.build_input(params)
        if not actor_input["queries"]:
            raise ProviderUnavailableError("No search queries could be built.")
        try:
            run = await self._client.start_actor_run(self._actor_id, input_payload=actor_input)
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                f"Search provider rejected the run ({exc.response.status_code})."
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"Search provider unreachable: {exc}") from exc
        except ProviderResponseError as exc:
            raise ProviderUnavailableError(str(exc)) from exc

        run_id = run.get("id")
        if not run_id:
            raise ProviderUnavailableError("Search provider returned no run id.")
        structured_log(
            logger,
            "info",
            "provider.run_started",
            provider_run_id=run_id,
            query_count=actor_input["queries"].count("\n") + 1,
        )
        return str(run_id)

    async def poll(self, run_id: str) -> ProviderPoll:
        try:
            run = await self._client.fetch_run(run_id)
        except (httpx.HTTPError, ProviderResponseError) as exc:
            raise ProviderPollError(f"Could not read run {run_id}: {exc}") from exc

        raw_status = run.get("status")
        status = map_run_status(raw_status)
        if status == PROVIDER_STATUS_RUNNING:
            return ProviderPoll(status=status)
        if status == PROVIDER_STATUS_FAILED:
            return ProviderPoll(status=status, failure_reason=str(raw_status).upper())

        dataset_id = run.get("defaultDatasetId")
        if not dataset_id:
            raise ProviderPollError(f"Run {run_id} finished without a dataset.")
        try:
            dataset_items = await self._client.fetch_dataset_items(dataset_id)
        except (httpx.HTTPError, ProviderResponseError) as exc:
            raise ProviderPollError(f"Could not read dataset {dataset_id}: {exc}") from exc
        items = normalize_dataset_items(dataset_items)
        structured_log(
            logger,
            "info",
            "provider.run_succeeded",
            provider_run_id=run_id,
            item_count=len(items),
        )
        return ProviderPoll(status=status, items=tuple(items))


def match_key(source: str, url: str) -> str:
    """Key that survives the URL rewrites providers apply (www., m., tracking params)."""
    parsed = urlparse(url if "://" in url else f"https://{url}")
    path = parsed.path.rstrip("/")
    if source == SOURCE_YOUTUBE:
        video_id = (parse_qs(parsed.query).get("v") or [None])[0]
        if video_id:
            return f"yt:{video_id}"
        if (parsed.hostname or "").endswith("youtu.be") and path:
            return f"yt:{path.lstrip('/')}"
        if path.startswith("/shorts/"):
            return f"yt:{path.removeprefix('/shorts/')}"
    if source == SOURCE_INSTAGRAM:
        segments = [segment for segment in path.split("/") if segment]
        if segments and segments[0].lower() not in _INSTAGRAM_RESERVED_PATHS:
            return f"ig:{segments[0].lower()}"
    if source == SOURCE_TIKTOK:
        video_match = _TIKTOK_VIDEO_RE.search(path)
        if video_match:
            return f"tt:{video_match.group(1)}"
    host = (parsed.hostname or "").lower().removeprefix("www.").removeprefix("m.")
    return f"url:{host}{path.lower()}"


def _youtube_metadata(item: dict[str, Any]) -> tuple[list[str], dict[str, Any]]:
    keys = [match_key(SOURCE_YOUTUBE, item["url"])] if item.get("url") else []
    channel_name = item.get("channelName")
    return keys, {
        "person_name": channel_name,
        "channel": {
            "name": channel_name,
            "link": item.get("channelUrl"),
            "subscribers": item.get("numberOfSubscribers"),
            "verified": item.get("isChannelVerified"),
            "views": item.get("viewCount"),
        },
    }


def _instagram_metadata(item: dict[str, Any]) -> tuple[list[str], dict[str, Any]]:
    keys = []
    if item.get("username"):
        keys.append(f"ig:{str(item['username']).lower()}")
    if item.get("url"):
        keys.append(match_key(SOURCE_INSTAGRAM, item["url"]))
    return keys, {
        "person_name": item.get("fullName") or item.get("username"),
        "summary": item.get("biography"),
        "email": item.get("businessEmail") or item.get("publicEmail"),
        "channel": {
            "name": item.get("username"),
            "link": item.get("url"),
            "followers": item.get("followersCount"),
            "verified": item.get("verified"),
            "external_url": item.get("externalUrl"),
        },
    }


def _tiktok_metadata(item: dict[str, Any]) -> tuple[list[str], dict[str, Any]]:
    keys = []
    if item.get("id"):
        keys.append(f"tt:{item['id']}")
    if item.get("webVideoUrl"):
        keys.append(match_key(SOURCE_TIKTOK, item["webVideoUrl"]))
    author = item.get("authorMeta") or {}
    return keys, {
        "person_name": author.get("nickName") or author.get("name"),
        "summary": author.get("signature"),
        "channel": {
            "name": author.get("name"),
            "link": author.get("profileUrl"),
            "followers": author.get("fans"),
            "verified": author.get("verified"),
            "views": item.get("playCount"),
        },
    }


_METADATA_MAPPERS = {
    SOURCE_YOUTUBE: _youtube_metadata,
    SOURCE_INSTAGRAM: _instagram_metadata,
    SOURCE_TIKTOK: _tiktok_metadata,
}


def _enrichment_input(source: str, links: list[str]) -> dict[str, Any]:
    if source == SOURCE_YOUTUBE:
        return {"startUrls": [{"url": link} for link in links], "maxResults": 1}
    if source == SOURCE_INSTAGRAM:
        return {"directUrls": links, "resultsType": "details", "resultsLimit": 1}
    return {"postURLs": links, "resultsPerPage": 1}


class ApifyEnrichmentProvider:
    """Starts one enrichment actor run per social source and maps results back by link."""

    def __init__(self, *, client: ApifyClient, actor_ids: dict[str, str]) -> None:
        self._client = client
        self._actor_ids = {source: actor_id for source, actor_id in actor_ids.items() if actor_id}

    async def start(self, items: list[RawItem]) -> dict[str, str]:
        handle: dict[str, str] = {}
        if not self._client.configured:
            return handle
        for source in SOCIAL_SOURCES:
            actor_id = self._actor_ids.get(source)
            links = [item.link for item in items if item.source == source]
            if not actor_id or not links:
                continue
            try:
                run = await self._client.start_actor_run(actor_id, input_payload=_enrichment_input(source, links))
            except (httpx.HTTPError, ProviderResponseError) as exc:
                structured_log(logger, "warning", "provider.enrichment_start_failed", source=source, error=str(exc))
                continue
            if run.get("id"):
                handle[source] = str(run["id"])
        return handle

    async def poll(self, handle: dict[str, str]) -> EnrichmentPoll:
        finished = True
        failed_sources: list[str] = []
        metadata_by_key: dict[str, dict[str, Any]] = {}
        for source, run_id in handle.items():
            try:
                run = await self._client.fetch_run(run_id)
            except (httpx.HTTPError, ProviderResponseError) as exc:
                structured_log(logger, "warning", "provider.enrichment_poll_failed", source=source, error=str(exc))
                finished = False
                continue
            status = map_run_status(run.get("status"))
            if status == PROVIDER_STATUS_RUNNING:
                finished = False
                continue
            if status == PROVIDER_STATUS_FAILED or not run.get("defaultDatasetId"):
                failed_sources.append(source)
                continue
            try:
                dataset_items = await self._client.fetch_dataset_items(run["defaultDatasetId"])
            except (httpx.HTTPError, ProviderResponseError) as exc:
                structured_log(logger, "warning", "provider.enrichment_poll_failed", source=source, error=str(exc))
                finished = False
                continue
            mapper = _METADATA_MAPPERS[source]
            for dataset_item in dataset_items:
                if not isinstance(dataset_item, dict):
                    continue
                keys, metadata = mapper(dataset_item)
                for key in keys:
                    metadata_by_key.setdefault(key, metadata)
        return EnrichmentPoll(
            finished=finished,
            metadata_by_key=metadata_by_key,
            failed_sources=tuple(failed_sources),
        )


def metadata_for(item: RawItem, metadata_by_key: dict[str, dict[str, Any]]) -> dict[str, Any] | None:
    if item.source == SOURCE_WEB:
        return None
    return metadata_by_key.get(match_key(item.source, item.link))
