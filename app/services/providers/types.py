from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

SOURCE_WEB = "web"
SOURCE_YOUTUBE = "youtube"
SOURCE_INSTAGRAM = "instagram"
SOURCE_TIKTOK = "tiktok"
ALL_SOURCES = (SOURCE_WEB, SOURCE_YOUTUBE, SOURCE_INSTAGRAM, SOURCE_TIKTOK)
SOCIAL_SOURCES = (SOURCE_YOUTUBE, SOURCE_INSTAGRAM, SOURCE_TIKTOK)

PROVIDER_STATUS_RUNNING = "running"
PROVIDER_STATUS_SUCCEEDED = "succeeded"
PROVIDER_STATUS_FAILED = "failed"


@dataclass(frozen=True)
class SearchParams:
    keywords: tuple[str, ...]
    sources: tuple[str, ...]
    competitors: tuple[str, ...] = ()
    target_country: str | None = None
    target_language: str | None = None


@dataclass(frozen=True)
class RawItem:
    link: str
    title: str
    source: str
    domain: str | None = None
    snippet: str | None = None
    rank: int | None = None
    search_query: str | None = None
    published: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RawItem:
        return cls(
            link=str(payload["link"]),
            title=str(payload.get("title") or ""),
            source=str(payload.get("source") or SOURCE_WEB),
            domain=payload.get("domain"),
            snippet=payload.get("snippet"),
            rank=payload.get("rank"),
            search_query=payload.get("search_query"),
            published=payload.get("published"),
        )


@dataclass(frozen=True)
class ProviderPoll:
    status: str
    items: tuple[RawItem, ...] = ()
    failure_reason: str | None = None


@dataclass(frozen=True)
class EnrichmentPoll:
    finished: bool
    metadata_by_key: dict[str, dict[str, Any]] = field(default_factory=dict)
    failed_sources: tuple[str, ...] = ()


class SearchProvider(Protocol):
    async def start(self, params: SearchParams) -> str: ...

    async def poll(self, run_id: str) -> ProviderPoll: ...


class EnrichmentProvider(Protocol):
    async def start(self, items: list[RawItem]) -> dict[str, str]: ...

    async def poll(self, handle: dict[str, str]) -> EnrichmentPoll: ...
