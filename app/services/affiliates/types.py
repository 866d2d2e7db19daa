from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

STORE_DISCOVERED = "discovered"
STORE_SAVED = "saved"
AFFILIATE_STORES = (STORE_DISCOVERED, STORE_SAVED)


@dataclass(frozen=True)
class AffiliateRecord:
    link: str
    source: str
    title: str | None = None
    domain: str | None = None
    snippet: str | None = None
    search_keyword: str | None = None
    discovery_method_type: str | None = None
    discovery_method_value: str | None = None
    person_name: str | None = None
    email: str | None = None
    channel: dict[str, Any] | None = None
    extra: dict[str, Any] | None = None
    rank: int | None = None

    def row_values(self, *, user_id: int) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "link": self.link,
            "source": self.source,
            "title": self.title,
            "domain": self.domain,
            "snippet": self.snippet,
            "search_keyword": self.search_keyword,
            "discovery_method_type": self.discovery_method_type,
            "discovery_method_value": self.discovery_method_value,
            "person_name": self.person_name,
            "email": self.email,
            "channel": self.channel,
            "extra": self.extra,
            "rank": self.rank,
        }


@dataclass(frozen=True)
class PersistOutcome:
    inserted: dict[str, int] = field(default_factory=dict)
    existing: dict[str, int] = field(default_factory=dict)
    rejected: tuple[str, ...] = ()

    @property
    def inserted_ids(self) -> list[int]:
        return list(self.inserted.values())

    def item_id(self, link: str) -> int | None:
        return self.inserted.get(link, self.existing.get(link))

    def is_new(self, link: str) -> bool:
        return link in self.inserted


class AffiliateNotFoundError(LookupError):
    """No item with that link exists in the owner's store."""


class UnknownStoreError(ValueError):
    """Store name is neither discovered nor saved."""
