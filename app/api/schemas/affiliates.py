from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.api.schemas.common import ApiMeta


class AffiliateItemInput(BaseModel):
    link: str
    source: str = "web"
    title: str | None = None
    domain: str | None = None
    snippet: str | None = None
    search_keyword: str | None = Field(default=None, validation_alias=AliasChoices("search_keyword", "keyword"))
    discovery_method_type: str | None = None
    discovery_method_value: str | None = None
    person_name: str | None = None
    email: str | None = None
    channel: dict[str, Any] | None = None
    extra: dict[str, Any] | None = None
    rank: int | None = None

    model_config = ConfigDict(extra="ignore")


class AffiliateBatchRequest(BaseModel):
    user_id: int | None = None
    items: list[AffiliateItemInput] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class AffiliateBatchDeleteRequest(BaseModel):
    user_id: int | None = None
    links: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class AffiliatePromoteRequest(BaseModel):
    user_id: int | None = None
    link: str

    model_config = ConfigDict(extra="forbid")


class AffiliateItemData(BaseModel):
    id: int
    link: str
    source: str
    title: str | None
    domain: str | None
    snippet: str | None
    search_keyword: str | None
    discovery_method_type: str | None
    discovery_method_value: str | None
    person_name: str | None
    email: str | None
    channel: dict[str, Any] | None
    extra: dict[str, Any] | None
    rank: int | None
    created_at: datetime

    model_config = ConfigDict(extra="forbid")


class AffiliateBatchData(BaseModel):
    store: str
    inserted_ids: list[int]
    items: list[AffiliateItemData]
    count: int
    duplicates: int
    rejected: int

    model_config = ConfigDict(extra="forbid")


class AffiliateBatchEnvelope(BaseModel):
    data: AffiliateBatchData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")


class AffiliateListData(BaseModel):
    store: str
    items: list[AffiliateItemData]
    count: int

    model_config = ConfigDict(extra="forbid")


class AffiliateListEnvelope(BaseModel):
    data: AffiliateListData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")


class AffiliateRemovalData(BaseModel):
    store: str
    removed: int

    model_config = ConfigDict(extra="forbid")


class AffiliateRemovalEnvelope(BaseModel):
    data: AffiliateRemovalData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")


class AffiliatePromoteData(BaseModel):
    link: str
    item_id: int | None
    is_new: bool

    model_config = ConfigDict(extra="forbid")


class AffiliatePromoteEnvelope(BaseModel):
    data: AffiliatePromoteData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")
