from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.api.schemas.common import ApiMeta


class SearchJobStartRequest(BaseModel):
    user_id: int | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    keywords: list[str] = Field(default_factory=list, validation_alias=AliasChoices("keywords", "topics"))
    sources: list[str] = Field(default_factory=list)
    competitors: list[str] = Field(default_factory=list)
    onboarding: bool = False

    model_config = ConfigDict(extra="forbid")


class SearchJobStartData(BaseModel):
    job_id: int
    run_id: str | None
    status: str

    model_config = ConfigDict(extra="forbid")


class SearchJobStartEnvelope(BaseModel):
    data: SearchJobStartData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")


class SearchJobFailureData(BaseModel):
    code: str | None
    message: str | None

    model_config = ConfigDict(extra="forbid")


class SearchJobData(BaseModel):
    job_id: int
    status: str
    run_id: str | None
    keywords: list[str]
    sources: list[str]
    competitors: list[str]
    is_onboarding: bool
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    failure: SearchJobFailureData | None
    items: list[dict[str, Any]]
    result_count: int | None
    new_count: int | None

    model_config = ConfigDict(extra="forbid")


class SearchJobEnvelope(BaseModel):
    data: SearchJobData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")
