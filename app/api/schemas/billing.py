from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.api.schemas.common import ApiMeta


class CreditPackPurchaseRequest(BaseModel):
    user_id: int | None = None
    pack_id: str = Field(validation_alias=AliasChoices("pack_id", "packId"))

    model_config = ConfigDict(extra="forbid")


class CreditPackPurchaseData(BaseModel):
    purchase_id: int
    session_id: str
    url: str | None
    pack_id: str

    model_config = ConfigDict(extra="forbid")


class CreditPackPurchaseEnvelope(BaseModel):
    data: CreditPackPurchaseData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")


class WebhookReceiptData(BaseModel):
    received: bool
    event_type: str
    applied: bool | None = None

    model_config = ConfigDict(extra="forbid")


class WebhookReceiptEnvelope(BaseModel):
    data: WebhookReceiptData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")
