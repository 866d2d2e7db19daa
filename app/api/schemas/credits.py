from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.api.schemas.common import ApiMeta


class CreditBalanceData(BaseModel):
    category: str
    total: int
    used: int
    remaining: int
    period_start: datetime
    period_end: datetime

    model_config = ConfigDict(extra="forbid")


class CreditBalancesData(BaseModel):
    balances: list[CreditBalanceData]

    model_config = ConfigDict(extra="forbid")


class CreditBalancesEnvelope(BaseModel):
    data: CreditBalancesData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")


class FulfillRequest(BaseModel):
    user_id: int | None = None

    model_config = ConfigDict(extra="forbid")


class FulfillResultData(BaseModel):
    purchase_id: int
    status: str
    category: str
    amount: int

    model_config = ConfigDict(extra="forbid")


class FulfillData(BaseModel):
    fulfilled: int
    total: int
    results: list[FulfillResultData]

    model_config = ConfigDict(extra="forbid")


class FulfillEnvelope(BaseModel):
    data: FulfillData
    meta: ApiMeta

    model_config = ConfigDict(extra="forbid")
