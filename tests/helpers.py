from __future__ import annotations

from datetime import datetime, timedelta
import itertools
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import utcnow
from app.db.models import PlanTier, SubscriptionStatus, User
from app.services.credits import ledger
from app.services.providers.errors import ProviderUnavailableError
from app.services.providers.types import (
    PROVIDER_STATUS_RUNNING,
    EnrichmentPoll,
    ProviderPoll,
    RawItem,
    SearchParams,
)
from app.services.purchases.checkout import CheckoutSession, WebhookEvent
from app.services.purchases.errors import WebhookVerificationError
from app.services.purchases.packs import CreditPack
from app.settings import settings

_EMAIL_SEQUENCE = itertools.count(1)


async def insert_user(
    db_session: AsyncSession,
    *,
    user_id: int | None = None,
    email: str | None = None,
    plan: PlanTier = PlanTier.PRO,
    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    payment_customer_id: str | None = "cus_test",
    brand: str | None = "Bean Bros",
    target_country: str | None = "United States",
    target_language: str | None = "English",
    with_credits: bool = True,
    period_start: datetime | None = None,
) -> int:
    period_start = period_start or utcnow() - timedelta(days=1)
    user = User(
        id=user_id,
        email=email or f"user-{next(_EMAIL_SEQUENCE)}@example.com",
        brand=brand,
        target_country=target_country,
        target_language=target_language,
        plan=plan,
        subscription_status=subscription_status,
        payment_customer_id=payment_customer_id,
    )
    db_session.add(user)
    await db_session.flush()
    if with_credits:
        await ledger.open_plan_period(
            db_session,
            user_id=user.id,
            plan=plan,
            period_start=period_start,
            period_end=period_start + timedelta(days=settings.credit_period_days),
        )
    await db_session.commit()
    return int(user.id)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeSearchProvider:
    def __init__(self, *, run_id: str = "run_1", start_error: Exception | None = None) -> None:
        self.run_id = run_id
        self.start_error = start_error
        self.result = ProviderPoll(status=PROVIDER_STATUS_RUNNING)
        self.poll_error: Exception | None = None
        self.started: list[SearchParams] = []
        self.poll_calls = 0

    async def start(self, params: SearchParams) -> str:
        if self.start_error is not None:
            raise self.start_error
        self.started.append(params)
        return self.run_id if len(self.started) == 1 else f"{self.run_id}_{len(self.started)}"

    async def poll(self, run_id: str) -> ProviderPoll:
        self.poll_calls += 1
        if self.poll_error is not None:
            raise self.poll_error
        return self.result


class FakeEnrichmentProvider:
    def __init__(self) -> None:
        self.handle: dict[str, str] = {"youtube": "enrich_yt"}
        self.result = EnrichmentPoll(finished=False)
        self.started: list[list[RawItem]] = []
        self.poll_calls = 0

    async def start(self, items: list[RawItem]) -> dict[str, str]:
        self.started.append(list(items))
        return dict(self.handle)

    async def poll(self, handle: dict[str, str]) -> EnrichmentPoll:
        self.poll_calls += 1
        return self.result


def unavailable_provider() -> FakeSearchProvider:
    return FakeSearchProvider(start_error=ProviderUnavailableError("provider down"))


def web_item(link: str, *, rank: int, query: str = '"keto coffee review"', **fields: Any) -> RawItem:
    return RawItem(
        link=link,
        title=fields.pop("title", f"Result {rank}"),
        source="web",
        domain=fields.pop("domain", None),
        rank=rank,
        search_query=query,
        **fields,
    )


class FakeCheckoutGateway:
    def __init__(self, *, session_id: str = "cs_test_1", url: str = "https://checkout.example/cs_test_1") -> None:
        self.session_id = session_id
        self.url = url
        self.created: list[dict[str, Any]] = []
        self.events: dict[str, WebhookEvent] = {}

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        pack: CreditPack,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        self.created.append({"customer_id": customer_id, "pack_id": pack.pack_id, "metadata": metadata})
        return CheckoutSession(session_id=self.session_id, url=self.url)

    def parse_webhook_event(self, payload: bytes, signature: str | None) -> WebhookEvent:
        if signature not in self.events:
            raise WebhookVerificationError("Invalid payment provider signature.")
        return self.events[signature]

    def sign(self, signature: str, *, event_type: str, session_id: str) -> None:
        self.events[signature] = WebhookEvent(event_type=event_type, session_id=session_id, metadata={})
