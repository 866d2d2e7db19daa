from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Protocol

import stripe

from app.logging_utils import structured_log
from app.services.purchases.errors import CheckoutUnavailableError, WebhookVerificationError
from app.services.purchases.packs import CreditPack

logger = logging.getLogger(__name__)

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_CHECKOUT_EXPIRED = "checkout.session.expired"


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str | None


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    session_id: str | None
    metadata: dict[str, str]


class CheckoutGateway(Protocol):
    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        pack: CreditPack,
        metadata: dict[str, str],
    ) -> CheckoutSession: ...

    def parse_webhook_event(self, payload: bytes, signature: str | None) -> WebhookEvent: ...


class StripeCheckoutGateway:
    def __init__(
        self,
        *,
        secret_key: str,
        webhook_secret: str,
        success_url: str,
        cancel_url: str,
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._success_url = success_url
        self._cancel_url = cancel_url

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        pack: CreditPack,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        if not self._secret_key:
            raise CheckoutUnavailableError("Payment provider is not configured.")
        if not pack.price_id:
            raise CheckoutUnavailableError(f"No price configured for credit pack {pack.pack_id}.")
        try:
            # The SDK is synchronous; keep it off the event loop.
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self._secret_key,
                mode="payment",
                customer=customer_id,
                line_items=[{"price": pack.price_id, "quantity": 1}],
                success_url=self._success_url,
                cancel_url=self._cancel_url,
                invoice_creation={"enabled": True},
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            structured_log(logger, "warning", "purchases.checkout_failed", pack_id=pack.pack_id, error=str(exc))
            raise CheckoutUnavailableError("Failed to create checkout session.") from exc

        session_id = session.get("id")
        if not session_id:
            raise CheckoutUnavailableError("Failed to create checkout session.")
        return CheckoutSession(session_id=str(session_id), url=session.get("url"))

    def parse_webhook_event(self, payload: bytes, signature: str | None) -> WebhookEvent:
        if not self._webhook_secret:
            raise CheckoutUnavailableError("Webhook secret is not configured.")
        if not signature:
            raise WebhookVerificationError("Missing payment provider signature header.")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("Invalid payment provider signature.") from exc
        except ValueError as exc:
            raise WebhookVerificationError("Malformed webhook payload.") from exc
        return webhook_event_from_payload(event)


def webhook_event_from_payload(event: Any) -> WebhookEvent:
    data = event.get("data") or {}
    session_obj = data.get("object") if hasattr(data, "get") else None
    session_obj = session_obj or {}
    metadata = session_obj.get("metadata") or {}
    return WebhookEvent(
        event_type=str(event.get("type") or ""),
        session_id=session_obj.get("id"),
        metadata={str(key): str(value) for key, value in dict(metadata).items()},
    )
