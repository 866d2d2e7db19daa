from __future__ import annotations

import pytest
import stripe

from app.services.purchases.checkout import (
    EVENT_CHECKOUT_COMPLETED,
    StripeCheckoutGateway,
    webhook_event_from_payload,
)
from app.services.purchases.errors import CheckoutUnavailableError, CreditPackError, WebhookVerificationError
from app.services.purchases.packs import CREDIT_PACKS, resolve_pack
from app.settings import settings


def _gateway(**overrides) -> StripeCheckoutGateway:
    values = {
        "secret_key": "sk_test_123",
        "webhook_secret": "whsec_123",
        "success_url": "https://app.example/settings?credits=success",
        "cancel_url": "https://app.example/settings?credits=canceled",
    }
    values.update(overrides)
    return StripeCheckoutGateway(**values)


@pytest.fixture
def email_150_price():
    previous = settings.stripe_price_email_150
    object.__setattr__(settings, "stripe_price_email_150", "price_email_150")
    try:
        yield "price_email_150"
    finally:
        object.__setattr__(settings, "stripe_price_email_150", previous)


def test_resolve_pack_knows_every_catalog_entry() -> None:
    assert resolve_pack("email_150").credits == 150
    assert resolve_pack(" search_5 ").category == "topic_search"
    assert len(CREDIT_PACKS) == 8
    with pytest.raises(CreditPackError):
        resolve_pack(None)


@pytest.mark.asyncio
async def test_create_checkout_session_passes_price_and_metadata(monkeypatch, email_150_price) -> None:
    captured: dict = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)

    session = await _gateway().create_checkout_session(
        customer_id="cus_42",
        pack=resolve_pack("email_150"),
        metadata={"user_id": "42", "pack_id": "email_150"},
    )

    assert session.session_id == "cs_test_1"
    assert session.url == "https://checkout.stripe.com/c/pay/cs_test_1"
    assert captured["api_key"] == "sk_test_123"
    assert captured["mode"] == "payment"
    assert captured["customer"] == "cus_42"
    assert captured["line_items"] == [{"price": email_150_price, "quantity": 1}]
    assert captured["metadata"] == {"user_id": "42", "pack_id": "email_150"}


@pytest.mark.asyncio
async def test_checkout_errors_become_unavailable(monkeypatch, email_150_price) -> None:
    def _create(**kwargs):
        raise stripe.StripeError("card network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)

    with pytest.raises(CheckoutUnavailableError):
        await _gateway().create_checkout_session(
            customer_id="cus_42",
            pack=resolve_pack("email_150"),
            metadata={},
        )


@pytest.mark.asyncio
async def test_checkout_requires_configured_price() -> None:
    with pytest.raises(CheckoutUnavailableError, match="No price configured"):
        await _gateway().create_checkout_session(customer_id="cus_42", pack=resolve_pack("ai_500"), metadata={})


@pytest.mark.asyncio
async def test_checkout_requires_secret_key(email_150_price) -> None:
    with pytest.raises(CheckoutUnavailableError, match="not configured"):
        await _gateway(secret_key="").create_checkout_session(
            customer_id="cus_42", pack=resolve_pack("email_150"), metadata={}
        )


def test_parse_webhook_event_verifies_signature(monkeypatch) -> None:
    calls = []

    def _construct_event(payload, signature, secret):
        calls.append((payload, signature, secret))
        return {
            "type": EVENT_CHECKOUT_COMPLETED,
            "data": {"object": {"id": "cs_test_1", "metadata": {"user_id": "42", "credits_amount": 150}}},
        }

    monkeypatch.setattr(stripe.Webhook, "construct_event", _construct_event)

    event = _gateway().parse_webhook_event(b"{}", "t=1,v1=abc")

    assert calls == [(b"{}", "t=1,v1=abc", "whsec_123")]
    assert event.event_type == EVENT_CHECKOUT_COMPLETED
    assert event.session_id == "cs_test_1"
    assert event.metadata == {"user_id": "42", "credits_amount": "150"}


def test_parse_webhook_event_rejects_bad_signature(monkeypatch) -> None:
    def _construct_event(payload, signature, secret):
        raise stripe.SignatureVerificationError("no match", signature)

    monkeypatch.setattr(stripe.Webhook, "construct_event", _construct_event)

    with pytest.raises(WebhookVerificationError):
        _gateway().parse_webhook_event(b"{}", "t=1,v1=forged")
    with pytest.raises(WebhookVerificationError, match="Missing"):
        _gateway().parse_webhook_event(b"{}", None)


def test_webhook_event_without_session_object() -> None:
    event = webhook_event_from_payload({"type": "invoice.paid", "data": {}})

    assert event.event_type == "invoice.paid"
    assert event.session_id is None
    assert event.metadata == {}
