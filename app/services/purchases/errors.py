from __future__ import annotations


class PurchaseError(Exception):
    code = "purchase_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PurchaseNotFoundError(PurchaseError):
    code = "PURCHASE_NOT_FOUND"


class CreditPackError(PurchaseError):
    code = "INVALID_CREDIT_PACK"


class SubscriptionRequiredError(PurchaseError):
    code = "SUBSCRIPTION_REQUIRED"


class CheckoutUnavailableError(PurchaseError):
    code = "CHECKOUT_UNAVAILABLE"


class WebhookVerificationError(PurchaseError):
    code = "INVALID_WEBHOOK_SIGNATURE"


class StoreUnavailableError(PurchaseError):
    """The database could not be reached; the caller may retry later."""

    code = "STORE_UNAVAILABLE"
