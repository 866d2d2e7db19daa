from __future__ import annotations


class CreditLedgerError(Exception):
    code = "credit_ledger_error"

    def __init__(self, message: str, *, user_id: int, category: str) -> None:
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.category = category


class InsufficientCreditsError(CreditLedgerError):
    code = "INSUFFICIENT_CREDITS"


class LedgerPeriodMissingError(CreditLedgerError):
    """The owner has no ledger row covering the current instant."""

    code = "NO_ACTIVE_CREDIT_PERIOD"
