from __future__ import annotations

from dataclasses import dataclass

from app.db.models import CreditCategory
from app.services.purchases.errors import CreditPackError
from app.settings import settings


@dataclass(frozen=True)
class CreditPack:
    pack_id: str
    category: CreditCategory
    credits: int
    price_setting: str

    @property
    def price_id(self) -> str:
        return str(getattr(settings, self.price_setting, "") or "")


CREDIT_PACKS: dict[str, CreditPack] = {
    pack.pack_id: pack
    for pack in (
        CreditPack("email_50", CreditCategory.EMAIL, 50, "stripe_price_email_50"),
        CreditPack("email_150", CreditCategory.EMAIL, 150, "stripe_price_email_150"),
        CreditPack("email_500", CreditCategory.EMAIL, 500, "stripe_price_email_500"),
        CreditPack("ai_50", CreditCategory.AI, 50, "stripe_price_ai_50"),
        CreditPack("ai_150", CreditCategory.AI, 150, "stripe_price_ai_150"),
        CreditPack("ai_500", CreditCategory.AI, 500, "stripe_price_ai_500"),
        CreditPack("search_5", CreditCategory.TOPIC_SEARCH, 5, "stripe_price_search_5"),
        CreditPack("search_15", CreditCategory.TOPIC_SEARCH, 15, "stripe_price_search_15"),
    )
}


def resolve_pack(pack_id: str | None) -> CreditPack:
    pack = CREDIT_PACKS.get((pack_id or "").strip())
    if pack is None:
        raise CreditPackError(f"Unknown credit pack: {pack_id!r}.")
    return pack
