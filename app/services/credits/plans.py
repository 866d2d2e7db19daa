from __future__ import annotations

from app.db.models import CreditCategory, PlanTier

# Per-period allocations restored at each rollover.
PLAN_ALLOCATIONS: dict[PlanTier, dict[CreditCategory, int]] = {
    PlanTier.TRIAL: {
        CreditCategory.TOPIC_SEARCH: 1,
        CreditCategory.EMAIL: 30,
        CreditCategory.AI: 30,
    },
    PlanTier.PRO: {
        CreditCategory.TOPIC_SEARCH: 5,
        CreditCategory.EMAIL: 150,
        CreditCategory.AI: 200,
    },
    PlanTier.BUSINESS: {
        CreditCategory.TOPIC_SEARCH: 10,
        CreditCategory.EMAIL: 300,
        CreditCategory.AI: 400,
    },
}


def allocations_for(plan: PlanTier | str) -> dict[CreditCategory, int]:
    return dict(PLAN_ALLOCATIONS[PlanTier(plan)])
