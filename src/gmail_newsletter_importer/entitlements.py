"""Plan caps consumed by the import admission check."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import FREE_PREVIEW_EMAIL_LIMIT, FREE_PREVIEW_SENDER_LIMIT, PLAN_FREE


@dataclass
class PlanEntitlements:
    """Free-preview caps. Every plan except ``free`` is uncapped."""

    sender_cap: int = FREE_PREVIEW_SENDER_LIMIT
    email_cap: int = FREE_PREVIEW_EMAIL_LIMIT

    def is_under_cap(self, plan: str) -> bool:
        return plan.strip().lower() == PLAN_FREE
