"""Subscription tier management and the plan catalogue."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session as DBSession

from enums import SubscriptionTier, UNLIMITED
from models import User
from schemas import SubscriptionPlanOut
from services.date_utils import add_months
from services.observability import logger

PLAN_DETAILS = {
    SubscriptionTier.FREE: {
        "features": "{chats} AI chats/day, {transactions} transactions/month",
        "badge": None,
    },
    SubscriptionTier.PREMIUM: {
        "features": "{chats} AI chats/day, Unlimited transactions, Priority support",
        "badge": "BEST VALUE",
    },
    SubscriptionTier.ENTERPRISE: {
        "features": "{chats} AI chats/day, Unlimited transactions, Dedicated support, API access",
        "badge": None,
    },
}


def is_subscription_active(user: User, now: Optional[datetime] = None) -> bool:
    """True when the subscription end date is set and still in the future."""
    now = now or datetime.utcnow()
    return user.subscription_end_date is not None and user.subscription_end_date > now


def effective_tier(user: User, now: Optional[datetime] = None) -> SubscriptionTier:
    """
    Tier that quotas should be enforced against.

    A paid tier whose validity window has closed counts as FREE.
    """
    tier = user.subscription_tier or SubscriptionTier.FREE
    if tier.is_paid and not is_subscription_active(user, now):
        return SubscriptionTier.FREE
    return tier


class SubscriptionService:
    """Upgrades, cancellations and plan listing."""

    def __init__(self, db: DBSession):
        self.db = db

    def upgrade_subscription(self, user: User, tier: SubscriptionTier, duration_months: int) -> User:
        """
        Move the user onto `tier` for `duration_months`.

        Renewing a tier that is still active extends from the current end
        date instead of restarting the window.
        """
        now = datetime.utcnow()
        renewing = user.subscription_tier == tier and is_subscription_active(user, now)

        if renewing:
            user.subscription_end_date = add_months(user.subscription_end_date, duration_months)
        else:
            user.subscription_tier = tier
            user.subscription_start_date = now
            user.subscription_end_date = add_months(now, duration_months)

        self.db.commit()
        self.db.refresh(user)

        logger.info(
            "Subscription upgraded",
            user=user.email, tier=tier.value, months=duration_months, renewed=renewing,
        )
        return user

    def cancel_subscription(self, user: User) -> User:
        user.subscription_tier = SubscriptionTier.FREE
        user.subscription_end_date = None
        self.db.commit()
        self.db.refresh(user)

        logger.info("Subscription cancelled", user=user.email)
        return user

    @staticmethod
    def get_available_plans() -> List[SubscriptionPlanOut]:
        plans = []
        for tier in SubscriptionTier:
            details = PLAN_DETAILS[tier]
            transactions = tier.monthly_transaction_limit
            plans.append(
                SubscriptionPlanOut(
                    name=tier.value,
                    monthly_price=tier.monthly_price,
                    features=details["features"].format(
                        chats=tier.daily_ai_chat_limit,
                        transactions="Unlimited" if transactions == UNLIMITED else transactions,
                    ),
                    badge=details["badge"],
                    ai_chats_per_day=tier.daily_ai_chat_limit,
                    transactions_limit=transactions,
                )
            )
        return plans
