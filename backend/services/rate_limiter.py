"""
Per-user daily quota enforcement backed by the rate_limits table.

One row per (user, limit type, calendar date) holds the request count.
The check and the increment run in the caller's database transaction;
no row lock is taken, so simultaneous requests from one user can both
read the same count.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from enums import LimitType, SubscriptionTier
from exceptions import RateLimitExceededError
from models import RateLimit, User
from services.observability import log_quota_exceeded, logger, metrics
from services.subscription_service import effective_tier


class RateLimiterService:
    """Daily AI chat quota per subscription tier."""

    def __init__(self, db: DBSession):
        self.db = db

    def _find(self, user: User, limit_type: LimitType, day: date) -> Optional[RateLimit]:
        return (
            self.db.query(RateLimit)
            .filter(RateLimit.user_id == user.id)
            .filter(RateLimit.limit_type == limit_type)
            .filter(RateLimit.date == day)
            .first()
        )

    def check_and_increment_ai_chat_limit(self, user: User) -> int:
        """
        Count one AI chat request against today's quota.

        Returns:
            The updated request count for today.

        Raises:
            RateLimitExceededError: the quota for the user's tier is used up.
        """
        try:
            return self._check_and_increment(user, LimitType.AI_CHAT)
        except IntegrityError:
            # Another request created today's row first; count against it.
            self.db.rollback()
            return self._check_and_increment(user, LimitType.AI_CHAT)

    def _check_and_increment(self, user: User, limit_type: LimitType) -> int:
        today = date.today()
        tier = effective_tier(user)
        limit = tier.daily_ai_chat_limit

        rate_limit = self._find(user, limit_type, today)
        used = rate_limit.request_count if rate_limit is not None else 0

        if used >= limit:
            log_quota_exceeded(user.id, limit_type.value, tier.value)
            raise RateLimitExceededError(
                f"Daily AI chat limit exceeded. You have used {used}/{limit} requests. "
                f"Upgrade to Premium for {SubscriptionTier.PREMIUM.daily_ai_chat_limit} requests per day!"
            )

        if rate_limit is None:
            rate_limit = RateLimit(user_id=user.id, limit_type=limit_type, date=today, request_count=0)
            self.db.add(rate_limit)

        rate_limit.request_count = used + 1
        rate_limit.last_request_time = datetime.utcnow()
        self.db.commit()

        metrics.increment("quota.consumed", tags={"limit_type": limit_type.value})
        logger.info(
            "AI chat request allowed",
            user=user.email, count=f"{rate_limit.request_count}/{limit}", tier=tier.value,
        )
        return rate_limit.request_count

    def get_remaining_ai_chats(self, user: User) -> int:
        limit = effective_tier(user).daily_ai_chat_limit
        rate_limit = self._find(user, LimitType.AI_CHAT, date.today())
        used = rate_limit.request_count if rate_limit is not None else 0
        return max(0, limit - used)
