"""
Module: transaction_service.py
Description: Transaction CRUD, ownership checks and spending aggregation.

Reads are served from the response cache per user; every write evicts the
user's `transactions`, `user_stats` and `insights` entries.
"""

from datetime import date
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session as DBSession

from enums import UNLIMITED
from exceptions import (
    RateLimitExceededError, ResourceNotFoundError,
    UnauthorizedAccessError, ValidationError
)
from models import Transaction, User
from schemas import (
    CategoryTotal, SpendingStatsResponse,
    TransactionOut, TransactionRequest
)
from services.cache import INSIGHTS, TRANSACTIONS, USER_STATS, ResponseCache, response_cache
from services.date_utils import add_months, month_bounds
from services.observability import logger, metrics, timed, timed_block
from services.subscription_service import effective_tier

UNCATEGORIZED = "Others"


class TransactionService:
    """Transaction management scoped to a single user per call."""

    def __init__(self, db: DBSession, cache: Optional[ResponseCache] = None):
        self.db = db
        self.cache = cache if cache is not None else response_cache

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @timed("transactions.add")
    def add_transaction(self, request: TransactionRequest, user: User) -> TransactionOut:
        self._enforce_monthly_quota(user)

        transaction = Transaction(
            user_id=user.id,
            description=request.description,
            amount=request.amount,
            date=request.date,
            category=request.category,
            payment_mode=request.payment_mode,
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(transaction)

        self._evict(user)
        metrics.increment("transactions.created")
        logger.info("Transaction added", user=user.id, transaction=transaction.id)
        return TransactionOut.model_validate(transaction)

    def update_transaction(self, transaction_id: int, request: TransactionRequest, user: User) -> TransactionOut:
        transaction = self._get_owned(transaction_id, user)
        transaction.description = request.description
        transaction.amount = request.amount
        transaction.date = request.date
        transaction.category = request.category
        transaction.payment_mode = request.payment_mode
        self.db.commit()
        self.db.refresh(transaction)

        self._evict(user)
        return TransactionOut.model_validate(transaction)

    def update_transaction_category(self, transaction_id: int, category: str, user: User) -> TransactionOut:
        category = (category or "").strip()
        if not category:
            raise ValidationError("Category must not be blank")

        transaction = self._get_owned(transaction_id, user)
        transaction.category = category
        self.db.commit()
        self.db.refresh(transaction)

        self._evict(user)
        return TransactionOut.model_validate(transaction)

    def delete_transaction(self, transaction_id: int, user: User) -> None:
        transaction = self._get_owned(transaction_id, user)
        self.db.delete(transaction)
        self.db.commit()

        self._evict(user)
        logger.info("Transaction deleted", user=user.id, transaction=transaction_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _user_query(self, user: User):
        return self.db.query(Transaction).filter(Transaction.user_id == user.id)

    @staticmethod
    def _newest_first(query):
        return query.order_by(Transaction.date.desc(), Transaction.id.desc())

    def get_all_transactions(self, user: User) -> List[TransactionOut]:
        cached = self.cache.get(TRANSACTIONS, user.id)
        if cached is not None:
            return list(cached)

        rows = self._newest_first(self._user_query(user)).all()
        result = [TransactionOut.model_validate(t) for t in rows]
        self.cache.set(TRANSACTIONS, user.id, result)
        return list(result)

    def get_recent_transactions(self, user: User, months: int = 3) -> List[TransactionOut]:
        """Transactions dated strictly after `today - months`."""
        if months < 1:
            raise ValidationError("months must be at least 1")

        from_date = add_months(date.today(), -months)
        rows = self._newest_first(
            self._user_query(user).filter(Transaction.date > from_date)
        ).all()
        return [TransactionOut.model_validate(t) for t in rows]

    def get_transactions_by_date_range(self, user: User, start_date: date, end_date: date) -> List[TransactionOut]:
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        rows = self._newest_first(
            self._user_query(user).filter(Transaction.date.between(start_date, end_date))
        ).all()
        return [TransactionOut.model_validate(t) for t in rows]

    def get_spending_stats(self, user: User, start_date: date, end_date: date) -> SpendingStatsResponse:
        """Total spending and per-category totals over an inclusive date range."""
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        per_user = self.cache.get(USER_STATS, user.id) or {}
        key = (start_date, end_date)
        if key in per_user:
            return per_user[key]

        in_range = (
            Transaction.user_id == user.id,
            Transaction.date.between(start_date, end_date),
        )
        with timed_block("transactions.stats_query"):
            total = self.db.query(func.sum(Transaction.amount)).filter(*in_range).scalar() or 0.0
            rows = (
                self.db.query(Transaction.category, func.sum(Transaction.amount))
                .filter(*in_range)
                .group_by(Transaction.category)
                .all()
            )

        totals = {}
        for name, amount in rows:
            name = name or UNCATEGORIZED
            totals[name] = totals.get(name, 0.0) + (amount or 0.0)

        by_category = sorted(
            (CategoryTotal(category=name, total=round(amount, 2)) for name, amount in totals.items()),
            key=lambda c: c.total,
            reverse=True,
        )

        stats = SpendingStatsResponse(
            start_date=start_date,
            end_date=end_date,
            total_spending=round(total, 2),
            by_category=by_category,
        )
        per_user = dict(per_user)
        per_user[key] = stats
        self.cache.set(USER_STATS, user.id, per_user)
        return stats

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _get_owned(self, transaction_id: int, user: User) -> Transaction:
        transaction = self.db.query(Transaction).filter(Transaction.id == transaction_id).first()
        if transaction is None:
            raise ResourceNotFoundError("Transaction not found")
        if transaction.user_id != user.id:
            logger.warning("Ownership check failed", user=user.id, transaction=transaction_id)
            raise UnauthorizedAccessError("Unauthorized access")
        return transaction

    def _enforce_monthly_quota(self, user: User) -> None:
        """Reject the write once the tier's transactions-per-month quota is used."""
        tier = effective_tier(user)
        limit = tier.monthly_transaction_limit
        if limit == UNLIMITED:
            return

        month_start, month_end = month_bounds(date.today())
        used = (
            self.db.query(func.count(Transaction.id))
            .filter(Transaction.user_id == user.id)
            .filter(Transaction.date >= month_start, Transaction.date <= month_end)
            .scalar()
        ) or 0

        if used >= limit:
            metrics.increment("quota.exceeded", tags={"limit_type": "TRANSACTIONS", "tier": tier.value})
            raise RateLimitExceededError(
                f"Monthly transaction limit reached ({used}/{limit}). "
                f"Upgrade to Premium for unlimited transactions!"
            )

    def _evict(self, user: User) -> None:
        self.cache.evict_user(user.id, TRANSACTIONS, USER_STATS, INSIGHTS)
