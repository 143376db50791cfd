"""Enumerations shared by the models, schemas and services."""

import enum


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class AuthProvider(str, enum.Enum):
    LOCAL = "LOCAL"
    GOOGLE = "GOOGLE"
    GITHUB = "GITHUB"


class LimitType(str, enum.Enum):
    AI_CHAT = "AI_CHAT"


class PaymentMethod(str, enum.Enum):
    DEBIT_CARD = "DEBIT_CARD"
    CREDIT_CARD = "CREDIT_CARD"
    UPI = "UPI"
    NET_BANKING = "NET_BANKING"
    WALLET = "WALLET"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SubscriptionTier(str, enum.Enum):
    """
    Subscription level.

    Each tier carries its quotas and price; -1 means unlimited.
    """
    FREE = "FREE"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"

    @property
    def daily_ai_chat_limit(self) -> int:
        return _TIER_LIMITS[self]["daily_ai_chats"]

    @property
    def monthly_transaction_limit(self) -> int:
        return _TIER_LIMITS[self]["monthly_transactions"]

    @property
    def monthly_price(self) -> float:
        return _TIER_LIMITS[self]["monthly_price"]

    @property
    def is_paid(self) -> bool:
        return self is not SubscriptionTier.FREE


UNLIMITED = -1

_TIER_LIMITS = {
    SubscriptionTier.FREE: {"daily_ai_chats": 2, "monthly_transactions": 100, "monthly_price": 0.0},
    SubscriptionTier.PREMIUM: {"daily_ai_chats": 15, "monthly_transactions": UNLIMITED, "monthly_price": 9.0},
    SubscriptionTier.ENTERPRISE: {"daily_ai_chats": 30, "monthly_transactions": UNLIMITED, "monthly_price": 19.0},
}
