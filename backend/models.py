"""
SQLAlchemy ORM models for the Expense AI backend.

Includes:
    - User (local credentials or OAuth2 provider linkage, subscription window)
    - Transaction (owned by one user)
    - Payment (gateway order and its terminal status)
    - RateLimit (one counter row per user, limit type and calendar date)
"""

from datetime import datetime, date
from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime,
    ForeignKey, Enum, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from database import Base
from enums import (
    AuthProvider, LimitType, PaymentMethod, PaymentStatus,
    Role, SubscriptionTier
)


class User(Base):
    """
    Application user.

    password_hash is NULL for accounts created through OAuth2 login.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String)
    role = Column(Enum(Role), nullable=False, default=Role.USER)

    # OAuth2 linkage
    provider = Column(Enum(AuthProvider), default=AuthProvider.LOCAL)
    provider_id = Column(String)

    # Subscription
    subscription_tier = Column(Enum(SubscriptionTier), nullable=False, default=SubscriptionTier.FREE)
    subscription_start_date = Column(DateTime)
    subscription_end_date = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="user", cascade="all, delete-orphan")
    rate_limits = relationship("RateLimit", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_premium(self) -> bool:
        """True while a PREMIUM subscription is within its validity window."""
        return (
            self.subscription_tier == SubscriptionTier.PREMIUM
            and self.subscription_end_date is not None
            and self.subscription_end_date > datetime.utcnow()
        )


class Transaction(Base):
    """A single spend recorded by a user."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    description = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    date = Column(Date, nullable=False, default=date.today)
    category = Column(String)
    payment_mode = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
    )


class Payment(Base):
    """Gateway payment attempt for a subscription upgrade."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    transaction_id = Column(String, unique=True, nullable=False)
    order_id = Column(String, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String, nullable=False, default="INR")
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    subscription_tier = Column(Enum(SubscriptionTier), nullable=False)
    subscription_duration_months = Column(Integer)
    payment_gateway = Column(String)  # MOCK|RAZORPAY|STRIPE
    payment_gateway_response = Column(String(2000))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="payments")


class RateLimit(Base):
    """Per-day request counter for a user and limit type."""
    __tablename__ = "rate_limits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    limit_type = Column(Enum(LimitType), nullable=False)
    date = Column(Date, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)
    last_request_time = Column(DateTime)

    user = relationship("User", back_populates="rate_limits")

    __table_args__ = (
        UniqueConstraint("user_id", "limit_type", "date", name="uq_rate_limits_user_type_date"),
    )
