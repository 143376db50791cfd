"""Pydantic request/response schemas for type safety."""

from datetime import date, datetime
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, Field, field_validator

from enums import PaymentMethod, PaymentStatus, Role, SubscriptionTier

T = TypeVar("T")

# Alias for fields that are themselves named "date".
DateValue = date


# =============================================================================
# Response Envelope
# =============================================================================

class ApiResponse(BaseModel, Generic[T]):
    """Uniform success/error envelope returned by every endpoint."""
    success: bool
    message: Optional[str] = None
    data: Optional[T] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "ApiResponse":
        return cls(success=True, message=message, data=data)

    @classmethod
    def error(cls, message: str, data: Any = None) -> "ApiResponse":
        return cls(success=False, message=message, data=data)


# =============================================================================
# Auth Schemas
# =============================================================================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def email_must_look_valid(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("Invalid email address")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: Role
    subscription_tier: SubscriptionTier
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    token: str
    refresh_token: str
    user: UserOut


class UserProfileResponse(BaseModel):
    user: UserOut
    effective_tier: SubscriptionTier
    subscription_active: bool
    remaining_ai_chats: int


# =============================================================================
# Transaction Schemas
# =============================================================================

class TransactionRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    amount: float = Field(..., gt=0, description="Amount spent")
    date: date
    category: Optional[str] = Field(None, max_length=50)
    payment_mode: Optional[str] = Field(None, max_length=50)


class TransactionOut(BaseModel):
    id: int
    description: str
    amount: float
    date: date
    category: Optional[str] = None
    payment_mode: Optional[str] = None

    class Config:
        from_attributes = True


class CategoryTotal(BaseModel):
    category: str
    total: float


class SpendingStatsResponse(BaseModel):
    start_date: date
    end_date: date
    total_spending: float
    by_category: List[CategoryTotal]


# =============================================================================
# AI Schemas
# =============================================================================

class TransactionInput(BaseModel):
    """Transaction as submitted for ad-hoc analysis."""
    description: str = Field(..., min_length=1)
    amount: float
    date: Optional[DateValue] = None
    category: Optional[str] = None


class AIAnalysisRequest(BaseModel):
    transactions: List[TransactionInput] = Field(default_factory=list)


class CategorizedTransaction(BaseModel):
    transaction: str
    category: str


class AIAnalysisResponse(BaseModel):
    categorized_transactions: List[CategorizedTransaction] = Field(
        default_factory=list,
        validation_alias=AliasChoices("categorizedTransactions", "categorized_transactions"),
    )
    summary: str


class ChatRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query is required")
        return value


class ChatResponse(BaseModel):
    response: str
    remaining_chats: int
    subscription_tier: SubscriptionTier


class ChatLimitResponse(BaseModel):
    remaining: int
    total: int
    subscription_tier: SubscriptionTier
    is_premium: bool


# =============================================================================
# Payment Schemas
# =============================================================================

class PaymentRequest(BaseModel):
    amount: float = Field(..., gt=0)
    payment_method: PaymentMethod
    subscription_tier: SubscriptionTier
    duration_months: int = Field(..., gt=0, le=36)
    gateway: Optional[str] = None


class PaymentResponse(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    payment_gateway: Optional[str] = None
    message: Optional[str] = None


class PaymentVerificationRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class PaymentOut(BaseModel):
    id: int
    transaction_id: str
    order_id: Optional[str] = None
    amount: float
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    subscription_tier: SubscriptionTier
    subscription_duration_months: Optional[int] = None
    payment_gateway: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SubscriptionPlanOut(BaseModel):
    name: str
    monthly_price: float
    features: str
    badge: Optional[str] = None
    ai_chats_per_day: int
    transactions_limit: int


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    database: str
    ai: str
