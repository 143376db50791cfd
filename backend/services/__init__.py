"""Backend services for expense tracking, AI assistance and subscriptions."""

from .ai_service import AIService
from .auth_service import AuthService
from .cache import ResponseCache, response_cache
from .circuit_breaker import CircuitBreaker, CircuitOpenError
from .gemini_service import GeminiService
from .oauth_service import OAuthService
from .payment_gateways import MockPaymentStrategy, PaymentStrategy, PaymentStrategyFactory, build_strategy_factory
from .payment_service import PaymentService
from .rate_limiter import RateLimiterService
from .subscription_service import SubscriptionService, effective_tier, is_subscription_active
from .transaction_service import TransactionService

__all__ = [
    "AIService",
    "AuthService",
    "ResponseCache",
    "response_cache",
    "CircuitBreaker",
    "CircuitOpenError",
    "GeminiService",
    "OAuthService",
    "MockPaymentStrategy",
    "PaymentStrategy",
    "PaymentStrategyFactory",
    "build_strategy_factory",
    "PaymentService",
    "RateLimiterService",
    "SubscriptionService",
    "effective_tier",
    "is_subscription_active",
    "TransactionService",
]
