"""
Module: main.py
Description: FastAPI application entry point with all API routes for the Expense AI backend.

This module provides REST API endpoints for:
    - Local and OAuth2 (Google/GitHub) authentication
    - Transaction CRUD, date-range queries and spending statistics
    - AI-powered categorization, insights and a quota-limited chatbot
    - Subscription payments and cancellation

Every JSON response is wrapped in the envelope
{"success": bool, "message": str | null, "data": ..., "timestamp": iso}.

Dependencies:
    - FastAPI for REST API framework
    - SQLAlchemy for database operations
    - httpx for the Gemini and OAuth2 provider calls

Usage:
    uvicorn main:app --reload --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager
from datetime import date
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import get_current_user
from config import get_settings
from database import get_db, init_db
from exceptions import AppError
from models import User
from schemas import (
    AIAnalysisRequest, AIAnalysisResponse, ApiResponse, AuthResponse,
    ChatLimitResponse, ChatRequest, ChatResponse, HealthResponse,
    LoginRequest, PaymentOut, PaymentRequest, PaymentResponse,
    PaymentVerificationRequest, RefreshTokenRequest, RegisterRequest,
    SpendingStatsResponse, SubscriptionPlanOut, TransactionOut,
    TransactionRequest, UserOut, UserProfileResponse
)
from services import (
    AIService, AuthService, GeminiService, OAuthService, PaymentService,
    PaymentStrategyFactory, RateLimiterService, SubscriptionService,
    TransactionService, build_strategy_factory, effective_tier,
    is_subscription_active, response_cache
)
from services.date_utils import month_bounds
from services.observability import log_chat_request, logger, metrics


# =============================================================================
# Application Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup."""
    settings = get_settings()
    logger.info("Starting Expense AI API", environment=settings.environment)
    init_db()
    logger.info("Database initialized")
    logger.set_context(env=settings.environment)

    yield

    logger.clear_context()
    logger.info("Shutting down Expense AI API")


# =============================================================================
# FastAPI Application Configuration
# =============================================================================

app = FastAPI(
    title="Expense AI API",
    description="""
    Personal expense tracking with AI-assisted categorization, spending
    insights and a finance chatbot, gated by subscription tiers.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Envelope
# =============================================================================

def error_response(status_code: int, message: str, data=None, headers=None) -> JSONResponse:
    body = ApiResponse.error(message, data).model_dump(mode="json")
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    metrics.increment("http.errors", tags={"status": str(exc.status_code)})
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    metrics.increment("http.errors", tags={"status": str(exc.status_code)})
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "request"
        errors[field] = error.get("msg", "Invalid value")
    metrics.increment("http.errors", tags={"status": "400"})
    return error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    metrics.increment("http.errors", tags={"status": "500"})
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred")


# =============================================================================
# Dependency Injection
# =============================================================================

@lru_cache(maxsize=1)
def get_gemini_service() -> GeminiService:
    """Dependency: process-wide Gemini client (shares the circuit breaker)."""
    return GeminiService.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_strategy_factory() -> PaymentStrategyFactory:
    return build_strategy_factory(get_settings().enable_mock_payments)


def get_transaction_service(db: DBSession = Depends(get_db)) -> TransactionService:
    return TransactionService(db)


def get_subscription_service(db: DBSession = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(db)


def get_rate_limiter(db: DBSession = Depends(get_db)) -> RateLimiterService:
    return RateLimiterService(db)


def get_auth_service(db: DBSession = Depends(get_db)) -> AuthService:
    return AuthService(db)


def get_oauth_service(db: DBSession = Depends(get_db)) -> OAuthService:
    return OAuthService(db, get_settings())


def get_ai_service(
    gemini: GeminiService = Depends(get_gemini_service),
    transactions: TransactionService = Depends(get_transaction_service),
) -> AIService:
    return AIService(gemini, transactions)


def get_payment_service(
    db: DBSession = Depends(get_db),
    factory: PaymentStrategyFactory = Depends(get_strategy_factory),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
) -> PaymentService:
    return PaymentService(db, factory, subscriptions)


# =============================================================================
# System Endpoints
# =============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint",
)
async def health_check(
    db: DBSession = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
) -> HealthResponse:
    """
    Report database connectivity and the AI client state.

    Example:
        GET /health
        Response: {"status": "healthy", "database": "connected", "ai": "circuit_closed"}
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        logger.error("Database health check failed", error=str(e))
        db_status = "error"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        database=db_status,
        ai=gemini.status(),
    )


@app.get("/metrics", tags=["System"], summary="Get application metrics")
async def get_metrics(gemini: GeminiService = Depends(get_gemini_service)):
    """Counters, timings, cache statistics and the Gemini circuit state."""
    summary = metrics.get_summary()
    summary["cache"] = response_cache.stats()
    summary["circuit_breaker"] = gemini.breaker.snapshot()
    return summary


# =============================================================================
# Authentication Endpoints
# =============================================================================

@app.post("/api/auth/register", response_model=ApiResponse[AuthResponse], tags=["Auth"])
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    return ApiResponse.ok(auth_service.register(request), "User registered successfully")


@app.post("/api/auth/login", response_model=ApiResponse[AuthResponse], tags=["Auth"])
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    return ApiResponse.ok(auth_service.login(request), "Login successful")


@app.post("/api/auth/refresh", response_model=ApiResponse[AuthResponse], tags=["Auth"])
async def refresh(
    request: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    return ApiResponse.ok(auth_service.refresh_token(request.refresh_token), "Token refreshed")


@app.get("/auth/google", tags=["Auth"], summary="Start Google sign-in")
async def redirect_to_google():
    return RedirectResponse("/oauth2/authorization/google")


@app.get("/oauth2/authorization/{provider}", tags=["Auth"])
async def oauth_authorize(
    provider: str,
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    return RedirectResponse(oauth_service.build_authorization_url(provider))


@app.get("/login/oauth2/code/{provider}", tags=["Auth"])
async def oauth_callback(
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    """
    Provider callback. Always redirects to the frontend: with `token` and
    `refreshToken` on success, with `error=authentication_failed` otherwise.
    """
    if error:
        logger.warning("OAuth provider returned error", provider=provider, error=error)
        return RedirectResponse(oauth_service.failure_redirect())

    try:
        user = await oauth_service.complete_login(provider, code, state)
    except AppError as e:
        logger.warning("OAuth login failed", provider=provider, error=e.message)
        return RedirectResponse(oauth_service.failure_redirect())

    return RedirectResponse(oauth_service.success_redirect(user))


# =============================================================================
# User Endpoints
# =============================================================================

@app.get("/api/users/me", response_model=ApiResponse[UserProfileResponse], tags=["User"])
async def get_profile(
    user: User = Depends(get_current_user),
    rate_limiter: RateLimiterService = Depends(get_rate_limiter),
):
    profile = UserProfileResponse(
        user=UserOut.model_validate(user),
        effective_tier=effective_tier(user),
        subscription_active=is_subscription_active(user),
        remaining_ai_chats=rate_limiter.get_remaining_ai_chats(user),
    )
    return ApiResponse.ok(profile)


# =============================================================================
# Transaction Endpoints
# =============================================================================

@app.post("/api/transactions/add", response_model=ApiResponse[TransactionOut], tags=["Transactions"])
async def add_transaction(
    request: TransactionRequest,
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    return ApiResponse.ok(transactions.add_transaction(request, user), "Transaction added successfully")


@app.get("/api/transactions/all", response_model=ApiResponse[List[TransactionOut]], tags=["Transactions"])
async def get_all_transactions(
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    return ApiResponse.ok(transactions.get_all_transactions(user))


@app.get("/api/transactions/recent", response_model=ApiResponse[List[TransactionOut]], tags=["Transactions"])
async def get_recent_transactions(
    months: int = 3,
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    return ApiResponse.ok(transactions.get_recent_transactions(user, months))


@app.get("/api/transactions/date-range", response_model=ApiResponse[List[TransactionOut]], tags=["Transactions"])
async def get_transactions_by_date_range(
    start_date: date = Query(...),
    end_date: date = Query(...),
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    return ApiResponse.ok(transactions.get_transactions_by_date_range(user, start_date, end_date))


@app.get("/api/transactions/stats", response_model=ApiResponse[SpendingStatsResponse], tags=["Transactions"])
async def get_spending_stats(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    """Totals for the given range; defaults to the current calendar month."""
    first, last = month_bounds(date.today())
    return ApiResponse.ok(transactions.get_spending_stats(user, start_date or first, end_date or last))


@app.put("/api/transactions/{transaction_id}", response_model=ApiResponse[TransactionOut], tags=["Transactions"])
async def update_transaction(
    transaction_id: int,
    request: TransactionRequest,
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    return ApiResponse.ok(
        transactions.update_transaction(transaction_id, request, user), "Transaction updated successfully"
    )


@app.put(
    "/api/transactions/{transaction_id}/category",
    response_model=ApiResponse[TransactionOut],
    tags=["Transactions"],
)
async def update_transaction_category(
    transaction_id: int,
    category: str = Query(...),
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    return ApiResponse.ok(
        transactions.update_transaction_category(transaction_id, category, user), "Category updated"
    )


@app.delete("/api/transactions/{transaction_id}", tags=["Transactions"])
async def delete_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(get_transaction_service),
):
    transactions.delete_transaction(transaction_id, user)
    return ApiResponse.ok(None, "Transaction deleted successfully")


# =============================================================================
# AI Endpoints
# =============================================================================

@app.post("/api/ai/analyze", response_model=ApiResponse[AIAnalysisResponse], tags=["AI"])
async def analyze_transactions(
    request: AIAnalysisRequest,
    user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
):
    analysis = await ai_service.analyze_transactions(request.transactions)
    return ApiResponse.ok(analysis, "Analysis completed")


@app.get("/api/ai/insights", response_model=ApiResponse[str], tags=["AI"])
async def get_insights(
    user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
):
    insights = await ai_service.generate_insights(user)
    return ApiResponse.ok(insights, "Insights generated")


@app.post("/api/ai/chatbot", response_model=ApiResponse[ChatResponse], tags=["AI"])
async def chatbot(
    request: ChatRequest,
    user: User = Depends(get_current_user),
    ai_service: AIService = Depends(get_ai_service),
    rate_limiter: RateLimiterService = Depends(get_rate_limiter),
):
    """
    Answer a question about the user's spending.

    The daily quota is consumed before the model is called; a 429 envelope is
    returned once the tier's limit is reached.
    """
    rate_limiter.check_and_increment_ai_chat_limit(user)
    log_chat_request(user.id, len(request.query))

    answer = await ai_service.chat_with_ai(request.query, user)

    return ApiResponse.ok(
        ChatResponse(
            response=answer,
            remaining_chats=rate_limiter.get_remaining_ai_chats(user),
            subscription_tier=effective_tier(user),
        ),
        "Chat response generated",
    )


@app.get("/api/ai/chat-limit", response_model=ApiResponse[ChatLimitResponse], tags=["AI"])
async def get_chat_limit(
    user: User = Depends(get_current_user),
    rate_limiter: RateLimiterService = Depends(get_rate_limiter),
):
    return ApiResponse.ok(
        ChatLimitResponse(
            remaining=rate_limiter.get_remaining_ai_chats(user),
            total=effective_tier(user).daily_ai_chat_limit,
            subscription_tier=effective_tier(user),
            is_premium=user.is_premium,
        )
    )


# =============================================================================
# Payment & Subscription Endpoints
# =============================================================================

@app.post("/api/payments/create-order", response_model=ApiResponse[PaymentResponse], tags=["Payments"])
async def create_payment_order(
    request: PaymentRequest,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    response = payments.create_payment_order(request, user)
    if not response.success:
        return error_response(status.HTTP_400_BAD_REQUEST, response.message or "Payment order failed")
    return ApiResponse.ok(response, "Payment order created")


@app.post("/api/payments/verify", response_model=ApiResponse[PaymentResponse], tags=["Payments"])
async def verify_payment(
    request: PaymentVerificationRequest,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    response = payments.verify_and_complete_payment(
        request.order_id, request.payment_id, request.signature, user
    )
    if not response.success:
        return error_response(status.HTTP_400_BAD_REQUEST, response.message or "Payment verification failed")
    return ApiResponse.ok(response, "Payment verified successfully")


@app.get("/api/payments/history", response_model=ApiResponse[List[PaymentOut]], tags=["Payments"])
async def get_payment_history(
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    history = [PaymentOut.model_validate(p) for p in payments.get_payment_history(user)]
    return ApiResponse.ok(history)


@app.get("/api/payments/plans", response_model=ApiResponse[List[SubscriptionPlanOut]], tags=["Payments"])
async def get_subscription_plans():
    return ApiResponse.ok(SubscriptionService.get_available_plans())


@app.get("/api/payments/gateways", response_model=ApiResponse[List[str]], tags=["Payments"])
async def get_payment_gateways(factory: PaymentStrategyFactory = Depends(get_strategy_factory)):
    return ApiResponse.ok(factory.get_supported_gateways())


@app.post("/api/subscriptions/cancel", response_model=ApiResponse[UserOut], tags=["Payments"])
async def cancel_subscription(
    user: User = Depends(get_current_user),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    user = subscriptions.cancel_subscription(user)
    return ApiResponse.ok(UserOut.model_validate(user), "Subscription cancelled")


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
