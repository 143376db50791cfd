"""
Pytest configuration and shared fixtures for Expense AI tests.

This file is automatically loaded by pytest and provides:
    - An in-memory SQLite session with all tables created
    - A user factory
    - A scripted stand-in for the Gemini client
    - A FastAPI TestClient wired to the test session
"""

import os
import sys
from datetime import datetime
from pathlib import Path

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-the-expense-ai-suite")
os.environ["GEMINI_API_KEY"] = ""
os.environ["AUTH_BYPASS"] = "false"

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, init_db
from enums import AuthProvider, Role, SubscriptionTier
from exceptions import AIServiceError
from models import User
from services.cache import response_cache
from services.circuit_breaker import CircuitBreaker
from services.observability import metrics


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def db():
    """Real session on a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Caches and metrics are process-wide; isolate every test."""
    response_cache.clear()
    metrics.reset()
    yield
    response_cache.clear()


# =============================================================================
# User Fixtures
# =============================================================================

@pytest.fixture
def make_user(db):
    """Factory: persist a user with the given tier and subscription window."""
    counter = {"n": 0}

    def _make(tier=SubscriptionTier.FREE, end_date=None, email=None, password_hash=None, provider=AuthProvider.LOCAL):
        counter["n"] += 1
        user = User(
            name=f"User {counter['n']}",
            email=email or f"user{counter['n']}@example.com",
            password_hash=password_hash,
            role=Role.USER,
            provider=provider,
            subscription_tier=tier,
            subscription_start_date=datetime.utcnow() if end_date else None,
            subscription_end_date=end_date,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


# =============================================================================
# AI Fixtures
# =============================================================================

class FakeGemini:
    """
    Scripted replacement for GeminiService.

    `reply` is returned for every prompt; set `error` to make calls raise.
    Prompts are recorded in `prompts`.
    """

    def __init__(self, reply="Spend less on food.", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []
        self.breaker = CircuitBreaker("fake")

    async def generate_content(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    def status(self):
        return f"circuit_{self.breaker.state}"


@pytest.fixture
def make_gemini():
    return FakeGemini


@pytest.fixture
def fake_gemini():
    return FakeGemini()


@pytest.fixture
def failing_gemini():
    return FakeGemini(error=AIServiceError("AI service is temporarily unavailable"))


# =============================================================================
# API Fixtures
# =============================================================================

@pytest.fixture
def client(db, fake_gemini):
    """TestClient using the in-memory session and the fake Gemini client."""
    from fastapi.testclient import TestClient

    from database import get_db
    from main import app, get_gemini_service

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gemini_service] = lambda: fake_gemini
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build a Bearer header for a user."""
    from auth import create_access_token

    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers
