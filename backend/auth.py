"""
Module: auth.py
Description: Password hashing, JWT issuing/verification and the FastAPI
current-user dependency.

Provides:
    - bcrypt password hashing
    - HS256 access and refresh tokens (sub = user email, type = access|refresh)
    - get_current_user dependency resolving the Bearer token to a User row

Usage:
    @app.get("/protected")
    async def protected_route(user: User = Depends(get_current_user)):
        ...
"""

from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session as DBSession

from config import Settings, get_settings
from database import get_db
from enums import AuthProvider, Role
from models import User

ACCESS = "access"
REFRESH = "refresh"


# =============================================================================
# Security Scheme
# =============================================================================

security = HTTPBearer(auto_error=False)


# =============================================================================
# Passwords
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


# =============================================================================
# JWT
# =============================================================================

def _create_token(user: User, token_type: str, lifetime: timedelta, settings: Settings) -> str:
    now = datetime.utcnow()
    claims = {
        "sub": user.email,
        "uid": user.id,
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user: User, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return _create_token(user, ACCESS, timedelta(hours=settings.jwt_expiration_hours), settings)


def create_refresh_token(user: User, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return _create_token(user, REFRESH, timedelta(days=settings.jwt_refresh_expiration_days), settings)


def decode_token(token: str, expected_type: str = ACCESS, settings: Optional[Settings] = None) -> Optional[dict]:
    """
    Verify a token and return its claims.

    Returns:
        Dict of claims if the signature, expiry and token type are valid,
        None otherwise.
    """
    if not token:
        return None
    settings = settings or get_settings()

    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.InvalidTokenError:
        return None

    if claims.get("type") != expected_type or not claims.get("sub"):
        return None
    return claims


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def _get_bypass_user(db: DBSession, settings: Settings) -> User:
    """Development bypass: act as a fixed local user, creating it on first use."""
    user = db.query(User).filter(User.email == settings.auth_bypass_email).first()
    if user is None:
        user = User(
            name="Demo User",
            email=settings.auth_bypass_email,
            role=Role.USER,
            provider=AuthProvider.LOCAL,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DBSession = Depends(get_db),
) -> User:
    """
    Resolve the Bearer access token to the authenticated User.

    Raises:
        HTTPException: 401 if not authenticated, token invalid, or the user
            no longer exists.
    """
    settings = get_settings()
    if settings.auth_bypass:
        return _get_bypass_user(db, settings)

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = decode_token(credentials.credentials, ACCESS, settings)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.email == claims["sub"]).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user
