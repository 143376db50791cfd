"""
Module: oauth_service.py
Description: OAuth2 authorization-code login with Google and GitHub.

Flow:
    1. build_authorization_url: provider consent URL with a signed, short-lived
       `state` token
    2. complete_login: verify state, exchange the code, load the profile,
       create or link the local user and issue our own JWT pair
    3. The caller redirects the browser to the frontend with the tokens
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx
import jwt
from sqlalchemy.orm import Session as DBSession

from auth import create_access_token, create_refresh_token
from config import Settings
from enums import AuthProvider, Role
from exceptions import InvalidCredentialsError, ValidationError
from models import User
from services.observability import logger, metrics

STATE_TYPE = "oauth_state"
STATE_TTL_MINUTES = 10


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    provider: AuthProvider
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str
    client_id: str
    client_secret: str


def get_providers(settings: Settings) -> Dict[str, OAuthProvider]:
    return {
        "google": OAuthProvider(
            name="google",
            provider=AuthProvider.GOOGLE,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            userinfo_url="https://www.googleapis.com/oauth2/v3/userinfo",
            scope="openid email profile",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        ),
        "github": OAuthProvider(
            name="github",
            provider=AuthProvider.GITHUB,
            authorize_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            userinfo_url="https://api.github.com/user",
            scope="read:user user:email",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
        ),
    }


class OAuthService:
    def __init__(self, db: DBSession, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.db = db
        self.settings = settings
        self.providers = get_providers(settings)
        self._client = client

    def get_provider(self, name: str) -> OAuthProvider:
        provider = self.providers.get((name or "").lower())
        if provider is None:
            raise ValidationError(f"Unsupported OAuth provider: {name}")
        if not provider.client_id:
            raise ValidationError(f"OAuth provider {provider.name} is not configured")
        return provider

    def callback_url(self, provider: OAuthProvider) -> str:
        return f"{self.settings.oauth2_callback_base_url}/login/oauth2/code/{provider.name}"

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def create_state(self, provider_name: str) -> str:
        now = datetime.utcnow()
        claims = {
            "type": STATE_TYPE,
            "provider": provider_name,
            "iat": now,
            "exp": now + timedelta(minutes=STATE_TTL_MINUTES),
        }
        return jwt.encode(claims, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def verify_state(self, state: str, provider_name: str) -> bool:
        try:
            claims = jwt.decode(state or "", self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except jwt.InvalidTokenError:
            return False
        return claims.get("type") == STATE_TYPE and claims.get("provider") == provider_name

    # -------------------------------------------------------------------------
    # Redirects
    # -------------------------------------------------------------------------

    def build_authorization_url(self, provider_name: str) -> str:
        provider = self.get_provider(provider_name)
        params = {
            "client_id": provider.client_id,
            "redirect_uri": self.callback_url(provider),
            "response_type": "code",
            "scope": provider.scope,
            "state": self.create_state(provider.name),
        }
        return f"{provider.authorize_url}?{urlencode(params)}"

    def success_redirect(self, user: User) -> str:
        params = {
            "token": create_access_token(user, self.settings),
            "refreshToken": create_refresh_token(user, self.settings),
        }
        return f"{self.settings.oauth2_redirect_uri}?{urlencode(params)}"

    def failure_redirect(self) -> str:
        return f"{self.settings.oauth2_redirect_uri}?{urlencode({'error': 'authentication_failed'})}"

    # -------------------------------------------------------------------------
    # Callback
    # -------------------------------------------------------------------------

    async def complete_login(self, provider_name: str, code: str, state: str) -> User:
        """
        Finish the authorization-code flow and return the local user.

        Raises:
            InvalidCredentialsError: bad state, missing code or a provider error.
        """
        provider = self.get_provider(provider_name)
        if not code or not self.verify_state(state, provider.name):
            raise InvalidCredentialsError("Invalid OAuth state")

        try:
            if self._client is not None:
                profile = await self._fetch_profile(self._client, provider, code)
            else:
                async with httpx.AsyncClient(timeout=15.0) as client:
                    profile = await self._fetch_profile(client, provider, code)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("OAuth exchange failed", provider=provider.name, error=str(e))
            metrics.increment("auth.oauth_failed", tags={"provider": provider.name})
            raise InvalidCredentialsError("OAuth authentication failed") from e

        user = self.upsert_user(provider, profile)
        metrics.increment("auth.oauth_login", tags={"provider": provider.name})
        return user

    async def _fetch_profile(self, client: httpx.AsyncClient, provider: OAuthProvider, code: str) -> dict:
        token_response = await client.post(
            provider.token_url,
            data={
                "client_id": provider.client_id,
                "client_secret": provider.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.callback_url(provider),
            },
            headers={"Accept": "application/json"},
        )
        token_response.raise_for_status()
        access_token = token_response.json().get("access_token")
        if not access_token:
            raise ValueError("Provider returned no access token")

        profile_response = await client.get(
            provider.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        profile_response.raise_for_status()
        return profile_response.json()

    def upsert_user(self, provider: OAuthProvider, profile: dict) -> User:
        """Find the user by email, linking the provider if needed, or create one."""
        if provider.provider == AuthProvider.GITHUB:
            login = profile.get("login") or ""
            email = profile.get("email") or f"{login}@github.com"
            name = profile.get("name") or login
            provider_id = str(profile.get("id") or "")
        else:
            email = profile.get("email")
            name = profile.get("name") or email
            provider_id = str(profile.get("sub") or profile.get("id") or "")

        if not email or email.startswith("@"):
            raise InvalidCredentialsError("OAuth profile has no email")
        email = email.lower()

        user = self.db.query(User).filter(User.email == email).first()
        if user is None:
            user = User(
                name=name,
                email=email,
                role=Role.USER,
                provider=provider.provider,
                provider_id=provider_id or None,
            )
            self.db.add(user)
            logger.info("OAuth user created", provider=provider.name, user=email)
        elif not user.provider_id:
            user.provider = provider.provider
            user.provider_id = provider_id or None
            logger.info("OAuth provider linked", provider=provider.name, user=email)

        self.db.commit()
        self.db.refresh(user)
        return user
