"""Local account registration, login and token refresh."""

from sqlalchemy.orm import Session as DBSession

from auth import REFRESH, create_access_token, create_refresh_token, decode_token, hash_password, verify_password
from enums import AuthProvider, Role
from exceptions import InvalidCredentialsError, ResourceConflictError
from models import User
from schemas import AuthResponse, LoginRequest, RegisterRequest, UserOut
from services.observability import logger, metrics


class AuthService:
    def __init__(self, db: DBSession):
        self.db = db

    def _find_by_email(self, email: str):
        return self.db.query(User).filter(User.email == email).first()

    @staticmethod
    def build_auth_response(user: User, refresh_token: str = None) -> AuthResponse:
        return AuthResponse(
            token=create_access_token(user),
            refresh_token=refresh_token or create_refresh_token(user),
            user=UserOut.model_validate(user),
        )

    def register(self, request: RegisterRequest) -> AuthResponse:
        if self._find_by_email(request.email) is not None:
            raise ResourceConflictError("Email already registered")

        user = User(
            name=request.name,
            email=request.email,
            password_hash=hash_password(request.password),
            role=Role.USER,
            provider=AuthProvider.LOCAL,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        metrics.increment("auth.registered")
        logger.info("User registered", user=user.email)
        return self.build_auth_response(user)

    def login(self, request: LoginRequest) -> AuthResponse:
        user = self._find_by_email(request.email)
        if user is None or not verify_password(request.password, user.password_hash):
            metrics.increment("auth.login_failed")
            raise InvalidCredentialsError("Invalid email or password")

        metrics.increment("auth.login")
        return self.build_auth_response(user)

    def refresh_token(self, refresh_token: str) -> AuthResponse:
        claims = decode_token(refresh_token, REFRESH)
        if not claims:
            raise InvalidCredentialsError("Invalid refresh token")

        user = self._find_by_email(claims["sub"])
        if user is None:
            raise InvalidCredentialsError("Invalid refresh token")

        return self.build_auth_response(user, refresh_token=refresh_token)
