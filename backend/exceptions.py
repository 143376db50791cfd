"""Application errors raised by the service layer and rendered by main.py."""

from fastapi import status


class AppError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidCredentialsError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class UnauthorizedAccessError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class ResourceNotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ResourceConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class RateLimitExceededError(AppError):
    """Raised when a user has used up a tier quota."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class PaymentError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class AIServiceError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
