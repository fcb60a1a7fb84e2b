from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for errors the chat service maps onto HTTP responses."""

    status_code: int = 500


class ValidationError(ServiceError):
    """Empty or missing user input."""

    status_code = 400


class AuthError(ServiceError):
    """A bearer credential could not be obtained or verified."""

    status_code = 401


class ModelCallError(ServiceError):
    """Transport or provider level failure while calling the hosted model.

    Carries the provider error category (``name``) and HTTP status when the
    provider reported one.
    """

    def __init__(self, message: str, name: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.name = name
        self.provider_status = status_code


class ModelResponseError(ServiceError):
    """The provider answered but the payload was malformed or empty."""


class StoreError(ServiceError):
    """Transcript persistence failed."""


class CipherError(ServiceError):
    """Message payload could not be encrypted or decrypted."""
