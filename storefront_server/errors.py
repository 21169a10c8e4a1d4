"""Error taxonomy and mapping of backend responses to errors."""

from typing import Any, Optional

import httpx


class StorefrontError(Exception):
    """Base class for every error raised by the storefront session."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransportError(StorefrontError):
    """The backend or gateway could not be reached."""


class AuthError(StorefrontError):
    """Invalid credentials or a rejected/expired session."""


class ValidationError(StorefrontError):
    """The request body was rejected; ``field_errors`` holds per-field messages."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = 400,
    ) -> None:
        super().__init__(message, status_code)
        self.field_errors = field_errors or {}


class NotFoundError(StorefrontError):
    pass


class ConflictError(StorefrontError):
    """The resource is in a state that forbids the operation (e.g. order already confirmed)."""


class ApiError(StorefrontError):
    """Any other non-success response."""


class PaymentDeclined(StorefrontError):
    """The payment gateway (or the backend confirmation) declined the payment."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code)
        self.code = code


class CheckoutError(StorefrontError):
    """A checkout transition was refused before any network call."""


class EmptyCartError(CheckoutError):
    pass


class CheckoutInProgressError(CheckoutError):
    pass


class CheckoutStateError(CheckoutError):
    pass


def _error_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return None


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def error_from_response(response: httpx.Response) -> StorefrontError:
    """Build the taxonomy error for a non-success response."""
    status = response.status_code
    body = _response_body(response)
    message = _error_message(body)

    if status in (400, 422):
        field_errors = {}
        if isinstance(body, dict):
            field_errors = {
                key: value
                for key, value in body.items()
                if key not in ("detail", "message", "error", "code")
            }
        return ValidationError(message or "Validation failed", field_errors=field_errors, status_code=status)

    message = message or response.reason_phrase or f"HTTP {status}"
    if status in (401, 403):
        return AuthError(message, status_code=status)
    if status == 404:
        return NotFoundError(message, status_code=status)
    if status == 409:
        return ConflictError(message, status_code=status)
    return ApiError(message, status_code=status)


def raise_for_response(response: httpx.Response) -> httpx.Response:
    """Raise the mapped error for a non-2xx response, otherwise return it."""
    if response.is_success:
        return response
    raise error_from_response(response)
