"""Error taxonomy shared by every Google-facing component.

Provider failures are classified here once and travel as values inside
:class:`Result`. Nothing above the API client looks at raw status codes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    USER_CANCELLED = "user_cancelled"
    INVALID_OR_EXPIRED_STATE = "invalid_state"
    CREDENTIAL_EXPIRED = "token_expired"
    CREDENTIAL_REVOKED = "token_revoked"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    RESOURCE_NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "api_unavailable"
    NETWORK_TIMEOUT = "network_error"
    CONFIGURATION_MISSING = "config_error"
    NO_CONNECTION = "no_connection"
    NO_LOCATION = "no_location"
    INVALID_TRANSITION = "invalid_transition"
    EMPTY_REPLY = "empty_reply"
    UNKNOWN = "unknown"

    @property
    def code(self) -> str:
        return self.value

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self, 500)

    @property
    def default_message(self) -> str:
        return MESSAGES[self]


_RETRYABLE = frozenset(
    {
        ErrorKind.CREDENTIAL_EXPIRED,
        ErrorKind.RATE_LIMITED,
        ErrorKind.PROVIDER_UNAVAILABLE,
        ErrorKind.NETWORK_TIMEOUT,
    }
)

_HTTP_STATUS = {
    ErrorKind.USER_CANCELLED: 400,
    ErrorKind.INVALID_OR_EXPIRED_STATE: 400,
    ErrorKind.CREDENTIAL_EXPIRED: 401,
    ErrorKind.CREDENTIAL_REVOKED: 401,
    ErrorKind.INSUFFICIENT_SCOPE: 403,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.RESOURCE_NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
    ErrorKind.NETWORK_TIMEOUT: 504,
    ErrorKind.CONFIGURATION_MISSING: 500,
    ErrorKind.NO_CONNECTION: 409,
    ErrorKind.NO_LOCATION: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.EMPTY_REPLY: 400,
    ErrorKind.UNKNOWN: 500,
}

MESSAGES = {
    ErrorKind.USER_CANCELLED: 'You cancelled the Google connection. Click "Connect Google" to try again.',
    ErrorKind.INVALID_OR_EXPIRED_STATE: "Security validation failed. Please try connecting again.",
    ErrorKind.CREDENTIAL_EXPIRED: "Your Google connection has expired. Please reconnect your account.",
    ErrorKind.CREDENTIAL_REVOKED: "Google access was revoked. Please reconnect your account.",
    ErrorKind.INSUFFICIENT_SCOPE: (
        "Additional permissions are required. Please reconnect and grant all requested permissions."
    ),
    ErrorKind.RESOURCE_NOT_FOUND: (
        "The selected business location or review was not found. Please select a different location."
    ),
    ErrorKind.ACCESS_DENIED: (
        "You don't have permission to access this location. "
        "Please check your Google Business Profile permissions."
    ),
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.PROVIDER_UNAVAILABLE: "Google services are temporarily unavailable. Please try again later.",
    ErrorKind.NETWORK_TIMEOUT: "Network error. Please check your connection and try again.",
    ErrorKind.CONFIGURATION_MISSING: "Google integration is not configured. Please contact support.",
    ErrorKind.NO_CONNECTION: "Google is not connected for this business. Connect Google in Settings.",
    ErrorKind.NO_LOCATION: "No Google location is selected. Choose a location in Settings.",
    ErrorKind.INVALID_TRANSITION: "This reply has already been posted and can no longer be changed.",
    ErrorKind.EMPTY_REPLY: "Reply text cannot be empty.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}

STATE_EXPIRED_MESSAGE = "The connection request expired. Please try again."


@dataclass
class IntegrationError(Exception):
    """A classified failure.

    Raised only at the HTTP edge; everywhere else it is carried in a Result.
    """

    kind: ErrorKind
    message: str = ""
    retry_after: float | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.message:
            self.message = self.kind.default_message

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    def as_response(self) -> dict[str, Any]:
        # Public/safe error payload; never carries the provider body
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: IntegrationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: IntegrationError | ErrorKind, message: str = "") -> "Result[T]":
        if isinstance(error, ErrorKind):
            error = IntegrationError(error, message)
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def _error_obj(body: Any) -> Mapping[str, Any]:
    if isinstance(body, Mapping):
        err = body.get("error")
        if isinstance(err, Mapping):
            return err
    return {}


def _is_revoked(body: Any) -> bool:
    if not isinstance(body, Mapping):
        return False
    if body.get("error") == "invalid_token":
        return True
    desc = str(body.get("error_description") or _error_obj(body).get("message") or "")
    return "revoked" in desc.lower()


def _is_scope_failure(body: Any) -> bool:
    err = _error_obj(body)
    errors = err.get("errors") or []
    if errors and isinstance(errors[0], Mapping) and errors[0].get("reason") == "insufficientPermissions":
        return True
    for detail in err.get("details") or []:
        if isinstance(detail, Mapping) and detail.get("reason") == "ACCESS_TOKEN_SCOPE_INSUFFICIENT":
            return True
    return False


def classify_response(
    status: int, body: Any = None, headers: Mapping[str, str] | None = None
) -> IntegrationError:
    """Map a non-2xx provider response onto the taxonomy."""
    details: dict[str, Any] = {"status": status}
    if status == 401:
        if _is_revoked(body):
            return IntegrationError(ErrorKind.CREDENTIAL_REVOKED, details=details)
        return IntegrationError(ErrorKind.CREDENTIAL_EXPIRED, details=details)
    if status == 403:
        if _is_scope_failure(body):
            return IntegrationError(ErrorKind.INSUFFICIENT_SCOPE, details=details)
        return IntegrationError(ErrorKind.ACCESS_DENIED, details=details)
    if status == 404:
        return IntegrationError(ErrorKind.RESOURCE_NOT_FOUND, details=details)
    if status == 429:
        headers = headers or {}
        retry_after = parse_retry_after(headers.get("retry-after") or headers.get("Retry-After"))
        if retry_after is not None:
            details["retry_after"] = retry_after
        return IntegrationError(ErrorKind.RATE_LIMITED, retry_after=retry_after, details=details)
    if status >= 500:
        return IntegrationError(ErrorKind.PROVIDER_UNAVAILABLE, details=details)
    return IntegrationError(ErrorKind.UNKNOWN, details=details)


def parse_oauth_error(error_param: str | None) -> IntegrationError:
    """Map the ``error`` query parameter of an OAuth callback."""
    if error_param == "access_denied":
        return IntegrationError(ErrorKind.USER_CANCELLED)
    if error_param == "invalid_scope":
        return IntegrationError(ErrorKind.INSUFFICIENT_SCOPE)
    return IntegrationError(ErrorKind.UNKNOWN, details={"oauth_error": error_param or ""})
