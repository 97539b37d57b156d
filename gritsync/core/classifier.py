"""
Error classification.

Maps anything that was raised or returned as an error (exceptions, JSON
error payloads from PostgREST/Stripe/Resend, bare strings) onto a fixed
taxonomy carrying a user-facing message and a retry decision.

Tier order, first match wins:
  1. transport failures: exception classes, errno codes
  2. an HTTP 401 status
  3. network / timeout wording in the message
  4. authentication wording
  5. authorization: 403 or wording
  6. not found: 404 or wording
  7. validation: 400 / 422, Stripe card errors, or wording
  8. rate limit: 429, Stripe rate-limit errors, or wording
  9. server: any status >= 500
 10. SQLSTATE / PostgREST code table
 11. leftover 4xx as CLIENT, anything else UNKNOWN
So a 500 that says "Invalid amount" is VALIDATION and is not retried.
classify_error() is pure and never raises.
"""
import errno
import logging
import re
import socket
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import httpx
import stripe
from sqlalchemy.exc import DBAPIError

logger = logging.getLogger("gritsync.errors")

T = TypeVar("T")


class ErrorType(str, Enum):
    NETWORK = "NETWORK"
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    SERVER = "SERVER"
    CLIENT = "CLIENT"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class ErrorClassification:
    type: ErrorType
    severity: ErrorSeverity
    user_message: str
    retryable: bool
    retry_delay_ms: int | None = None
    log_level: str = "error"  # error | warning | info


DEFAULT_RETRY_DELAY_MS = 1000
MAX_SURFACED_MESSAGE = 200

GENERIC_MESSAGE = (
    "An unexpected error occurred. "
    "Please try again or contact support if the problem persists."
)

NETWORK_ERROR = ErrorClassification(
    type=ErrorType.NETWORK,
    severity=ErrorSeverity.MEDIUM,
    user_message=(
        "Unable to connect to the server. "
        "Please check your internet connection and try again."
    ),
    retryable=True,
    retry_delay_ms=2000,
    log_level="warning",
)

TIMEOUT_ERROR = ErrorClassification(
    type=ErrorType.TIMEOUT,
    severity=ErrorSeverity.MEDIUM,
    user_message="The request took too long. Please try again.",
    retryable=True,
    retry_delay_ms=3000,
    log_level="warning",
)

AUTHENTICATION_ERROR = ErrorClassification(
    type=ErrorType.AUTHENTICATION,
    severity=ErrorSeverity.HIGH,
    user_message="Your session has expired. Please log in again.",
    retryable=False,
    log_level="warning",
)

AUTHORIZATION_ERROR = ErrorClassification(
    type=ErrorType.AUTHORIZATION,
    severity=ErrorSeverity.HIGH,
    user_message="You do not have permission to perform this action.",
    retryable=False,
    log_level="warning",
)

NOT_FOUND_ERROR = ErrorClassification(
    type=ErrorType.NOT_FOUND,
    severity=ErrorSeverity.LOW,
    user_message="The requested resource was not found.",
    retryable=False,
    log_level="info",
)

RATE_LIMIT_ERROR = ErrorClassification(
    type=ErrorType.RATE_LIMIT,
    severity=ErrorSeverity.MEDIUM,
    user_message="Too many requests. Please wait a moment and try again.",
    retryable=True,
    retry_delay_ms=5000,
    log_level="warning",
)

SERVER_ERROR = ErrorClassification(
    type=ErrorType.SERVER,
    severity=ErrorSeverity.HIGH,
    user_message=(
        "A server error occurred. Please try again later "
        "or contact support if the problem persists."
    ),
    retryable=True,
    retry_delay_ms=5000,
    log_level="error",
)

# PostgREST and Postgres SQLSTATE codes. Matched exactly, never by substring.
DATABASE_ERRORS: dict[str, ErrorClassification] = {
    "PGRST116": NOT_FOUND_ERROR,
    "23505": ErrorClassification(
        type=ErrorType.VALIDATION,
        severity=ErrorSeverity.LOW,
        user_message="This record already exists. Please check for duplicates.",
        retryable=False,
        log_level="info",
    ),
    "23503": ErrorClassification(
        type=ErrorType.VALIDATION,
        severity=ErrorSeverity.LOW,
        user_message="Invalid reference. Please check your input.",
        retryable=False,
        log_level="info",
    ),
    "23502": ErrorClassification(
        type=ErrorType.VALIDATION,
        severity=ErrorSeverity.LOW,
        user_message="A required value is missing. Please check your input.",
        retryable=False,
        log_level="info",
    ),
    "42501": AUTHORIZATION_ERROR,
    "40001": ErrorClassification(
        type=ErrorType.SERVER,
        severity=ErrorSeverity.MEDIUM,
        user_message="The record was busy. Please try again.",
        retryable=True,
        retry_delay_ms=1000,
        log_level="warning",
    ),
    "40P01": ErrorClassification(
        type=ErrorType.SERVER,
        severity=ErrorSeverity.MEDIUM,
        user_message="The record was busy. Please try again.",
        retryable=True,
        retry_delay_ms=1000,
        log_level="warning",
    ),
}

_NETWORK_CODES = {"ECONNREFUSED", "ENOTFOUND", "ECONNRESET", "EHOSTUNREACH", "ENETUNREACH"}
_TIMEOUT_CODES = {"ETIMEDOUT"}

_NETWORK_MARKERS = ("network", "fetch", "econnrefused", "enotfound")
_TIMEOUT_MARKERS = ("timeout", "timed out", "etimedout")
_AUTHENTICATION_MARKERS = (
    "not authenticated",
    "unauthorized",
    "invalid credentials",
    "authentication",
)
_AUTHORIZATION_MARKERS = (
    "forbidden",
    "permission denied",
    "not authorized",
    "access denied",
)
_NOT_FOUND_MARKERS = ("not found", "does not exist")
_VALIDATION_MARKERS = ("validation", "invalid", "required")
_RATE_LIMIT_MARKERS = ("rate limit", "too many requests")

_JS_FRAME = re.compile(r"\bat \S+ \(")


def _field(error: Any, name: str) -> Any:
    if isinstance(error, Mapping):
        return error.get(name)
    try:
        return getattr(error, name, None)
    except Exception:  # a property blew up; the field simply isn't there
        return None


def _message(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    for name in ("message", "detail", "user_message"):
        value = _field(error, name)
        if isinstance(value, str) and value:
            return value
    if isinstance(error, BaseException):
        return str(error)
    if isinstance(error, Mapping):
        return ""
    return str(error)


def _name(error: Any) -> str:
    value = _field(error, "name")
    if isinstance(value, str):
        return value
    if isinstance(error, BaseException):
        return type(error).__name__
    return ""


def _as_status(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and 100 <= value <= 599:
        return value
    if isinstance(value, str) and len(value) == 3 and value.isdigit():
        return int(value)
    return None


def _status(error: Any) -> int | None:
    for name in ("status", "status_code", "statusCode", "http_status"):
        status = _as_status(_field(error, name))
        if status:
            return status
    status = _as_status(_field(error, "code"))
    if status:
        return status
    response = _field(error, "response")
    if response is not None and not isinstance(response, (str, bytes, Mapping)):
        return _as_status(_field(response, "status_code"))
    return None


def _code(error: Any) -> str | None:
    if isinstance(error, DBAPIError) and error.orig is not None:
        return _code(error.orig)
    for name in ("code", "pgcode", "sqlstate"):
        value = _field(error, name)
        if isinstance(value, str) and value:
            return value
    value = _field(error, "errno")
    if isinstance(value, int) and not isinstance(value, bool):
        return errno.errorcode.get(value)
    return None


def _looks_like_stack(message: str) -> bool:
    return (
        "Traceback (most recent call last)" in message
        or 'File "' in message
        or "Error:" in message
        or bool(_JS_FRAME.search(message))
    )


def _validation(message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.VALIDATION,
        severity=ErrorSeverity.LOW,
        user_message=message or "Please check your input and try again.",
        retryable=False,
        log_level="info",
    )


def _client(message: str) -> ErrorClassification:
    surfaced = message if message and len(message) <= MAX_SURFACED_MESSAGE else ""
    return ErrorClassification(
        type=ErrorType.CLIENT,
        severity=ErrorSeverity.LOW,
        user_message=surfaced or "The request could not be completed. Please check and try again.",
        retryable=False,
        log_level="info",
    )


def _unknown(message: str) -> ErrorClassification:
    surfaced = (
        message
        if message
        and len(message) <= MAX_SURFACED_MESSAGE
        and not _looks_like_stack(message)
        else GENERIC_MESSAGE
    )
    return ErrorClassification(
        type=ErrorType.UNKNOWN,
        severity=ErrorSeverity.MEDIUM,
        user_message=surfaced,
        retryable=False,
        log_level="error",
    )


def _classify_transport(error: Any, code: str | None, name: str) -> ErrorClassification | None:
    if (
        isinstance(
            error,
            (ConnectionError, socket.gaierror, httpx.NetworkError, stripe.APIConnectionError),
        )
        or code in _NETWORK_CODES
        or name == "NetworkError"
    ):
        return NETWORK_ERROR

    if (
        isinstance(error, (TimeoutError, httpx.TimeoutException))
        or code in _TIMEOUT_CODES
        or name == "TimeoutError"
    ):
        return TIMEOUT_ERROR
    return None


def _has(message: str, markers: tuple[str, ...]) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in markers)


def _classify_transport_message(message: str) -> ErrorClassification | None:
    if _has(message, _NETWORK_MARKERS):
        return NETWORK_ERROR
    if _has(message, _TIMEOUT_MARKERS):
        return TIMEOUT_ERROR
    return None


def _classify_tiers(error: Any, message: str, status: int | None) -> ErrorClassification | None:
    if _has(message, _AUTHENTICATION_MARKERS):
        return AUTHENTICATION_ERROR
    if status == 403 or _has(message, _AUTHORIZATION_MARKERS):
        return AUTHORIZATION_ERROR
    if status == 404 or _has(message, _NOT_FOUND_MARKERS):
        return NOT_FOUND_ERROR

    if (
        status in (400, 422)
        or isinstance(error, stripe.CardError)
        or _has(message, _VALIDATION_MARKERS)
    ):
        return _validation(message)

    if (
        status == 429
        or isinstance(error, stripe.RateLimitError)
        or _has(message, _RATE_LIMIT_MARKERS)
    ):
        return RATE_LIMIT_ERROR

    if status is not None and status >= 500:
        return SERVER_ERROR
    return None


def classify_error(error: Any) -> ErrorClassification:
    if isinstance(error, AppError):
        return error.classification

    message = _message(error) or ""
    status = _status(error)
    code = _code(error)

    # a 401 status outranks any wording, including network and timeout
    found = (
        _classify_transport(error, code, _name(error))
        or (AUTHENTICATION_ERROR if status == 401 else None)
        or _classify_transport_message(message)
        or _classify_tiers(error, message, status)
        or DATABASE_ERRORS.get(code or "")
    )
    if found is None and status is not None and 400 <= status < 500:
        found = _client(message)
    return found or _unknown(message)


def is_retryable_error(error: Any) -> bool:
    return classify_error(error).retryable


def get_retry_delay(error: Any) -> int:
    return classify_error(error).retry_delay_ms or DEFAULT_RETRY_DELAY_MS


def get_user_friendly_message(error: Any, fallback: str | None = None) -> str:
    return classify_error(error).user_message or fallback or "An unexpected error occurred."


class AppError(Exception):
    """
    An error that already knows how it should be reported.
    str(AppError) is the user-facing message.
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        retryable: bool = False,
        original_error: Any = None,
        context: dict[str, Any] | None = None,
        retry_delay_ms: int | None = None,
        log_level: str | None = None,
    ):
        super().__init__(message)
        self.classification = ErrorClassification(
            type=error_type,
            severity=severity,
            user_message=message,
            retryable=retryable,
            retry_delay_ms=retry_delay_ms,
            log_level=log_level or _level_for(severity),
        )
        self.original_error = original_error
        self.context = context or {}

    @property
    def type(self) -> ErrorType:
        return self.classification.type

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def retryable(self) -> bool:
        return self.classification.retryable

    @classmethod
    def from_classification(
        cls,
        classification: ErrorClassification,
        original_error: Any = None,
        context: dict[str, Any] | None = None,
    ) -> "AppError":
        return cls(
            classification.user_message,
            error_type=classification.type,
            severity=classification.severity,
            retryable=classification.retryable,
            original_error=original_error,
            context=context,
            retry_delay_ms=classification.retry_delay_ms,
            log_level=classification.log_level,
        )


def _level_for(severity: ErrorSeverity) -> str:
    if severity == ErrorSeverity.LOW:
        return "info"
    if severity == ErrorSeverity.MEDIUM:
        return "warning"
    return "error"


_LOG_LEVELS = {"error": logging.ERROR, "warning": logging.WARNING, "info": logging.INFO}


def normalize_error(error: Any, context: dict[str, Any] | None = None) -> AppError:
    if isinstance(error, AppError):
        return error
    return AppError.from_classification(classify_error(error), original_error=error, context=context)


def log_error(error: Any, context: dict[str, Any] | None = None) -> None:
    classification = classify_error(error)
    original = error.original_error if isinstance(error, AppError) else error
    raw = _message(original) or classification.user_message
    level = _LOG_LEVELS.get(classification.log_level, logging.ERROR)
    exc_info = original if level >= logging.ERROR and isinstance(original, BaseException) else None

    logger.log(
        level,
        "%s severity=%s retryable=%s message=%s context=%s",
        classification.type.value,
        classification.severity.value,
        classification.retryable,
        raw,
        context or (error.context if isinstance(error, AppError) else {}),
        exc_info=exc_info,
    )


def handle_error(error: Any, context: dict[str, Any] | None = None) -> str:
    normalized = normalize_error(error, context)
    log_error(normalized, context)
    return str(normalized)


async def safe_call(
    fn: Callable[[], Awaitable[T]], context: dict[str, Any] | None = None
) -> tuple[T | None, str | None]:
    try:
        return await fn(), None
    except Exception as e:
        return None, handle_error(e, context)
