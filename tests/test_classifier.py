import errno
import logging

import httpx
import pytest
import stripe

from gritsync.core.classifier import (
    GENERIC_MESSAGE,
    AppError,
    ErrorSeverity,
    ErrorType,
    classify_error,
    get_retry_delay,
    get_user_friendly_message,
    handle_error,
    is_retryable_error,
    log_error,
    normalize_error,
    safe_call,
)


class NamedError(Exception):
    def __init__(self, message, name):
        super().__init__(message)
        self.name = name


class StatusError(Exception):
    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


def _http_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.resend.com/emails")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("upstream failed", request=request, response=response)


SAMPLES = [
    None,
    "Failed to fetch",
    "Request timeout",
    Exception("boom"),
    TimeoutError(),
    ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"),
    {"status": 401, "message": "whatever"},
    {"statusCode": 403},
    {"status": 404},
    {"status": 429},
    {"status": 503},
    {"status": 418, "message": "teapot"},
    {"code": "23505", "message": "duplicate key value violates unique constraint"},
    {"code": "40001"},
    _http_error(502),
    stripe.APIConnectionError("could not reach stripe"),
    AppError("Payment not found.", error_type=ErrorType.NOT_FOUND),
]


@pytest.mark.parametrize(
    "error",
    [
        Exception("Request timeout"),
        Exception("Gateway TIMEOUT while contacting upstream"),
        "operation timed out",
        {"status": 500, "message": "upstream timeout"},
        NamedError("took ages", "TimeoutError"),
        TimeoutError(),
        httpx.ReadTimeout("read timed out"),
        {"code": "ETIMEDOUT"},
    ],
)
def test_timeouts_are_retryable_after_3s(error):
    c = classify_error(error)
    assert c.type == ErrorType.TIMEOUT
    assert c.retryable is True
    assert c.retry_delay_ms == 3000


@pytest.mark.parametrize(
    "error",
    [
        {"status": 401, "message": "Request timeout"},
        {"code": 401, "message": "network unreachable"},
        StatusError("Failed to fetch", 401),
        {"status_code": 401, "message": "invalid input"},
        {"status": "401"},
    ],
)
def test_status_401_is_authentication_regardless_of_message(error):
    c = classify_error(error)
    assert c.type == ErrorType.AUTHENTICATION
    assert c.retryable is False


@pytest.mark.parametrize(
    "error",
    [
        "Failed to fetch",
        Exception("Network request failed"),
        ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"),
        {"code": "ENOTFOUND", "message": "getaddrinfo"},
        httpx.ConnectError("connect failed"),
        stripe.APIConnectionError("could not reach stripe"),
    ],
)
def test_network_errors(error):
    c = classify_error(error)
    assert c.type == ErrorType.NETWORK
    assert c.retryable is True
    assert c.retry_delay_ms == 2000


def test_status_tiers():
    assert classify_error({"status": 403}).type == ErrorType.AUTHORIZATION
    assert classify_error({"status": 404}).type == ErrorType.NOT_FOUND
    assert classify_error({"status": 404}).severity == ErrorSeverity.LOW

    rate = classify_error({"status": 429})
    assert rate.type == ErrorType.RATE_LIMIT
    assert rate.retryable is True and rate.retry_delay_ms == 5000

    server = classify_error(_http_error(503))
    assert server.type == ErrorType.SERVER
    assert server.retryable is True and server.retry_delay_ms == 5000


def test_validation_passes_message_through():
    c = classify_error({"status": 400, "message": "Amount must be positive"})
    assert c.type == ErrorType.VALIDATION
    assert c.user_message == "Amount must be positive"
    assert c.retryable is False

    assert classify_error("email is required").type == ErrorType.VALIDATION


def test_card_error_is_validation():
    err = stripe.CardError("Your card was declined.", None, "card_declined")
    c = classify_error(err)
    assert c.type == ErrorType.VALIDATION
    assert c.user_message == "Your card was declined."


def test_database_codes_use_exact_lookup():
    dup = classify_error({"code": "23505", "message": "duplicate key"})
    assert dup.type == ErrorType.VALIDATION
    assert dup.user_message == "This record already exists. Please check for duplicates."

    assert classify_error({"code": "PGRST116"}).type == ErrorType.NOT_FOUND
    assert classify_error({"code": "42501"}).type == ErrorType.AUTHORIZATION
    assert classify_error({"code": "23503"}).type == ErrorType.VALIDATION
    # a code that merely contains a known one is not a match
    assert classify_error({"code": "235050"}).type == ErrorType.UNKNOWN


def test_message_tiers():
    assert classify_error("User not authenticated").type == ErrorType.AUTHENTICATION
    assert classify_error("permission denied for table payments").type == ErrorType.AUTHORIZATION
    assert classify_error("Payment not found").type == ErrorType.NOT_FOUND
    assert classify_error("rate limit exceeded").type == ErrorType.RATE_LIMIT


@pytest.mark.parametrize(
    "error,expected",
    [
        ({"status": 500, "message": "Invalid payment amount"}, ErrorType.VALIDATION),
        ({"status": 403, "message": "Unauthorized"}, ErrorType.AUTHENTICATION),
        ({"status": 429, "message": "amount is required"}, ErrorType.VALIDATION),
        ({"status": 503, "message": "Payment not found"}, ErrorType.NOT_FOUND),
        ({"status": 500, "message": "rate limit exceeded"}, ErrorType.RATE_LIMIT),
        ({"status": 404, "message": "permission denied"}, ErrorType.AUTHORIZATION),
    ],
)
def test_earlier_tier_wording_beats_later_tier_status(error, expected):
    assert classify_error(error).type == expected


def test_invalid_message_on_server_error_is_not_retried():
    err = {"status": 500, "message": "Invalid payment amount"}
    assert is_retryable_error(err) is False
    assert get_user_friendly_message(err) == "Invalid payment amount"


def test_status_only_server_error_stays_retryable():
    assert classify_error({"status": 502, "message": "Bad gateway"}).type == ErrorType.SERVER
    assert is_retryable_error({"status": 502, "message": "Bad gateway"}) is True


def test_database_code_is_checked_after_status_tiers():
    # the code table would say AUTHORIZATION, the status says NOT_FOUND first
    assert classify_error({"status": 404, "code": "42501"}).type == ErrorType.NOT_FOUND


def test_leftover_4xx_is_client():
    c = classify_error({"status": 418, "message": "teapot"})
    assert c.type == ErrorType.CLIENT
    assert c.user_message == "teapot"


def test_unknown_surfaces_short_plain_messages_only():
    assert classify_error(Exception("boom")).user_message == "boom"
    assert classify_error(Exception("x" * 201)).user_message == GENERIC_MESSAGE
    assert classify_error(Exception("TypeError: x is undefined")).user_message == GENERIC_MESSAGE
    assert classify_error(None).type == ErrorType.UNKNOWN
    assert classify_error(None).severity == ErrorSeverity.MEDIUM
    assert classify_error(object()).retryable is False


def test_classification_is_stable():
    err = {"status": 503, "message": "unavailable"}
    assert classify_error(err) == classify_error(err)


@pytest.mark.parametrize("error", SAMPLES)
def test_projections_follow_classification(error):
    c = classify_error(error)
    assert is_retryable_error(error) == c.retryable
    assert get_user_friendly_message(error) == c.user_message
    assert get_retry_delay(error) == (c.retry_delay_ms or 1000)


def test_app_error_keeps_its_classification():
    err = AppError(
        "Card payments are not available right now.",
        error_type=ErrorType.SERVER,
        severity=ErrorSeverity.HIGH,
    )
    c = classify_error(err)
    assert c.type == ErrorType.SERVER
    assert c.user_message == "Card payments are not available right now."
    assert c.retryable is False


def test_normalize_error_wraps_once():
    original = ConnectionResetError("reset by peer")
    err = normalize_error(original, {"payment_id": "PAY1"})
    assert err.type == ErrorType.NETWORK
    assert err.retryable is True
    assert err.original_error is original
    assert err.context == {"payment_id": "PAY1"}
    assert normalize_error(err) is err


def test_log_error_uses_classified_level(caplog):
    with caplog.at_level(logging.INFO, logger="gritsync.errors"):
        log_error({"status": 404, "message": "no row"}, {"payment_id": "PAY1"})
        log_error(RuntimeError("kaboom"))

    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.INFO, logging.ERROR]
    assert "NOT_FOUND" in caplog.records[0].getMessage()
    assert "PAY1" in caplog.records[0].getMessage()


def test_handle_error_returns_user_message():
    assert handle_error({"status": 403}) == "You do not have permission to perform this action."


@pytest.mark.asyncio
async def test_safe_call():
    async def ok():
        return 42

    async def fails():
        raise TimeoutError()

    assert await safe_call(ok) == (42, None)
    data, message = await safe_call(fails)
    assert data is None
    assert message == "The request took too long. Please try again."
