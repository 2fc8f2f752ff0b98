import asyncio

import aiohttp
import pytest
from conftest import response_error
from scam_detector_client.errors import (
    COLD_START_MESSAGE,
    NO_RESPONSE_MESSAGE,
    DeadlineExceeded,
    NonRetryable,
    RetriesExhausted,
    classify_error,
)
from scam_detector_client.models import ErrorCategory


def test_service_unavailable_is_retryable():
    error = classify_error(response_error(503, "Service Unavailable"))

    assert error.retryable is True
    assert error.category == ErrorCategory.server_unavailable
    assert error.status == 503
    assert error.message == COLD_START_MESSAGE


@pytest.mark.parametrize("status", [500, 502, 429])
def test_other_server_errors_are_retryable(status):
    error = classify_error(response_error(status, "boom"))

    assert error.retryable is True
    assert error.category == ErrorCategory.server_unavailable
    assert error.message == f"Error {status}: boom"


@pytest.mark.parametrize("status", [504, 408])
def test_timeout_statuses_are_gateway_timeouts(status):
    error = classify_error(response_error(status))

    assert error.retryable is True
    assert error.category == ErrorCategory.gateway_timeout


def test_not_found_is_terminal_client_error():
    error = classify_error(response_error(404, "Not Found"))

    assert error.retryable is False
    assert error.category == ErrorCategory.client_error
    assert error.status == 404
    assert error.message == "Error 404: Not Found"


def test_client_error_without_detail_uses_reason_phrase():
    error = classify_error(response_error(400))

    assert error.message == "Error 400: Bad Request"


def test_client_error_keeps_server_message():
    error = classify_error(response_error(422, "Message is too long"))

    assert error.message == "Message is too long"
    assert error.detail == "Message is too long"


def test_connection_refused_is_retryable():
    error = classify_error(aiohttp.ClientConnectionError("Connection refused"))

    assert error.retryable is True
    assert error.category == ErrorCategory.server_unavailable
    assert error.status is None
    assert error.message == NO_RESPONSE_MESSAGE


def test_server_disconnect_is_retryable():
    error = classify_error(aiohttp.ServerDisconnectedError())

    assert error.retryable is True
    assert error.category == ErrorCategory.server_unavailable


@pytest.mark.parametrize(
    "exc", [asyncio.TimeoutError(), aiohttp.ServerTimeoutError("read timed out")]
)
def test_client_side_timeouts(exc):
    error = classify_error(exc)

    assert error.retryable is True
    assert error.category == ErrorCategory.gateway_timeout


def test_unexpected_exception_is_unknown_and_terminal():
    error = classify_error(ValueError("bad payload"))

    assert error.retryable is False
    assert error.category == ErrorCategory.unknown
    assert error.message == "bad payload"


def test_classification_is_deterministic():
    exc = response_error(502, "Bad Gateway")

    assert classify_error(exc) == classify_error(exc)


def test_terminal_errors_expose_last_category():
    error = classify_error(response_error(503))

    exhausted = RetriesExhausted(error, attempts=3)
    assert str(exhausted) == COLD_START_MESSAGE
    assert exhausted.category == ErrorCategory.server_unavailable
    assert exhausted.status == 503
    assert exhausted.attempts == 3

    deadline = DeadlineExceeded(None, attempts=0)
    assert deadline.category is None
    assert "try again" in str(deadline)

    rejected = NonRetryable(classify_error(response_error(400, "No message")), 1)
    assert str(rejected) == "No message"
