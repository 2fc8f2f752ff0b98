import asyncio
from http import HTTPStatus
from typing import Optional

import aiohttp

from scam_detector_client.models import ClassifiedError, ErrorCategory

COLD_START_MESSAGE = (
    "The service is temporarily unavailable. The server is likely in cold start "
    "mode - please try again in 30-60 seconds."
)
GATEWAY_TIMEOUT_MESSAGE = (
    "The server gateway timed out. This happens during cold starts - please wait "
    "a moment and try again."
)
CLIENT_TIMEOUT_MESSAGE = (
    "The server took too long to respond. This is normal for the first request "
    "after server idle time. Please try again."
)
NO_RESPONSE_MESSAGE = (
    "Server is starting up. This might take 30-60 seconds. "
    "Please be patient or try again."
)
DEADLINE_MESSAGE = (
    "Server response timeout. The API server may be experiencing high load or a "
    "cold start. Please try again in a few minutes."
)

# 4xx codes that mean "try later" rather than "fix the request"
TIMEOUT_STATUS_CODES = frozenset({408, 504})
THROTTLE_STATUS_CODES = frozenset({429})


def classify_error(error: BaseException) -> ClassifiedError:
    """Map a failed call to a retry verdict and a user-facing message.

    A missing response is treated the same as a 5xx: a sleeping host and an
    unreachable one look identical from here.
    """
    if isinstance(error, aiohttp.ClientResponseError):
        return _classify_status(error.status, error.message)

    if isinstance(error, asyncio.TimeoutError):
        return ClassifiedError(
            retryable=True,
            category=ErrorCategory.gateway_timeout,
            message=CLIENT_TIMEOUT_MESSAGE,
            detail=type(error).__name__,
        )

    if isinstance(error, aiohttp.ClientConnectionError):
        return ClassifiedError(
            retryable=True,
            category=ErrorCategory.server_unavailable,
            message=NO_RESPONSE_MESSAGE,
            detail=str(error) or type(error).__name__,
        )

    return ClassifiedError(
        retryable=False,
        category=ErrorCategory.unknown,
        message=str(error) or "Unknown error occurred",
        detail=type(error).__name__,
    )


def _classify_status(status: int, reason: Optional[str]) -> ClassifiedError:
    detail = reason or ""

    if status in TIMEOUT_STATUS_CODES:
        return ClassifiedError(
            retryable=True,
            category=ErrorCategory.gateway_timeout,
            message=GATEWAY_TIMEOUT_MESSAGE,
            status=status,
            detail=detail,
        )

    if status >= 500 or status in THROTTLE_STATUS_CODES:
        message = COLD_START_MESSAGE if status == 503 else f"Error {status}: {detail}"
        return ClassifiedError(
            retryable=True,
            category=ErrorCategory.server_unavailable,
            message=message,
            status=status,
            detail=detail,
        )

    if 400 <= status < 500:
        return ClassifiedError(
            retryable=False,
            category=ErrorCategory.client_error,
            message=_client_error_message(status, detail),
            status=status,
            detail=detail,
        )

    return ClassifiedError(
        retryable=False,
        category=ErrorCategory.unknown,
        message=f"Unexpected response {status}: {detail}",
        status=status,
        detail=detail,
    )


def _client_error_message(status: int, detail: str) -> str:
    """Prefer the server's own message; a bare reason phrase gets the status prefixed"""
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        phrase = ""
    if detail and detail != phrase:
        return detail
    reason = detail or phrase
    return f"Error {status}: {reason}" if reason else f"Error {status}"


class ScamDetectorError(Exception):
    pass


class RetryError(ScamDetectorError):
    """Terminal failure of an orchestrated call.

    ``error`` is the last classified failure, or None when no attempt
    completed before the deadline.
    """

    def __init__(
        self,
        message: str,
        error: Optional[ClassifiedError] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.message = message
        self.error = error
        self.attempts = attempts

    @property
    def category(self) -> Optional[ErrorCategory]:
        return self.error.category if self.error is not None else None

    @property
    def status(self) -> Optional[int]:
        return self.error.status if self.error is not None else None


class RetriesExhausted(RetryError):
    def __init__(self, error: Optional[ClassifiedError], attempts: int):
        message = error.message if error is not None else "All attempts failed"
        super().__init__(message, error, attempts)


class DeadlineExceeded(RetryError):
    def __init__(self, error: Optional[ClassifiedError], attempts: int):
        super().__init__(DEADLINE_MESSAGE, error, attempts)


class NonRetryable(RetryError):
    def __init__(self, error: ClassifiedError, attempts: int):
        super().__init__(error.message, error, attempts)
