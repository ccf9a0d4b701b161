"""
Error taxonomy for trade history synchronization.

Transport and malformed-response failures are transient and retried by the
request client. Authentication and remote API errors are terminal. Cache
errors never reach the caller of a sync; they are logged and degraded.
"""

from typing import Optional


class TradeSyncError(Exception):
    """Base class for every failure raised by the engine."""

    user_message = "Failed to load trade history. Please try again later."


class TransportError(TradeSyncError):
    """Connection failure, timeout, or unexpected HTTP status."""

    user_message = "The exchange is not reachable right now. Please try again later."


class HTTPStatusError(TransportError):
    """Non-200 HTTP response other than 401."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"API returned HTTP status {status_code}")
        self.status_code = status_code
        self.body = body


class AuthError(TradeSyncError):
    """HTTP 401: bad key/secret or IP not whitelisted."""

    user_message = "Unauthorized: check your API key, secret and IP whitelist."


class MalformedResponseError(TradeSyncError):
    """Response body is not the expected JSON envelope."""

    user_message = "The exchange returned an unexpected response format."


class RemoteAPIError(TradeSyncError):
    """Well-formed envelope carrying a non-zero retCode."""

    def __init__(self, ret_code: int, ret_msg: Optional[str]):
        super().__init__(f"API error: {ret_msg} (code {ret_code})")
        self.ret_code = ret_code
        self.ret_msg = ret_msg or ""

    @property
    def user_message(self) -> str:
        return f"The exchange rejected the request: {self.ret_msg}"


class CacheReadError(TradeSyncError):
    """Cached trade history could not be loaded."""


class CacheWriteError(TradeSyncError):
    """Trade history could not be saved to the cache."""


def is_retryable(exc: BaseException) -> bool:
    """Return True for failures worth another attempt."""
    if isinstance(exc, AuthError):
        return False
    return isinstance(exc, (TransportError, MalformedResponseError))


def describe_error(exc: BaseException) -> str:
    """Plain sentence suitable for showing to an end user."""
    if isinstance(exc, TradeSyncError):
        return exc.user_message
    return TradeSyncError.user_message
