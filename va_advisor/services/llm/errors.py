"""Typed LLM provider errors.

Both provider SDKs raise their own exception hierarchies. Everything the
rest of the application sees is an :class:`LLMError` whose ``kind`` is
derived from the exception class, HTTP status and structured error code
of the provider response.
"""

from enum import Enum
from typing import Any, Optional

import anthropic
import openai


class LLMErrorKind(str, Enum):
    """Category of an upstream LLM failure."""

    QUOTA = "quota"
    AUTH = "auth"
    SERVER = "server"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    UNKNOWN = "unknown"


# (error, userMessage) shown to API callers for each kind
USER_MESSAGES: dict[LLMErrorKind, tuple[str, str]] = {
    LLMErrorKind.QUOTA: (
        "AI provider quota exceeded",
        "AI provider quota has been exceeded. Please check your billing and plan "
        "details, or contact support.",
    ),
    LLMErrorKind.AUTH: (
        "AI provider authentication failed",
        "The AI provider API key is invalid or missing. Please check your API "
        "configuration.",
    ),
    LLMErrorKind.SERVER: (
        "AI provider server error",
        "The AI service is experiencing issues. Please try again in a few moments.",
    ),
    LLMErrorKind.CONNECTION: (
        "Connection error",
        "Unable to connect to the AI service. Please check your internet "
        "connection and try again.",
    ),
    LLMErrorKind.TIMEOUT: (
        "Connection error",
        "Unable to connect to the AI service. Please check your internet "
        "connection and try again.",
    ),
    LLMErrorKind.RATE_LIMIT: (
        "Rate limit exceeded",
        "Too many requests. Please wait a moment and try again.",
    ),
    LLMErrorKind.INSUFFICIENT_CREDITS: (
        "Insufficient tokens",
        "Insufficient API credits. Please add credits to your AI provider "
        "account and try again.",
    ),
    LLMErrorKind.UNKNOWN: (
        "Analysis failed",
        "An error occurred while analyzing your job description. Please try "
        "again or contact support if the issue persists.",
    ),
}

_QUOTA_CODES = {"insufficient_quota", "quota_exceeded"}
_CREDIT_CODES = {"billing_error", "insufficient_credits", "billing_hard_limit_reached"}

_TIMEOUT_ERRORS = (anthropic.APITimeoutError, openai.APITimeoutError)
_CONNECTION_ERRORS = (anthropic.APIConnectionError, openai.APIConnectionError)
_AUTH_ERRORS = (
    anthropic.AuthenticationError,
    anthropic.PermissionDeniedError,
    openai.AuthenticationError,
    openai.PermissionDeniedError,
)
_RATE_LIMIT_ERRORS = (anthropic.RateLimitError, openai.RateLimitError)
_STATUS_ERRORS = (anthropic.APIStatusError, openai.APIStatusError)


class LLMError(Exception):
    """An LLM call failed; ``kind`` decides what the caller is told."""

    def __init__(self, kind: LLMErrorKind, details: str = "") -> None:
        self.kind = kind
        self.details = details
        super().__init__(f"{kind.value}: {details}" if details else kind.value)

    @property
    def error(self) -> str:
        return USER_MESSAGES[self.kind][0]

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind][1]

    def to_dict(self) -> dict:
        return {
            "error": self.error,
            "details": self.details,
            "userMessage": self.user_message,
        }

    @classmethod
    def from_exception(cls, exc: BaseException) -> "LLMError":
        if isinstance(exc, LLMError):
            return exc
        return cls(classify_exception(exc), str(exc))


def _error_code(exc: BaseException) -> Optional[str]:
    """Pull the provider's machine-readable error code/type, if any."""
    for attr in ("code", "type"):
        value = getattr(exc, attr, None)
        if isinstance(value, str) and value and value != "error":
            return value

    body: Any = getattr(exc, "body", None)
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict):
            for key in ("code", "type"):
                value = inner.get(key)
                if isinstance(value, str) and value and value != "error":
                    return value
    return None


def classify_exception(exc: BaseException) -> LLMErrorKind:
    """Map a provider SDK exception onto an :class:`LLMErrorKind`."""
    if isinstance(exc, LLMError):
        return exc.kind

    # Timeout errors subclass the connection errors in both SDKs
    if isinstance(exc, _TIMEOUT_ERRORS):
        return LLMErrorKind.TIMEOUT
    if isinstance(exc, _CONNECTION_ERRORS):
        return LLMErrorKind.CONNECTION

    code = _error_code(exc)
    if code in _QUOTA_CODES:
        return LLMErrorKind.QUOTA
    if code in _CREDIT_CODES:
        return LLMErrorKind.INSUFFICIENT_CREDITS

    if isinstance(exc, _AUTH_ERRORS):
        return LLMErrorKind.AUTH
    if isinstance(exc, _RATE_LIMIT_ERRORS):
        return LLMErrorKind.RATE_LIMIT

    if isinstance(exc, _STATUS_ERRORS):
        status_code = getattr(exc, "status_code", 0) or 0
        if status_code == 402:
            return LLMErrorKind.INSUFFICIENT_CREDITS
        if status_code in (401, 403):
            return LLMErrorKind.AUTH
        if status_code == 429:
            return LLMErrorKind.RATE_LIMIT
        if status_code >= 500:
            return LLMErrorKind.SERVER

    return LLMErrorKind.UNKNOWN
