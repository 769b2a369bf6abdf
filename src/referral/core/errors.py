"""
Structured error types for the referral collaborators.

The resolver itself never raises to its readers: every fault is folded into
a terminal ``Failed`` outcome. The adapters around it (store, service client,
configuration) still raise typed errors so that the resolver, the CLI and the
logs can tell a corrupt store file from a misused client.

All ``ReferralError`` instances carry:
- **category:** ``ErrorCategory`` bucket of the attribution failure taxonomy
- **context:** Free-form metadata (store path, response code, ...)
- **cause:** Optional underlying exception for chaining

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     ReferralError                         │
        │               (category, context, cause)                  │
        ├──────────────────────────────────────────────────────────┤
        │  StoreError           ServiceClientError    ConfigError   │
        │  (STORAGE)            (TRANSIENT)           (CONFIG)      │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> error = StoreError("Corrupt store file").with_context(path="/tmp/x.json")
    >>> error.category
    <ErrorCategory.STORAGE: 'STORAGE'>
    >>> error.context["path"]
    '/tmp/x.json'

Guardrails:
    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, error-context, referral
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification.

    Attributes:
        ENVIRONMENT: Service missing or platform rejects the request
        TRANSIENT: Connection setup or connection loss
        STORAGE: Durable key-value store faults
        CONFIG: Invalid settings or misuse of the composition root
        UNEXPECTED: Anything else
    """

    ENVIRONMENT = "ENVIRONMENT"
    TRANSIENT = "TRANSIENT"
    STORAGE = "STORAGE"
    CONFIG = "CONFIG"
    UNEXPECTED = "UNEXPECTED"


class ReferralError(Exception):
    """Base exception for all referral errors."""

    default_category: ErrorCategory = ErrorCategory.UNEXPECTED

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReferralError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StoreError("Unreadable store").with_context(path=str(path))
        """
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class StoreError(ReferralError):
    """Durable store could not be read or written."""

    default_category = ErrorCategory.STORAGE


class ServiceClientError(ReferralError):
    """Service client was used outside its single-connection contract."""

    default_category = ErrorCategory.TRANSIENT


class ConfigError(ReferralError):
    """Invalid configuration or composition."""

    default_category = ErrorCategory.CONFIG


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of any exception; foreign exceptions are UNEXPECTED."""
    if isinstance(error, ReferralError):
        return error.category
    return ErrorCategory.UNEXPECTED


__all__ = [
    "ConfigError",
    "ErrorCategory",
    "ReferralError",
    "ServiceClientError",
    "StoreError",
    "categorize_error",
]
