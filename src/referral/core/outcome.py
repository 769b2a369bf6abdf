"""
Resolution outcome model for install-referrer attribution.

Provides the ``ResolutionOutcome`` tagged variant: exactly one of
``Pending``, ``Found``, ``NotFound`` or ``Failed``. Every variant is a frozen
dataclass with ``__slots__``, so a terminal outcome can be shared by any
number of readers without copying and compared by value.

Manifesto:
    - **One shape per answer:** No shared mutable fields between variants
    - **Exhaustive matching:** ``match`` on the variant class, never on flags
    - **Terminal means terminal:** Only ``Pending`` is non-terminal
    - **Failures are values:** ``Failed`` carries a ``FailureReason``, not
      an exception

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │                   ResolutionOutcome                         │
        │                    (Type Alias)                             │
        ├────────────┬──────────────────┬─────────────┬──────────────┤
        │  Pending   │  Found           │  NotFound   │  Failed      │
        │            │  • value: str    │  • from_    │  • reason:   │
        │            │  • from_cache    │    cache    │    Failure-  │
        │            │                  │             │    Reason    │
        └────────────┴──────────────────┴─────────────┴──────────────┘

Examples:
    >>> from referral.core.outcome import Found, Failed, FailureReason
    >>> outcome = Found("xyz", from_cache=False)
    >>> match outcome:
    ...     case Found(value, from_cache):
    ...         print(value, from_cache)
    ...     case Failed(reason):
    ...         print(reason.value)
    xyz False

Tags:
    outcome, tagged-union, referrer, attribution, resolution

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeAlias

from referral.core.errors import ErrorCategory


class ResolverState(str, Enum):
    """Lifecycle of an ``AttributionResolver``.

    ``PENDING`` and ``RESOLVING`` are both "not yet answerable";
    ``RESOLVED`` is terminal.
    """

    PENDING = "pending"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class FailureReason(str, Enum):
    """
    Closed set of terminal failure causes.

    Attributes:
        SERVICE_UNAVAILABLE: Platform service not installed or not discoverable
        FEATURE_NOT_SUPPORTED: Platform rejected the request as unsupported
        SERVICE_CONNECT_FAILED: Service discovered but connection setup failed
        DEVELOPER_MISCONFIGURATION: Platform reported a developer error
        SERVICE_DISCONNECTED_BEFORE_ANSWER: Connection dropped before answering
        UNKNOWN: Any unexpected fault during initiation or callback handling
    """

    SERVICE_UNAVAILABLE = "service_unavailable"
    FEATURE_NOT_SUPPORTED = "feature_not_supported"
    SERVICE_CONNECT_FAILED = "service_connect_failed"
    DEVELOPER_MISCONFIGURATION = "developer_misconfiguration"
    SERVICE_DISCONNECTED_BEFORE_ANSWER = "service_disconnected_before_answer"
    UNKNOWN = "unknown"

    @property
    def category(self) -> ErrorCategory:
        """Error taxonomy bucket this reason belongs to."""
        return _REASON_CATEGORIES[self]


_REASON_CATEGORIES: dict[FailureReason, ErrorCategory] = {
    FailureReason.SERVICE_UNAVAILABLE: ErrorCategory.ENVIRONMENT,
    FailureReason.FEATURE_NOT_SUPPORTED: ErrorCategory.ENVIRONMENT,
    FailureReason.DEVELOPER_MISCONFIGURATION: ErrorCategory.ENVIRONMENT,
    FailureReason.SERVICE_CONNECT_FAILED: ErrorCategory.TRANSIENT,
    FailureReason.SERVICE_DISCONNECTED_BEFORE_ANSWER: ErrorCategory.TRANSIENT,
    FailureReason.UNKNOWN: ErrorCategory.UNEXPECTED,
}


@dataclass(frozen=True, slots=True)
class Pending:
    """No terminal answer yet."""

    @property
    def kind(self) -> str:
        return "pending"

    def is_terminal(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind}


@dataclass(frozen=True, slots=True)
class Found:
    """
    Attribution payload obtained.

    ``from_cache`` distinguishes a fresh service answer from one replayed
    from the store on a later run.
    """

    value: str
    from_cache: bool

    @property
    def kind(self) -> str:
        return "found"

    def is_terminal(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "value": self.value, "from_cache": self.from_cache}


@dataclass(frozen=True, slots=True)
class NotFound:
    """Service or cache definitively reported no attribution."""

    from_cache: bool

    @property
    def kind(self) -> str:
        return "not_found"

    def is_terminal(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "from_cache": self.from_cache}


@dataclass(frozen=True, slots=True)
class Failed:
    """Terminal failure; no value was obtained."""

    reason: FailureReason

    @property
    def kind(self) -> str:
        return "failed"

    def is_terminal(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason.value,
            "category": self.reason.category.value,
        }


ResolutionOutcome: TypeAlias = Pending | Found | NotFound | Failed

PENDING = Pending()


__all__ = [
    "PENDING",
    "Failed",
    "FailureReason",
    "Found",
    "NotFound",
    "Pending",
    "ResolutionOutcome",
    "ResolverState",
]
