"""
Referral core: outcome model, errors, protocols, logging and settings.
"""

from referral.core.errors import (
    ConfigError,
    ErrorCategory,
    ReferralError,
    ServiceClientError,
    StoreError,
    categorize_error,
)
from referral.core.outcome import (
    PENDING,
    Failed,
    FailureReason,
    Found,
    NotFound,
    Pending,
    ResolutionOutcome,
    ResolverState,
)
from referral.core.protocols import (
    AttributionParser,
    AttributionStore,
    CompletionCallback,
    PayloadProvider,
    ServiceClient,
)

__all__ = [
    # Outcome
    "PENDING",
    "Failed",
    "FailureReason",
    "Found",
    "NotFound",
    "Pending",
    "ResolutionOutcome",
    "ResolverState",
    # Errors
    "ConfigError",
    "ErrorCategory",
    "ReferralError",
    "ServiceClientError",
    "StoreError",
    "categorize_error",
    # Protocols
    "AttributionParser",
    "AttributionStore",
    "CompletionCallback",
    "PayloadProvider",
    "ServiceClient",
]
