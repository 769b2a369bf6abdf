"""
referral-spine: install-referrer attribution resolution.

The platform delivers the install referrer at most once, asynchronously.
``AttributionResolver`` turns that into one terminal outcome that any
number of readers can await.

Quick start::

    from referral import ReferralContainer, scripted_client

    container = ReferralContainer()
    resolver = container.resolver(scripted_client(0, "utm_campaign=xyz"))
    resolver.initiate()
    outcome = await resolver.resolve()
"""

from referral.client import ReferrerResponse, ResponseCode, ThreadedServiceClient, scripted_client
from referral.container import ReferralContainer
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
from referral.parser import QueryParamReferrerParser
from referral.resolver import AttributionResolver
from referral.store import InMemoryReferrerStore, JsonFileReferrerStore

__version__ = "0.1.0"

__all__ = [
    "PENDING",
    "AttributionResolver",
    "Failed",
    "FailureReason",
    "Found",
    "InMemoryReferrerStore",
    "JsonFileReferrerStore",
    "NotFound",
    "Pending",
    "QueryParamReferrerParser",
    "ReferralContainer",
    "ReferrerResponse",
    "ResolutionOutcome",
    "ResolverState",
    "ResponseCode",
    "ThreadedServiceClient",
    "scripted_client",
]
