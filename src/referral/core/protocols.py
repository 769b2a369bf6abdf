"""
Canonical protocol definitions for the resolver's collaborators.

The resolver depends on shape, not implementation. Any object matching
these protocols can be handed to ``AttributionResolver``; the adapters in
``referral.store``, ``referral.parser`` and ``referral.client`` are the
stock implementations, and tests use ``unittest.mock`` doubles.

Architecture:
    ::

        protocols.py
        ├── AttributionStore    — durable "checked previously" flag + cached value
        ├── AttributionParser   — raw referrer string → optional campaign value
        ├── ServiceClient       — discover / connect(on_complete) / disconnect
        ├── CompletionCallback  — (response_code, payload_provider) -> None
        └── PayloadProvider     — () -> raw referrer string

Guardrails:
    ❌ DON'T: Add implementation logic to protocol classes
    ✅ DO: Keep protocols pure contracts; implementations go in adapters

Tags:
    protocol, contracts, referral, store, parser, service-client
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, TypeAlias, runtime_checkable

PayloadProvider: TypeAlias = Callable[[], str]
CompletionCallback: TypeAlias = Callable[[int, PayloadProvider], None]


@runtime_checkable
class AttributionStore(Protocol):
    """
    Durable key-value persistence for the referrer check.

    Read once at start (synchronously, no network I/O) and written at most
    once, after a fresh successful answer.
    """

    def has_checked_previously(self) -> bool: ...

    def get_cached_value(self) -> str | None: ...

    def set_checked_previously(self, checked: bool) -> None: ...

    def set_cached_value(self, value: str) -> None: ...


@runtime_checkable
class AttributionParser(Protocol):
    """Pure, total mapping of a raw referrer payload to an optional value."""

    def parse(self, raw: str) -> str | None: ...


@runtime_checkable
class ServiceClient(Protocol):
    """
    Client for the external install-referrer service.

    ``connect`` delivers exactly one ``on_complete`` invocation, usually on a
    thread owned by the client. The connection must be closed with
    ``disconnect`` once that event has been handled.
    """

    def discover(self) -> bool: ...

    def connect(self, on_complete: CompletionCallback) -> None: ...

    def disconnect(self) -> None: ...


__all__ = [
    "AttributionParser",
    "AttributionStore",
    "CompletionCallback",
    "PayloadProvider",
    "ServiceClient",
]
