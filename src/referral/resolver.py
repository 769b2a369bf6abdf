"""
Install-referrer attribution resolver.

``AttributionResolver`` turns a one-time, asynchronously delivered platform
answer into a single terminal ``ResolutionOutcome`` that any number of
readers can await, whether they ask before, during or after the answer
arrives.

Manifesto:
    - **Write once, read many:** The outcome cell is written exactly once,
      by whichever path reaches a terminal branch first
    - **Never raise to readers:** Every fault becomes ``Failed(reason)``
    - **One connection per lifetime:** The service is contacted at most once
      and disconnected exactly once, by the path that handled its answer
    - **Signal, don't poll:** Waiters are woken by the transition itself

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                    AttributionResolver                        │
        │                                                               │
        │   PENDING ──initiate()──► RESOLVING ──callback──► RESOLVED    │
        │      │                                              ▲         │
        │      ├── store.has_checked_previously() ───────────┤         │
        │      └── not client.discover() ─────────────────────┘         │
        ├──────────────────────────────────────────────────────────────┤
        │  outcome cell (lock)  │  asyncio futures  │  threading.Event  │
        │  written once         │  one per waiter   │  blocking readers │
        └──────────────────────────────────────────────────────────────┘

        initiate() branch policy, in order:
          1. checked previously → Found/NotFound(from_cache=True)
          2. service not discoverable → Failed(SERVICE_UNAVAILABLE)
          3. connect(on_complete); any exception → Failed(UNKNOWN)

        completion event:
          OK                    → parse → Found/NotFound(from_cache=False)
          SERVICE_UNAVAILABLE   → Failed(SERVICE_CONNECT_FAILED)
          FEATURE_NOT_SUPPORTED → Failed(FEATURE_NOT_SUPPORTED)
          DEVELOPER_ERROR       → Failed(DEVELOPER_MISCONFIGURATION)
          SERVICE_DISCONNECTED  → Failed(SERVICE_DISCONNECTED_BEFORE_ANSWER)
          anything else         → Failed(UNKNOWN)
          then disconnect(), whatever the outcome

Examples:
    The composition root builds one resolver and hands it around:

    >>> resolver = AttributionResolver(store, parser, client)
    >>> resolver.initiate()
    >>> outcome = await resolver.resolve()

    Bounded wait, for callers that cannot wait forever:

    >>> outcome = await resolver.resolve_within(2.0)
    >>> if isinstance(outcome, Pending):
    ...     ...  # no answer in time; the resolver keeps going

Guardrails:
    ❌ DON'T: Call initiate() from every reader
    ✅ DO: Call it once from the composition root; readers only resolve()

    ❌ DON'T: Assume resolve() returns in bounded time
    ✅ DO: Use resolve_within() or your own timeout when latency matters

Performance:
    - Cache hit: synchronous local store read, no connection
    - resolve() after resolution: O(1), no suspension
    - Wake-up: one call_soon_threadsafe per waiting coroutine

Tags:
    resolver, state-machine, rendezvous, install-referrer, attribution,
    asyncio, threading, referral

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from typing import Any

from referral.client import ResponseCode
from referral.core.errors import ReferralError, categorize_error
from referral.core.logging import get_logger
from referral.core.outcome import (
    PENDING,
    Failed,
    FailureReason,
    Found,
    NotFound,
    ResolutionOutcome,
    ResolverState,
)
from referral.core.protocols import (
    AttributionParser,
    AttributionStore,
    PayloadProvider,
    ServiceClient,
)

logger = get_logger(__name__)

_FAILURE_BY_CODE: dict[ResponseCode, FailureReason] = {
    ResponseCode.SERVICE_UNAVAILABLE: FailureReason.SERVICE_CONNECT_FAILED,
    ResponseCode.FEATURE_NOT_SUPPORTED: FailureReason.FEATURE_NOT_SUPPORTED,
    ResponseCode.DEVELOPER_ERROR: FailureReason.DEVELOPER_MISCONFIGURATION,
    ResponseCode.SERVICE_DISCONNECTED: FailureReason.SERVICE_DISCONNECTED_BEFORE_ANSWER,
}


def _error_fields(error: Exception) -> dict[str, Any]:
    fields: dict[str, Any] = {"error_category": categorize_error(error).value}
    if isinstance(error, ReferralError):
        fields["error"] = error.to_dict()
    return fields


def _deliver(future: asyncio.Future[ResolutionOutcome], outcome: ResolutionOutcome) -> None:
    # runs on the waiter's loop; the waiter may have been cancelled meanwhile
    if not future.done():
        future.set_result(outcome)


class AttributionResolver:
    """Resolve the install-referrer outcome once and serve it to every reader.

    Args:
        store: Durable "checked previously" flag and cached value.
        parser: Maps the raw referrer payload to an optional campaign value.
        client: External service client; owned by the resolver.
        persist_not_found: Also mark "checked previously" after a fresh
            not-found answer, so later runs replay ``NotFound(from_cache=True)``.
        clock: Monotonic clock used for duration logging.
    """

    def __init__(
        self,
        store: AttributionStore,
        parser: AttributionParser,
        client: ServiceClient,
        *,
        persist_not_found: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._parser = parser
        self._client = client
        self._persist_not_found = persist_not_found
        self._clock = clock

        self._lock = threading.Lock()
        self._state = ResolverState.PENDING
        self._outcome: ResolutionOutcome = PENDING
        self._resolved = threading.Event()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[ResolutionOutcome]]] = []

        self._initiated = False
        self._callback_seen = False
        self._connection_open = False
        self._started_at: float | None = None

    # ── Read-only view ───────────────────────────────────────────

    @property
    def state(self) -> ResolverState:
        with self._lock:
            return self._state

    @property
    def outcome(self) -> ResolutionOutcome:
        """Current outcome; ``PENDING`` until resolution completes."""
        with self._lock:
            return self._outcome

    @property
    def is_resolved(self) -> bool:
        return self._resolved.is_set()

    # ── Writer side ──────────────────────────────────────────────

    def initiate(self) -> None:
        """Start resolution. Call once, as early as possible.

        Returns as soon as the cache answer is known, the service is found
        missing, or the connection request has been issued. Never raises.
        """
        with self._lock:
            if self._initiated:
                repeated = True
            else:
                repeated = False
                self._initiated = True
        if repeated:
            logger.warning("referrer_initiate_repeated", state=self.state.value)
            return

        self._started_at = self._clock()

        try:
            if self._store.has_checked_previously():
                self._settle(self._load_cached())
                return

            if not self._client.discover():
                logger.info("referrer_service_unavailable")
                self._settle(Failed(FailureReason.SERVICE_UNAVAILABLE))
                return

            with self._lock:
                self._state = ResolverState.RESOLVING
                self._connection_open = True
            logger.info("referrer_service_connecting")
            self._client.connect(self._on_complete)
        except Exception as e:
            logger.warning(
                "referrer_initiation_failed",
                **_error_fields(e),
                exc_info=e,
            )
            self._settle(Failed(FailureReason.UNKNOWN))
            self._close_connection()

    def on_service_disconnected(self) -> None:
        """Platform notification that the service connection dropped.

        Informational only: the outcome is decided by the completion event.
        """
        logger.info("referrer_service_disconnected", state=self.state.value)

    def _load_cached(self) -> ResolutionOutcome:
        suffix = self._store.get_cached_value()
        if suffix is None:
            logger.info("referrer_loaded_from_cache", found=False, duration_ms=self._elapsed_ms())
            return NotFound(from_cache=True)
        logger.info("referrer_loaded_from_cache", found=True, duration_ms=self._elapsed_ms())
        return Found(suffix, from_cache=True)

    def _on_complete(self, response_code: int, payload_provider: PayloadProvider) -> None:
        with self._lock:
            duplicate = self._callback_seen
            self._callback_seen = True
            late = self._state is ResolverState.RESOLVED
        if duplicate:
            logger.warning("referrer_callback_repeated", response_code=response_code)
            return
        if late:
            # outcome already terminal; the store must not contradict it
            logger.warning("referrer_callback_after_resolution", response_code=response_code)
            self._close_connection()
            return

        logger.info(
            "referrer_callback_received",
            response_code=response_code,
            duration_ms=self._elapsed_ms(),
        )

        try:
            outcome = self._classify(response_code, payload_provider)
        except Exception as e:
            logger.warning(
                "referrer_callback_failed",
                response_code=response_code,
                **_error_fields(e),
                exc_info=e,
            )
            outcome = Failed(FailureReason.UNKNOWN)

        try:
            self._settle(outcome)
        finally:
            self._close_connection()

    def _classify(self, response_code: int, payload_provider: PayloadProvider) -> ResolutionOutcome:
        try:
            code = ResponseCode(response_code)
        except ValueError:
            logger.warning("referrer_response_code_unrecognised", response_code=response_code)
            return Failed(FailureReason.UNKNOWN)

        if code is not ResponseCode.OK:
            return Failed(_FAILURE_BY_CODE.get(code, FailureReason.UNKNOWN))

        value = self._parser.parse(payload_provider())
        if value is None:
            if self._persist_not_found:
                self._store.set_checked_previously(True)
            return NotFound(from_cache=False)

        self._store.set_cached_value(value)
        self._store.set_checked_previously(True)
        return Found(value, from_cache=False)

    def _settle(self, outcome: ResolutionOutcome) -> bool:
        with self._lock:
            if self._state is ResolverState.RESOLVED:
                kept = self._outcome
                settled = False
            else:
                self._outcome = outcome
                self._state = ResolverState.RESOLVED
                waiters, self._waiters = self._waiters, []
                settled = True

        if not settled:
            logger.warning("referrer_outcome_already_settled", kept=kept.kind, dropped=outcome.kind)
            return False

        self._resolved.set()
        logger.info("referrer_resolved", outcome=outcome.to_dict(), duration_ms=self._elapsed_ms())

        for loop, future in waiters:
            try:
                loop.call_soon_threadsafe(_deliver, future, outcome)
            except RuntimeError:
                # loop already closed; that waiter is gone
                logger.debug("referrer_waiter_loop_closed")
        return True

    def _close_connection(self) -> None:
        with self._lock:
            if not self._connection_open:
                return
            self._connection_open = False
        try:
            self._client.disconnect()
        except Exception as e:
            logger.warning("referrer_disconnect_failed", exc_info=e)

    def _elapsed_ms(self) -> int | None:
        if self._started_at is None:
            return None
        return int((self._clock() - self._started_at) * 1000)

    # ── Reader side ──────────────────────────────────────────────

    async def resolve(self) -> ResolutionOutcome:
        """Return the terminal outcome, suspending until it exists.

        There is no timeout: if the service never answers, this never
        returns. Callers needing bounded latency use ``resolve_within`` or
        wrap this call in their own timeout; abandoning the wait does not
        affect resolution.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._state is ResolverState.RESOLVED:
                return self._outcome
            future: asyncio.Future[ResolutionOutcome] = loop.create_future()
            self._waiters.append((loop, future))

        logger.debug("referrer_waiting")
        try:
            return await future
        finally:
            if future.cancelled():
                self._discard_waiter(future)

    async def resolve_within(self, timeout: float) -> ResolutionOutcome:
        """Like ``resolve`` but gives up after ``timeout`` seconds.

        Returns ``PENDING`` when the deadline passes first.
        """
        try:
            return await asyncio.wait_for(self.resolve(), timeout)
        except asyncio.TimeoutError:
            logger.info("referrer_wait_timed_out", timeout=timeout)
            return self.outcome

    def resolve_blocking(self, timeout: float | None = None) -> ResolutionOutcome:
        """Thread-based reader: block until resolved or ``timeout`` elapses."""
        self._resolved.wait(timeout)
        return self.outcome

    def _discard_waiter(self, future: asyncio.Future[ResolutionOutcome]) -> None:
        with self._lock:
            self._waiters = [(lp, f) for lp, f in self._waiters if f is not future]

    def __repr__(self) -> str:
        return f"AttributionResolver(state={self.state.value}, outcome={self.outcome!r})"


__all__ = ["AttributionResolver"]
