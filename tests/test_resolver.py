"""Tests for referral.resolver — initiation branches and completion handling.

Covers:
- Cache hits (found / not found) never touch the service client
- Service discovery failure short-circuits without connecting
- Completion event classification for every platform response code
- Store writes only for a fresh Found (and optional not-found memoisation)
- disconnect() exactly once per connect(), on every branch
- Faults during initiation and callback handling become Failed(UNKNOWN)
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from referral.client import ResponseCode
from referral.core.errors import ServiceClientError, StoreError
from referral.core.outcome import (
    PENDING,
    Failed,
    FailureReason,
    Found,
    NotFound,
    ResolverState,
)
from referral.parser import QueryParamReferrerParser
from referral.resolver import AttributionResolver
from referral.store import InMemoryReferrerStore


class TestInitialState:
    """Resolver before initiate()."""

    def test_starts_pending(self, resolver):
        """A new resolver has no answer yet."""
        assert resolver.state is ResolverState.PENDING
        assert resolver.outcome is PENDING
        assert resolver.is_resolved is False

    def test_construction_has_no_side_effects(self, store, mock_client, parser):
        """Constructing does not read the store or touch the client."""
        store = MagicMock(wraps=store)
        AttributionResolver(store, parser, mock_client)
        store.has_checked_previously.assert_not_called()
        mock_client.discover.assert_not_called()
        mock_client.connect.assert_not_called()


class TestCacheHit:
    """Store reports the referrer was checked on a previous run."""

    def test_cached_value_is_found_from_cache(self, parser, mock_client):
        """checked + cached value → Found(from_cache=True), no connection."""
        store = InMemoryReferrerStore(checked_previously=True, cached_value="ABC123")
        resolver = AttributionResolver(store, parser, mock_client)

        resolver.initiate()

        assert resolver.outcome == Found("ABC123", from_cache=True)
        assert resolver.state is ResolverState.RESOLVED
        mock_client.connect.assert_not_called()
        mock_client.discover.assert_not_called()
        mock_client.disconnect.assert_not_called()

    def test_checked_without_value_is_not_found_from_cache(self, parser, mock_client):
        """checked + no cached value → NotFound(from_cache=True)."""
        store = InMemoryReferrerStore(checked_previously=True)
        resolver = AttributionResolver(store, parser, mock_client)

        resolver.initiate()

        assert resolver.outcome == NotFound(from_cache=True)
        mock_client.connect.assert_not_called()

    def test_cache_hit_is_not_persisted_again(self, parser, mock_client):
        """Replayed outcomes never write to the store."""
        store = InMemoryReferrerStore(checked_previously=True, cached_value="ABC123")
        resolver = AttributionResolver(store, parser, mock_client)

        resolver.initiate()

        assert store.writes == 0

    def test_cache_hit_logs_duration(self, parser, mock_client):
        """The cache load logs how long it took."""
        store = InMemoryReferrerStore(checked_previously=True, cached_value="ABC123")
        ticks = iter([10.0, 10.5, 10.5])
        resolver = AttributionResolver(store, parser, mock_client, clock=lambda: next(ticks))

        with capture_logs() as logs:
            resolver.initiate()

        loaded = [e for e in logs if e["event"] == "referrer_loaded_from_cache"]
        assert loaded[0]["found"] is True
        assert loaded[0]["duration_ms"] == 500


class TestServiceUnavailable:
    """Service not discoverable."""

    def test_fails_without_connecting(self, resolver, mock_client, store):
        """Undiscoverable service → Failed(SERVICE_UNAVAILABLE) immediately."""
        mock_client.discover.return_value = False

        resolver.initiate()

        assert resolver.outcome == Failed(FailureReason.SERVICE_UNAVAILABLE)
        assert resolver.is_resolved is True
        mock_client.connect.assert_not_called()
        mock_client.disconnect.assert_not_called()
        assert store.writes == 0


class TestConnecting:
    """Service discovered; waiting for the completion event."""

    def test_state_is_resolving_until_callback(self, resolver, mock_client):
        """After connect() the resolver is RESOLVING with no outcome."""
        resolver.initiate()

        mock_client.connect.assert_called_once()
        assert resolver.state is ResolverState.RESOLVING
        assert resolver.outcome is PENDING
        assert resolver.is_resolved is False

    def test_repeated_initiate_connects_once(self, resolver, mock_client):
        """A second initiate() is a logged no-op."""
        with capture_logs() as logs:
            resolver.initiate()
            resolver.initiate()

        mock_client.connect.assert_called_once()
        mock_client.discover.assert_called_once()
        assert any(e["event"] == "referrer_initiate_repeated" for e in logs)

    def test_repeated_initiate_after_cache_hit_is_noop(self, parser, mock_client):
        """Calling again after a cache hit does not change anything."""
        store = InMemoryReferrerStore(checked_previously=True, cached_value="v1")
        resolver = AttributionResolver(store, parser, mock_client)
        resolver.initiate()
        store.set_cached_value("v2")

        resolver.initiate()

        assert resolver.outcome == Found("v1", from_cache=True)


class TestCompletionSuccess:
    """Completion event with the OK code."""

    def test_found_value_is_fresh_and_persisted(self, resolver, store, complete):
        """OK + parseable payload → Found(from_cache=False), store updated."""
        resolver.initiate()
        complete(ResponseCode.OK, "utm_campaign=xyz")

        assert resolver.outcome == Found("xyz", from_cache=False)
        assert store.has_checked_previously() is True
        assert store.get_cached_value() == "xyz"

    def test_store_written_before_resolution_is_visible(self, mock_client, parser):
        """Readers woken by the transition already see the persisted value."""
        seen = {}

        class ObservingStore(InMemoryReferrerStore):
            def set_checked_previously(self, checked: bool) -> None:
                seen["resolved_at_write"] = resolver.is_resolved
                super().set_checked_previously(checked)

        store = ObservingStore()
        resolver = AttributionResolver(store, parser, mock_client)
        resolver.initiate()
        mock_client.connect.call_args.args[0](ResponseCode.OK, lambda: "utm_campaign=xyz")

        assert seen["resolved_at_write"] is False
        assert resolver.is_resolved is True

    def test_unparseable_payload_is_not_found(self, resolver, store, complete):
        """OK without a campaign → NotFound(from_cache=False), nothing written."""
        resolver.initiate()
        complete(ResponseCode.OK, "utm_source=google-play")

        assert resolver.outcome == NotFound(from_cache=False)
        assert store.writes == 0
        assert store.has_checked_previously() is False

    def test_persist_not_found_marks_checked(self, store, parser, mock_client):
        """With persist_not_found, a fresh NotFound sets only the checked flag."""
        resolver = AttributionResolver(store, parser, mock_client, persist_not_found=True)
        resolver.initiate()
        mock_client.connect.call_args.args[0](ResponseCode.OK, lambda: "")

        assert resolver.outcome == NotFound(from_cache=False)
        assert store.has_checked_previously() is True
        assert store.get_cached_value() is None

    def test_payload_not_read_for_error_codes(self, resolver, mock_client):
        """The payload provider is only called on OK."""
        provider = MagicMock(return_value="utm_campaign=xyz")
        resolver.initiate()
        mock_client.connect.call_args.args[0](ResponseCode.DEVELOPER_ERROR, provider)

        provider.assert_not_called()


class TestCompletionFailures:
    """Completion event with platform error codes."""

    @pytest.mark.parametrize(
        ("code", "reason"),
        [
            (ResponseCode.SERVICE_UNAVAILABLE, FailureReason.SERVICE_CONNECT_FAILED),
            (ResponseCode.FEATURE_NOT_SUPPORTED, FailureReason.FEATURE_NOT_SUPPORTED),
            (ResponseCode.DEVELOPER_ERROR, FailureReason.DEVELOPER_MISCONFIGURATION),
            (ResponseCode.SERVICE_DISCONNECTED, FailureReason.SERVICE_DISCONNECTED_BEFORE_ANSWER),
            (ResponseCode.PERMISSION_ERROR, FailureReason.UNKNOWN),
            (99, FailureReason.UNKNOWN),
            (-42, FailureReason.UNKNOWN),
        ],
    )
    def test_code_maps_to_reason(self, resolver, complete, code, reason):
        """Each platform code maps onto its failure reason."""
        resolver.initiate()
        complete(code)

        assert resolver.outcome == Failed(reason)

    def test_disconnected_before_answer_leaves_store_untouched(self, resolver, store, complete):
        """No write on failure."""
        resolver.initiate()
        complete(ResponseCode.SERVICE_DISCONNECTED)

        assert resolver.outcome == Failed(FailureReason.SERVICE_DISCONNECTED_BEFORE_ANSWER)
        assert store.writes == 0
        assert store.snapshot() == {
            "referrer_checked_previously": False,
            "campaign_suffix": None,
        }

    def test_unrecognised_code_is_logged(self, resolver, complete):
        """Unknown codes are reported at warning level."""
        resolver.initiate()
        with capture_logs() as logs:
            complete(1234)

        events = [e for e in logs if e["event"] == "referrer_response_code_unrecognised"]
        assert events and events[0]["log_level"] == "warning"
        assert events[0]["response_code"] == 1234


class TestDisconnect:
    """The connection is closed exactly once per connect()."""

    @pytest.mark.parametrize(
        ("code", "payload"),
        [
            (ResponseCode.OK, "utm_campaign=xyz"),
            (ResponseCode.OK, "nothing-here"),
            (ResponseCode.SERVICE_UNAVAILABLE, ""),
            (ResponseCode.FEATURE_NOT_SUPPORTED, ""),
            (ResponseCode.DEVELOPER_ERROR, ""),
            (ResponseCode.SERVICE_DISCONNECTED, ""),
            (77, ""),
        ],
    )
    def test_disconnect_once_per_branch(self, resolver, mock_client, complete, code, payload):
        """Success or failure, disconnect() is called once."""
        resolver.initiate()
        complete(code, payload)

        assert mock_client.connect.call_count == 1
        assert mock_client.disconnect.call_count == 1

    def test_duplicate_callback_is_ignored(self, resolver, mock_client, store, complete):
        """A misbehaving client firing twice changes nothing."""
        resolver.initiate()
        complete(ResponseCode.OK, "utm_campaign=first")
        writes = store.writes

        with capture_logs() as logs:
            complete(ResponseCode.OK, "utm_campaign=second")

        assert resolver.outcome == Found("first", from_cache=False)
        assert store.writes == writes
        assert mock_client.disconnect.call_count == 1
        assert any(e["event"] == "referrer_callback_repeated" for e in logs)

    def test_disconnect_error_does_not_escape(self, resolver, mock_client, complete):
        """A failing disconnect() is logged, the outcome stands."""
        mock_client.disconnect.side_effect = RuntimeError("already closed")
        resolver.initiate()

        with capture_logs() as logs:
            complete(ResponseCode.OK, "utm_campaign=xyz")

        assert resolver.outcome == Found("xyz", from_cache=False)
        assert any(e["event"] == "referrer_disconnect_failed" for e in logs)


class TestUnexpectedFaults:
    """Runtime faults are folded into Failed(UNKNOWN)."""

    def test_store_read_failure(self, parser, mock_client):
        """A broken store at start → Failed(UNKNOWN), no connection."""
        store = MagicMock()
        store.has_checked_previously.side_effect = StoreError("corrupt")
        resolver = AttributionResolver(store, parser, mock_client)

        with capture_logs() as logs:
            resolver.initiate()

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)
        mock_client.connect.assert_not_called()
        failed = [e for e in logs if e["event"] == "referrer_initiation_failed"]
        assert failed[0]["error_category"] == "STORAGE"
        assert failed[0]["error"]["error_type"] == "StoreError"
        assert failed[0]["error"]["message"] == "corrupt"

    def test_discover_failure(self, resolver, mock_client):
        """A crashing discovery query → Failed(UNKNOWN)."""
        mock_client.discover.side_effect = RuntimeError("package manager gone")

        with capture_logs() as logs:
            resolver.initiate()

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)
        mock_client.connect.assert_not_called()
        mock_client.disconnect.assert_not_called()
        failed = [e for e in logs if e["event"] == "referrer_initiation_failed"]
        assert failed[0]["error_category"] == "UNEXPECTED"
        assert "error" not in failed[0]

    def test_connect_failure_closes_once(self, resolver, mock_client):
        """connect() raising → Failed(UNKNOWN) and a single disconnect()."""
        mock_client.connect.side_effect = ServiceClientError("bind failed")

        resolver.initiate()

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)
        assert mock_client.disconnect.call_count == 1

    def test_late_callback_after_connect_failure(self, resolver, mock_client, store):
        """A completion arriving after initiation failed is ignored."""
        callbacks = []

        def connect(on_complete):
            callbacks.append(on_complete)
            raise RuntimeError("half open")

        mock_client.connect.side_effect = connect
        resolver.initiate()
        with capture_logs() as logs:
            callbacks[0](ResponseCode.OK, lambda: "utm_campaign=xyz")

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)
        assert mock_client.disconnect.call_count == 1
        assert store.writes == 0
        assert store.snapshot() == {"referrer_checked_previously": False, "campaign_suffix": None}
        assert "referrer_callback_after_resolution" in [e["event"] for e in logs]

    def test_late_not_found_after_connect_failure_not_memoised(self, store, parser, mock_client):
        """With not-found memoisation on, a late empty answer still writes nothing."""
        callbacks = []

        def connect(on_complete):
            callbacks.append(on_complete)
            raise RuntimeError("half open")

        mock_client.connect.side_effect = connect
        resolver = AttributionResolver(store, parser, mock_client, persist_not_found=True)
        resolver.initiate()
        callbacks[0](ResponseCode.OK, lambda: "")

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)
        assert store.writes == 0
        assert store.has_checked_previously() is False
        assert mock_client.disconnect.call_count == 1

    def test_payload_provider_failure(self, resolver, mock_client, store):
        """Reading the payload raising → Failed(UNKNOWN), store untouched."""
        resolver.initiate()

        def provider() -> str:
            raise ConnectionError("remote died")

        mock_client.connect.call_args.args[0](ResponseCode.OK, provider)

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)
        assert store.writes == 0
        assert mock_client.disconnect.call_count == 1

    def test_store_write_failure(self, parser, mock_client):
        """Persisting the fresh value failing → Failed(UNKNOWN), still closed."""
        store = MagicMock()
        store.has_checked_previously.return_value = False
        store.set_cached_value.side_effect = StoreError("disk full")
        resolver = AttributionResolver(store, parser, mock_client)
        resolver.initiate()

        mock_client.connect.call_args.args[0](ResponseCode.OK, lambda: "utm_campaign=xyz")

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)
        assert mock_client.disconnect.call_count == 1

    def test_parser_failure(self, store, mock_client):
        """A parser that raises is treated like any other callback fault."""
        parser = MagicMock(spec=QueryParamReferrerParser)
        parser.parse.side_effect = ValueError("bad payload")
        resolver = AttributionResolver(store, parser, mock_client)
        resolver.initiate()

        mock_client.connect.call_args.args[0](ResponseCode.OK, lambda: "x")

        assert resolver.outcome == Failed(FailureReason.UNKNOWN)


class TestTerminalOutcome:
    """Once resolved, the outcome never changes."""

    def test_outcome_is_immutable_after_resolution(self, resolver, complete):
        """The same object is returned for the rest of the lifetime."""
        resolver.initiate()
        complete(ResponseCode.OK, "utm_campaign=xyz")
        first = resolver.outcome

        resolver.initiate()
        resolver.on_service_disconnected()

        assert resolver.outcome is first
        assert resolver.state is ResolverState.RESOLVED

    def test_failed_outcome_is_not_retried(self, resolver, mock_client, complete):
        """A failure stays cached in memory; no second connection."""
        resolver.initiate()
        complete(ResponseCode.SERVICE_DISCONNECTED)
        resolver.initiate()

        assert mock_client.connect.call_count == 1
        assert resolver.outcome == Failed(FailureReason.SERVICE_DISCONNECTED_BEFORE_ANSWER)

    def test_service_disconnected_notification_is_informational(self, resolver):
        """on_service_disconnected() only logs."""
        resolver.initiate()
        with capture_logs() as logs:
            resolver.on_service_disconnected()

        assert resolver.state is ResolverState.RESOLVING
        assert logs[0]["event"] == "referrer_service_disconnected"
