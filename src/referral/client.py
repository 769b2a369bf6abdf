"""
Install-referrer service client adapters.

The platform service answers exactly once per connection, on a thread it
owns. ``ThreadedServiceClient`` reproduces that contract around any blocking
``handshake`` callable: ``connect`` returns immediately and the single
completion event is delivered from a daemon thread.

Architecture:
    ::

        resolver.initiate()
            │ discover()  → probe()
            │ connect(on_complete)
            ▼
        ┌──────────────────────────────────────┐
        │ daemon thread "referrer-handshake"   │
        │   sleep(delay)                       │
        │   response = handshake()             │
        │   on_complete(code, payload_provider)│
        └──────────────────────────────────────┘
            │
            ▼
        resolver calls disconnect()

Examples:
    >>> client = scripted_client(ResponseCode.OK, "utm_campaign=xyz", delay=0.05)
    >>> client.discover()
    True

Tags:
    service-client, install-referrer, threading, callback, referral
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum

from referral.core.errors import ServiceClientError
from referral.core.logging import get_logger
from referral.core.protocols import CompletionCallback

logger = get_logger(__name__)


class ResponseCode(IntEnum):
    """Platform response codes delivered with the completion event."""

    SERVICE_DISCONNECTED = -1
    OK = 0
    SERVICE_UNAVAILABLE = 1
    FEATURE_NOT_SUPPORTED = 2
    DEVELOPER_ERROR = 3
    PERMISSION_ERROR = 4


@dataclass(frozen=True, slots=True)
class ReferrerResponse:
    """One completion event: a response code and the raw referrer payload."""

    code: int
    payload: str = ""


class ThreadedServiceClient:
    """Service client delivering one completion event from a daemon thread.

    Args:
        handshake: Blocking call returning the service's ``ReferrerResponse``.
            An exception is reported as ``SERVICE_DISCONNECTED``.
        probe: Discovery check; ``None`` treats the service as present.
        delay: Seconds to wait before running the handshake.
    """

    def __init__(
        self,
        handshake: Callable[[], ReferrerResponse],
        *,
        probe: Callable[[], bool] | None = None,
        delay: float = 0.0,
    ):
        self._handshake = handshake
        self._probe = probe
        self._delay = delay
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._connected = False
        self.connect_count = 0
        self.disconnect_count = 0

    def discover(self) -> bool:
        if self._probe is None:
            return True
        return bool(self._probe())

    def connect(self, on_complete: CompletionCallback) -> None:
        with self._lock:
            if self.connect_count:
                raise ServiceClientError(
                    "Service client supports a single connection"
                ).with_context(connect_count=self.connect_count)
            self.connect_count += 1
            self._connected = True

        self._thread = threading.Thread(
            target=self._run,
            args=(on_complete,),
            daemon=True,
            name="referrer-handshake",
        )
        self._thread.start()

    def disconnect(self) -> None:
        with self._lock:
            self.disconnect_count += 1
            was_connected = self._connected
            self._connected = False
        logger.debug("referrer_client_disconnected", was_connected=was_connected)

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._connected

    def _run(self, on_complete: CompletionCallback) -> None:
        if self._delay > 0:
            time.sleep(self._delay)

        try:
            response = self._handshake()
        except Exception as e:
            logger.warning("referrer_handshake_failed", exc_info=e)
            response = ReferrerResponse(ResponseCode.SERVICE_DISCONNECTED)

        try:
            on_complete(int(response.code), lambda: response.payload)
        except Exception as e:
            logger.error("referrer_completion_callback_failed", exc_info=e)


def scripted_client(
    code: int,
    payload: str = "",
    *,
    available: bool = True,
    delay: float = 0.0,
) -> ThreadedServiceClient:
    """Build a client that answers with a fixed response after ``delay``."""
    response = ReferrerResponse(code, payload)
    return ThreadedServiceClient(
        lambda: response,
        probe=lambda: available,
        delay=delay,
    )


__all__ = [
    "ReferrerResponse",
    "ResponseCode",
    "ThreadedServiceClient",
    "scripted_client",
]
