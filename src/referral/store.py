"""
Durable key-value stores for the referrer check.

Two keys are persisted:

- ``referrer_checked_previously`` — whether a previous run already obtained
  an answer worth replaying
- ``campaign_suffix`` — the cached attribution value, if any

Architecture:
    ::

        AttributionStore (Protocol, referral.core.protocols)
        ├── InMemoryReferrerStore  — process-local, for tests and dry runs
        └── JsonFileReferrerStore  — durable JSON file, atomic replace on write

Examples:
    >>> store = InMemoryReferrerStore()
    >>> store.has_checked_previously()
    False
    >>> store.set_cached_value("xyz")
    >>> store.set_checked_previously(True)
    >>> store.snapshot()
    {'referrer_checked_previously': True, 'campaign_suffix': 'xyz'}

Guardrails:
    ❌ DON'T: Read the store from a network path
    ✅ DO: Keep reads local and synchronous; the resolver reads at start-up

Tags:
    store, key-value, persistence, referral
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from referral.core.errors import StoreError
from referral.core.logging import get_logger

logger = get_logger(__name__)

CHECKED_KEY = "referrer_checked_previously"
SUFFIX_KEY = "campaign_suffix"


# ------------------------------------------------------------------ #
# In-Memory Store
# ------------------------------------------------------------------ #


class InMemoryReferrerStore:
    """Process-local store. Thread-safe.

    ``writes`` counts mutating calls so tests can assert that a replayed or
    failed resolution left the store untouched.
    """

    def __init__(self, *, checked_previously: bool = False, cached_value: str | None = None):
        self._checked = checked_previously
        self._value = cached_value
        self._lock = threading.Lock()
        self.writes = 0

    def has_checked_previously(self) -> bool:
        with self._lock:
            return self._checked

    def get_cached_value(self) -> str | None:
        with self._lock:
            return self._value

    def set_checked_previously(self, checked: bool) -> None:
        with self._lock:
            self._checked = checked
            self.writes += 1

    def set_cached_value(self, value: str) -> None:
        with self._lock:
            self._value = value
            self.writes += 1

    def clear(self) -> None:
        with self._lock:
            self._checked = False
            self._value = None

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {CHECKED_KEY: self._checked, SUFFIX_KEY: self._value}


# ------------------------------------------------------------------ #
# JSON File Store
# ------------------------------------------------------------------ #


class JsonFileReferrerStore:
    """Durable store backed by one small JSON file.

    A missing file means nothing was checked yet. Every write rewrites the
    whole document through a temporary file and ``os.replace`` so a crash
    never leaves a half-written store behind.

    Raises:
        StoreError: If the file exists but is unreadable or not a JSON object,
            or if a write fails.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def has_checked_previously(self) -> bool:
        with self._lock:
            return self._read().get(CHECKED_KEY) is True

    def get_cached_value(self) -> str | None:
        with self._lock:
            value = self._read().get(SUFFIX_KEY)
        return value if isinstance(value, str) else None

    def set_checked_previously(self, checked: bool) -> None:
        self._update(CHECKED_KEY, bool(checked))

    def set_cached_value(self, value: str) -> None:
        self._update(SUFFIX_KEY, value)

    def clear(self) -> None:
        """Remove the store file. No-op if it does not exist."""
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                return
            except OSError as e:
                raise StoreError("Failed to clear referrer store", cause=e).with_context(
                    path=str(self.path)
                )
        logger.info("referrer_store_cleared", path=str(self.path))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            data = self._read()
        value = data.get(SUFFIX_KEY)
        return {
            CHECKED_KEY: data.get(CHECKED_KEY) is True,
            SUFFIX_KEY: value if isinstance(value, str) else None,
        }

    # ── Private helpers ──────────────────────────────────────────

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreError("Failed to read referrer store", cause=e).with_context(
                path=str(self.path)
            )

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError("Referrer store is not valid JSON", cause=e).with_context(
                path=str(self.path)
            )
        if not isinstance(data, dict):
            raise StoreError("Referrer store must hold a JSON object").with_context(
                path=str(self.path)
            )
        return data

    def _update(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError("Failed to write referrer store", cause=e).with_context(
                path=str(self.path)
            )


__all__ = [
    "CHECKED_KEY",
    "InMemoryReferrerStore",
    "JsonFileReferrerStore",
    "SUFFIX_KEY",
]
