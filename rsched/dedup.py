"""In-process replay-dedup cache for the webhook receiver.

Fingerprints (for example ``"<slug>:<body_hash_hex>"``) are remembered for a
configurable window so that a captured request cannot be replayed while its
fingerprint is still fresh. The cache is per process only.
"""

from __future__ import annotations

import asyncio
import os
import re
import threading
import time
from collections.abc import Callable, Mapping

DEFAULT_WINDOW_SECS = 300
DEFAULT_MAX_ENTRIES = 10_000
ENV_WINDOW = "RSCHED_WEBHOOK_DEDUP_WINDOW_SECS"
ENV_MAX = "RSCHED_WEBHOOK_DEDUP_MAX"

_UNSIGNED = re.compile(r"\+?[0-9]+")
_U64_MAX = 2**64 - 1


def _parse_unsigned(text: str | None) -> int | None:
    if text is None or not _UNSIGNED.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _U64_MAX else None


class WebhookDedup:
    """Bounded fingerprint cache with a time-to-live window."""

    def __init__(
        self,
        window: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window < 0:
            raise ValueError("window must not be negative")
        self._window = float(window)
        self._max_entries = max(int(max_entries), 1)
        self._clock = clock
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WebhookDedup:
        """Build from the dedup env vars, using defaults for missing or invalid values."""
        env = os.environ if environ is None else environ
        window = _parse_unsigned(env.get(ENV_WINDOW))
        max_entries = _parse_unsigned(env.get(ENV_MAX))
        return cls(
            window=DEFAULT_WINDOW_SECS if window is None else window,
            max_entries=DEFAULT_MAX_ENTRIES if max_entries is None else max_entries,
        )

    @property
    def window(self) -> float:
        """Time-to-live window in seconds."""
        return self._window

    @property
    def max_entries(self) -> int:
        """Upper bound on cached fingerprints."""
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._seen

    def check_and_insert(self, key: str) -> bool:
        """Record ``key``; True if it was already present and still fresh.

        A stale entry is refreshed and treated as new.
        """
        with self._lock:
            now = self._clock()
            existing = self._seen.get(key)
            if existing is not None:
                if now - existing < self._window:
                    return True
                self._seen[key] = now
                return False
            if len(self._seen) >= self._max_entries:
                self._evict_oldest()
            self._seen[key] = now
            return False

    def prune(self) -> None:
        """Drop expired entries."""
        with self._lock:
            now = self._clock()
            self._seen = {k: ts for k, ts in self._seen.items() if now - ts < self._window}

    def _evict_oldest(self) -> None:
        if self._seen:
            oldest = min(self._seen, key=self._seen.__getitem__)
            del self._seen[oldest]


async def run_pruner(cache: WebhookDedup, interval: float) -> None:
    """Prune ``cache`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        cache.prune()