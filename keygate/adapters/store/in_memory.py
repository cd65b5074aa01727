"""In-memory credential store.

Notes:
- Per-process only: intended for tests and single-instance development.
- Thread-safe: uses a lock around shared state, so the ceiling check and the
  increment are a single atomic step.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime

from keygate.adapters.store.base import AbstractCredentialStore, CredentialRecord, DuplicateKeyError


class InMemoryCredentialStore(AbstractCredentialStore):
    """Dict-backed store returning copies so callers never share state."""

    def __init__(self, records: list[CredentialRecord] | None = None) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, CredentialRecord] = {}
        for record in records or []:
            self._records[record.key] = replace(record)

    async def get(self, key: str) -> CredentialRecord | None:
        with self._lock:
            record = self._records.get(key)
            return replace(record) if record else None

    async def insert(self, record: CredentialRecord) -> None:
        with self._lock:
            if record.key in self._records:
                raise DuplicateKeyError(record.key_prefix)
            self._records[record.key] = replace(record)

    async def increment_usage(self, key: str, *, used_at: datetime) -> int | None:
        with self._lock:
            record = self._records.get(key)
            if record is None or not record.active:
                return None
            if record.requests_1m >= record.rate_limit:
                return None

            record.requests_1m += 1
            record.requests_1h += 1
            record.requests_1d += 1
            record.total_requests += 1
            record.last_used = used_at
            return record.requests_1m

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
