"""Credential store interfaces.

Services depend on this abstraction (not a concrete backend) so the durable
store can be an in-memory map in tests and a SQL database in production.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CredentialRecord:
    """Durable state of one API key.

    Attributes:
        key: Opaque bearer token; unique, immutable, never reused.
        key_prefix: Leading characters of ``key`` kept for display/audit.
        subject_id: Identifier of the owning principal from the upstream issuer.
        project: Free-form provenance metadata.
        email: Free-form provenance metadata.
        ip: Address the issuance request came from.
        user_agent: User agent of the issuance request.
        rate_limit: Maximum admitted requests per one-minute bucket.
        requests_1m: Admissions in the current minute bucket (reset externally).
        requests_1h: Informational accumulator, never enforced.
        requests_1d: Informational accumulator, never enforced.
        total_requests: Lifetime admissions.
        active: When False every verification fails.
        created_at: Issuance time (UTC).
        last_used: Time of the last durable-path admission (UTC).
    """

    key: str
    key_prefix: str
    subject_id: str | None = None
    project: str | None = None
    email: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    rate_limit: int = 1000
    requests_1m: int = 0
    requests_1h: int = 0
    requests_1d: int = 0
    total_requests: int = 0
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_used: datetime | None = None


class DuplicateKeyError(Exception):
    """Raised by ``insert`` when the key already exists."""


class AbstractCredentialStore(ABC):
    """Narrow CRUD contract over the durable credential records."""

    @abstractmethod
    async def get(self, key: str) -> CredentialRecord | None:
        """Point read by key.

        Returns:
            A snapshot of the record, or None when the key is unknown.
        """
        raise NotImplementedError

    @abstractmethod
    async def insert(self, record: CredentialRecord) -> None:
        """Persist a new record.

        Raises:
            DuplicateKeyError: If a record with the same key exists.
        """
        raise NotImplementedError

    @abstractmethod
    async def increment_usage(self, key: str, *, used_at: datetime) -> int | None:
        """Atomically admit one request against the durable counters.

        Increments ``requests_1m``, ``requests_1h``, ``requests_1d`` and
        ``total_requests`` by one and sets ``last_used`` only while
        ``requests_1m < rate_limit`` and the key is active.

        Returns:
            The post-increment ``requests_1m``, or None when the ceiling was
            already reached (or the key vanished/was deactivated).
        """
        raise NotImplementedError

    async def initialize(self) -> None:
        """Prepare the backend (e.g., create missing tables)."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None
