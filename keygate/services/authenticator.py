"""Credential resolution.

Flow:
  1. Reject empty keys
  2. Point read against the credential store (bounded by the store timeout)
  3. Reject unknown or inactive records

Security:
  • Unknown, inactive and timed-out lookups all fail as Unauthenticated
  • Raw keys are never logged, only a truncated SHA-256 fingerprint
"""

from __future__ import annotations

import logging

from keygate.adapters.store.base import AbstractCredentialStore, CredentialRecord
from keygate.core.errors import AuthenticationAppError, StoreTimeoutAppError
from keygate.core.logging import hash_secret
from keygate.services.timeouts import with_store_timeout

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "No API key provided"
INVALID_KEY_MESSAGE = "Invalid API key"


class Authenticator:
    """Resolves a presented API key to its credential record."""

    def __init__(self, store: AbstractCredentialStore, *, timeout_seconds: float = 5.0) -> None:
        self._store = store
        self._timeout_seconds = timeout_seconds

    async def resolve(self, presented_key: str | None) -> CredentialRecord:
        """Return the active record for ``presented_key``.

        Does not mutate any counter.

        Raises:
            AuthenticationAppError: If the key is missing, unknown, inactive,
                or the store did not answer in time.
        """
        if not presented_key:
            raise AuthenticationAppError(code="missing_api_key", message=MISSING_KEY_MESSAGE)

        key_hash = hash_secret(presented_key)
        try:
            record = await with_store_timeout(
                self._store.get(presented_key),
                timeout_seconds=self._timeout_seconds,
                operation="get",
            )
        except StoreTimeoutAppError as exc:
            # Fail closed: an unanswered lookup never authenticates.
            raise AuthenticationAppError(
                code="store_timeout",
                message=INVALID_KEY_MESSAGE,
                details={"key_hash": key_hash, "timeout_s": self._timeout_seconds},
            ) from exc

        if record is None:
            logger.warning("auth.unknown_key", extra={"key_hash": key_hash})
            raise AuthenticationAppError(code="invalid_api_key", message=INVALID_KEY_MESSAGE)

        if not record.active:
            logger.warning("auth.inactive_key", extra={"key_hash": key_hash})
            raise AuthenticationAppError(code="inactive_api_key", message=INVALID_KEY_MESSAGE)

        return record
