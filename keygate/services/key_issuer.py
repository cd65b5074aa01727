"""Credential issuance service.

Steps:
  1. Mint raw key material with the upstream issuer
  2. Persist a fresh CredentialRecord (counters at zero, active)
  3. Queue a key creation notification without waiting for it

If step 2 fails the upstream key is abandoned. Upstream keys are free to
mint, so no compensation is attempted; a persisted record always has a key.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from keygate.adapters.issuer.base import AbstractCredentialIssuer
from keygate.adapters.notify.base import KeyIssuedEvent
from keygate.adapters.store.base import AbstractCredentialStore, CredentialRecord, DuplicateKeyError, utcnow
from keygate.core.errors import PersistenceAppError, StoreTimeoutAppError
from keygate.core.logging import hash_secret
from keygate.services.notifications import NotificationDispatcher
from keygate.services.timeouts import with_store_timeout

logger = logging.getLogger(__name__)


class KeyIssuer:
    """Creates and stores new API keys."""

    def __init__(
        self,
        *,
        issuer: AbstractCredentialIssuer,
        store: AbstractCredentialStore,
        dispatcher: NotificationDispatcher | None = None,
        default_rate_limit: int = 1000,
        key_prefix_length: int = 16,
        default_project: str = "main",
        email_domain: str = "key.pigment",
        store_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if default_rate_limit < 1:
            raise ValueError("default_rate_limit must be >= 1")

        self._issuer = issuer
        self._store = store
        self._dispatcher = dispatcher
        self.default_rate_limit = default_rate_limit
        self._key_prefix_length = key_prefix_length
        self._default_project = default_project
        self._email_domain = email_domain
        self._store_timeout_seconds = store_timeout_seconds
        self._clock = clock

    def placeholder_email(self, project: str | None) -> str:
        """Email registered upstream when the caller provides none."""
        return f"{project or 'user'}_{int(self._clock() * 1000)}@{self._email_domain}"

    async def issue(
        self,
        project: str | None = None,
        email: str | None = None,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> CredentialRecord:
        """Issue, persist and announce a new key.

        Args:
            project: Optional project name (defaults to the configured project).
            email: Optional contact email.
            ip: Caller address, stored as provenance.
            user_agent: Caller user agent, stored as provenance.

        Returns:
            CredentialRecord: The persisted record.

        Raises:
            UpstreamIssuanceAppError: If the upstream issuer fails.
            PersistenceAppError: If the record cannot be stored.
        """
        issued = await self._issuer.issue(email or self.placeholder_email(project))

        record = CredentialRecord(
            key=issued.api_key,
            key_prefix=issued.api_key[: self._key_prefix_length],
            subject_id=issued.subject_id,
            project=project or self._default_project,
            email=email or None,
            ip=ip,
            user_agent=user_agent,
            rate_limit=self.default_rate_limit,
            active=True,
            created_at=utcnow(),
        )

        try:
            await with_store_timeout(
                self._store.insert(record),
                timeout_seconds=self._store_timeout_seconds,
                operation="insert",
            )
        except (DuplicateKeyError, StoreTimeoutAppError) as exc:
            raise PersistenceAppError(
                code="persistence_rejected",
                message=f"Could not store issued key: {type(exc).__name__}",
                details={"key_hash": hash_secret(record.key)},
            ) from exc
        except Exception as exc:  # any backend failure (driver, connection, ...)
            raise PersistenceAppError(
                code="persistence_failed",
                message=f"Credential store insert failed: {type(exc).__name__}",
                details={"key_hash": hash_secret(record.key)},
            ) from exc

        logger.info(
            "issue.created",
            extra={
                "key_hash": hash_secret(record.key),
                "project": record.project,
                "rate_limit": record.rate_limit,
            },
        )

        if self._dispatcher is not None:
            self._dispatcher.submit(
                KeyIssuedEvent(
                    project=record.project or self._default_project,
                    email=email or "anonymous",
                    ip=ip,
                    key_prefix=record.key_prefix,
                )
            )

        return record
