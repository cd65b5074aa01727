"""Tests for the key issuance service."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from keygate.adapters.issuer.base import AbstractCredentialIssuer, IssuedCredential
from keygate.adapters.notify.base import AbstractNotifier, KeyIssuedEvent
from keygate.adapters.store.in_memory import InMemoryCredentialStore
from keygate.core.errors import PersistenceAppError, UpstreamIssuanceAppError
from keygate.services.key_issuer import KeyIssuer
from keygate.services.notifications import NotificationDispatcher

from conftest import make_record

ISSUED_KEY = "pk_live_issued_abcdefghijklmnopqrstuvwxyz"


class FakeIssuer(AbstractCredentialIssuer):
    def __init__(self, api_key: str = ISSUED_KEY, error: Exception | None = None) -> None:
        self.api_key = api_key
        self.error = error
        self.emails: list[str] = []

    async def issue(self, email: str) -> IssuedCredential:
        self.emails.append(email)
        if self.error is not None:
            raise self.error
        return IssuedCredential(api_key=self.api_key, subject_id="user-42")


class BrokenStore(InMemoryCredentialStore):
    async def insert(self, record):
        raise RuntimeError("disk full")


class SlowInsertStore(InMemoryCredentialStore):
    async def insert(self, record):
        await asyncio.sleep(10)


class BlockedNotifier(AbstractNotifier):
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.events: list[KeyIssuedEvent] = []

    async def send(self, event: KeyIssuedEvent) -> None:
        await self.release.wait()
        self.events.append(event)


def _issuer(issuer=None, store=None, dispatcher=None, **kwargs) -> KeyIssuer:
    return KeyIssuer(
        issuer=issuer or FakeIssuer(),
        store=store if store is not None else InMemoryCredentialStore(),
        dispatcher=dispatcher,
        **kwargs,
    )


class TestIssue:
    """Successful issuance persists a fresh record and announces it."""

    @pytest.mark.asyncio
    async def test_persists_fresh_record(self):
        store = InMemoryCredentialStore()
        service = _issuer(store=store, default_rate_limit=250)

        record = await service.issue(
            project="docs",
            email="dev@example.com",
            ip="203.0.113.9",
            user_agent="curl/8.0",
        )

        stored = await store.get(ISSUED_KEY)
        assert stored is not None
        assert record.key == ISSUED_KEY
        assert stored.key_prefix == ISSUED_KEY[:16]
        assert stored.subject_id == "user-42"
        assert stored.project == "docs"
        assert stored.email == "dev@example.com"
        assert stored.ip == "203.0.113.9"
        assert stored.user_agent == "curl/8.0"
        assert stored.rate_limit == 250
        assert stored.active is True
        assert (stored.requests_1m, stored.requests_1h, stored.requests_1d, stored.total_requests) == (0, 0, 0, 0)
        assert stored.last_used is None

    @pytest.mark.asyncio
    async def test_defaults_project_and_registers_placeholder_email(self):
        upstream = FakeIssuer()
        clock = Mock(return_value=1_700_000_000.123)
        store = InMemoryCredentialStore()
        service = _issuer(issuer=upstream, store=store, clock=clock)

        record = await service.issue()

        assert upstream.emails == ["user_1700000000123@key.pigment"]
        assert record.project == "main"
        assert record.email is None
        assert record.rate_limit == 1000

    def test_placeholder_email_uses_project(self):
        service = _issuer(clock=Mock(return_value=1_700_000_000.0), email_domain="keys.test")

        assert service.placeholder_email("docs") == "docs_1700000000000@keys.test"
        assert service.placeholder_email(None) == "user_1700000000000@keys.test"

    @pytest.mark.asyncio
    async def test_submits_notification_event(self):
        dispatcher = Mock(spec=NotificationDispatcher)
        service = _issuer(dispatcher=dispatcher)

        await service.issue(project="docs", ip="203.0.113.9")

        dispatcher.submit.assert_called_once_with(
            KeyIssuedEvent(
                project="docs",
                email="anonymous",
                ip="203.0.113.9",
                key_prefix=ISSUED_KEY[:16],
            )
        )

    @pytest.mark.asyncio
    async def test_slow_notifier_does_not_delay_issuance(self):
        notifier = BlockedNotifier()
        dispatcher = NotificationDispatcher(notifier, max_queue=4)
        dispatcher.start()
        service = _issuer(dispatcher=dispatcher)

        record = await asyncio.wait_for(service.issue(email="dev@example.com"), timeout=1)

        assert record.key == ISSUED_KEY
        assert notifier.events == []
        notifier.release.set()
        await dispatcher.join()
        assert notifier.events[0].email == "dev@example.com"
        await dispatcher.stop()

    def test_invalid_rate_limit_raises(self):
        with pytest.raises(ValueError):
            _issuer(default_rate_limit=0)


class TestFailures:
    """Failures surface as issuance errors and leave nothing half-done."""

    @pytest.mark.asyncio
    async def test_upstream_failure_persists_nothing(self):
        store = InMemoryCredentialStore()
        dispatcher = Mock(spec=NotificationDispatcher)
        upstream = FakeIssuer(error=UpstreamIssuanceAppError(code="upstream_rejected", message="500"))
        service = _issuer(issuer=upstream, store=store, dispatcher=dispatcher)

        with pytest.raises(UpstreamIssuanceAppError):
            await service.issue(project="docs")

        assert len(store) == 0
        dispatcher.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_backend_error_is_persistence_failure(self):
        dispatcher = Mock(spec=NotificationDispatcher)
        service = _issuer(store=BrokenStore(), dispatcher=dispatcher)

        with pytest.raises(PersistenceAppError) as exc_info:
            await service.issue()

        assert exc_info.value.code == "persistence_failed"
        assert exc_info.value.client_message == "Failed to generate key"
        assert ISSUED_KEY not in exc_info.value.message
        dispatcher.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_key_is_rejected(self):
        store = InMemoryCredentialStore([make_record(key=ISSUED_KEY)])
        service = _issuer(store=store)

        with pytest.raises(PersistenceAppError) as exc_info:
            await service.issue()

        assert exc_info.value.code == "persistence_rejected"
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_insert_timeout_is_persistence_failure(self):
        service = _issuer(store=SlowInsertStore(), store_timeout_seconds=0.01)

        with pytest.raises(PersistenceAppError) as exc_info:
            await service.issue()

        assert exc_info.value.code == "persistence_rejected"
