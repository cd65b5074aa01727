"""Process-wide service instances exposed as FastAPI dependencies.

Instances are cached in-module to preserve state (the rate window cache in
particular) across requests. Tests replace them through
``app.dependency_overrides`` or ``reset_services()``.
"""

from __future__ import annotations

from keygate.adapters.issuer.http_client import HttpCredentialIssuer
from keygate.adapters.notify.factory import create_notifier
from keygate.adapters.store.base import AbstractCredentialStore
from keygate.adapters.store.factory import create_credential_store
from keygate.core.config import settings
from keygate.services.admission import AdmissionController
from keygate.services.authenticator import Authenticator
from keygate.services.key_issuer import KeyIssuer
from keygate.services.notifications import NotificationDispatcher
from keygate.services.rate_window_cache import RateWindowCache

_store: AbstractCredentialStore | None = None
_cache: RateWindowCache | None = None
_dispatcher: NotificationDispatcher | None = None
_admission: AdmissionController | None = None
_key_issuer: KeyIssuer | None = None


def get_credential_store() -> AbstractCredentialStore:
    global _store
    if _store is None:
        _store = create_credential_store(settings.store)
    return _store


def get_rate_window_cache() -> RateWindowCache:
    global _cache
    if _cache is None:
        _cache = RateWindowCache(
            ttl_seconds=settings.keys.window_seconds + settings.keys.cache_slack_seconds,
            stripes=settings.keys.cache_stripes,
        )
    return _cache


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(
            create_notifier(settings.notify),
            max_queue=settings.notify.queue_size,
        )
    return _dispatcher


def get_admission_controller() -> AdmissionController:
    global _admission
    if _admission is None:
        store = get_credential_store()
        _admission = AdmissionController(
            store=store,
            cache=get_rate_window_cache(),
            authenticator=Authenticator(store, timeout_seconds=settings.store.timeout_seconds),
            window_seconds=settings.keys.window_seconds,
            store_timeout_seconds=settings.store.timeout_seconds,
        )
    return _admission


def get_key_issuer() -> KeyIssuer:
    global _key_issuer
    if _key_issuer is None:
        _key_issuer = KeyIssuer(
            issuer=HttpCredentialIssuer(
                base_url=settings.issuer.base_url,
                users_path=settings.issuer.users_path,
                timeout_seconds=settings.issuer.timeout_seconds,
            ),
            store=get_credential_store(),
            dispatcher=get_notification_dispatcher(),
            default_rate_limit=settings.keys.default_rate_limit,
            key_prefix_length=settings.keys.key_prefix_length,
            default_project=settings.keys.default_project,
            email_domain=settings.issuer.email_domain,
            store_timeout_seconds=settings.store.timeout_seconds,
        )
    return _key_issuer


def reset_services() -> None:
    """Drop cached instances so the next request rebuilds them from settings."""
    global _store, _cache, _dispatcher, _admission, _key_issuer
    _store = None
    _cache = None
    _dispatcher = None
    _admission = None
    _key_issuer = None
