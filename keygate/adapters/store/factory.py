"""Factory for credential store instances."""

from keygate.adapters.store.base import AbstractCredentialStore
from keygate.adapters.store.in_memory import InMemoryCredentialStore
from keygate.adapters.store.sql import SQLCredentialStore
from keygate.core.config import StoreSettings, settings
from keygate.core.errors import ValidationAppError
from keygate.db.session import get_async_engine, get_session_maker


def create_credential_store(store_settings: StoreSettings | None = None) -> AbstractCredentialStore:
    """Instantiate the configured credential store backend.

    Returns:
        AbstractCredentialStore: Configured store.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryCredentialStore()

    if backend == "sql":
        engine = get_async_engine(cfg)
        return SQLCredentialStore(get_session_maker(engine), engine=engine)

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown credential store backend: '{backend}'. Supported backends: sql, memory",
    )
