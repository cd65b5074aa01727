"""Credential store adapters.

An in-memory store for tests and a SQL store for deployments share one
abstract contract, so services never know which backend they run against.
"""

from keygate.adapters.store.base import AbstractCredentialStore, CredentialRecord, DuplicateKeyError
from keygate.adapters.store.factory import create_credential_store
from keygate.adapters.store.in_memory import InMemoryCredentialStore
from keygate.adapters.store.sql import SQLCredentialStore

__all__ = [
    "AbstractCredentialStore",
    "CredentialRecord",
    "DuplicateKeyError",
    "InMemoryCredentialStore",
    "SQLCredentialStore",
    "create_credential_store",
]
