"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment before ``keygate.core.config`` is imported so that
settings resolve to the in-memory store with notifications disabled.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ISSUER_BASE_URL", "https://issuer.test")
os.environ.pop("NOTIFY_GITHUB_TOKEN", None)

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from keygate.adapters.store.base import CredentialRecord  # noqa: E402

TEST_KEY = "pk_live_0123456789abcdefghijklmnopqrstuv"


class FakeTime:
    """Deterministic clock for rate windows and cache expiry."""

    def __init__(self, start: float = 1_000_020.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def make_record(key: str = TEST_KEY, **overrides) -> CredentialRecord:
    values = {
        "key": key,
        "key_prefix": key[:16],
        "subject_id": "user-1",
        "project": "main",
        "rate_limit": 5,
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return CredentialRecord(**values)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()
