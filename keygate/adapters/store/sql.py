"""SQL-backed credential store (SQLAlchemy async).

The admission increment is a single conditional UPDATE, so the ceiling check
and the counter bump happen atomically in the database even when several
processes share it.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from keygate.adapters.store.base import AbstractCredentialStore, CredentialRecord, DuplicateKeyError
from keygate.db.models import ApiKey
from keygate.db.session import create_schema

logger = logging.getLogger(__name__)


def _to_record(row: ApiKey) -> CredentialRecord:
    return CredentialRecord(
        key=row.key,
        key_prefix=row.key_prefix,
        subject_id=row.user_id,
        project=row.project,
        email=row.email,
        ip=row.ip,
        user_agent=row.user_agent,
        rate_limit=row.rate_limit,
        requests_1m=row.requests_1m,
        requests_1h=row.requests_1h,
        requests_1d=row.requests_1d,
        total_requests=row.total_requests,
        active=row.active,
        created_at=row.created_at,
        last_used=row.last_used,
    )


class SQLCredentialStore(AbstractCredentialStore):
    """Credential store over an ``api_keys`` table."""

    def __init__(self, session_maker: async_sessionmaker, *, engine: AsyncEngine | None = None) -> None:
        self._session_maker = session_maker
        self._engine = engine

    async def get(self, key: str) -> CredentialRecord | None:
        async with self._session_maker() as session:
            row = (
                await session.execute(select(ApiKey).where(ApiKey.key == key))
            ).scalar_one_or_none()
            return _to_record(row) if row else None

    async def insert(self, record: CredentialRecord) -> None:
        async with self._session_maker() as session:
            session.add(
                ApiKey(
                    key=record.key,
                    key_prefix=record.key_prefix,
                    user_id=record.subject_id,
                    project=record.project,
                    email=record.email,
                    ip=record.ip,
                    user_agent=record.user_agent,
                    rate_limit=record.rate_limit,
                    requests_1m=record.requests_1m,
                    requests_1h=record.requests_1h,
                    requests_1d=record.requests_1d,
                    total_requests=record.total_requests,
                    active=record.active,
                    created_at=record.created_at,
                    last_used=record.last_used,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateKeyError(record.key_prefix) from exc

    async def increment_usage(self, key: str, *, used_at: datetime) -> int | None:
        stmt = (
            update(ApiKey)
            .where(
                ApiKey.key == key,
                ApiKey.active.is_(True),
                ApiKey.requests_1m < ApiKey.rate_limit,
            )
            .values(
                requests_1m=ApiKey.requests_1m + 1,
                requests_1h=ApiKey.requests_1h + 1,
                requests_1d=ApiKey.requests_1d + 1,
                total_requests=ApiKey.total_requests + 1,
                last_used=used_at,
            )
            .returning(ApiKey.requests_1m)
            .execution_options(synchronize_session=False)
        )
        async with self._session_maker() as session:
            new_count = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
        return new_count

    async def initialize(self) -> None:
        if self._engine is not None:
            await create_schema(self._engine)
            logger.info("store.schema_ready", extra={"dialect": self._engine.dialect.name})

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
