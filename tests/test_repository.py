from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import asyncpg  # type: ignore[import-untyped]
import pytest

from bookshop_enrichment.core.config import ConfigurationError
from bookshop_enrichment.jobs.normalize import EnrichedFields
from bookshop_enrichment.services.repository import (
    PostgresBookshopRepository,
    RepositoryUnavailableError,
    StoreWriteError,
)

STALE_BEFORE = datetime(2026, 1, 1, tzinfo=timezone.utc)
FETCHED_AT = datetime(2026, 3, 1, tzinfo=timezone.utc)


class RaisingPool:
    def __init__(self, error: BaseException | None = None, row: Any = None) -> None:
        self.error = error
        self.row = row

    async def fetch(self, query: str, *args: Any) -> list[Any]:
        if self.error is not None:
            raise self.error
        return []

    async def fetchrow(self, query: str, *args: Any) -> Any:
        if self.error is not None:
            raise self.error
        return self.row

    async def close(self) -> None:
        return None


def _repository(pool: RaisingPool) -> PostgresBookshopRepository:
    repository = PostgresBookshopRepository(database_url="postgresql://unused", min_pool_size=1, max_pool_size=1)
    repository._pool = pool
    return repository


def _read(repository: PostgresBookshopRepository) -> Any:
    return asyncio.run(repository.fetch_stale_page(stale_before=STALE_BEFORE, after_id=None, limit=10))


def _write(repository: PostgresBookshopRepository) -> None:
    asyncio.run(repository.apply_enrichment(7, EnrichedFields(rating=4.2), fetched_at=FETCHED_AT))


@pytest.mark.parametrize(
    "error",
    [ConnectionResetError("connection reset"), asyncio.TimeoutError(), asyncpg.InterfaceError("pool is closed")],
)
def test_stale_read_failure_is_unavailable(error: BaseException) -> None:
    with pytest.raises(RepositoryUnavailableError, match="stale bookshop read failed"):
        _read(_repository(RaisingPool(error)))


@pytest.mark.parametrize(
    "error",
    [ConnectionResetError("connection reset"), asyncio.TimeoutError(), asyncpg.InterfaceError("pool is closed")],
)
def test_write_failure_is_a_store_write_error(error: BaseException) -> None:
    with pytest.raises(StoreWriteError, match="update rejected for bookshop 7"):
        _write(_repository(RaisingPool(error)))


def test_write_to_missing_bookshop_is_a_store_write_error() -> None:
    with pytest.raises(StoreWriteError, match="bookshop 7 not found"):
        _write(_repository(RaisingPool(row=None)))


def test_missing_database_url_is_a_configuration_error() -> None:
    repository = PostgresBookshopRepository(database_url=None, min_pool_size=1, max_pool_size=1)

    with pytest.raises(ConfigurationError, match="BSE_DATABASE_URL"):
        asyncio.run(repository.ensure_ready())
