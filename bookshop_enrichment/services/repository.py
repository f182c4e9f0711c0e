from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from bookshop_enrichment.core.config import ConfigurationError, get_settings
from bookshop_enrichment.jobs.normalize import EnrichedFields


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable."""


class StoreWriteError(RepositoryError):
    """Raised when the store rejects an enrichment write."""


# Failures asyncpg can raise from a query on an existing pool.
QUERY_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


BOOKSHOP_COLUMNS = """
  id,
  name,
  street,
  city,
  state,
  zip,
  phone,
  website,
  google_place_id,
  google_data_updated_at
"""


@dataclass(frozen=True, slots=True)
class BookshopRecord:
    id: int
    name: str
    google_place_id: str | None = None
    google_data_updated_at: datetime | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    phone: str | None = None
    website: str | None = None

    @property
    def search_query(self) -> str:
        parts = (self.name, self.street, self.city, self.state, self.zip)
        return " ".join(part.strip() for part in parts if part and part.strip())


@dataclass(frozen=True, slots=True)
class EnrichmentTotals:
    live_total: int
    enriched: int
    unenriched: int
    without_reference: int
    enriched_with_reference: int


class PostgresBookshopRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        page_size: int = 1000,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.page_size = max(1, page_size)
        self._pool: asyncpg.Pool | None = None

    async def ensure_ready(self) -> None:
        await self._get_pool()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def fetch_stale_page(
        self,
        *,
        stale_before: datetime,
        after_id: int | None,
        limit: int,
        include_unreferenced: bool = False,
    ) -> list[BookshopRecord]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {BOOKSHOP_COLUMNS}
                from bookstores
                where live = true
                  and ($4::boolean or google_place_id is not null)
                  and (google_data_updated_at is null or google_data_updated_at < $1)
                  and ($2::bigint is null or id > $2)
                order by id asc
                limit $3
                """,
                stale_before,
                after_id,
                max(1, limit),
                include_unreferenced,
            )
        except QUERY_ERRORS as exc:
            raise RepositoryUnavailableError(f"stale bookshop read failed: {exc}") from exc
        return [self._row_to_record(row) for row in rows]

    async def apply_enrichment(
        self,
        bookshop_id: int,
        fields: EnrichedFields,
        *,
        fetched_at: datetime,
        place_id: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                update bookstores
                set
                  google_place_id = coalesce($2, google_place_id),
                  google_rating = $3,
                  google_review_count = $4,
                  google_description = $5,
                  google_photos = $6::jsonb,
                  google_reviews = $7::jsonb,
                  google_price_level = $8,
                  formatted_phone = $9,
                  website_verified = $10,
                  opening_hours_json = $11::jsonb,
                  google_maps_url = $12,
                  google_types = $13::text[],
                  formatted_address_google = $14,
                  business_status = $15,
                  google_data_updated_at = $16,
                  contact_data_fetched_at = $16
                where id = $1
                returning id
                """,
                bookshop_id,
                place_id,
                # google_rating is a text column
                None if fields.rating is None else str(fields.rating),
                fields.review_count,
                fields.description,
                _json_or_none(fields.photos),
                _json_or_none(fields.reviews),
                fields.price_level,
                fields.phone,
                fields.website,
                _json_or_none(fields.opening_hours),
                fields.maps_url,
                fields.types,
                fields.formatted_address,
                fields.business_status,
                fetched_at,
            )
        except QUERY_ERRORS as exc:
            raise StoreWriteError(f"update rejected for bookshop {bookshop_id}: {exc}") from exc
        if row is None:
            raise StoreWriteError(f"bookshop {bookshop_id} not found")

    async def list_unenriched_bookshops(self) -> list[BookshopRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {BOOKSHOP_COLUMNS}
            from bookstores
            where live = true
              and google_data_updated_at is null
            order by name asc, id asc
            """
        )
        return [self._row_to_record(row) for row in rows]

    async def count_enrichment_totals(self) -> EnrichmentTotals:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              count(*) as live_total,
              count(*) filter (where google_data_updated_at is not null) as enriched,
              count(*) filter (where google_data_updated_at is null) as unenriched,
              count(*) filter (where google_place_id is null) as without_reference,
              count(*) filter (
                where google_place_id is not null and google_data_updated_at is not null
              ) as enriched_with_reference
            from bookstores
            where live = true
            """
        )
        if row is None:
            return EnrichmentTotals(0, 0, 0, 0, 0)
        return EnrichmentTotals(
            live_total=int(row["live_total"]),
            enriched=int(row["enriched"]),
            unenriched=int(row["unenriched"]),
            without_reference=int(row["without_reference"]),
            enriched_with_reference=int(row["enriched_with_reference"]),
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise ConfigurationError("missing required configuration: BSE_DATABASE_URL")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _row_to_record(row: asyncpg.Record) -> BookshopRecord:
        return BookshopRecord(
            id=int(row["id"]),
            name=row["name"] or "",
            google_place_id=row["google_place_id"],
            google_data_updated_at=row["google_data_updated_at"],
            street=row["street"],
            city=row["city"],
            state=row["state"],
            zip=row["zip"],
            phone=row["phone"],
            website=row["website"],
        )


def _json_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value)


@lru_cache
def get_repository() -> PostgresBookshopRepository:
    settings = get_settings()
    return PostgresBookshopRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        page_size=settings.store_page_size,
    )
