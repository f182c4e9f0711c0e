from __future__ import annotations

from dataclasses import fields as dataclass_fields
from datetime import datetime
from typing import Any

from bookshop_enrichment.jobs.normalize import EnrichedFields
from bookshop_enrichment.services.repository import BookshopRecord, EnrichmentTotals, StoreWriteError

RECORD_KEYS = {field.name for field in dataclass_fields(BookshopRecord)}


class InMemoryBookshopStore:
    """Dict-backed stand-in for ``PostgresBookshopRepository``.

    Rows use the same column names as the ``bookstores`` table. Writes replace
    the whole row in one assignment, so a rejected write leaves no trace.
    """

    def __init__(self, rows: list[dict[str, Any]] | None = None, *, page_size: int = 1000) -> None:
        self.page_size = max(1, page_size)
        self.rows: dict[int, dict[str, Any]] = {}
        self.rejected_ids: set[int] = set()
        self.write_count = 0
        for row in rows or []:
            self.add_bookshop(**row)

    def add_bookshop(self, *, id: int, name: str, live: bool = True, **columns: Any) -> dict[str, Any]:
        row = {
            "id": id,
            "name": name,
            "live": live,
            "google_place_id": None,
            "google_data_updated_at": None,
            **columns,
        }
        self.rows[id] = row
        return row

    async def ensure_ready(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def fetch_stale_page(
        self,
        *,
        stale_before: datetime,
        after_id: int | None,
        limit: int,
        include_unreferenced: bool = False,
    ) -> list[BookshopRecord]:
        matches = [
            row
            for row in sorted(self.rows.values(), key=lambda item: item["id"])
            if row.get("live")
            and (include_unreferenced or row.get("google_place_id") is not None)
            and (row.get("google_data_updated_at") is None or row["google_data_updated_at"] < stale_before)
            and (after_id is None or row["id"] > after_id)
        ]
        return [self._to_record(row) for row in matches[: max(1, limit)]]

    async def apply_enrichment(
        self,
        bookshop_id: int,
        fields: EnrichedFields,
        *,
        fetched_at: datetime,
        place_id: str | None = None,
    ) -> None:
        current = self.rows.get(bookshop_id)
        if current is None:
            raise StoreWriteError(f"bookshop {bookshop_id} not found")
        if bookshop_id in self.rejected_ids:
            raise StoreWriteError(f"update rejected for bookshop {bookshop_id}")

        updated = {
            **current,
            "google_place_id": place_id if place_id is not None else current.get("google_place_id"),
            "google_rating": None if fields.rating is None else str(fields.rating),
            "google_review_count": fields.review_count,
            "google_description": fields.description,
            "google_photos": fields.photos,
            "google_reviews": fields.reviews,
            "google_price_level": fields.price_level,
            "formatted_phone": fields.phone,
            "website_verified": fields.website,
            "opening_hours_json": fields.opening_hours,
            "google_maps_url": fields.maps_url,
            "google_types": fields.types,
            "formatted_address_google": fields.formatted_address,
            "business_status": fields.business_status,
            "google_data_updated_at": fetched_at,
            "contact_data_fetched_at": fetched_at,
        }
        self.rows[bookshop_id] = updated
        self.write_count += 1

    async def list_unenriched_bookshops(self) -> list[BookshopRecord]:
        rows = [row for row in self.rows.values() if row.get("live") and row.get("google_data_updated_at") is None]
        rows.sort(key=lambda row: (row["name"], row["id"]))
        return [self._to_record(row) for row in rows]

    async def count_enrichment_totals(self) -> EnrichmentTotals:
        live = [row for row in self.rows.values() if row.get("live")]
        enriched = [row for row in live if row.get("google_data_updated_at") is not None]
        return EnrichmentTotals(
            live_total=len(live),
            enriched=len(enriched),
            unenriched=len(live) - len(enriched),
            without_reference=sum(1 for row in live if row.get("google_place_id") is None),
            enriched_with_reference=sum(1 for row in enriched if row.get("google_place_id") is not None),
        )

    @staticmethod
    def _to_record(row: dict[str, Any]) -> BookshopRecord:
        return BookshopRecord(**{key: value for key, value in row.items() if key in RECORD_KEYS})
