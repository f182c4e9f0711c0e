from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from typing import Any

from bookshop_enrichment.services.repository import BookshopRecord


async def select_candidates(
    store: Any,
    *,
    batch_size: int,
    staleness_window: timedelta,
    now: datetime | None = None,
    include_unreferenced: bool = False,
) -> AsyncIterator[BookshopRecord]:
    """Yield live bookshops due for a refresh, ascending by id, at most ``batch_size``.

    Pages are read lazily with keyset pagination on ``id``. Calling this again
    starts over; rows enriched in the meantime are no longer selected.
    """
    current = now or datetime.now(timezone.utc)
    stale_before = current - staleness_window
    remaining = max(0, batch_size)
    after_id: int | None = None

    while remaining > 0:
        limit = min(remaining, store.page_size)
        page = await store.fetch_stale_page(
            stale_before=stale_before,
            after_id=after_id,
            limit=limit,
            include_unreferenced=include_unreferenced,
        )
        for record in page[:remaining]:
            yield record
        remaining -= len(page)
        if len(page) < limit:
            return
        after_id = page[-1].id
