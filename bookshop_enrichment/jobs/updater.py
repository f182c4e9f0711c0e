from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from bookshop_enrichment.jobs.normalize import EnrichedFields

logger = logging.getLogger(__name__)


async def apply_enrichment(
    store: Any,
    bookshop_id: int,
    fields: EnrichedFields,
    *,
    fetched_at: datetime | None = None,
    place_id: str | None = None,
) -> datetime:
    """Write every enriched field and the fetch timestamp in a single update.

    The full field set is always written, so applying the same fields again
    leaves the row in the same state. ``StoreWriteError`` propagates to the
    caller and the row is left untouched.
    """
    stamp = fetched_at or datetime.now(timezone.utc)
    await store.apply_enrichment(bookshop_id, fields, fetched_at=stamp, place_id=place_id)
    logger.debug("applied enrichment bookshop_id=%s fetched_at=%s", bookshop_id, stamp.isoformat())
    return stamp
