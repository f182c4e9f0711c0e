from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import httpx

from bookshop_enrichment.core.config import Settings, require_provider_key
from bookshop_enrichment.core.references import ProviderReference, ValidationError, classify_place_reference
from bookshop_enrichment.core.telemetry import (
    candidate_span,
    enrichment_run_span,
    record_candidate_outcome,
    record_run_summary,
)
from bookshop_enrichment.jobs.normalize import normalize_place
from bookshop_enrichment.jobs.outcomes import Outcome, OutcomeStatus, OutcomeTracker
from bookshop_enrichment.jobs.selector import select_candidates
from bookshop_enrichment.jobs.updater import apply_enrichment
from bookshop_enrichment.services.places_client import (
    PlacesClient,
    ProviderError,
    ProviderErrorReason,
    open_places_client,
)
from bookshop_enrichment.services.repository import BookshopRecord, RepositoryError

logger = logging.getLogger(__name__)


async def refresh_stale_bookshops(
    *,
    store: Any,
    client: PlacesClient,
    batch_size: int,
    staleness_window: timedelta,
    now: datetime | None = None,
    resolve_missing: bool = False,
) -> OutcomeTracker:
    """Refresh one bounded batch of stale bookshops, one at a time.

    Failures are recorded per bookshop and never stop the batch. If the store
    stops answering page reads after some bookshops were processed, the run
    ends there and the tracker is marked interrupted; a read failure before
    any bookshop was processed propagates.
    """
    tracker = OutcomeTracker()
    with enrichment_run_span(
        batch_size=batch_size,
        staleness_window=staleness_window,
        resolve_missing=resolve_missing,
    ) as run_span:
        try:
            async for record in select_candidates(
                store,
                batch_size=batch_size,
                staleness_window=staleness_window,
                now=now,
                include_unreferenced=resolve_missing,
            ):
                with candidate_span(record.id, has_reference=record.google_place_id is not None) as span:
                    outcome = await _process_candidate(
                        record,
                        store=store,
                        client=client,
                        tracker=tracker,
                        resolve_missing=resolve_missing,
                    )
                    record_candidate_outcome(
                        span,
                        status=outcome.status.value,
                        detail=outcome.detail,
                        failed=outcome.failed,
                    )
                    log = logger.info if outcome.status is OutcomeStatus.ENRICHED else logger.warning
                    log(
                        "bookshop_id=%s name=%r status=%s detail=%s",
                        record.id,
                        record.name,
                        outcome.status.value,
                        outcome.detail,
                    )
        except RepositoryError as exc:
            if not tracker.outcomes:
                raise
            tracker.interrupt(str(exc))
            logger.error("refresh interrupted after %s bookshops: %s", len(tracker.outcomes), exc)

        summary = tracker.summary()
        record_run_summary(run_span, summary)
    logger.info(
        "refresh complete total=%s refreshed=%s failed=%s skipped=%s provider_calls=%s",
        summary.total,
        summary.refreshed,
        summary.failed,
        summary.skipped,
        client.calls,
    )
    return tracker


async def _process_candidate(
    record: BookshopRecord,
    *,
    store: Any,
    client: PlacesClient,
    tracker: OutcomeTracker,
    resolve_missing: bool,
) -> Outcome:
    resolved_place_id: str | None = None
    reference: ProviderReference | None

    if record.google_place_id is None:
        if not resolve_missing:
            return tracker.record(record, OutcomeStatus.SKIPPED_NO_REFERENCE, "no google_place_id")
        try:
            reference = await client.find_place_reference(record.search_query)
        except ValidationError as exc:
            return tracker.record(record, OutcomeStatus.SKIPPED_NO_REFERENCE, str(exc))
        except ProviderError as exc:
            return tracker.record(record, OutcomeStatus.PROVIDER_ERROR, f"lookup {exc}")
        if reference is None:
            return tracker.record(record, OutcomeStatus.EMPTY_RESULT, "lookup found no matching place")
        resolved_place_id = reference.token
    else:
        try:
            reference = classify_place_reference(record.google_place_id)
        except ValidationError as exc:
            return tracker.record(record, OutcomeStatus.PROVIDER_ERROR, f"invalid reference: {exc}")

    try:
        payload = await client.fetch_place_details(reference)
    except ProviderError as exc:
        status = OutcomeStatus.EMPTY_RESULT if exc.reason is ProviderErrorReason.EMPTY else OutcomeStatus.PROVIDER_ERROR
        return tracker.record(record, status, str(exc))

    fields = normalize_place(payload)
    try:
        await apply_enrichment(store, record.id, fields, place_id=resolved_place_id)
    except RepositoryError as exc:
        return tracker.record(record, OutcomeStatus.PROVIDER_ERROR, f"store-write: {exc}")

    return tracker.record(record, OutcomeStatus.ENRICHED)


async def run_refresh_job(
    settings: Settings,
    *,
    store: Any,
    batch_size: int | None = None,
    staleness_window: timedelta | None = None,
    pacing_seconds: float | None = None,
    resolve_missing: bool | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> OutcomeTracker:
    """Check configuration, open a client for this run only and refresh one batch.

    ``ConfigurationError`` is raised before any bookshop is touched.
    """
    require_provider_key(settings)
    await store.ensure_ready()

    async with open_places_client(settings, pacing_seconds=pacing_seconds, http_client=http_client) as client:
        return await refresh_stale_bookshops(
            store=store,
            client=client,
            batch_size=settings.refresh_batch_size if batch_size is None else batch_size,
            staleness_window=settings.staleness_window if staleness_window is None else staleness_window,
            resolve_missing=settings.resolve_missing_references if resolve_missing is None else resolve_missing,
        )
