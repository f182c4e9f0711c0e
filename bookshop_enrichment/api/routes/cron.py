from collections.abc import AsyncIterator
from datetime import timedelta
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status

from bookshop_enrichment.core.config import ConfigurationError, Settings, get_settings
from bookshop_enrichment.core.security import require_cron_secret
from bookshop_enrichment.jobs.refresh import run_refresh_job
from bookshop_enrichment.schemas.refresh import FailureOut, RefreshSummaryOut
from bookshop_enrichment.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


async def get_provider_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds, follow_redirects=True) as client:
        yield client


@router.get(
    "/refresh-google-photos",
    response_model=RefreshSummaryOut,
    dependencies=[Depends(require_cron_secret)],
)
async def refresh_google_photos(
    batch_size: int | None = Query(default=None, ge=1, le=1000),
    staleness_days: int | None = Query(default=None, ge=0),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    http_client: httpx.AsyncClient = Depends(get_provider_http_client),
) -> RefreshSummaryOut:
    try:
        tracker = await run_refresh_job(
            settings,
            store=repository,
            batch_size=batch_size,
            staleness_window=None if staleness_days is None else timedelta(days=staleness_days),
            http_client=http_client,
        )
    except ConfigurationError as exc:
        logger.error("refresh aborted: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    summary = tracker.summary()
    if summary.total == 0:
        message = "No stale bookshops to refresh"
    else:
        message = f"Refreshed {summary.refreshed} of {summary.total} bookshops"
    if summary.interrupted:
        message = f"{message}; stopped early: {summary.interrupted}"
    return RefreshSummaryOut(
        refreshed=summary.refreshed,
        failed=summary.failed,
        skipped=summary.skipped,
        total=summary.total,
        counts=summary.counts,
        failures=[
            FailureOut(
                id=outcome.record.id,
                name=outcome.record.name,
                city=outcome.record.city,
                state=outcome.record.state,
                google_place_id=outcome.record.google_place_id,
                status=outcome.status.value,
                detail=outcome.detail,
            )
            for outcome in tracker.failures()
        ],
        message=message,
        interrupted=summary.interrupted,
    )
