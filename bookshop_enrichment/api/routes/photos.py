import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from bookshop_enrichment.api.routes.cron import get_provider_http_client
from bookshop_enrichment.core.config import ConfigurationError, Settings, get_settings, require_provider_key
from bookshop_enrichment.core.references import ValidationError, classify_photo_reference
from bookshop_enrichment.services.places_client import (
    PlacesClient,
    ProviderError,
    ProviderErrorReason,
    parse_max_width,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/place-photo")
async def place_photo(
    photo_reference: str | None = Query(default=None),
    maxwidth: str | None = Query(default=None),
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_provider_http_client),
) -> Response:
    try:
        width = parse_max_width(maxwidth, maximum=settings.photo_max_width, default=settings.photo_default_width)
        reference = classify_photo_reference(photo_reference)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        api_key = require_provider_key(settings)
    except ConfigurationError as exc:
        logger.error("photo proxy unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        ) from exc

    client = PlacesClient(api_key, http_client=http_client, max_photo_width=settings.photo_max_width)
    try:
        photo = await client.fetch_photo(reference, width)
    except ProviderError as exc:
        if exc.reason is ProviderErrorReason.HTTP_ERROR and exc.status_code is not None:
            raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.detail) from exc

    return Response(
        content=photo.content,
        media_type=photo.content_type,
        headers={"Cache-Control": photo.cache_control},
    )
