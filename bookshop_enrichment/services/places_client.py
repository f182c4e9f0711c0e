from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx

from bookshop_enrichment.core.config import Settings, require_provider_key
from bookshop_enrichment.core.references import (
    LegacyReference,
    ProviderReference,
    ResourceName,
    ValidationError,
    classify_photo_reference,
    classify_place_reference,
)

logger = logging.getLogger(__name__)

LEGACY_BASE_URL = "https://maps.googleapis.com/maps/api/place"
PLACES_V1_BASE_URL = "https://places.googleapis.com/v1"
USER_AGENT = "IndieBookShop/1.0"
PHOTO_CACHE_CONTROL = "public, max-age=86400, s-maxage=86400"

LEGACY_DETAIL_FIELDS = (
    "place_id",
    "rating",
    "user_ratings_total",
    "editorial_summary",
    "photos",
    "reviews",
    "price_level",
    "formatted_phone_number",
    "website",
    "opening_hours",
    "url",
    "types",
    "formatted_address",
    "business_status",
)
PLACES_V1_FIELD_MASK = (
    "id",
    "rating",
    "userRatingCount",
    "editorialSummary",
    "photos",
    "reviews",
    "priceLevel",
    "nationalPhoneNumber",
    "websiteUri",
    "regularOpeningHours",
    "googleMapsUri",
    "types",
    "formattedAddress",
    "businessStatus",
)
EMPTY_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}


class ProviderErrorReason(str, Enum):
    HTTP_ERROR = "http-error"
    BAD_CONTENT_TYPE = "bad-content-type"
    PARSE_ERROR = "parse-error"
    EMPTY = "empty"
    NETWORK_ERROR = "network-error"


class ProviderError(Exception):
    def __init__(self, reason: ProviderErrorReason, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{reason.value}: {detail}")
        self.reason = reason
        self.detail = detail
        self.status_code = status_code


class PayloadShape(str, Enum):
    LEGACY = "legacy"
    PLACES_V1 = "places_v1"


@dataclass(frozen=True, slots=True)
class ProviderPayload:
    shape: PayloadShape
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class PhotoResponse:
    content: bytes
    content_type: str
    cache_control: str = PHOTO_CACHE_CONTROL


class PlacesClient:
    """Google Places client with a fixed pause after every call.

    The pause runs whether the call succeeded or not: the quota is per API key
    per unit of time, so failed calls count too. Calls are never retried here.
    """

    def __init__(
        self,
        api_key: str,
        *,
        http_client: httpx.AsyncClient,
        pacing_seconds: float = 0.0,
        max_photo_width: int = 1600,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        legacy_base_url: str = LEGACY_BASE_URL,
        v1_base_url: str = PLACES_V1_BASE_URL,
    ) -> None:
        self.api_key = api_key
        self.pacing_seconds = max(0.0, pacing_seconds)
        self.max_photo_width = max_photo_width
        self.legacy_base_url = legacy_base_url.rstrip("/")
        self.v1_base_url = v1_base_url.rstrip("/")
        self.calls = 0
        self._http = http_client
        self._sleep = sleep

    @property
    def _encoded_key(self) -> str:
        return quote(self.api_key, safe="")

    async def fetch_place_details(self, reference: ProviderReference | str) -> ProviderPayload:
        if isinstance(reference, str):
            reference = classify_place_reference(reference)
        elif isinstance(reference, ResourceName) and reference.is_photo:
            raise ValidationError("resource name identifies a photo, not a place")

        if isinstance(reference, ResourceName):
            response = await self._paced_get(
                f"{self.v1_base_url}/{reference.resource_path}",
                headers={
                    "X-Goog-Api-Key": self.api_key,
                    "X-Goog-FieldMask": ",".join(PLACES_V1_FIELD_MASK),
                },
            )
            body = _decode_json(response)
            if not body:
                raise ProviderError(ProviderErrorReason.EMPTY, f"no place data for {reference.path}")
            return ProviderPayload(shape=PayloadShape.PLACES_V1, data=body)

        response = await self._paced_get(
            f"{self.legacy_base_url}/details/json?place_id={reference.encoded}"
            f"&fields={','.join(LEGACY_DETAIL_FIELDS)}&key={self._encoded_key}"
        )
        body = _decode_json(response)
        _raise_for_provider_status(body)
        result = body.get("result")
        if result is None or result == {}:
            raise ProviderError(ProviderErrorReason.EMPTY, "provider returned no result")
        if not isinstance(result, dict):
            raise ProviderError(ProviderErrorReason.PARSE_ERROR, "result is not an object")
        return ProviderPayload(shape=PayloadShape.LEGACY, data=result)

    async def find_place_reference(self, query: str) -> LegacyReference | None:
        if not query.strip():
            raise ValidationError("lookup query must be a non-empty string")

        response = await self._paced_get(
            f"{self.legacy_base_url}/findplacefromtext/json",
            params={
                "input": query.strip(),
                "inputtype": "textquery",
                "fields": "place_id",
                "key": self.api_key,
            },
        )
        body = _decode_json(response)
        if body.get("status") in EMPTY_STATUSES:
            return None
        _raise_for_provider_status(body)
        candidates = body.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return None
        place_id = candidates[0].get("place_id")
        if not isinstance(place_id, str) or not place_id.strip():
            return None
        return LegacyReference(token=place_id.strip())

    async def fetch_photo(self, reference: ProviderReference | str | None, max_width: int | str | None) -> PhotoResponse:
        width = parse_max_width(max_width, maximum=self.max_photo_width)
        if not isinstance(reference, (LegacyReference, ResourceName)):
            reference = classify_photo_reference(reference)

        if isinstance(reference, ResourceName):
            url = f"{self.v1_base_url}/{reference.media_path}?maxWidthPx={width}&key={self._encoded_key}"
        else:
            url = (
                f"{self.legacy_base_url}/photo?maxwidth={width}"
                f"&photo_reference={reference.encoded}&key={self._encoded_key}"
            )

        response = await self._paced_get(url, headers={"User-Agent": USER_AGENT})
        if not response.is_success:
            logger.error("photo request failed status=%s body=%s", response.status_code, response.text[:200])
            raise ProviderError(
                ProviderErrorReason.HTTP_ERROR,
                f"Google API returned status {response.status_code}",
                status_code=response.status_code,
            )
        content_type = response.headers.get("content-type", "")
        if not content_type.lower().startswith("image/"):
            raise ProviderError(ProviderErrorReason.BAD_CONTENT_TYPE, f"non-image content type {content_type!r}")
        if not response.content:
            raise ProviderError(ProviderErrorReason.EMPTY, "photo body is empty")
        return PhotoResponse(content=response.content, content_type=content_type)

    async def _paced_get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return await self._http.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(ProviderErrorReason.NETWORK_ERROR, "provider request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(ProviderErrorReason.NETWORK_ERROR, f"provider request failed: {exc}") from exc
        finally:
            self.calls += 1
            if self.pacing_seconds:
                await self._sleep(self.pacing_seconds)


def parse_max_width(raw: int | str | None, *, maximum: int, default: int = 400) -> int:
    if raw is None or raw == "":
        width = default
    elif isinstance(raw, int) and not isinstance(raw, bool):
        width = raw
    else:
        try:
            width = int(str(raw).strip())
        except ValueError as exc:
            raise ValidationError(f"maxwidth must be between 1 and {maximum}") from exc
    if width < 1 or width > maximum:
        raise ValidationError(f"maxwidth must be between 1 and {maximum}")
    return width


def _decode_json(response: httpx.Response) -> dict[str, Any]:
    if not response.is_success:
        raise ProviderError(
            ProviderErrorReason.HTTP_ERROR,
            f"provider returned status {response.status_code}",
            status_code=response.status_code,
        )
    content_type = response.headers.get("content-type", "")
    if "json" not in content_type.lower():
        raise ProviderError(ProviderErrorReason.BAD_CONTENT_TYPE, f"unexpected content type {content_type!r}")
    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderError(ProviderErrorReason.PARSE_ERROR, "response body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise ProviderError(ProviderErrorReason.PARSE_ERROR, "response body is not an object")
    return body


def _raise_for_provider_status(body: dict[str, Any]) -> None:
    status = body.get("status")
    if status == "OK":
        return
    if status in EMPTY_STATUSES:
        raise ProviderError(ProviderErrorReason.EMPTY, f"provider status {status}")
    message = body.get("error_message")
    detail = f"provider status {status}" + (f": {message}" if isinstance(message, str) and message else "")
    raise ProviderError(ProviderErrorReason.HTTP_ERROR, detail)


@asynccontextmanager
async def open_places_client(
    settings: Settings,
    *,
    pacing_seconds: float | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncIterator[PlacesClient]:
    api_key = require_provider_key(settings)
    pacing = settings.refresh_pacing_seconds if pacing_seconds is None else pacing_seconds

    if http_client is not None:
        yield PlacesClient(
            api_key,
            http_client=http_client,
            pacing_seconds=pacing,
            max_photo_width=settings.photo_max_width,
        )
        return

    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds, follow_redirects=True) as temp_client:
        yield PlacesClient(
            api_key,
            http_client=temp_client,
            pacing_seconds=pacing,
            max_photo_width=settings.photo_max_width,
        )
