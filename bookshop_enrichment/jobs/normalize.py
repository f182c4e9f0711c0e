from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from bookshop_enrichment.services.places_client import PayloadShape, ProviderPayload

MAX_NESTED_ITEMS = 5

PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}


@dataclass(frozen=True, slots=True)
class EnrichedFields:
    """Provider data for one bookshop, ready to be written.

    ``None`` always means the provider had no data for the field.
    """

    rating: float | None = None
    review_count: int | None = None
    description: str | None = None
    photos: list[dict[str, Any]] | None = None
    reviews: list[dict[str, Any]] | None = None
    price_level: int | None = None
    phone: str | None = None
    website: str | None = None
    opening_hours: dict[str, Any] | None = None
    maps_url: str | None = None
    types: list[str] | None = None
    formatted_address: str | None = None
    business_status: str | None = None


def normalize_place(payload: ProviderPayload) -> EnrichedFields:
    return _NORMALIZERS[payload.shape](payload.data)


def _normalize_legacy(place: dict[str, Any]) -> EnrichedFields:
    return EnrichedFields(
        rating=_as_number(place.get("rating")),
        review_count=_as_count(place.get("user_ratings_total")),
        description=_as_text(_as_dict(place.get("editorial_summary")).get("overview")),
        photos=_cap([_photo(item.get("photo_reference")) for item in _as_dicts(place.get("photos"))]),
        reviews=_cap(
            [
                _review(
                    author_name=item.get("author_name"),
                    rating=item.get("rating"),
                    text=item.get("text"),
                    time=item.get("time"),
                )
                for item in _as_dicts(place.get("reviews"))
            ]
        ),
        price_level=_as_price_level(place.get("price_level")),
        phone=_as_text(place.get("formatted_phone_number")),
        website=_as_text(place.get("website")),
        opening_hours=_legacy_opening_hours(place.get("opening_hours")),
        maps_url=_as_text(place.get("url")),
        types=_as_text_list(place.get("types")),
        formatted_address=_as_text(place.get("formatted_address")),
        business_status=_as_text(place.get("business_status")),
    )


def _normalize_places_v1(place: dict[str, Any]) -> EnrichedFields:
    return EnrichedFields(
        rating=_as_number(place.get("rating")),
        review_count=_as_count(place.get("userRatingCount")),
        description=_as_text(_as_dict(place.get("editorialSummary")).get("text")),
        photos=_cap([_photo(item.get("name")) for item in _as_dicts(place.get("photos"))]),
        reviews=_cap(
            [
                _review(
                    author_name=_as_dict(item.get("authorAttribution")).get("displayName"),
                    rating=item.get("rating"),
                    text=_as_dict(item.get("text")).get("text"),
                    time=_epoch_seconds(item.get("publishTime")),
                )
                for item in _as_dicts(place.get("reviews"))
            ]
        ),
        price_level=_as_price_level(place.get("priceLevel")),
        phone=_as_text(place.get("nationalPhoneNumber")),
        website=_as_text(place.get("websiteUri")),
        opening_hours=_v1_opening_hours(place.get("regularOpeningHours")),
        maps_url=_as_text(place.get("googleMapsUri")),
        types=_as_text_list(place.get("types")),
        formatted_address=_as_text(place.get("formattedAddress")),
        business_status=_as_text(place.get("businessStatus")),
    )


_NORMALIZERS: dict[PayloadShape, Callable[[dict[str, Any]], EnrichedFields]] = {
    PayloadShape.LEGACY: _normalize_legacy,
    PayloadShape.PLACES_V1: _normalize_places_v1,
}


def _cap(items: list[dict[str, Any] | None]) -> list[dict[str, Any]] | None:
    kept = [item for item in items if item is not None][:MAX_NESTED_ITEMS]
    return kept or None


def _photo(reference: Any) -> dict[str, Any] | None:
    token = _as_text(reference)
    if token is None:
        return None
    return {"photo_reference": token}


def _review(*, author_name: Any, rating: Any, text: Any, time: Any) -> dict[str, Any] | None:
    review = {
        "author_name": _as_text(author_name),
        "rating": _as_number(rating),
        "text": _as_text(text),
        "time": time if isinstance(time, int) and not isinstance(time, bool) else None,
    }
    if review["text"] is None and review["rating"] is None:
        return None
    return review


def _legacy_opening_hours(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict) or not value:
        return None
    open_now = value.get("open_now")
    return {
        "open_now": open_now if isinstance(open_now, bool) else None,
        "weekday_text": _as_text_list(value.get("weekday_text")),
        "periods": _as_dicts(value.get("periods")) or None,
    }


def _v1_opening_hours(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict) or not value:
        return None
    open_now = value.get("openNow")
    periods = []
    for period in _as_dicts(value.get("periods")):
        converted = {}
        for key in ("open", "close"):
            point = _as_dict(period.get(key))
            if "day" not in point:
                continue
            converted[key] = {
                "day": point.get("day"),
                "time": f"{_as_int(point.get('hour')):02d}{_as_int(point.get('minute')):02d}",
            }
        if converted:
            periods.append(converted)
    return {
        "open_now": open_now if isinstance(open_now, bool) else None,
        "weekday_text": _as_text_list(value.get("weekdayDescriptions")),
        "periods": periods or None,
    }


def _as_price_level(value: Any) -> int | None:
    if isinstance(value, str):
        return PRICE_LEVELS.get(value)
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 4:
        return value
    return None


def _as_number(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def _as_count(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


def _as_int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _as_text_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    items = [item for item in value if isinstance(item, str) and item.strip()]
    return items or None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _epoch_seconds(value: Any) -> int | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())
