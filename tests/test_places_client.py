from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest

from bookshop_enrichment.core.references import LegacyReference, ResourceName, ValidationError
from bookshop_enrichment.services.places_client import (
    PHOTO_CACHE_CONTROL,
    PayloadShape,
    PlacesClient,
    ProviderError,
    ProviderErrorReason,
    parse_max_width,
)

Handler = Callable[[httpx.Request], Awaitable[httpx.Response]]


def _run(handler: Handler, action: Callable[[PlacesClient], Awaitable[Any]], *, pacing: float = 0.0):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async def run() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = PlacesClient(
                "test-key",
                http_client=http_client,
                pacing_seconds=pacing,
                sleep=fake_sleep,
            )
            return await action(client)

    return asyncio.run(run()), sleeps


def _details_body(**result: Any) -> dict[str, Any]:
    return {"status": "OK", "result": {"place_id": "ChIJabc", "rating": 4.6, **result}}


def test_legacy_details_use_encoded_place_id_and_key() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_details_body(), request=request)

    payload, _ = _run(handler, lambda client: client.fetch_place_details("ChIJ/abc+1"))

    assert payload.shape is PayloadShape.LEGACY
    assert payload.data["rating"] == 4.6
    request = seen[0]
    assert request.url.host == "maps.googleapis.com"
    assert request.url.path == "/maps/api/place/details/json"
    assert b"place_id=ChIJ%2Fabc%2B1" in request.url.query
    assert request.url.params["key"] == "test-key"
    assert "editorial_summary" in request.url.params["fields"]


def test_resource_name_details_use_places_v1_endpoint() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "ChIJabc", "rating": 4.1}, request=request)

    payload, _ = _run(handler, lambda client: client.fetch_place_details("places/ChIJabc"))

    assert payload.shape is PayloadShape.PLACES_V1
    request = seen[0]
    assert request.url.host == "places.googleapis.com"
    assert request.url.path == "/v1/places/ChIJabc"
    assert request.headers["X-Goog-Api-Key"] == "test-key"
    assert "userRatingCount" in request.headers["X-Goog-FieldMask"]


def test_http_403_maps_to_http_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": "denied"}, request=request)

    with pytest.raises(ProviderError) as exc_info:
        _run(handler, lambda client: client.fetch_place_details("ChIJabc"))

    assert exc_info.value.reason is ProviderErrorReason.HTTP_ERROR
    assert exc_info.value.status_code == 403


def test_non_json_content_type_maps_to_bad_content_type() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>quota page</html>", headers={"content-type": "text/html"}, request=request)

    with pytest.raises(ProviderError) as exc_info:
        _run(handler, lambda client: client.fetch_place_details("ChIJabc"))

    assert exc_info.value.reason is ProviderErrorReason.BAD_CONTENT_TYPE


def test_malformed_json_maps_to_parse_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=b'{"status": "OK", "result": ',
            headers={"content-type": "application/json"},
            request=request,
        )

    with pytest.raises(ProviderError) as exc_info:
        _run(handler, lambda client: client.fetch_place_details("ChIJabc"))

    assert exc_info.value.reason is ProviderErrorReason.PARSE_ERROR


@pytest.mark.parametrize(
    "body",
    [
        {"status": "NOT_FOUND"},
        {"status": "ZERO_RESULTS"},
        {"status": "OK", "result": {}},
        {"status": "OK"},
    ],
)
def test_missing_result_maps_to_empty(body: dict[str, Any]) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body, request=request)

    with pytest.raises(ProviderError) as exc_info:
        _run(handler, lambda client: client.fetch_place_details("ChIJabc"))

    assert exc_info.value.reason is ProviderErrorReason.EMPTY


def test_provider_denied_status_maps_to_http_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"}, request=request)

    with pytest.raises(ProviderError) as exc_info:
        _run(handler, lambda client: client.fetch_place_details("ChIJabc"))

    assert exc_info.value.reason is ProviderErrorReason.HTTP_ERROR
    assert "REQUEST_DENIED" in exc_info.value.detail


def test_timeout_maps_to_network_error_and_still_paces() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async def action(client: PlacesClient) -> ProviderErrorReason | None:
        try:
            await client.fetch_place_details("ChIJabc")
        except ProviderError as exc:
            return exc.reason
        return None

    reason, sleeps = _run(handler, action, pacing=0.1)

    assert reason is ProviderErrorReason.NETWORK_ERROR
    assert sleeps == [0.1]


def test_pacing_applies_after_every_call_success_or_failure() -> None:
    statuses = iter([200, 500, 200])

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses), json=_details_body(), request=request)

    async def action(client: PlacesClient) -> list[str]:
        results = []
        for _ in range(3):
            try:
                await client.fetch_place_details("ChIJabc")
                results.append("ok")
            except ProviderError as exc:
                results.append(exc.reason.value)
        assert client.calls == 3
        return results

    results, sleeps = _run(handler, action, pacing=0.1)

    assert results == ["ok", "http-error", "ok"]
    assert sleeps == [0.1, 0.1, 0.1]


def test_find_place_reference_returns_first_candidate() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "OK", "candidates": [{"place_id": "ChIJfound"}]}, request=request)

    reference, _ = _run(handler, lambda client: client.find_place_reference("Powell's Books 1005 W Burnside Portland OR"))

    assert reference == LegacyReference(token="ChIJfound")
    assert seen[0].url.path == "/maps/api/place/findplacefromtext/json"
    assert seen[0].url.params["input"] == "Powell's Books 1005 W Burnside Portland OR"
    assert seen[0].url.params["inputtype"] == "textquery"


def test_find_place_reference_zero_results_is_none() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ZERO_RESULTS", "candidates": []}, request=request)

    reference, _ = _run(handler, lambda client: client.find_place_reference("Nowhere Books"))
    assert reference is None


def test_fetch_photo_legacy_reference() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"}, request=request)

    photo, _ = _run(handler, lambda client: client.fetch_photo("AapPhotoRef123/x", "800"))

    assert photo.content == b"\xff\xd8jpeg"
    assert photo.content_type == "image/jpeg"
    assert photo.cache_control == PHOTO_CACHE_CONTROL
    request = seen[0]
    assert request.url.path == "/maps/api/place/photo"
    assert request.url.params["maxwidth"] == "800"
    assert b"photo_reference=AapPhotoRef123%2Fx" in request.url.query
    assert request.headers["User-Agent"] == "IndieBookShop/1.0"


def test_fetch_photo_resource_name_gets_media_suffix() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"png", headers={"content-type": "image/png"}, request=request)

    _run(handler, lambda client: client.fetch_photo("places/ChIJabc/photos/AXCi2Q6", None))

    request = seen[0]
    assert request.url.host == "places.googleapis.com"
    assert request.url.path == "/v1/places/ChIJabc/photos/AXCi2Q6/media"
    assert request.url.params["maxWidthPx"] == "400"


def test_fetch_photo_rejects_non_image_content() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "nope"}, request=request)

    with pytest.raises(ProviderError) as exc_info:
        _run(handler, lambda client: client.fetch_photo("AapPhotoRef123", 400))

    assert exc_info.value.reason is ProviderErrorReason.BAD_CONTENT_TYPE


@pytest.mark.parametrize(
    ("reference", "width"),
    [
        ("AapPhotoRef123", 0),
        ("AapPhotoRef123", -5),
        ("AapPhotoRef123", 1601),
        ("AapPhotoRef123", "wide"),
        ("short", 400),
        (None, 400),
    ],
)
def test_fetch_photo_validation_makes_no_network_call(reference: str | None, width: Any) -> None:
    calls: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=b"img", headers={"content-type": "image/jpeg"}, request=request)

    with pytest.raises(ValidationError):
        _run(handler, lambda client: client.fetch_photo(reference, width), pacing=0.1)

    assert calls == []


def test_parse_max_width_defaults_and_bounds() -> None:
    assert parse_max_width(None, maximum=1600) == 400
    assert parse_max_width("", maximum=1600) == 400
    assert parse_max_width("1600", maximum=1600) == 1600
    assert parse_max_width(1, maximum=1600) == 1
    with pytest.raises(ValidationError, match="between 1 and 1600"):
        parse_max_width(1601, maximum=1600)


@pytest.mark.parametrize(
    "reference",
    ["places/ChIJabc/photos/AXCi2Q6", ResourceName(path="places/ChIJabc/photos/AXCi2Q6")],
)
def test_place_details_reject_photo_resource_names_without_a_call(reference: str | ResourceName) -> None:
    calls: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"id": "ChIJabc"}, request=request)

    with pytest.raises(ValidationError, match="identifies a photo"):
        _run(handler, lambda client: client.fetch_place_details(reference), pacing=0.1)

    assert calls == []
