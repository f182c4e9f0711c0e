from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from bookshop_enrichment import cli
from bookshop_enrichment.core.config import Settings
from bookshop_enrichment.jobs.refresh import run_refresh_job
from bookshop_enrichment.jobs.reports import FAILURE_CSV_HEADERS, NO_REFERENCE_REASON
from bookshop_enrichment.services.store import InMemoryBookshopStore


def _install(monkeypatch: pytest.MonkeyPatch, store: InMemoryBookshopStore, **settings: Any) -> None:
    settings.setdefault("database_url", "postgresql://localhost/bookshops")
    configured = Settings(otel_enabled=False, refresh_pacing_seconds=0.0, **settings)
    monkeypatch.setattr(cli, "get_settings", lambda: configured)
    monkeypatch.setattr(cli, "build_repository", lambda _: store)


def _store() -> InMemoryBookshopStore:
    store = InMemoryBookshopStore()
    store.add_bookshop(id=1, name="Zephyr Books", city="Tulsa", google_place_id="ChIJz")
    store.add_bookshop(id=2, name="Atlas Books", city="Omaha")
    store.add_bookshop(id=3, name="Harbor Books", google_place_id="ChIJd")
    store.add_bookshop(id=4, name="Gone Books", live=False)
    return store


def test_refresh_without_provider_key_exits_with_configuration_code(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    store = _store()
    _install(monkeypatch, store, google_places_api_key=None)

    assert cli.main(["refresh"]) == cli.EXIT_CONFIGURATION
    assert "BSE_GOOGLE_PLACES_API_KEY" in capsys.readouterr().err
    assert store.write_count == 0


def test_refresh_with_nothing_stale(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    _install(monkeypatch, InMemoryBookshopStore(), google_places_api_key="test-key")

    assert cli.main(["refresh", "--batch-size", "5"]) == cli.EXIT_OK
    assert "total=0 refreshed=0 failed=0 skipped=0" in capsys.readouterr().out


def test_refresh_writes_failures_csv(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    store = _store()
    _install(monkeypatch, store, google_places_api_key="test-key")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("place_id") == "ChIJz":
            return httpx.Response(500, request=request)
        return httpx.Response(200, json={"status": "OK", "result": {"rating": 4.0}}, request=request)

    async def run_with_mock_transport(settings: Settings, **kwargs: Any):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await run_refresh_job(settings, http_client=http_client, **kwargs)

    monkeypatch.setattr(cli, "run_refresh_job", run_with_mock_transport)
    output = tmp_path / "failures.csv"

    assert cli.main(["refresh", "--staleness-days", "30", "--failures-csv", str(output)]) == cli.EXIT_OK

    stdout = capsys.readouterr().out
    assert "total=2 refreshed=1 failed=1 skipped=0" in stdout
    rows = list(csv.reader(output.read_text(encoding="utf-8").splitlines()))
    assert tuple(rows[0]) == FAILURE_CSV_HEADERS
    assert rows[1][0] == "1"
    assert rows[1][-1].startswith("provider-error: http-error")
    assert store.rows[3]["google_rating"] == "4.0"


def test_failures_command_lists_unenriched_live_bookshops(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    _install(monkeypatch, _store())
    output = tmp_path / "unenriched.csv"

    assert cli.main(["failures", "--output", str(output)]) == cli.EXIT_OK

    rows = list(csv.reader(output.read_text(encoding="utf-8").splitlines()))
    assert [row[1] for row in rows[1:]] == ["Atlas Books", "Harbor Books", "Zephyr Books"]
    assert rows[1][-1] == NO_REFERENCE_REASON
    assert "unenriched=3 without_place_id=1 details_failed=2" in capsys.readouterr().err


def test_failures_command_defaults_to_stdout(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    _install(monkeypatch, _store())

    assert cli.main(["failures"]) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert out.splitlines()[0] == ",".join(FAILURE_CSV_HEADERS)


def test_costs_command_prints_estimate(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    store = _store()
    store.rows[3]["google_data_updated_at"] = datetime(2026, 1, 1, tzinfo=timezone.utc)
    _install(monkeypatch, store)

    assert cli.main(["costs"]) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert "  Total live bookshops: 3" in out
    assert "  Find Place From Text: 1" in out
    assert "  Place Details: 1" in out


def test_store_without_database_url_exits_with_configuration_code(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    configured = Settings(otel_enabled=False, database_url=None)
    monkeypatch.setattr(cli, "get_settings", lambda: configured)

    assert cli.main(["costs"]) == cli.EXIT_CONFIGURATION
    assert "BSE_DATABASE_URL" in capsys.readouterr().err
