from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TextIO

from bookshop_enrichment.jobs.outcomes import Outcome
from bookshop_enrichment.services.repository import BookshopRecord, EnrichmentTotals

FAILURE_CSV_HEADERS = (
    "ID",
    "Name",
    "Street",
    "City",
    "State",
    "ZIP",
    "Phone",
    "Website",
    "Has Google Place ID",
    "Google Place ID",
    "Google Data Updated At",
    "Failure Reason",
)

# Best-effort labels: the store keeps no failure reason, only which fields are null.
NO_REFERENCE_REASON = "Could not find Google Place ID - bookshop may not exist in Google Places database"
DETAILS_FAILED_REASON = "Found Place ID but failed to fetch details - API may have returned error or no data"

FIND_PLACE_FROM_TEXT_SKU = "Places.FindPlaceFromText"
PLACE_DETAILS_SKU = "Places.PlaceDetails"
PRICE_PER_1000_USD = {
    FIND_PLACE_FROM_TEXT_SKU: 17.00,
    PLACE_DETAILS_SKU: 17.00,
}
MONTHLY_CREDIT_USD = 200.00


@dataclass(frozen=True, slots=True)
class FailureRow:
    record: BookshopRecord
    reason: str

    def as_csv_row(self) -> list[str]:
        record = self.record
        updated_at = record.google_data_updated_at
        return [
            str(record.id),
            record.name,
            record.street or "",
            record.city or "",
            record.state or "",
            record.zip or "",
            record.phone or "",
            record.website or "",
            "yes" if record.google_place_id else "no",
            record.google_place_id or "",
            updated_at.isoformat() if updated_at is not None else "",
            self.reason,
        ]


def failure_rows_from_outcomes(outcomes: Iterable[Outcome]) -> list[FailureRow]:
    rows = []
    for outcome in outcomes:
        if not outcome.failed:
            continue
        reason = outcome.status.value if not outcome.detail else f"{outcome.status.value}: {outcome.detail}"
        rows.append(FailureRow(record=outcome.record, reason=reason))
    return rows


def describe_unenriched(record: BookshopRecord) -> str:
    if not record.google_place_id:
        return NO_REFERENCE_REASON
    return DETAILS_FAILED_REASON


def failure_rows_from_store(records: Iterable[BookshopRecord]) -> list[FailureRow]:
    return [FailureRow(record=record, reason=describe_unenriched(record)) for record in records]


def write_failures_csv(rows: Iterable[FailureRow], stream: TextIO) -> int:
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(FAILURE_CSV_HEADERS)
    written = 0
    for row in rows:
        writer.writerow(row.as_csv_row())
        written += 1
    return written


def render_failures_csv(rows: Iterable[FailureRow]) -> str:
    buffer = io.StringIO()
    write_failures_csv(rows, buffer)
    return buffer.getvalue()


@dataclass(frozen=True, slots=True)
class CostEstimate:
    lookup_calls: int
    detail_calls: int
    lookup_cost: float
    detail_cost: float
    subtotal: float
    monthly_credit: float
    cost_after_credit: float
    remaining_credit: float
    cost_per_live_bookshop: float | None
    cost_per_enriched_bookshop: float | None
    success_rate: float | None

    @property
    def total_calls(self) -> int:
        return self.lookup_calls + self.detail_calls


def calculate_cost(requests: int, price_per_1000: float) -> float:
    return (max(0, requests) / 1000) * price_per_1000


def estimate_api_costs(
    totals: EnrichmentTotals,
    *,
    prices: dict[str, float] | None = None,
    monthly_credit: float = MONTHLY_CREDIT_USD,
) -> CostEstimate:
    """Estimate provider spend from store-wide counts, independent of any run.

    One lookup call is counted per live bookshop still lacking a reference and
    one details call per live bookshop holding both a reference and a fetch
    timestamp.
    """
    price_table = {**PRICE_PER_1000_USD, **(prices or {})}
    lookup_calls = totals.without_reference
    detail_calls = totals.enriched_with_reference
    lookup_cost = calculate_cost(lookup_calls, price_table[FIND_PLACE_FROM_TEXT_SKU])
    detail_cost = calculate_cost(detail_calls, price_table[PLACE_DETAILS_SKU])
    subtotal = lookup_cost + detail_cost
    return CostEstimate(
        lookup_calls=lookup_calls,
        detail_calls=detail_calls,
        lookup_cost=lookup_cost,
        detail_cost=detail_cost,
        subtotal=subtotal,
        monthly_credit=monthly_credit,
        cost_after_credit=max(0.0, subtotal - monthly_credit),
        remaining_credit=max(0.0, monthly_credit - subtotal),
        cost_per_live_bookshop=subtotal / totals.live_total if totals.live_total else None,
        cost_per_enriched_bookshop=subtotal / totals.enriched if totals.enriched else None,
        success_rate=totals.enriched / totals.live_total if totals.live_total else None,
    )


def format_cost_report(totals: EnrichmentTotals, estimate: CostEstimate) -> list[str]:
    lines = [
        "Enrichment statistics:",
        f"  Total live bookshops: {totals.live_total}",
        f"  Successfully enriched: {totals.enriched}",
        f"  Not yet enriched: {totals.unenriched}",
        f"  Without Place ID: {totals.without_reference}",
        "API calls:",
        f"  Find Place From Text: {estimate.lookup_calls:,}",
        f"  Place Details: {estimate.detail_calls:,}",
        f"  Total: {estimate.total_calls:,}",
        "Cost breakdown:",
        f"  Find Place From Text: ${estimate.lookup_cost:.2f}",
        f"  Place Details: ${estimate.detail_cost:.2f}",
        f"  Subtotal: ${estimate.subtotal:.2f}",
        f"  Monthly credit: -${estimate.monthly_credit:.2f}",
        f"  Estimated cost: ${estimate.cost_after_credit:.2f}",
    ]
    if estimate.cost_after_credit == 0:
        lines.append(f"  Remaining credit: ${estimate.remaining_credit:.2f}")
    if estimate.cost_per_live_bookshop is not None:
        lines.append(f"  Cost per live bookshop: ${estimate.cost_per_live_bookshop:.4f}")
    if estimate.cost_per_enriched_bookshop is not None:
        lines.append(f"  Cost per enriched bookshop: ${estimate.cost_per_enriched_bookshop:.4f}")
    if estimate.success_rate is not None:
        lines.append(f"  Success rate: {estimate.success_rate * 100:.1f}%")
    return lines
