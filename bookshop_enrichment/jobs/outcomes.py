from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from bookshop_enrichment.services.repository import BookshopRecord


class OutcomeStatus(str, Enum):
    ENRICHED = "enriched"
    SKIPPED_NO_REFERENCE = "skipped-no-reference"
    PROVIDER_ERROR = "provider-error"
    EMPTY_RESULT = "empty-result"


FAILURE_STATUSES = frozenset({OutcomeStatus.PROVIDER_ERROR, OutcomeStatus.EMPTY_RESULT})


@dataclass(frozen=True, slots=True)
class Outcome:
    record: BookshopRecord
    status: OutcomeStatus
    detail: str | None = None

    @property
    def record_id(self) -> int:
        return self.record.id

    @property
    def failed(self) -> bool:
        return self.status in FAILURE_STATUSES


@dataclass(frozen=True, slots=True)
class RunSummary:
    total: int
    refreshed: int
    failed: int
    skipped: int
    counts: dict[str, int] = field(default_factory=dict)
    interrupted: str | None = None


class OutcomeTracker:
    """Outcomes of one run, in the order candidates were processed."""

    def __init__(self) -> None:
        self._outcomes: list[Outcome] = []
        self.interrupted: str | None = None

    def record(self, record: BookshopRecord, status: OutcomeStatus, detail: str | None = None) -> Outcome:
        outcome = Outcome(record=record, status=status, detail=detail)
        self._outcomes.append(outcome)
        return outcome

    def interrupt(self, detail: str) -> None:
        """Mark the run as stopped early; outcomes recorded so far are kept."""
        self.interrupted = detail

    @property
    def outcomes(self) -> tuple[Outcome, ...]:
        return tuple(self._outcomes)

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in OutcomeStatus}
        for outcome in self._outcomes:
            counts[outcome.status.value] += 1
        return counts

    def failures(self) -> list[Outcome]:
        return [outcome for outcome in self._outcomes if outcome.failed]

    def summary(self) -> RunSummary:
        counts = self.counts()
        return RunSummary(
            total=len(self._outcomes),
            refreshed=counts[OutcomeStatus.ENRICHED.value],
            failed=counts[OutcomeStatus.PROVIDER_ERROR.value] + counts[OutcomeStatus.EMPTY_RESULT.value],
            skipped=counts[OutcomeStatus.SKIPPED_NO_REFERENCE.value],
            counts=counts,
            interrupted=self.interrupted,
        )
