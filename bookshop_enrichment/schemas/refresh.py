from pydantic import BaseModel, Field


class FailureOut(BaseModel):
    id: int
    name: str
    city: str | None = None
    state: str | None = None
    google_place_id: str | None = None
    status: str
    detail: str | None = None


class RefreshSummaryOut(BaseModel):
    success: bool = True
    refreshed: int
    failed: int
    skipped: int = 0
    total: int
    counts: dict[str, int] = Field(default_factory=dict)
    failures: list[FailureOut] = Field(default_factory=list)
    message: str | None = None
    interrupted: str | None = None
