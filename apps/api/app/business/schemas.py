from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from app.business.outcomes import BatchSummary


class BatchSummaryRead(BaseModel):
    job_type: str
    run_date: date
    processed: int
    succeeded: int
    skipped: int
    failed: int
    reasons: list[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: BatchSummary) -> BatchSummaryRead:
        return cls.model_validate(summary.as_dict())
