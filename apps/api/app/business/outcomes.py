from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, ClassVar


@dataclass(frozen=True, slots=True)
class Created:
    key: uuid.UUID
    entity_id: uuid.UUID
    detail: str | None = None
    kind: ClassVar[str] = "created"


@dataclass(frozen=True, slots=True)
class Updated:
    key: uuid.UUID
    entity_id: uuid.UUID
    detail: str | None = None
    kind: ClassVar[str] = "updated"


@dataclass(frozen=True, slots=True)
class Rescheduled:
    key: uuid.UUID
    entity_id: uuid.UUID
    target_date: date
    kind: ClassVar[str] = "rescheduled"


@dataclass(frozen=True, slots=True)
class Skipped:
    key: uuid.UUID
    reason: str
    kind: ClassVar[str] = "skipped"


@dataclass(frozen=True, slots=True)
class Failed:
    key: uuid.UUID
    reason: str
    kind: ClassVar[str] = "failed"


RenewalOutcome = Created | Skipped | Failed
LateFeeOutcome = Updated | Skipped | Failed
CollectionOutcome = Created | Updated | Skipped | Failed
ReassignmentOutcome = Rescheduled | Skipped | Failed
Outcome = Created | Updated | Rescheduled | Skipped | Failed


@dataclass(slots=True)
class BatchSummary:
    job_type: str
    run_date: date
    outcomes: list[Outcome] = field(default_factory=list)

    def record(self, outcome: Outcome) -> Outcome:
        self.outcomes.append(outcome)
        return outcome

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.outcomes if isinstance(item, Failed))

    @property
    def skipped(self) -> int:
        return sum(1 for item in self.outcomes if isinstance(item, Skipped))

    @property
    def succeeded(self) -> int:
        return self.processed - self.failed - self.skipped

    @property
    def reasons(self) -> list[str]:
        return [f"{item.key}: {item.reason}" for item in self.outcomes if isinstance(item, Failed)]

    def counts(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for item in self.outcomes:
            totals[item.kind] = totals.get(item.kind, 0) + 1
        return totals

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_type": self.job_type,
            "run_date": self.run_date.isoformat(),
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "reasons": self.reasons,
        }
