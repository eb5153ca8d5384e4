from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.business.jobs.registry import get_scheduler
from app.business.schemas import BatchSummaryRead
from app.core.auth import AuthUser, require_operator
from app.core.database import get_db
from app.core.scheduler import Scheduler, get_today


router = APIRouter(prefix="/billing/jobs", tags=["billing-jobs"])


class ScheduledJobRead(BaseModel):
    name: str
    hour: int
    minute: int
    description: str


@router.get("", response_model=list[ScheduledJobRead])
def list_jobs(
    scheduler: Scheduler = Depends(get_scheduler),
    _user: AuthUser = Depends(require_operator),
) -> list[ScheduledJobRead]:
    return [
        ScheduledJobRead(name=job.name, hour=job.hour, minute=job.minute, description=job.description)
        for job in sorted(scheduler.registry, key=lambda item: (item.hour, item.minute))
    ]


@router.post("/{name}/run", response_model=BatchSummaryRead)
def run_job(
    name: str,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    scheduler: Scheduler = Depends(get_scheduler),
    _user: AuthUser = Depends(require_operator),
) -> BatchSummaryRead:
    return BatchSummaryRead.from_summary(scheduler.run(name, session=db, today=today))
