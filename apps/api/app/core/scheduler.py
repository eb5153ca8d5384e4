from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Protocol
from zoneinfo import ZoneInfo

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.orm import Session

from app.business.outcomes import BatchSummary
from app.context import reset_correlation_id, set_correlation_id
from app.core.config import get_settings
from app.core.errors import NotFoundError
from app.metrics import observe_job, observe_job_items


logger = logging.getLogger("app.billing.jobs")
tracer = trace.get_tracer("app.billing.jobs")

JobHandler = Callable[[Session, date], BatchSummary]


class Clock(Protocol):
    def today(self) -> date: ...


class SystemClock:
    def __init__(self, timezone_name: str = "UTC") -> None:
        self._zone = ZoneInfo(timezone_name)

    def today(self) -> date:
        return datetime.now(self._zone).date()


class FixedClock:
    def __init__(self, current: date) -> None:
        self.current = current

    def today(self) -> date:
        return self.current

    def advance(self, days: int = 1) -> date:
        self.current = self.current + timedelta(days=days)
        return self.current


@dataclass(frozen=True, slots=True)
class ScheduledJob:
    name: str
    handler: JobHandler
    hour: int
    minute: int = 0
    description: str = ""


class JobRegistry:
    def __init__(self) -> None:
        self._jobs: dict[str, ScheduledJob] = {}

    def register(self, job: ScheduledJob) -> ScheduledJob:
        if job.name in self._jobs:
            raise ValueError(f"job already registered: {job.name}")
        self._jobs[job.name] = job
        return job

    def get(self, name: str) -> ScheduledJob:
        job = self._jobs.get(name)
        if job is None:
            raise NotFoundError(f"scheduled job not found: {name}")
        return job

    def names(self) -> list[str]:
        return sorted(self._jobs)

    def __iter__(self) -> Iterator[ScheduledJob]:
        return iter(self._jobs.values())


def always_leader() -> bool:
    return True


class Scheduler:
    """Runs registered jobs against a clock.

    Assumes a single active instance; ``leader_check`` is where an advisory
    lock or leader election plugs in without touching the jobs themselves.
    """

    def __init__(
        self,
        registry: JobRegistry,
        clock: Clock,
        session_factory: Callable[[], Session],
        leader_check: Callable[[], bool] = always_leader,
    ) -> None:
        self.registry = registry
        self.clock = clock
        self.session_factory = session_factory
        self.leader_check = leader_check

    def run(self, name: str, *, session: Session | None = None, today: date | None = None) -> BatchSummary:
        job = self.registry.get(name)
        run_date = today or self.clock.today()
        if not self.leader_check():
            logger.info("job.skipped", extra={"job_type": name, "status": "NotLeader"})
            return BatchSummary(job_type=name, run_date=run_date)

        owns_session = session is None
        active_session = session if session is not None else self.session_factory()
        job_id = str(uuid.uuid4())
        correlation_id = f"job-{job_id}"
        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        final_status = "Failed"

        with tracer.start_as_current_span("billing.job.run") as span:
            span.set_attribute("job_id", job_id)
            span.set_attribute("job_type", name)
            span.set_attribute("correlation_id", correlation_id)
            span.set_attribute("run_date", run_date.isoformat())
            logger.info(
                "job.started",
                extra={"job_id": job_id, "job_type": name, "status": "Running", "duration_ms": 0.0},
            )
            try:
                summary = job.handler(active_session, run_date)
                final_status = "Succeeded" if summary.failed == 0 else "CompletedWithErrors"
                span.set_attribute("processed", summary.processed)
                span.set_attribute("failed", summary.failed)
                observe_job_items(name, summary.counts())
                logger.info(
                    "job.finished",
                    extra={
                        "job_id": job_id,
                        "job_type": name,
                        "status": final_status,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "processed": summary.processed,
                        "succeeded": summary.succeeded,
                        "skipped": summary.skipped,
                        "failed": summary.failed,
                    },
                )
                return summary
            except Exception as exc:
                active_session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.error(
                    "job.finished",
                    exc_info=True,
                    extra={
                        "job_id": job_id,
                        "job_type": name,
                        "status": "Failed",
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "error": str(exc)[:500],
                    },
                )
                raise
            finally:
                observe_job(job_type=name, status=final_status, duration=time.perf_counter() - started)
                reset_correlation_id(token)
                if owns_session:
                    active_session.close()


@lru_cache
def get_clock() -> SystemClock:
    return SystemClock(get_settings().scheduler_timezone)


def get_today() -> date:
    return get_clock().today()
