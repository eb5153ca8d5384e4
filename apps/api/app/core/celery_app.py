from typing import Any

from celery import Celery
from celery.schedules import crontab

from app.business.jobs.registry import build_job_registry, get_scheduler
from app.core.config import get_settings

settings = get_settings()

celery_app = Celery("cycle_billing", broker=settings.redis_url, backend=settings.redis_url)


def build_beat_schedule() -> dict[str, dict[str, Any]]:
    if not settings.scheduler_enabled:
        return {}
    return {
        f"billing-{job.name.replace('_', '-')}-daily": {
            "task": "app.tasks.run_scheduled_job",
            "schedule": crontab(hour=job.hour, minute=job.minute),
            "kwargs": {"name": job.name},
        }
        for job in build_job_registry()
    }


celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.scheduler_timezone,
    enable_utc=True,
    task_track_started=True,
    # One daily run per job; a worker never grabs more than one at a time.
    worker_prefetch_multiplier=1,
    beat_schedule=build_beat_schedule(),
)


@celery_app.task(name="app.tasks.run_scheduled_job")
def run_scheduled_job(name: str) -> dict[str, Any]:
    return get_scheduler().run(name).as_dict()
