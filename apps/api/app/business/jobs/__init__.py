from app.business.jobs.registry import build_job_registry, get_scheduler

__all__ = ["build_job_registry", "get_scheduler"]
