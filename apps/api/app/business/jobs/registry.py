from __future__ import annotations

from functools import lru_cache

from app.business.collections.automated import automated_collection_generator
from app.business.collections.service import collection_order_service
from app.business.cycles.late_fees import late_fee_escalator
from app.business.cycles.renewal import cycle_renewal
from app.business.routing.reassignment import cancellation_reassignment, delivery_reassignment
from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.scheduler import JobRegistry, ScheduledJob, Scheduler, get_clock


def build_job_registry() -> JobRegistry:
    settings = get_settings()
    registry = JobRegistry()
    registry.register(
        ScheduledJob(
            name="overdue_orders",
            handler=collection_order_service.mark_overdue_orders,
            hour=settings.overdue_orders_job_hour,
            minute=settings.overdue_orders_job_minute,
            description="Move open collection orders past their grace window to OVERDUE",
        )
    )
    registry.register(
        ScheduledJob(
            name="late_fee_escalation",
            handler=late_fee_escalator.run,
            hour=settings.late_fee_job_hour,
            minute=settings.late_fee_job_minute,
            description="Apply the one-time late fee to cycles past the grace period",
        )
    )
    registry.register(
        ScheduledJob(
            name="cycle_renewal",
            handler=cycle_renewal.run,
            hour=settings.renewal_job_hour,
            minute=settings.renewal_job_minute,
            description="Open the next cycle for active subscriptions whose last cycle ended",
        )
    )
    registry.register(
        ScheduledJob(
            name="delivery_reassignment",
            handler=delivery_reassignment.run,
            hour=settings.delivery_reassignment_job_hour,
            minute=settings.delivery_reassignment_job_minute,
            description="Move failed deliveries to the next business day",
        )
    )
    registry.register(
        ScheduledJob(
            name="cancellation_reassignment",
            handler=cancellation_reassignment.run,
            hour=settings.cancellation_reassignment_job_hour,
            minute=settings.cancellation_reassignment_job_minute,
            description="Reschedule failed cancellation pickups",
        )
    )
    registry.register(
        ScheduledJob(
            name="automated_collection",
            handler=automated_collection_generator.run,
            hour=settings.collection_job_hour,
            minute=settings.collection_job_minute,
            description="Bill cycles due today into one collection order per customer",
        )
    )
    return registry


@lru_cache
def get_scheduler() -> Scheduler:
    return Scheduler(build_job_registry(), get_clock(), SessionLocal)


