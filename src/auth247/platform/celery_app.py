"""
Celery application configuration.

Runs the monthly MAU reconciliation and the trial expiration sweep on a beat
schedule. Task bodies live in ``auth247.platform.tasks``.
"""

from typing import Any

import structlog
from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from auth247.platform.settings import settings

celery_app = Celery(
    "auth247_platform",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["auth247.platform.tasks"],
)

celery_app.conf.update(
    task_routes={
        "metering.*": {"queue": "billing"},
        "subscriptions.*": {"queue": "billing"},
    },
    task_default_queue="default",
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("billing", routing_key="billing"),
    ),
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery.timezone,
    enable_utc=True,
    result_expires=86400,
    task_track_started=True,
    # Bounds a whole reconciliation run; tenants are bounded individually
    task_time_limit=settings.celery.task_time_limit,
    task_soft_time_limit=settings.celery.task_soft_time_limit,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
    worker_send_task_events=True,
    task_send_sent_event=True,
)


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the billing beat schedule."""
    from auth247.platform.tasks import (
        process_trial_expirations_task,
        run_monthly_mau_calculation_task,
    )

    sender.add_periodic_task(
        crontab(
            minute=0,
            hour=settings.celery.monthly_mau_hour,
            day_of_month=settings.celery.monthly_mau_day_of_month,
        ),
        run_monthly_mau_calculation_task.s(),
        name="metering-monthly-mau-reconciliation",
    )

    sender.add_periodic_task(
        settings.celery.trial_sweep_interval_seconds,
        process_trial_expirations_task.s(),
        name="subscriptions-process-trial-expirations",
    )

    structlog.get_logger(__name__).info(
        "celery.worker.configured",
        broker=settings.celery.broker_url,
        queues=["default", "billing"],
        periodic_tasks=[
            "metering-monthly-mau-reconciliation",
            "subscriptions-process-trial-expirations",
        ],
    )


if __name__ == "__main__":
    # python -m auth247.platform.celery_app worker --beat
    celery_app.start()
