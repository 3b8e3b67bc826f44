from celery import Celery
from celery.schedules import crontab

from clearledger.config import settings

celery_app = Celery(
    "clearledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "clearledger.infrastructure.tasks.notification_tasks",
        "clearledger.infrastructure.tasks.ledger_integrity_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "dispatch-pending-notifications": {
            "task": "notifications.dispatch_pending",
            "schedule": 30.0,
        },
        "run-ledger-integrity-checks": {
            "task": "ledger.run_integrity_checks",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
