from celery import Celery
from celery.schedules import crontab

from virtualqueue.core.config import settings

celery_app = Celery(
    "virtualqueue",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["virtualqueue.tasks.session_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Tasks must be idempotent: a crashed worker's task is redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,
    result_expires=86400,
    task_routes={"virtualqueue.tasks.session_tasks.*": {"queue": "maintenance"}},
)

celery_app.conf.beat_schedule = {
    "purge-expired-sessions": {
        "task": "virtualqueue.tasks.session_tasks.purge_expired_sessions",
        "schedule": crontab(hour=3, minute=30),
    },
}
