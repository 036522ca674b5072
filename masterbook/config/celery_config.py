# masterbook/config/celery_config.py
"""Celery configuration, task routing and the periodic schedule"""
from celery import Celery
from kombu import Queue

from masterbook.config.settings import get_settings

settings = get_settings()

TASK_MODULES = [
    "masterbook.tasks.reminder_tasks",
    "masterbook.tasks.calendar_tasks",
    "masterbook.tasks.notification_tasks",
]


def create_celery_app() -> Celery:
    """Create and configure Celery application"""

    celery_app = Celery(
        "masterbook",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=TASK_MODULES,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Task routing
        task_routes={
            "masterbook.tasks.reminder_tasks.*": {"queue": "reminders"},
            "masterbook.tasks.calendar_tasks.*": {"queue": "calendar"},
            "masterbook.tasks.notification_tasks.*": {"queue": "notifications"},
        },

        # Queue definitions
        task_queues=(
            Queue("reminders", routing_key="reminders"),
            Queue("calendar", routing_key="calendar"),
            Queue("notifications", routing_key="notifications"),
        ),

        # Periodic reminder delivery; a tick that waited longer than one interval is dropped
        beat_schedule={
            "process-due-reminders": {
                "task": "masterbook.tasks.reminder_tasks.process_due_reminders",
                "schedule": float(settings.REMINDER_TICK_SECONDS),
                "options": {"expires": settings.REMINDER_TICK_SECONDS},
            },
        },

        # Worker settings
        worker_max_tasks_per_child=1000,
        worker_prefetch_multiplier=1,
        task_acks_late=True,

        broker_connection_retry_on_startup=True,
    )

    return celery_app


# Create the Celery app instance
celery_app = create_celery_app()
