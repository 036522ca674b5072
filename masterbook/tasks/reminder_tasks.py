# masterbook/tasks/reminder_tasks.py
import logging
from uuid import UUID

from masterbook.config.celery_config import celery_app
from masterbook.config.database import get_db
from masterbook.services.reminder.reminder_service import ReminderService
from masterbook.services.reminder.reminder_worker import run_reminder_worker_tick

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def process_due_reminders(self):
    """Periodic tick: deliver every reminder whose time has come"""
    db = next(get_db())
    try:
        return run_reminder_worker_tick(db)
    except Exception as exc:
        # The next beat tick picks up whatever this one left unclaimed
        logger.error(f"Reminder tick failed: {exc}")
        db.rollback()
        raise
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def rebuild_reminders(self, master_id: str):
    """Re-derive pending reminders after the master changed reminder offsets"""
    db = next(get_db())
    try:
        scheduled = ReminderService.rebuild_for_master(db, UUID(master_id))
        return {"status": "success", "scheduled": scheduled}

    except Exception as exc:
        logger.error(f"Reminder rebuild failed for master {master_id}: {exc}")
        db.rollback()
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()
