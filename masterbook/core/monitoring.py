"""Health checks and monitoring endpoints"""
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from masterbook.config.database import get_db
from masterbook.config.redis import get_redis
from masterbook.models.reminder import BookingReminder
from masterbook.utils.time_windows import utc_now

health_router = APIRouter()

# Reminders this far past due mean the beat schedule or the worker is down
REMINDER_LAG_ALERT = timedelta(minutes=10)


@health_router.get("/")
async def health_check():
    return {"status": "healthy", "service": "masterbook-api"}


@health_router.get("/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """Database, Redis and the reminder backlog"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "reminders": "unknown",
    }
    overdue = None

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    if checks["database"] == "healthy":
        overdue = db.query(func.count(BookingReminder.id)).filter(
            BookingReminder.sent == False,
            BookingReminder.remind_at < utc_now() - REMINDER_LAG_ALERT
        ).scalar()
        checks["reminders"] = "healthy" if not overdue else f"lagging: {overdue} overdue"

    try:
        redis_client = await get_redis()
        await redis_client.ping()
        checks["redis"] = "healthy"
    except Exception as e:
        checks["redis"] = f"unhealthy: {str(e)}"

    healthy = all(status == "healthy" for status in checks.values() if status != "unknown")
    return {**checks, "overdue_reminders": overdue, "overall": "healthy" if healthy else "degraded"}
