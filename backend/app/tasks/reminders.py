"""Background task that sends subscription expiry reminders"""
import asyncio

from app.core.config import settings
from app.core.logging import reminders_logger
from app.core.metrics import reminder_runs_counter
from app.db.session import SessionLocal
from app.services.reminder_service import process_subscription_reminders


async def reminder_task():
    """Run a reminder pass every REMINDER_INTERVAL_SECONDS"""
    while True:
        try:
            await asyncio.sleep(settings.REMINDER_INTERVAL_SECONDS)

            db = SessionLocal()
            try:
                reminders_logger.info("Starting subscription reminder run...")
                result = process_subscription_reminders(db)

                reminder_runs_counter.labels(status="success").inc()
                reminders_logger.info(
                    f"Reminder run completed: checked={result['checked']} sent={len(result['reminders'])} "
                    f"failed={len(result['failed'])} expired={len(result['expired'])}"
                )
            finally:
                db.close()

        except Exception as e:
            reminders_logger.error(f"Error in reminder task: {e}", exc_info=True)
            reminder_runs_counter.labels(status="failure").inc()
