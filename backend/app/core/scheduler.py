"""
Background scheduler for periodic tasks.

- Repair folder aggregates (fileCount/totalSize): runs every
  AGGREGATE_REPAIR_INTERVAL_HOURS. The counters are updated optimistically
  on each upload/delete and may drift under concurrent writes; this job
  rebuilds them from a scan of active files.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from app.core.config import settings
from app.core.database import SessionLocal
from app.services.resource_store import resource_store
import logging

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def repair_folder_aggregates_job():
    """Recompute fileCount/totalSize for every active folder"""
    db = SessionLocal()
    try:
        repaired = resource_store.recompute_all_aggregates(db)
        if repaired > 0:
            logger.info(f"Aggregate repair completed: {repaired} folder(s) corrected")
        else:
            logger.info("Aggregate repair completed: all folders in sync")
    except Exception as e:
        logger.error(f"Error in repair_folder_aggregates_job: {str(e)}")
        db.rollback()
    finally:
        db.close()


def start_scheduler():
    """
    Start the background scheduler.

    This should be called when the FastAPI app starts.
    """
    if not scheduler.running:
        scheduler.add_job(
            repair_folder_aggregates_job,
            trigger=IntervalTrigger(hours=settings.AGGREGATE_REPAIR_INTERVAL_HOURS),
            id="repair_folder_aggregates",
            name="Repair folder aggregates",
            replace_existing=True
        )

        scheduler.start()
        logger.info(
            "Background scheduler started. Aggregate repair scheduled every "
            f"{settings.AGGREGATE_REPAIR_INTERVAL_HOURS} hours.")


def stop_scheduler():
    """
    Stop the background scheduler.

    This should be called when the FastAPI app shuts down.
    """
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped.")
