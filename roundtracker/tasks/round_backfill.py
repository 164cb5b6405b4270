"""
Celery tasks for rebuilding the persisted round index.
"""
from datetime import datetime, timedelta
from typing import Optional
import logging

from roundtracker.tasks.celery_app import celery_app
from roundtracker.database import SessionLocal
from roundtracker.config import settings
from roundtracker.services.round_backfill_service import RoundBackfillService

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.backfill_recent_rounds")
def backfill_recent_rounds(lookback_hours: Optional[int] = None):
    """
    Regroup rounds played during the last few hours.

    This is the scheduled task; it keeps the round index fresh enough to
    resolve round ids of recent and in-progress rounds.

    Args:
        lookback_hours: Window size (defaults to settings.ROUND_BACKFILL_LOOKBACK_HOURS)
    """
    db = SessionLocal()

    try:
        hours = lookback_hours or settings.ROUND_BACKFILL_LOOKBACK_HOURS
        now = datetime.utcnow()
        window_start = now - timedelta(hours=hours)

        logger.info(f"Backfilling rounds for the last {hours} hours")

        count = RoundBackfillService.backfill_rounds(db, start_time=window_start, end_time=now, now=now)

        logger.info(f"Recent rounds backfill completed: {count} rounds")

        return {
            "status": "success",
            "rounds": count,
            "window_start": window_start.isoformat(),
        }

    except Exception as e:
        logger.error(f"Failed to backfill recent rounds: {e}")
        raise

    finally:
        db.close()


@celery_app.task(name="tasks.backfill_rounds")
def backfill_rounds(
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    server_guid: Optional[str] = None,
):
    """
    Regroup rounds in an explicit window, e.g. after importing historical sessions.

    Args:
        start_time: ISO datetime of the window start (None = unbounded)
        end_time: ISO datetime of the window end (None = unbounded)
        server_guid: Limit to one server
    """
    db = SessionLocal()

    try:
        window_start = datetime.fromisoformat(start_time) if start_time else None
        window_end = datetime.fromisoformat(end_time) if end_time else None

        count = RoundBackfillService.backfill_rounds(
            db,
            start_time=window_start,
            end_time=window_end,
            server_guid=server_guid,
        )

        logger.info(f"Rounds backfill completed: {count} rounds for server {server_guid or 'ALL'}")

        return {
            "status": "success",
            "rounds": count,
            "server_guid": server_guid,
        }

    except Exception as e:
        logger.error(f"Failed to backfill rounds: {e}")
        raise

    finally:
        db.close()
