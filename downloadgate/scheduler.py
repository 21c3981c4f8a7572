"""Background scheduler for the optional retention purge of expired tokens."""

from datetime import UTC, datetime, timedelta

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from downloadgate.config import settings
from downloadgate.database import SessionLocal
from downloadgate.services.discord_service import send_error_alert_sync
from downloadgate.services.usage_ledger import purge_expired_tokens

logger = structlog.get_logger()

scheduler = BackgroundScheduler()


def purge_job() -> None:
    """Delete tokens (and their audit records) expired beyond the retention window."""
    if settings.token_retention_days is None:
        return

    cutoff = datetime.now(UTC).replace(tzinfo=None) - timedelta(days=settings.token_retention_days)
    db = SessionLocal()
    try:
        purged = purge_expired_tokens(db, cutoff)
        if purged:
            logger.info("expired_tokens_purged", count=purged, cutoff=cutoff.isoformat())
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("token_purge_failed", error=str(e))
        send_error_alert_sync("TokenPurgeFailed", str(e))
    finally:
        db.close()


def start_scheduler() -> None:
    """Start the scheduler. Nothing is scheduled while retention is unset."""
    if settings.token_retention_days is None:
        logger.info("scheduler_disabled", reason="token_retention_days not set")
        return

    scheduler.add_job(
        purge_job,
        trigger=IntervalTrigger(hours=settings.purge_interval_hours),
        id="purge_expired_tokens",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "scheduler_started",
        interval_hours=settings.purge_interval_hours,
        retention_days=settings.token_retention_days,
    )


def shutdown_scheduler() -> None:
    """Shutdown the scheduler if it was started."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("scheduler_stopped")
