"""
Celery tasks delivering outbox events.
"""
import logging
from uuid import UUID

from app.core.celery import celery_app
from app.database.database import SessionLocal
from app.modules.notifications.models import OutboxStatus
from app.modules.notifications.service import OutboxService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def dispatch_outbox_event(self, event_id: str):
    """Deliver one outbox event, retrying with exponential backoff on failure."""
    db = SessionLocal()
    try:
        result = OutboxService(db).deliver(UUID(event_id))
    except Exception as exc:
        db.rollback()
        logger.error(f"Outbox dispatch crashed for {event_id}: {str(exc)}")
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))
    finally:
        db.close()

    if result == OutboxStatus.FAILED and self.request.retries < self.max_retries:
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    return {"event_id": event_id, "status": result.value}


@celery_app.task
def dispatch_pending_events(limit: int = 100):
    """Periodic sweep for events whose enqueue or delivery failed."""
    db = SessionLocal()
    try:
        event_ids = OutboxService(db).pending_event_ids(limit)
    finally:
        db.close()

    for event_id in event_ids:
        dispatch_outbox_event.delay(str(event_id))
    if event_ids:
        logger.info(f"Re-dispatched {len(event_ids)} pending outbox events")
    return {"dispatched": len(event_ids)}
