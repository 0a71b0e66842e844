from datetime import datetime, timedelta

import structlog
from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError

from virtualqueue.core.config import settings
from virtualqueue.db.session import SessionLocal
from virtualqueue.services.session_store import SessionStore

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3)
def purge_expired_sessions(self):
    """Delete sessions that ended more than SESSION_RETENTION_DAYS ago."""
    db = SessionLocal()
    try:
        cutoff = datetime.utcnow() - timedelta(days=settings.SESSION_RETENTION_DAYS)
        deleted = SessionStore(db).purge_expired(cutoff)
        logger.info("expired_sessions_purged", deleted=deleted, cutoff=cutoff.isoformat())
        return {"deleted": deleted}
    except SQLAlchemyError as exc:
        db.rollback()
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
