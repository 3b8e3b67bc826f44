from clearledger.application.services.notification_service import dispatch_pending_notifications
from clearledger.infrastructure.db.session import SYSTEM_RLS_ROLE, SessionLocal, apply_rls_settings
from clearledger.infrastructure.logging import get_logger
from clearledger.infrastructure.tasks.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="notifications.dispatch_pending")
def dispatch_pending_notifications_task() -> dict:
    db = SessionLocal()
    try:
        apply_rls_settings(db, subject_id=0, organization_id=None, role=SYSTEM_RLS_ROLE)
        return dispatch_pending_notifications(db)
    except Exception as exc:
        db.rollback()
        logger.error("notification_dispatch_task_failed", error=str(exc))
        raise
    finally:
        db.close()
