from clearledger.application.services.ledger_integrity_service import (
    list_organization_ids,
    run_ledger_integrity_checks,
)
from clearledger.infrastructure.db.session import SYSTEM_RLS_ROLE, SessionLocal, apply_rls_settings
from clearledger.infrastructure.logging import get_logger
from clearledger.infrastructure.tasks.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="ledger.run_integrity_checks")
def run_ledger_integrity_checks_task(organization_id: int | None = None) -> dict:
    db = SessionLocal()
    logger.info("ledger_integrity_task_started", organization_id=organization_id)
    try:
        apply_rls_settings(db, subject_id=0, organization_id=None, role=SYSTEM_RLS_ROLE)
        organization_ids = [organization_id] if organization_id is not None else list_organization_ids(db)
        summary = {}
        for current_id in organization_ids:
            findings = run_ledger_integrity_checks(db, organization_id=current_id)
            summary[str(current_id)] = len(findings)
        logger.info("ledger_integrity_task_completed", organizations=len(organization_ids))
        return {"findings_by_organization": summary}
    except Exception as exc:
        logger.error("ledger_integrity_task_failed", organization_id=organization_id, error=str(exc))
        raise
    finally:
        db.close()


def enqueue_ledger_integrity_task(*, organization_id: int) -> str:
    task = run_ledger_integrity_checks_task.delay(organization_id=organization_id)
    return str(task.id)
