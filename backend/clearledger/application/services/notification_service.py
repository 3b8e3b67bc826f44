"""Outbox for notifications.

Ledger operations only enqueue rows in their own transaction. Delivery runs
later from a Celery task, and its outcome never reaches the ledger.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from clearledger.application.errors import NotificationDeliveryError
from clearledger.config import settings
from clearledger.domain.ledger_enums import NotificationStatus
from clearledger.infrastructure.db.models import NotificationQueueItem
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)

NotificationSender = Callable[[NotificationQueueItem], None]


def enqueue_notification(
    db: Session,
    *,
    recipient_ref: str,
    notification_type: str,
    payload: dict[str, Any],
    organization_id: int | None = None,
) -> NotificationQueueItem:
    item = NotificationQueueItem(
        organization_id=organization_id,
        recipient_ref=recipient_ref,
        notification_type=notification_type,
        payload=payload,
        status=NotificationStatus.queued,
        attempts=0,
    )
    db.add(item)
    db.flush()
    return item


def log_sender(item: NotificationQueueItem) -> None:
    logger.info(
        "notification_delivered",
        notification_id=item.id,
        notification_type=item.notification_type,
        recipient_ref=item.recipient_ref,
    )


def dispatch_pending_notifications(
    db: Session,
    *,
    sender: NotificationSender | None = None,
    batch_size: int | None = None,
) -> dict[str, int]:
    send = sender or log_sender
    limit = batch_size or settings.notification_batch_size
    items = (
        db.execute(
            select(NotificationQueueItem)
            .where(NotificationQueueItem.status == NotificationStatus.queued)
            .order_by(NotificationQueueItem.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        .scalars()
        .all()
    )

    summary = {"dispatched": 0, "retrying": 0, "failed": 0}
    for item in items:
        item.attempts += 1
        try:
            send(item)
        except NotificationDeliveryError as exc:
            item.last_error = str(exc)[:255]
            if item.attempts >= settings.notification_max_attempts:
                item.status = NotificationStatus.failed
                summary["failed"] += 1
                logger.error(
                    "notification_delivery_abandoned",
                    notification_id=item.id,
                    attempts=item.attempts,
                )
            else:
                summary["retrying"] += 1
                logger.warning("notification_delivery_failed", notification_id=item.id, attempts=item.attempts)
            continue
        item.status = NotificationStatus.dispatched
        item.dispatched_at = datetime.now(timezone.utc)
        item.last_error = None
        summary["dispatched"] += 1
    db.commit()
    logger.info("notification_dispatch_completed", **summary)
    return summary
