import sentry_sdk

from clearledger.config import settings
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def configure_alerting() -> None:
    if not settings.sentry_dsn:
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=settings.app_version,
        send_default_pii=False,
    )


def report_consistency_violation(event: str, **context) -> None:
    """Log a ledger invariant violation and raise an operator alert for it."""
    logger.error(event, alert="consistency_violation", **context)
    if not settings.sentry_dsn:
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("alert", "consistency_violation")
        scope.set_context("ledger", {key: str(value) for key, value in context.items()})
        scope.capture_message(event, level="error")
