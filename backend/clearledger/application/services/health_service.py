from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clearledger.config import settings
from clearledger.infrastructure.cache.redis_client import redis_is_available
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)


def get_health_status(db: Session, redis_client) -> dict:
    db_connected = False
    try:
        db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError:
        logger.warning("health_database_unreachable")

    return {
        "message": f"{settings.app_name} is running",
        "version": settings.app_version,
        "db_connected": db_connected,
        "redis_connected": redis_is_available(redis_client),
    }
