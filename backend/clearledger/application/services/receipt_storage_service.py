"""Paths and signed URLs for payment receipt images.

The blob store is addressed only through deterministic paths. Signed URLs
are issued on demand and never persisted.
"""

from datetime import datetime, timedelta, timezone
from typing import Literal
from urllib.parse import quote

from jose import JWTError, jwt

from clearledger.application.errors import ExternalDependencyError, ValidationError
from clearledger.config import settings
from clearledger.infrastructure.logging import get_logger

logger = get_logger(__name__)

ALLOWED_RECEIPT_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "pdf", "webp"})
MAX_UPLOAD_URL_TTL_SECONDS = 15 * 60
MAX_DOWNLOAD_URL_TTL_SECONDS = 30 * 60

ReceiptUrlMode = Literal["write", "read"]


def receipt_extension(file_name: str) -> str:
    _, dot, extension = file_name.rpartition(".")
    extension = extension.strip().lower()
    if not dot or extension not in ALLOWED_RECEIPT_EXTENSIONS:
        raise ValidationError("Receipt must be a jpg, jpeg, png, pdf or webp file")
    return extension


def receipt_path(*, organization_id: int, payment_id: int, extension: str) -> str:
    return f"{organization_id}/{payment_id}.{extension}"


def _url_ttl_seconds(mode: ReceiptUrlMode) -> int:
    if mode == "write":
        return min(settings.receipt_upload_url_ttl_seconds, MAX_UPLOAD_URL_TTL_SECONDS)
    return min(settings.receipt_download_url_ttl_seconds, MAX_DOWNLOAD_URL_TTL_SECONDS)


def create_signed_receipt_url(path: str, *, mode: ReceiptUrlMode) -> dict:
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=_url_ttl_seconds(mode))
    claims = {
        "bucket": settings.receipt_bucket,
        "path": path,
        "mode": mode,
        "exp": expires_at,
    }
    try:
        token = jwt.encode(claims, settings.blob_signing_key, algorithm="HS256")
    except JWTError as exc:
        logger.error("receipt_url_signing_failed", path=path, mode=mode)
        raise ExternalDependencyError("Receipt storage is unavailable") from exc
    url = f"{settings.blob_base_url.rstrip('/')}/{settings.receipt_bucket}/{quote(path)}?token={token}"
    logger.info("receipt_url_issued", path=path, mode=mode, expires_at=expires_at.isoformat())
    return {"url": url, "path": path, "expires_at": expires_at}
