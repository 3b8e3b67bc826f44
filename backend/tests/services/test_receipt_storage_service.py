from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from jose import jwt

from clearledger.application.errors import ValidationError
from clearledger.application.services.receipt_storage_service import (
    MAX_DOWNLOAD_URL_TTL_SECONDS,
    MAX_UPLOAD_URL_TTL_SECONDS,
    create_signed_receipt_url,
    receipt_extension,
    receipt_path,
)
from clearledger.config import settings


def test_receipt_extension_accepts_known_image_and_pdf_types():
    """
    Validate receipt extensions are normalized.

    1. Pass upper-case and padded file names.
    2. Call receipt_extension for each.
    3. Read the returned extensions.
    4. Validate they are lower-case and trimmed.
    """
    assert receipt_extension("GCash-Receipt.PNG") == "png"
    assert receipt_extension("scan.pdf ") == "pdf"


def test_receipt_extension_rejects_other_types():
    """
    Validate unsupported receipt files are refused.

    1. Pass an executable file name and a name without extension.
    2. Call receipt_extension for each.
    3. Validate ValidationError is raised.
    4. Validate the message lists the accepted types.
    """
    for file_name in ("receipt.exe", "receipt"):
        with pytest.raises(ValidationError) as exc:
            receipt_extension(file_name)
        assert str(exc.value) == "Receipt must be a jpg, jpeg, png, pdf or webp file"


def test_signed_write_url_targets_deterministic_path(monkeypatch):
    """
    Validate signed upload URLs embed the path and a capped expiry.

    1. Configure an upload TTL above the allowed maximum.
    2. Call create_signed_receipt_url in write mode for org 4 payment 9.
    3. Decode the token from the returned URL.
    4. Validate path and mode claims and the URL prefix.
    """
    monkeypatch.setattr(settings, "receipt_upload_url_ttl_seconds", MAX_UPLOAD_URL_TTL_SECONDS * 4)
    path = receipt_path(organization_id=4, payment_id=9, extension="jpg")
    signed = create_signed_receipt_url(path, mode="write")
    assert signed["path"] == "4/9.jpg"
    assert signed["url"].startswith(f"{settings.blob_base_url}/{settings.receipt_bucket}/4/9.jpg?token=")
    token = parse_qs(urlparse(signed["url"]).query)["token"][0]
    claims = jwt.decode(token, settings.blob_signing_key, algorithms=["HS256"])
    assert claims["path"] == "4/9.jpg"
    assert claims["mode"] == "write"


def test_signed_read_url_expiry_is_capped(monkeypatch):
    """
    Validate download URLs never outlive the read window.

    1. Configure a download TTL above the allowed maximum.
    2. Call create_signed_receipt_url in read mode.
    3. Read the returned expiry.
    4. Validate it falls within the maximum read window.
    """
    monkeypatch.setattr(settings, "receipt_download_url_ttl_seconds", MAX_DOWNLOAD_URL_TTL_SECONDS * 2)
    signed = create_signed_receipt_url("4/9.jpg", mode="read")
    latest = datetime.now(timezone.utc) + timedelta(seconds=MAX_DOWNLOAD_URL_TTL_SECONDS)
    assert signed["expires_at"] <= latest
    assert signed["expires_at"] > latest - timedelta(minutes=1)
