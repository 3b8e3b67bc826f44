from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from clearledger.interfaces.api.v1.schemas.pagination import PaginationMeta


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_kind: str
    entity_id: int | None = None
    action: str
    before_snapshot: dict[str, Any] | None = None
    after_snapshot: dict[str, Any] | None = None
    performed_by_subject_id: int
    organization_id: int | None = None
    access_reason: str | None = None
    created_at: datetime


class AuditEntryListResponse(BaseModel):
    items: list[AuditEntryResponse]
    pagination: PaginationMeta
