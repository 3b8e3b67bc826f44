from pydantic import BaseModel, Field

from clearledger.domain.ledger_enums import ClearanceStatus


class ClearanceOverride(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class BlockingItems(BaseModel):
    fines: list[dict] = Field(default_factory=list)
    fees: list[dict] = Field(default_factory=list)


class ClearanceResponse(BaseModel):
    student_id: int
    organization_id: int
    period_id: int
    status: ClearanceStatus
    override_reason: str | None = None
    blocking_items: BlockingItems
