from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from clearledger.domain.ledger_enums import AppealStatus, ObligationKind, WaiverStatus


class WaiverRequestCreate(BaseModel):
    kind: ObligationKind
    obligation_id: int
    reason: str = Field(min_length=1, max_length=255)


class WaiverGrant(WaiverRequestCreate):
    pass


class DecisionReject(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class WaiverResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    fee_assignment_id: int | None = None
    fine_id: int | None = None
    status: WaiverStatus
    reason: str
    requested_by_subject_id: int
    decided_by_subject_id: int | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None
    origin_appeal_id: int | None = None


class AppealCreate(BaseModel):
    kind: ObligationKind
    obligation_id: int
    reason: str = Field(min_length=1)


class AppealDecision(BaseModel):
    note: str | None = Field(default=None, max_length=255)


class AppealResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    student_id: int
    fee_assignment_id: int | None = None
    fine_id: int | None = None
    reason: str
    status: AppealStatus
    filed_by_subject_id: int
    decided_by_subject_id: int | None = None
    decided_at: datetime | None = None
    decision_note: str | None = None
