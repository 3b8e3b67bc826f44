from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from clearledger.domain.ledger_enums import ObligationKind, PaymentMethod, PaymentStatus
from clearledger.interfaces.api.v1.schemas.pagination import PaginationMeta


class AllocationTargetPayload(BaseModel):
    kind: ObligationKind
    obligation_id: int
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class PaymentCreate(BaseModel):
    student_id: int
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    method: PaymentMethod
    proof_file_name: str | None = None


class PaymentReject(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class AllocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    fee_assignment_id: int | None = None
    fine_id: int | None = None
    amount_allocated: Decimal
    voided_at: datetime | None = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    student_id: int
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    proof_path: str | None = None
    recorded_by_subject_id: int
    verified_by_subject_id: int | None = None
    verified_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime
    allocations: list[AllocationResponse] = Field(default_factory=list)


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    pagination: PaginationMeta


class ReceiptUrlResponse(BaseModel):
    url: str
    path: str
    expires_at: datetime
