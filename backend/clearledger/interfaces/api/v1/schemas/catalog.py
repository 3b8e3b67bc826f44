from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from clearledger.domain.ledger_enums import ObligationKind
from clearledger.domain.obligation_status import ObligationStatus


class ClearancePeriodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    starts_on: date
    ends_on: date

    @model_validator(mode="after")
    def check_dates(self) -> "ClearancePeriodCreate":
        if self.ends_on < self.starts_on:
            raise ValueError("ends_on must not be before starts_on")
        return self


class ClearancePeriodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    starts_on: date
    ends_on: date
    is_active: bool


class FeeTypeCreate(BaseModel):
    period_id: int
    name: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    required_for_clearance: bool = True


class FeeTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    period_id: int
    name: str
    amount: Decimal
    required_for_clearance: bool


class FeeAssignmentCreate(BaseModel):
    student_id: int
    fee_type_id: int
    amount: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)


class FineCreate(BaseModel):
    student_id: int
    period_id: int
    reason: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class ObligationResponse(BaseModel):
    kind: ObligationKind
    id: int
    organization_id: int
    student_id: int
    period_id: int
    amount: Decimal
    status: ObligationStatus
    description: str
    remaining_balance: Decimal
    created_at: datetime
