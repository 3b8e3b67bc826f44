from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from clearledger.domain.organization_enums import OrganizationStatus, OrganizationTier


class InviteCreate(BaseModel):
    organization_name: str = Field(min_length=1, max_length=255)
    contact_email: str = Field(min_length=3, max_length=255)
    assigned_tier: OrganizationTier = OrganizationTier.basic


class InviteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    token: str
    organization_name: str
    contact_email: str
    assigned_tier: OrganizationTier
    expires_at: datetime


class OrganizationOnboard(BaseModel):
    invite_token: str = Field(min_length=1)


class OrganizationTierUpdate(BaseModel):
    tier: OrganizationTier


class OrganizationStatusUpdate(BaseModel):
    status: OrganizationStatus


class OrganizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    contact_email: str
    tier: OrganizationTier
    status: OrganizationStatus
    student_count: int
    created_at: datetime
    updated_at: datetime


class OrganizationFinancialSummaryResponse(BaseModel):
    organization_id: int
    total_obligation_amount: Decimal
    total_fee_amount: Decimal
    total_fine_amount: Decimal
    total_waived_amount: Decimal
    total_verified_payment_amount: Decimal
    total_pending_payment_amount: Decimal
    total_outstanding_amount: Decimal
    student_count: int


class IntegrityCheckTaskResponse(BaseModel):
    task_id: str
    organization_id: int
    status: str
    message: str
