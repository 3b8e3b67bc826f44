from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from clearledger.domain.organization_enums import StudentStatus
from clearledger.interfaces.api.v1.schemas.pagination import PaginationMeta


class StudentBase(BaseModel):
    student_number: str = Field(min_length=1, max_length=50)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str | None = None


class StudentEnroll(StudentBase):
    subject_id: int | None = None


class StudentResponse(StudentBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    subject_id: int | None = None
    status: StudentStatus
    created_at: datetime
    updated_at: datetime


class StudentListResponse(BaseModel):
    items: list[StudentResponse]
    pagination: PaginationMeta
