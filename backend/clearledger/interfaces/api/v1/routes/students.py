from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from clearledger.application.services.pagination_service import paginate_scalars
from clearledger.application.services.policy_service import authorize, build_descriptor, privileged_read
from clearledger.application.services.student_service import (
    STUDENT_SEARCH_COLUMNS,
    build_organization_students_query,
    enroll_student,
    get_student_in_organization,
    serialize_student_response,
    unenroll_student,
)
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal, require_tenant_id
from clearledger.interfaces.api.v1.dependencies.pagination import get_pagination_params
from clearledger.interfaces.api.v1.schemas.pagination import PaginationParams
from clearledger.interfaces.api.v1.schemas.student import StudentEnroll, StudentListResponse, StudentResponse

router = APIRouter(tags=["students"])


@router.post("/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED, summary="Enroll student")
def enroll_student_endpoint(
    payload: StudentEnroll,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.student, Operation.create, tenant_id=organization_id)
    student = enroll_student(
        db, organization_id=organization_id, payload=payload, performed_by=principal.subject_id
    )
    return serialize_student_response(student)


@router.get("/students", response_model=StudentListResponse, summary="List students")
def list_students(
    principal: Principal = Depends(get_current_principal),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.student, Operation.read, tenant_id=organization_id)
    items, meta = paginate_scalars(
        db,
        build_organization_students_query(organization_id=organization_id),
        offset=pagination.offset,
        limit=pagination.limit,
        search=pagination.search,
        search_columns=STUDENT_SEARCH_COLUMNS,
    )
    return {"items": [serialize_student_response(item) for item in items], "pagination": meta}


@router.get("/students/{student_id}", response_model=StudentResponse, summary="Get student")
def get_student_detail(
    student_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    student = get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
    authorize(
        db,
        principal,
        ResourceKind.student,
        Operation.read,
        tenant_id=organization_id,
        owner_subject_id=student.subject_id,
        entity_id=student.id,
    )
    return serialize_student_response(student)


@router.delete("/students/{student_id}", response_model=StudentResponse, summary="Unenroll student")
def unenroll_student_endpoint(
    student_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    authorize(db, principal, ResourceKind.student, Operation.update, tenant_id=organization_id, entity_id=student_id)
    student = unenroll_student(
        db, organization_id=organization_id, student_id=student_id, performed_by=principal.subject_id
    )
    return serialize_student_response(student)


@router.get(
    "/platform/organizations/{organization_id}/students/{student_id}",
    response_model=StudentResponse,
    summary="Privileged student read",
    description=(
        "Platform admin access to a student record across tenants. An `access_reason` is required and the "
        "access is audited before any data is returned."
    ),
)
def privileged_student_read(
    organization_id: int,
    student_id: int,
    access_reason: str = Query(default=""),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    descriptor = build_descriptor(db, ResourceKind.student, tenant_id=organization_id, entity_id=student_id)
    return privileged_read(
        db,
        principal=principal,
        descriptor=descriptor,
        access_reason=access_reason,
        loader=lambda: serialize_student_response(
            get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
        ),
    )
