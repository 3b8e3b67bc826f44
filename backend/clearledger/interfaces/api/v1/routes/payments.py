from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from clearledger.application.errors import ValidationError
from clearledger.application.services.ledger_lock_service import payment_ledger_lock
from clearledger.application.services.ledger_service import (
    PAYMENT_SEARCH_COLUMNS,
    AllocationTarget,
    allocate,
    build_student_payments_query,
    get_payment,
    record_payment,
    reject_payment,
    serialize_payment_response,
    verify_payment,
)
from clearledger.application.services.pagination_service import paginate_scalars
from clearledger.application.services.policy_service import authorize
from clearledger.application.services.receipt_storage_service import create_signed_receipt_url
from clearledger.application.services.student_service import get_student, get_student_in_organization
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.policy import Operation, Principal
from clearledger.infrastructure.db.session import get_db
from clearledger.interfaces.api.v1.dependencies.auth import get_current_principal, require_tenant_id
from clearledger.interfaces.api.v1.dependencies.pagination import get_pagination_params
from clearledger.interfaces.api.v1.schemas.pagination import PaginationParams
from clearledger.interfaces.api.v1.schemas.payment import (
    AllocationTargetPayload,
    PaymentCreate,
    PaymentListResponse,
    PaymentReject,
    PaymentResponse,
    ReceiptUrlResponse,
)

router = APIRouter(tags=["payments"])


def _targets(payload: list[AllocationTargetPayload]) -> list[AllocationTarget]:
    return [AllocationTarget(kind=item.kind, obligation_id=item.obligation_id, amount=item.amount) for item in payload]


def _load_payment_for(db: Session, principal: Principal, payment_id: int, operation: Operation):
    organization_id = require_tenant_id(principal)
    payment = get_payment(db, payment_id=payment_id, organization_id=organization_id)
    student = get_student(db, payment.student_id)
    authorize(
        db,
        principal,
        ResourceKind.payment,
        operation,
        tenant_id=organization_id,
        owner_subject_id=student.subject_id,
        entity_id=payment.id,
    )
    return payment


@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record payment",
    description=(
        "Record a pending payment for a student of the caller's organization. Officers record payments for any "
        "student, students for themselves. Receipt-backed methods need "
        "`proof_file_name`; the receipt is then uploaded through `receipt-upload-url`."
    ),
)
def record_payment_endpoint(
    payload: PaymentCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    student = get_student_in_organization(db, student_id=payload.student_id, organization_id=organization_id)
    authorize(
        db,
        principal,
        ResourceKind.payment,
        Operation.create,
        tenant_id=organization_id,
        owner_subject_id=student.subject_id,
    )
    payment = record_payment(
        db,
        organization_id=organization_id,
        student_id=student.id,
        amount=payload.amount,
        method=payload.method,
        recorded_by=principal.subject_id,
        proof_ref=payload.proof_file_name,
    )
    return serialize_payment_response(payment)


@router.get("/students/{student_id}/payments", response_model=PaymentListResponse, summary="List student payments")
def list_student_payments(
    student_id: int,
    principal: Principal = Depends(get_current_principal),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    organization_id = require_tenant_id(principal)
    student = get_student_in_organization(db, student_id=student_id, organization_id=organization_id)
    authorize(
        db,
        principal,
        ResourceKind.payment,
        Operation.read,
        tenant_id=organization_id,
        owner_subject_id=student.subject_id,
    )
    items, meta = paginate_scalars(
        db,
        build_student_payments_query(student_id=student_id, organization_id=organization_id),
        offset=pagination.offset,
        limit=pagination.limit,
        search=pagination.search,
        search_columns=PAYMENT_SEARCH_COLUMNS,
    )
    return {"items": [serialize_payment_response(item) for item in items], "pagination": meta}


@router.get("/payments/{payment_id}", response_model=PaymentResponse, summary="Get payment")
def get_payment_detail(
    payment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    payment = _load_payment_for(db, principal, payment_id, Operation.read)
    return serialize_payment_response(payment)


@router.post(
    "/payments/{payment_id}/allocations",
    response_model=PaymentResponse,
    summary="Allocate payment",
    description="All-or-nothing split of a payment across obligations. The targets must add up to the payment amount.",
)
def allocate_payment_endpoint(
    payment_id: int,
    payload: list[AllocationTargetPayload],
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    payment = _load_payment_for(db, principal, payment_id, Operation.update)
    with payment_ledger_lock(organization_id=payment.organization_id, payment_id=payment.id):
        allocate(
            db,
            payment_id=payment.id,
            organization_id=payment.organization_id,
            targets=_targets(payload),
            performed_by=principal.subject_id,
        )
    return serialize_payment_response(
        get_payment(db, payment_id=payment.id, organization_id=payment.organization_id)
    )


@router.post("/payments/{payment_id}/verify", response_model=PaymentResponse, summary="Verify payment")
def verify_payment_endpoint(
    payment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    payment = _load_payment_for(db, principal, payment_id, Operation.update)
    with payment_ledger_lock(organization_id=payment.organization_id, payment_id=payment.id):
        payment = verify_payment(
            db,
            payment_id=payment.id,
            organization_id=payment.organization_id,
            verifier_subject_id=principal.subject_id,
        )
    return serialize_payment_response(payment)


@router.post(
    "/payments/{payment_id}/reject",
    response_model=PaymentResponse,
    summary="Reject or reverse payment",
    description="Voids the payment's allocations. Rejecting an already rejected payment returns it unchanged.",
)
def reject_payment_endpoint(
    payment_id: int,
    payload: PaymentReject,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    payment = _load_payment_for(db, principal, payment_id, Operation.update)
    with payment_ledger_lock(organization_id=payment.organization_id, payment_id=payment.id):
        payment = reject_payment(
            db,
            payment_id=payment.id,
            organization_id=payment.organization_id,
            performed_by=principal.subject_id,
            reason=payload.reason,
        )
    return serialize_payment_response(payment)


@router.post(
    "/payments/{payment_id}/receipt-upload-url",
    response_model=ReceiptUrlResponse,
    summary="Receipt upload URL",
    description="Short-lived signed URL for uploading the receipt image to its fixed path.",
)
def receipt_upload_url(
    payment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    payment = _load_payment_for(db, principal, payment_id, Operation.create)
    if payment.proof_path is None:
        raise ValidationError("Payment does not take a receipt")
    return create_signed_receipt_url(payment.proof_path, mode="write")


@router.get("/payments/{payment_id}/receipt-url", response_model=ReceiptUrlResponse, summary="Receipt download URL")
def receipt_download_url(
    payment_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    payment = _load_payment_for(db, principal, payment_id, Operation.read)
    if payment.proof_path is None:
        raise ValidationError("Payment has no receipt")
    return create_signed_receipt_url(payment.proof_path, mode="read")
