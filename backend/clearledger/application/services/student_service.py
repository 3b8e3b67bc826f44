from sqlalchemy import select, update
from sqlalchemy.orm import Session

from clearledger.application.errors import ConflictError, NotFoundError, ValidationError
from clearledger.application.services.audit_service import record_audit_entry
from clearledger.domain.access_policies import ResourceKind
from clearledger.domain.audit_actions import AuditAction
from clearledger.domain.organization_enums import OrganizationStatus, StudentStatus
from clearledger.infrastructure.db.models import Organization, Student
from clearledger.infrastructure.db.session import atomic
from clearledger.infrastructure.logging import get_logger
from clearledger.interfaces.api.v1.schemas.student import StudentEnroll

logger = get_logger(__name__)


def serialize_student_response(student: Student) -> dict:
    return {
        "id": student.id,
        "organization_id": student.organization_id,
        "subject_id": student.subject_id,
        "student_number": student.student_number,
        "first_name": student.first_name,
        "last_name": student.last_name,
        "email": student.email,
        "status": student.status,
        "created_at": student.created_at,
        "updated_at": student.updated_at,
    }


def _student_snapshot(student: Student) -> dict:
    return {"student_number": student.student_number, "status": student.status.value}


def get_student(db: Session, student_id: int) -> Student:
    student = db.get(Student, student_id)
    if student is None:
        raise NotFoundError("Student not found")
    return student


def get_student_in_organization(db: Session, *, student_id: int, organization_id: int) -> Student:
    student = db.execute(
        select(Student).where(Student.id == student_id, Student.organization_id == organization_id)
    ).scalar_one_or_none()
    if student is None:
        raise NotFoundError("Student not found")
    return student


STUDENT_SEARCH_COLUMNS = [Student.student_number, Student.first_name, Student.last_name]


def build_organization_students_query(*, organization_id: int):
    return select(Student).where(Student.organization_id == organization_id).order_by(Student.id)


def list_active_student_ids(db: Session, *, organization_id: int) -> list[int]:
    return list(
        db.execute(
            select(Student.id)
            .where(Student.organization_id == organization_id, Student.status == StudentStatus.active)
            .order_by(Student.id)
        )
        .scalars()
        .all()
    )


def _adjust_student_count(db: Session, *, organization_id: int, delta: int) -> None:
    # Relative update in the enrollment transaction; never read-modify-write.
    db.execute(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(student_count=Organization.student_count + delta)
        .execution_options(synchronize_session=False)
    )


def enroll_student(db: Session, *, organization_id: int, payload: StudentEnroll, performed_by: int) -> Student:
    with atomic(db):
        organization = db.execute(
            select(Organization).where(Organization.id == organization_id).with_for_update()
        ).scalar_one_or_none()
        if organization is None:
            raise NotFoundError("Organization not found")
        if organization.status != OrganizationStatus.active:
            raise ValidationError("Only active organizations can enroll students")

        student = db.execute(
            select(Student).where(
                Student.organization_id == organization_id,
                Student.student_number == payload.student_number,
            )
        ).scalar_one_or_none()
        if student is not None and student.status == StudentStatus.active:
            raise ConflictError("Student number is already enrolled")

        before = None
        if student is None:
            student = Student(organization_id=organization_id, student_number=payload.student_number)
            db.add(student)
        else:
            before = _student_snapshot(student)
        student.subject_id = payload.subject_id
        student.first_name = payload.first_name
        student.last_name = payload.last_name
        student.email = payload.email
        student.status = StudentStatus.active
        db.flush()
        _adjust_student_count(db, organization_id=organization_id, delta=1)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.student,
            entity_id=student.id,
            action=AuditAction.student_enrolled,
            performed_by=performed_by,
            organization_id=organization_id,
            before=before,
            after=_student_snapshot(student),
        )
    db.refresh(organization)
    logger.info(
        "student_enrolled",
        organization_id=organization_id,
        student_id=student.id,
        student_count=organization.student_count,
    )
    return student


def unenroll_student(db: Session, *, organization_id: int, student_id: int, performed_by: int) -> Student:
    with atomic(db):
        student = db.execute(
            select(Student)
            .where(Student.id == student_id, Student.organization_id == organization_id)
            .with_for_update()
        ).scalar_one_or_none()
        if student is None:
            raise NotFoundError("Student not found")
        if student.status == StudentStatus.inactive:
            raise ConflictError("Student is not enrolled")
        before = _student_snapshot(student)
        student.status = StudentStatus.inactive
        db.flush()
        _adjust_student_count(db, organization_id=organization_id, delta=-1)
        record_audit_entry(
            db,
            entity_kind=ResourceKind.student,
            entity_id=student.id,
            action=AuditAction.student_unenrolled,
            performed_by=performed_by,
            organization_id=organization_id,
            before=before,
            after=_student_snapshot(student),
        )
    logger.info("student_unenrolled", organization_id=organization_id, student_id=student_id)
    return student
