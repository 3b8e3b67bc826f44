from enum import Enum


class AuditAction(str, Enum):
    privileged_read = "PRIVILEGED_READ"
    invite_created = "INVITE_CREATED"
    organization_created = "ORGANIZATION_CREATED"
    organization_tier_changed = "ORGANIZATION_TIER_CHANGED"
    organization_status_changed = "ORGANIZATION_STATUS_CHANGED"
    student_enrolled = "STUDENT_ENROLLED"
    student_unenrolled = "STUDENT_UNENROLLED"
    clearance_period_created = "CLEARANCE_PERIOD_CREATED"
    fee_type_created = "FEE_TYPE_CREATED"
    fee_assigned = "FEE_ASSIGNED"
    fine_issued = "FINE_ISSUED"
    payment_recorded = "PAYMENT_RECORDED"
    payment_allocated = "PAYMENT_ALLOCATED"
    payment_verified = "PAYMENT_VERIFIED"
    payment_rejected = "PAYMENT_REJECTED"
    waiver_requested = "WAIVER_REQUESTED"
    waiver_granted = "WAIVER_GRANTED"
    waiver_rejected = "WAIVER_REJECTED"
    appeal_filed = "APPEAL_FILED"
    appeal_approved = "APPEAL_APPROVED"
    appeal_rejected = "APPEAL_REJECTED"
    clearance_overridden = "CLEARANCE_OVERRIDDEN"
    clearance_override_cleared = "CLEARANCE_OVERRIDE_CLEARED"
