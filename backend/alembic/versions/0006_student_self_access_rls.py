"""student self access row level security

Revision ID: 0006_student_self_access_rls
Revises: 0005_tenant_rls
Create Date: 2026-10-20 09:00:00
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "0006_student_self_access_rls"
down_revision = "0005_tenant_rls"
branch_labels = None
depends_on = None

NOT_A_STUDENT = "current_setting('app.current_role', true) IS DISTINCT FROM 'student'"
CURRENT_SUBJECT = "NULLIF(current_setting('app.current_subject_id', true), '')::int"

# Restrictive policies are AND-ed with tenant isolation: a student keeps only the rows that are theirs.
SELF_ACCESS_CONDITIONS = {
    "students": f"students.subject_id = {CURRENT_SUBJECT}",
    "fee_assignments": "fee_assignments.student_id IN (SELECT students.id FROM students)",
    "fines": "fines.student_id IN (SELECT students.id FROM students)",
    "payments": "payments.student_id IN (SELECT students.id FROM students)",
    "appeals": "appeals.student_id IN (SELECT students.id FROM students)",
    "clearances": "clearances.student_id IN (SELECT students.id FROM students)",
    "waivers": (
        "EXISTS (SELECT 1 FROM fee_assignments WHERE fee_assignments.id = waivers.fee_assignment_id)"
        " OR EXISTS (SELECT 1 FROM fines WHERE fines.id = waivers.fine_id)"
    ),
}


def upgrade() -> None:
    for table, condition in SELF_ACCESS_CONDITIONS.items():
        op.execute(f"DROP POLICY IF EXISTS {table}_self_access ON {table}")
        op.execute(
            f"""
            CREATE POLICY {table}_self_access
            ON {table}
            AS RESTRICTIVE
            FOR ALL
            USING ({NOT_A_STUDENT} OR ({condition}))
            WITH CHECK ({NOT_A_STUDENT} OR ({condition}))
            """
        )


def downgrade() -> None:
    for table in reversed(list(SELF_ACCESS_CONDITIONS)):
        op.execute(f"DROP POLICY IF EXISTS {table}_self_access ON {table}")
