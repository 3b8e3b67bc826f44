"""tenant row level security

Revision ID: 0005_tenant_rls
Revises: 0004_audit_entries_and_notification_queue
Create Date: 2026-10-19 10:20:00
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "0005_tenant_rls"
down_revision = "0004_audit_entries_and_notification_queue"
branch_labels = None
depends_on = None

TENANT_TABLES = (
    "students",
    "clearance_periods",
    "fee_types",
    "fee_assignments",
    "fines",
    "payments",
    "appeals",
    "waivers",
    "clearances",
)

# Platform admins and background workers are scoped by the application, tenant principals by the database.
UNSCOPED_ROLES = "current_setting('app.current_role', true) IN ('platform_admin', 'system')"
CURRENT_ORGANIZATION = "NULLIF(current_setting('app.current_organization_id', true), '')::int"


def _enable_rls(table: str) -> None:
    op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
    op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")


def _disable_rls(table: str) -> None:
    op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
    op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")


def upgrade() -> None:
    for table in TENANT_TABLES:
        _enable_rls(table)
        op.execute(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table}")
        op.execute(
            f"""
            CREATE POLICY {table}_tenant_isolation
            ON {table}
            FOR ALL
            USING (
                {UNSCOPED_ROLES}
                OR organization_id = {CURRENT_ORGANIZATION}
            )
            WITH CHECK (
                {UNSCOPED_ROLES}
                OR organization_id = {CURRENT_ORGANIZATION}
            )
            """
        )

    _enable_rls("payment_allocations")
    op.execute("DROP POLICY IF EXISTS payment_allocations_tenant_isolation ON payment_allocations")
    op.execute(
        """
        CREATE POLICY payment_allocations_tenant_isolation
        ON payment_allocations
        FOR ALL
        USING (EXISTS (SELECT 1 FROM payments WHERE payments.id = payment_allocations.payment_id))
        WITH CHECK (EXISTS (SELECT 1 FROM payments WHERE payments.id = payment_allocations.payment_id))
        """
    )


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS payment_allocations_tenant_isolation ON payment_allocations")
    _disable_rls("payment_allocations")
    for table in reversed(TENANT_TABLES):
        op.execute(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table}")
        _disable_rls(table)
