from sqlalchemy import text
from sqlalchemy.orm import Session

RLS_TESTER_TABLES = ("students", "fee_assignments", "fines", "payments", "payment_allocations", "clearances")


def prepare_rls_tester(db: Session) -> None:
    db.execute(
        text(
            """
            DO $$
            BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = 'rls_tester') THEN
                    CREATE ROLE rls_tester NOLOGIN;
                END IF;
            END
            $$
            """
        )
    )
    db.execute(text("GRANT USAGE ON SCHEMA public TO rls_tester"))
    db.execute(text(f"GRANT SELECT ON {', '.join(RLS_TESTER_TABLES)} TO rls_tester"))
    db.commit()


def _scope_connection(connection, *, organization_id: int | None, role: str, subject_id: int) -> None:
    connection.execute(text("SET LOCAL ROLE rls_tester"))
    settings = {
        "app.current_organization_id": "" if organization_id is None else str(organization_id),
        "app.current_role": role,
        "app.current_subject_id": str(subject_id),
    }
    for name, value in settings.items():
        connection.execute(text("SELECT set_config(:name, :value, true)"), {"name": name, "value": value})


def read_student_numbers_as(
    db: Session, *, organization_id: int | None, role: str, subject_id: int = 0
) -> list[str]:
    """Read students through RLS as a non-superuser scoped to one organization."""
    with db.get_bind().connect() as connection, connection.begin() as transaction:
        _scope_connection(connection, organization_id=organization_id, role=role, subject_id=subject_id)
        rows = connection.execute(text("SELECT student_number FROM students ORDER BY student_number")).all()
        transaction.rollback()
    return [row[0] for row in rows]


def count_rows_as(db: Session, table: str, *, organization_id: int, role: str, subject_id: int = 0) -> int:
    with db.get_bind().connect() as connection, connection.begin() as transaction:
        _scope_connection(connection, organization_id=organization_id, role=role, subject_id=subject_id)
        count = connection.execute(text(f"SELECT count(*) FROM {table}")).scalar_one()
        transaction.rollback()
    return count
