from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from clearledger.config import settings


class Base(DeclarativeBase):
    pass


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, future=True, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run a unit of work as one transaction: commit on success, roll back on any error."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def supports_row_level_security(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


_RLS_SETTINGS_KEY = "rls_settings"
SYSTEM_RLS_ROLE = "system"


def _set_rls_config(connection, values: dict[str, str]) -> None:
    for name, value in values.items():
        connection.execute(text("SELECT set_config(:name, :value, true)"), {"name": name, "value": value})


def apply_rls_settings(db: Session, *, subject_id: int, organization_id: int | None, role: str) -> None:
    """Expose the principal to row-level-security policies for every transaction of this session."""
    if not supports_row_level_security(db):
        return
    values = {
        "app.current_subject_id": str(subject_id),
        "app.current_organization_id": "" if organization_id is None else str(organization_id),
        "app.current_role": role,
    }
    db.info[_RLS_SETTINGS_KEY] = values
    _set_rls_config(db.connection(), values)


@event.listens_for(Session, "after_begin")
def _reapply_rls_settings(session: Session, _transaction, connection) -> None:
    # set_config(..., true) is transaction-local; commits inside a request start a fresh transaction.
    values = session.info.get(_RLS_SETTINGS_KEY)
    if values:
        _set_rls_config(connection, values)
