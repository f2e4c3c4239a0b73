from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from lockguard.models import AuditEvent, AuditEventModel, Base

db_url = ""
engine = None
SessionLocal = None


def _to_url(target: str) -> str:
    return target if "://" in target else f"sqlite:///{target}"


def init_db(target: str):
    global db_url, engine, SessionLocal
    db_url = _to_url(target)

    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    engine = create_engine(db_url, connect_args=connect_args)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)


def dispose_db():
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None


@contextmanager
def get_session():
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _aware(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes; everything stored here is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def insert_event(event: AuditEvent) -> None:
    with get_session() as session:
        session.add(AuditEventModel(
            kind=event.kind,
            sequence=event.sequence,
            identifier=event.identifier,
            username=event.username,
            actor=event.actor,
            occurred_at=event.occurred_at,
            failure_count=event.failure_count,
            locked_until=event.locked_until,
        ))


def recent_events(limit: int = 100, identifier: str | None = None) -> list[AuditEvent]:
    with get_session() as session:
        stmt = select(AuditEventModel).order_by(AuditEventModel.occurred_at.desc(), AuditEventModel.id.desc())
        if identifier is not None:
            stmt = stmt.where(AuditEventModel.identifier == identifier)
        rows = session.execute(stmt.limit(limit)).scalars().all()
        return [
            AuditEvent.from_orm_model(row).model_copy(update={
                "occurred_at": _aware(row.occurred_at),
                "locked_until": _aware(row.locked_until),
            })
            for row in rows
        ]


class SqlAuditSink:
    """Durable audit trail in the lockout_audit_events table."""

    def emit(self, event: AuditEvent) -> None:
        insert_event(event)

    def recent(self, limit: int = 100, identifier: str | None = None) -> list[AuditEvent]:
        return recent_events(limit, identifier)
