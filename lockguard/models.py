import math
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase


def to_datetime(ts: float | None) -> datetime | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def ceil_minutes(seconds: int | None) -> int | None:
    if seconds is None:
        return None
    return math.ceil(seconds / 60)


class Base(DeclarativeBase):
    pass


class AuditEventModel(Base):
    __tablename__ = "lockout_audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String, nullable=False)
    sequence = Column(Integer, nullable=False, default=0)
    identifier = Column(String, nullable=False, index=True)
    username = Column(String, nullable=True)
    actor = Column(String, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    failure_count = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)


class LockStatus(_Snapshot):
    identifier: str
    locked: bool
    remaining_seconds: int | None = None
    failure_count: int = 0
    attempts_remaining: int = 0

    @property
    def remaining_minutes(self) -> int | None:
        return ceil_minutes(self.remaining_seconds)


class LockedAccountView(_Snapshot):
    identifier: str
    username: str | None = None
    failure_count: int
    locked_until: datetime
    remaining_seconds: int
    remaining_minutes: int


class AttemptView(_Snapshot):
    identifier: str
    username: str | None = None
    failure_count: int
    last_attempt_at: datetime
    locked_until: datetime | None = None
    locked: bool = False


class LockoutStats(_Snapshot):
    total_tracked: int
    currently_locked: int
    max_attempts: int
    lockout_minutes: float


class AuditEvent(_Snapshot):
    kind: Literal["lockout-triggered", "unlock"]
    sequence: int = 0
    identifier: str
    username: str | None = None
    actor: str = "system"
    occurred_at: datetime
    failure_count: int = 0
    locked_until: datetime | None = None

    @classmethod
    def from_orm_model(cls, row: AuditEventModel) -> "AuditEvent":
        return cls(
            kind=row.kind,
            sequence=row.sequence,
            identifier=row.identifier,
            username=row.username,
            actor=row.actor,
            occurred_at=row.occurred_at,
            failure_count=row.failure_count,
            locked_until=row.locked_until,
        )


class LoginCheckRequest(BaseModel):
    ip: str
    username: str | None = None


class LoginResultRequest(LoginCheckRequest):
    success: bool


class UnlockRequest(BaseModel):
    identifier: str
    actor: str = Field(default="admin", min_length=1)


class UnlockResponse(BaseModel):
    identifier: str
    was_locked: bool
