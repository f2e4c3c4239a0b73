"""
In-memory attempt store: the only code allowed to mutate attempt records.

One ``threading.Lock`` guards the whole map. Login traffic is low volume and
every critical section is a dict lookup plus a few field writes, so a single
coarse lock keeps the "read count, compare to threshold, conditionally lock"
step indivisible without the bookkeeping of striped locks.

Expiry is lazy: a lock whose deadline has passed is cleared by the next call
that touches the identifier. Nothing here starts a thread; see ``sweeper``
for the optional memory-hygiene pass.

Audit events are built inside the critical section but handed to the sink
after the lock is released, so two racing transitions may reach a sink out
of order. Each event carries a ``sequence`` number assigned under the lock;
sort on it to recover the order in which transitions happened.
"""

import logging
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from lockguard.audit import AuditSink, NullAuditSink, emit_safely
from lockguard.errors import EngineCorrupted, InvalidIdentifier
from lockguard.models import (
    AttemptView,
    AuditEvent,
    LockedAccountView,
    LockStatus,
    ceil_minutes,
    to_datetime,
)
from lockguard.policy import LockoutPolicy

logger = logging.getLogger(__name__)

MAX_IDENTIFIER_LENGTH = 256
SYSTEM_ACTOR = "system"


def normalize_identifier(identifier: str) -> str:
    if not isinstance(identifier, str):
        raise InvalidIdentifier(identifier, "not a string")
    key = identifier.strip()
    if not key:
        raise InvalidIdentifier(identifier, "empty")
    if len(key) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifier(identifier, f"longer than {MAX_IDENTIFIER_LENGTH} characters")
    if not key.isprintable():
        raise InvalidIdentifier(identifier, "contains non-printable characters")
    return key


@dataclass
class AttemptRecord:
    identifier: str
    failure_count: int = 0
    last_attempt_at: float = 0.0
    username: Optional[str] = None
    locked_until: Optional[float] = None


class AttemptStore:
    def __init__(
        self,
        policy: LockoutPolicy,
        audit_sink: Optional[AuditSink] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._policy = policy
        self._audit = audit_sink or NullAuditSink()
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, AttemptRecord] = {}
        self._poisoned = False
        self._event_seq = 0

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    def set_policy(self, policy: LockoutPolicy) -> None:
        events = []
        with self._guard():
            now = self._now()
            self._policy = policy
            # existing locks keep their deadline; counters are capped at the new threshold
            for record in self._records.values():
                if record.locked_until is not None:
                    record.failure_count = min(record.failure_count, policy.max_attempts)
                elif policy.reaches_threshold(record.failure_count):
                    record.failure_count = policy.max_attempts
                    record.locked_until = policy.lock_deadline(now)
                    events.append(self._event("lockout-triggered", record, SYSTEM_ACTOR, now))
                    logger.warning(
                        "lockout triggered for %s by policy reload (%d failures)",
                        record.identifier, record.failure_count,
                    )

        for event in events:
            emit_safely(self._audit, event)

    def _event(self, kind: str, record: AttemptRecord, actor: str, now: float) -> AuditEvent:
        # numbered under the store lock so sinks can restore transition order
        self._event_seq += 1
        return AuditEvent(
            kind=kind,
            sequence=self._event_seq,
            identifier=record.identifier,
            username=record.username,
            actor=actor,
            occurred_at=to_datetime(now),
            failure_count=record.failure_count,
            locked_until=to_datetime(record.locked_until),
        )

    def _now(self) -> float:
        # time.time is looked up per call so tests can patch it
        return self._clock() if self._clock is not None else time.time()

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._lock:
            if self._poisoned:
                raise EngineCorrupted("attempt store is corrupted; rebuild the engine")
            yield

    def _verify(self, record: AttemptRecord) -> None:
        ok = record.failure_count >= 0
        if record.locked_until is None:
            ok = ok and record.failure_count < self._policy.max_attempts
        else:
            ok = ok and 0 < record.failure_count <= self._policy.max_attempts
        if not ok:
            self._poisoned = True
            logger.critical("attempt store invariant broken for %s: %r", record.identifier, record)
            raise EngineCorrupted(f"invariant broken for {record.identifier!r}")

    def _expire(self, key: str, now: float) -> Optional[AttemptRecord]:
        """Return the live record for key, dropping it first if its lock has lapsed."""
        record = self._records.get(key)
        if record is not None and self._policy.is_expired(record, now):
            del self._records[key]
            logger.info("lockout expired for %s", key)
            return None
        return record

    def _expire_all(self, now: float) -> None:
        for key in [k for k, r in self._records.items() if self._policy.is_expired(r, now)]:
            del self._records[key]
            logger.info("lockout expired for %s", key)

    def _status(self, key: str, record: Optional[AttemptRecord], now: float) -> LockStatus:
        if record is None:
            return LockStatus(
                identifier=key,
                locked=False,
                failure_count=0,
                attempts_remaining=self._policy.max_attempts,
            )
        if self._policy.is_locked(record, now):
            return LockStatus(
                identifier=key,
                locked=True,
                remaining_seconds=math.ceil(record.locked_until - now),
                failure_count=record.failure_count,
                attempts_remaining=0,
            )
        return LockStatus(
            identifier=key,
            locked=False,
            failure_count=record.failure_count,
            attempts_remaining=self._policy.attempts_remaining(record.failure_count),
        )

    def record_failure(self, identifier: str, username: Optional[str] = None) -> LockStatus:
        key = normalize_identifier(identifier)
        event = None
        with self._guard():
            now = self._now()
            policy = self._policy
            record = self._expire(key, now)
            if record is None:
                record = AttemptRecord(identifier=key)
                self._records[key] = record

            record.last_attempt_at = now
            record.username = username or None

            if policy.is_locked(record, now):
                if policy.extend_on_locked_attempt:
                    record.locked_until = policy.lock_deadline(now)
                    logger.info("lockout for %s extended by attempt while locked", key)
            else:
                record.failure_count += 1
                if policy.reaches_threshold(record.failure_count):
                    record.failure_count = policy.max_attempts
                    record.locked_until = policy.lock_deadline(now)
                    event = self._event("lockout-triggered", record, SYSTEM_ACTOR, now)
                    logger.warning(
                        "lockout triggered for %s after %d failures (username=%s)",
                        key, record.failure_count, record.username,
                    )

            self._verify(record)
            status = self._status(key, record, now)

        if event is not None:
            emit_safely(self._audit, event)
        return status

    def record_success(self, identifier: str) -> None:
        key = normalize_identifier(identifier)
        with self._guard():
            self._records.pop(key, None)

    def check_and_consume(self, identifier: str) -> LockStatus:
        key = normalize_identifier(identifier)
        with self._guard():
            now = self._now()
            record = self._expire(key, now)
            return self._status(key, record, now)

    def unlock(self, identifier: str, actor: str = "admin") -> bool:
        key = normalize_identifier(identifier)
        event = None
        with self._guard():
            now = self._now()
            record = self._records.pop(key, None)
            was_locked = record is not None and self._policy.is_locked(record, now)
            if was_locked:
                event = self._event("unlock", record, actor, now)
                logger.info("%s unlocked %s", actor, key)
            else:
                logger.info("unlock requested by %s for %s but no lock was present", actor, key)

        if event is not None:
            emit_safely(self._audit, event)
        return was_locked

    def get(self, identifier: str) -> Optional[AttemptView]:
        key = normalize_identifier(identifier)
        with self._guard():
            now = self._now()
            record = self._expire(key, now)
            return None if record is None else self._view(record, now)

    def _view(self, record: AttemptRecord, now: float) -> AttemptView:
        return AttemptView(
            identifier=record.identifier,
            username=record.username,
            failure_count=record.failure_count,
            last_attempt_at=to_datetime(record.last_attempt_at),
            locked_until=to_datetime(record.locked_until),
            locked=self._policy.is_locked(record, now),
        )

    def list_locked(self) -> List[LockedAccountView]:
        with self._guard():
            now = self._now()
            self._expire_all(now)
            locked = []
            for record in self._records.values():
                if not self._policy.is_locked(record, now):
                    continue
                remaining = math.ceil(record.locked_until - now)
                locked.append(LockedAccountView(
                    identifier=record.identifier,
                    username=record.username,
                    failure_count=record.failure_count,
                    locked_until=to_datetime(record.locked_until),
                    remaining_seconds=remaining,
                    remaining_minutes=ceil_minutes(remaining),
                ))
            return locked

    def list_all(self) -> List[AttemptView]:
        with self._guard():
            now = self._now()
            self._expire_all(now)
            views = [self._view(r, now) for r in self._records.values()]
        views.sort(key=lambda v: v.last_attempt_at, reverse=True)
        return views

    def sweep(self, idle_seconds: float) -> int:
        """Evict records that are not locked and saw no failure for idle_seconds."""
        with self._guard():
            now = self._now()
            cutoff = now - idle_seconds
            stale = [
                key for key, record in self._records.items()
                if not self._policy.is_locked(record, now) and record.last_attempt_at < cutoff
            ]
            for key in stale:
                del self._records[key]
        if stale:
            logger.debug("sweep evicted %d idle records", len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._poisoned = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
