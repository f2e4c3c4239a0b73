import pytest
import os
import tempfile
import gc
from datetime import datetime, timezone

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
from lockguard import db
from lockguard.engine import LockoutEngine
from lockguard.models import AuditEvent
from lockguard.policy import LockoutPolicy


@pytest.fixture
def temp_db():
    """Create a temporary audit database"""
    fd, temp_path = tempfile.mkstemp(suffix='.db')
    os.close(fd)

    try:
        db.init_db(temp_path)
        yield temp_path
    finally:
        db.dispose_db()
        gc.collect()
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except (PermissionError, OSError):
                pass


def test_get_session_requires_init():
    """Sessions are refused before init_db"""
    db.dispose_db()
    with pytest.raises(RuntimeError):
        with db.get_session():
            pass


def test_sqlite_path_becomes_url(temp_db):
    assert db.db_url == f"sqlite:///{temp_db}"


def test_insert_and_read_event(temp_db):
    """Events round-trip with timezone-aware timestamps"""
    when = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    db.insert_event(AuditEvent(
        kind="lockout-triggered",
        identifier="203.0.113.9",
        username="alice",
        occurred_at=when,
        sequence=7,
        failure_count=5,
        locked_until=when.replace(minute=15),
    ))

    events = db.recent_events()
    assert len(events) == 1
    event = events[0]
    assert event.kind == "lockout-triggered"
    assert event.username == "alice"
    assert event.actor == "system"
    assert event.occurred_at == when
    assert event.locked_until.tzinfo is not None
    assert event.sequence == 7


def test_recent_events_newest_first_and_filtered(temp_db):
    sink = db.SqlAuditSink()
    engine = LockoutEngine(LockoutPolicy(1, 60), sink)
    engine.record_failure("a")
    engine.record_failure("b")
    engine.unlock("a", actor="root")

    events = sink.recent()
    assert [e.kind for e in events][0] == "unlock"
    assert len(events) == 3

    only_a = sink.recent(identifier="a")
    assert {e.identifier for e in only_a} == {"a"}
    assert len(only_a) == 2

    assert len(sink.recent(limit=1)) == 1
