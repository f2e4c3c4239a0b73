import pytest
import sys
import os
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
from lockguard.engine import LockoutEngine
from lockguard.errors import EngineCorrupted, InvalidIdentifier
from lockguard.guard import ENGINE_ERROR, INVALID_CREDENTIALS, LOCKED_OUT, SUCCESS, LoginGuard, lockout_message
from lockguard.policy import LockoutPolicy


@pytest.fixture
def engine():
    return LockoutEngine(LockoutPolicy(3, 15 * 60))


class TestLoginGuard:
    """The authentication flow around the engine"""

    def test_success(self, engine):
        guard = LoginGuard(engine)
        result = guard.attempt("10.0.0.1", "alice", lambda: True)
        assert result.allowed is True
        assert result.reason == SUCCESS
        assert result.status.failure_count == 0

    def test_invalid_credentials_counts(self, engine):
        guard = LoginGuard(engine)
        result = guard.attempt("10.0.0.1", "alice", lambda: False)
        assert result.allowed is False
        assert result.reason == INVALID_CREDENTIALS
        assert result.status.attempts_remaining == 2
        assert engine.get("10.0.0.1").username == "alice"

    def test_lockout_skips_verification(self, engine):
        guard = LoginGuard(engine)
        for _ in range(2):
            guard.attempt("10.0.0.1", "alice", lambda: False)

        third = guard.attempt("10.0.0.1", "alice", lambda: False)
        assert third.reason == LOCKED_OUT
        assert "15 minutes" in third.message

        verify = MagicMock(return_value=True)
        result = guard.attempt("10.0.0.1", "alice", verify)
        assert result.allowed is False
        assert result.reason == LOCKED_OUT
        verify.assert_not_called()

    def test_success_resets_counter(self, engine):
        guard = LoginGuard(engine)
        guard.attempt("10.0.0.1", "alice", lambda: False)
        guard.attempt("10.0.0.1", "alice", lambda: False)
        guard.attempt("10.0.0.1", "alice", lambda: True)
        assert engine.check_and_consume("10.0.0.1").failure_count == 0

    def test_invalid_identifier_propagates(self, engine):
        guard = LoginGuard(engine)
        with pytest.raises(InvalidIdentifier):
            guard.attempt("", "alice", lambda: True)

    def test_fail_closed_on_engine_error(self, engine):
        guard = LoginGuard(engine, fail_closed=True)
        verify = MagicMock(return_value=True)
        with patch.object(engine, "check_and_consume", side_effect=EngineCorrupted("boom")):
            result = guard.attempt("10.0.0.1", "alice", verify)
        assert result.allowed is False
        assert result.reason == ENGINE_ERROR
        verify.assert_not_called()

    def test_fail_open_on_engine_error(self, engine):
        guard = LoginGuard(engine, fail_closed=False)
        with patch.object(engine, "check_and_consume", side_effect=EngineCorrupted("boom")):
            with patch.object(engine, "record_success"):
                result = guard.attempt("10.0.0.1", "alice", lambda: True)
        assert result.allowed is True
        assert result.reason == SUCCESS
        assert result.status is None

    def test_fail_closed_when_recording_fails(self, engine):
        guard = LoginGuard(engine)
        with patch.object(engine, "record_success", side_effect=EngineCorrupted("boom")):
            result = guard.attempt("10.0.0.1", "alice", lambda: True)
        assert result.allowed is False
        assert result.reason == ENGINE_ERROR

    def test_keyed_by_username(self):
        engine = LockoutEngine(LockoutPolicy(1, 60, key_by_username=True))
        guard = LoginGuard(engine)
        guard.attempt("10.0.0.1", "alice", lambda: False)

        assert guard.attempt("10.0.0.1", "alice", lambda: True).reason == LOCKED_OUT
        assert guard.attempt("10.0.0.1", "bob", lambda: True).reason == SUCCESS


class TestLockoutMessage:
    def test_singular_minute(self, engine):
        engine.reload_policy(LockoutPolicy(1, 30))
        status = engine.record_failure("a")
        assert lockout_message(status) == "Too many failed attempts. Try again in 1 minute."
