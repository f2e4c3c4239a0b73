import logging
from dataclasses import dataclass
from typing import Callable, Optional

from lockguard.engine import LockoutEngine
from lockguard.errors import InvalidIdentifier
from lockguard.models import LockStatus

logger = logging.getLogger(__name__)

SUCCESS = "success"
INVALID_CREDENTIALS = "invalid_credentials"
LOCKED_OUT = "locked_out"
ENGINE_ERROR = "engine_error"


@dataclass(frozen=True)
class GuardResult:
    allowed: bool
    reason: str
    status: Optional[LockStatus] = None
    message: str = ""


def lockout_message(status: LockStatus) -> str:
    minutes = status.remaining_minutes or 1
    unit = "minute" if minutes == 1 else "minutes"
    return f"Too many failed attempts. Try again in {minutes} {unit}."


class LoginGuard:
    """Wraps a credential check with the lockout engine.

    ``fail_closed`` decides what happens when the engine itself errors:
    deny the login (default) or fall through to the credential check.
    """

    def __init__(self, engine: LockoutEngine, fail_closed: bool = True):
        self.engine = engine
        self.fail_closed = fail_closed

    def attempt(self, ip: str, username: Optional[str], verify: Callable[[], bool]) -> GuardResult:
        identifier = self.engine.identifier_for(ip, username)

        try:
            status = self.engine.check_and_consume(identifier)
        except InvalidIdentifier:
            raise
        except Exception:
            logger.exception("lockout check failed for %s", identifier)
            if self.fail_closed:
                return GuardResult(False, ENGINE_ERROR, message="Login temporarily unavailable.")
            status = None

        if status is not None and status.locked:
            logger.info("rejected login for %s: locked for %ss", identifier, status.remaining_seconds)
            return GuardResult(False, LOCKED_OUT, status, lockout_message(status))

        valid = verify()

        try:
            if valid:
                self.engine.record_success(identifier)
                status = self.engine.check_and_consume(identifier)
            else:
                status = self.engine.record_failure(identifier, username)
        except Exception:
            logger.exception("recording login result failed for %s", identifier)
            if self.fail_closed:
                return GuardResult(False, ENGINE_ERROR, message="Login temporarily unavailable.")
            status = None

        if valid:
            return GuardResult(True, SUCCESS, status)
        if status is not None and status.locked:
            return GuardResult(False, LOCKED_OUT, status, lockout_message(status))
        return GuardResult(False, INVALID_CREDENTIALS, status, "Invalid username or password")
