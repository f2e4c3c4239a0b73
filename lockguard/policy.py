from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lockguard.config import Config
    from lockguard.store import AttemptRecord


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lockout_duration_s: float = 15 * 60
    extend_on_locked_attempt: bool = False
    key_by_username: bool = False

    def __post_init__(self):
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValueError(f"max_attempts must be a positive integer, got {self.max_attempts!r}")
        if self.lockout_duration_s <= 0:
            raise ValueError(f"lockout duration must be positive, got {self.lockout_duration_s!r}")

    @classmethod
    def from_config(cls, cfg: "Config") -> "LockoutPolicy":
        return cls(
            max_attempts=cfg.max_attempts,
            lockout_duration_s=cfg.lockout_duration_minutes * 60,
            extend_on_locked_attempt=cfg.extend_on_locked_attempt,
            key_by_username=cfg.key_by_username,
        )

    @property
    def lockout_seconds(self) -> float:
        return self.lockout_duration_s

    @property
    def lockout_minutes(self) -> float:
        minutes = self.lockout_duration_s / 60
        return int(minutes) if minutes.is_integer() else minutes

    def lock_deadline(self, now: float) -> float:
        return now + self.lockout_duration_s

    def reaches_threshold(self, failure_count: int) -> bool:
        return failure_count >= self.max_attempts

    def is_locked(self, record: "AttemptRecord", now: float) -> bool:
        return record.locked_until is not None and now < record.locked_until

    def is_expired(self, record: "AttemptRecord", now: float) -> bool:
        return record.locked_until is not None and now >= record.locked_until

    def attempts_remaining(self, failure_count: int) -> int:
        return max(0, self.max_attempts - failure_count)
