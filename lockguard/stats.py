from lockguard.models import LockoutStats
from lockguard.store import AttemptStore


class StatsAggregator:
    def __init__(self, store: AttemptStore):
        self.store = store

    def compute(self) -> LockoutStats:
        # one locked pass over the store, so the locked count agrees with list_locked
        views = self.store.list_all()
        policy = self.store.policy
        return LockoutStats(
            total_tracked=len(views),
            currently_locked=sum(1 for v in views if v.locked),
            max_attempts=policy.max_attempts,
            lockout_minutes=policy.lockout_minutes,
        )
