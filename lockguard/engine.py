"""
Public entry point for the login lockout engine.

An authentication endpoint calls ``check_and_consume`` before verifying
credentials and ``record_success``/``record_failure`` afterwards. An admin
console polls ``list_locked``/``list_all``/``stats`` and may call ``unlock``.

State is volatile: it lives in one process and is lost on restart.
"""

import logging
import threading
from typing import Callable, List, Optional

from lockguard import db
from lockguard.audit import AuditSink, FanoutAuditSink, JsonlAuditSink, NullAuditSink
from lockguard.config import Config
from lockguard.models import AttemptView, LockedAccountView, LockoutStats, LockStatus
from lockguard.policy import LockoutPolicy
from lockguard.stats import StatsAggregator
from lockguard.store import AttemptStore, normalize_identifier
from lockguard.sweeper import Sweeper

logger = logging.getLogger(__name__)


def build_identifier(ip: str, username: Optional[str] = None, key_by_username: bool = False) -> str:
    key = normalize_identifier(ip)
    if key_by_username and username and username.strip():
        return f"{key}|{username.strip().lower()}"
    return key


class LockoutEngine:
    def __init__(
        self,
        policy: Optional[LockoutPolicy] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.audit_sink = audit_sink or NullAuditSink()
        self.store = AttemptStore(policy or LockoutPolicy(), self.audit_sink, clock)
        self.stats_aggregator = StatsAggregator(self.store)
        self.sweeper: Optional[Sweeper] = None

    @property
    def policy(self) -> LockoutPolicy:
        return self.store.policy

    def reload_policy(self, policy: LockoutPolicy) -> None:
        old = self.store.policy
        self.store.set_policy(policy)
        logger.info(
            "lockout policy reloaded: max_attempts %d -> %d, lockout %s -> %s minutes",
            old.max_attempts, policy.max_attempts, old.lockout_minutes, policy.lockout_minutes,
        )

    def identifier_for(self, ip: str, username: Optional[str] = None) -> str:
        return build_identifier(ip, username, self.policy.key_by_username)

    def record_failure(self, identifier: str, username: Optional[str] = None) -> LockStatus:
        return self.store.record_failure(identifier, username)

    def record_success(self, identifier: str) -> None:
        self.store.record_success(identifier)

    def check_and_consume(self, identifier: str) -> LockStatus:
        return self.store.check_and_consume(identifier)

    def unlock(self, identifier: str, actor: str = "admin") -> bool:
        return self.store.unlock(identifier, actor)

    def get(self, identifier: str) -> Optional[AttemptView]:
        return self.store.get(identifier)

    def list_locked(self) -> List[LockedAccountView]:
        return self.store.list_locked()

    def list_all(self) -> List[AttemptView]:
        return self.store.list_all()

    def stats(self) -> LockoutStats:
        return self.stats_aggregator.compute()

    def start_sweeper(self, interval_s: float = 300, idle_s: float = 3600) -> Sweeper:
        if self.sweeper is None:
            self.sweeper = Sweeper(self.store, interval_s, idle_s)
        self.sweeper.start()
        return self.sweeper

    def close(self) -> None:
        if self.sweeper is not None:
            self.sweeper.stop()
            self.sweeper = None


_engine: Optional[LockoutEngine] = None
_engine_lock = threading.Lock()


def build_audit_sink(cfg: Config) -> AuditSink:
    sinks: list[AuditSink] = []
    if cfg.audit_log_file:
        sinks.append(JsonlAuditSink(cfg.audit_log_file))
    if cfg.audit_db_url:
        db.init_db(cfg.audit_db_url)
        sinks.append(db.SqlAuditSink())
    if not sinks:
        return NullAuditSink()
    if len(sinks) == 1:
        return sinks[0]
    return FanoutAuditSink(*sinks)


def init_engine(cfg: Config, audit_sink: Optional[AuditSink] = None) -> LockoutEngine:
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.close()
        engine = LockoutEngine(LockoutPolicy.from_config(cfg), audit_sink or build_audit_sink(cfg))
        if cfg.enable_sweeper:
            engine.start_sweeper(cfg.sweep_interval_s, cfg.sweep_idle_s)
        _engine = engine
    logger.info(
        "lockout engine ready: max_attempts=%d lockout_minutes=%s",
        engine.policy.max_attempts, engine.policy.lockout_minutes,
    )
    return engine


def get_engine() -> LockoutEngine:
    if _engine is None:
        raise RuntimeError("Lockout engine not initialized. Call init_engine() first.")
    return _engine


def shutdown_engine() -> None:
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.close()
        _engine = None
