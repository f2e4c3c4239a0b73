from dataclasses import dataclass, fields
import json
import os

ENV_PREFIX = "LOCKGUARD_"


def _bool(env_val: str, default: bool) -> bool:
    if env_val is None:
        return default
    return env_val.lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
    max_attempts: int = 5
    lockout_duration_minutes: int = 15
    extend_on_locked_attempt: bool = False
    key_by_username: bool = False

    fail_closed: bool = True

    enable_sweeper: bool = False
    sweep_interval_s: int = 300
    sweep_idle_s: int = 3600

    audit_log_file: str = "lockout_audit.log"
    audit_db_url: str = ""

    admin_token: str = "change-me"
    log_level: str = "INFO"


def _apply_env(cfg: Config) -> None:
    for f in fields(cfg):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        current = getattr(cfg, f.name)
        if isinstance(current, bool):
            setattr(cfg, f.name, _bool(raw, current))
        elif isinstance(current, int):
            try:
                setattr(cfg, f.name, int(raw))
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{f.name.upper()} must be an integer, got {raw!r}")
        else:
            setattr(cfg, f.name, raw)


def load_config(path: str | None = None) -> Config:
    cfg = Config()
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for k, v in data.items():
            if hasattr(cfg, k):
                setattr(cfg, k, v)

    _apply_env(cfg)
    return cfg
