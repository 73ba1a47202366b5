"""
Runtime settings read from the environment
"""
import os
import socket
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping, Optional


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: str = "sqlite+aiosqlite:///./reminder_flows.db"
    tick_interval: float = 60.0
    lock_lease_seconds: int = 300
    send_timeout: float = 30.0
    tick_concurrency: int = 10
    tick_batch_size: int = 100
    admin_lock_wait: float = 10.0
    worker_id: str = field(default_factory=_default_worker_id)
    scheduler_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False
    log_level: str = "INFO"

    @property
    def lock_lease(self) -> timedelta:
        return timedelta(seconds=self.lock_lease_seconds)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            database_url=env.get("DATABASE_URL", defaults.database_url),
            tick_interval=float(env.get("REMINDER_TICK_INTERVAL", defaults.tick_interval)),
            lock_lease_seconds=int(env.get("REMINDER_LOCK_LEASE", defaults.lock_lease_seconds)),
            send_timeout=float(env.get("REMINDER_SEND_TIMEOUT", defaults.send_timeout)),
            tick_concurrency=int(env.get("REMINDER_TICK_CONCURRENCY", defaults.tick_concurrency)),
            tick_batch_size=int(env.get("REMINDER_TICK_BATCH_SIZE", defaults.tick_batch_size)),
            admin_lock_wait=float(env.get("REMINDER_ADMIN_LOCK_WAIT", defaults.admin_lock_wait)),
            worker_id=env.get("REMINDER_WORKER_ID") or defaults.worker_id,
            scheduler_enabled=_as_bool(env.get("REMINDER_SCHEDULER_ENABLED"), defaults.scheduler_enabled),
            api_host=env.get("API_HOST", defaults.api_host),
            api_port=int(env.get("API_PORT", defaults.api_port)),
            api_reload=_as_bool(env.get("API_RELOAD"), defaults.api_reload),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
        )
