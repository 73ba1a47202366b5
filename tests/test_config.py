"""
Settings tests
"""
from datetime import timedelta

from reminder_flows.config import Settings


def test_defaults():
    settings = Settings.from_env({})

    assert settings.database_url.startswith("sqlite+aiosqlite")
    assert settings.tick_interval == 60.0
    assert settings.lock_lease == timedelta(minutes=5)
    assert settings.scheduler_enabled is True
    assert settings.worker_id


def test_from_env():
    settings = Settings.from_env({
        "DATABASE_URL": "postgresql+asyncpg://user:pass@db/reminders",
        "REMINDER_TICK_INTERVAL": "15",
        "REMINDER_LOCK_LEASE": "120",
        "REMINDER_SEND_TIMEOUT": "5.5",
        "REMINDER_TICK_CONCURRENCY": "4",
        "REMINDER_WORKER_ID": "worker-a",
        "REMINDER_SCHEDULER_ENABLED": "false",
        "API_PORT": "9000",
        "LOG_LEVEL": "debug",
    })

    assert settings.database_url == "postgresql+asyncpg://user:pass@db/reminders"
    assert settings.tick_interval == 15.0
    assert settings.lock_lease == timedelta(minutes=2)
    assert settings.send_timeout == 5.5
    assert settings.tick_concurrency == 4
    assert settings.worker_id == "worker-a"
    assert settings.scheduler_enabled is False
    assert settings.api_port == 9000
    assert settings.log_level == "DEBUG"
