"""Naive-UTC clock shared by the runtime and storage."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    # Stored timestamps are naive UTC; SQLite hands them back without tzinfo.
    return datetime.now(timezone.utc).replace(tzinfo=None)
