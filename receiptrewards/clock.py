"""
Naive-UTC clock helpers.

All timestamps are stored as naive UTC so that values read back from
SQLite compare cleanly with freshly computed ones.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

