"""
Application-side timestamps.

Ledger rows get their timestamps from Python rather than the database so
the values are known right after flush and keep microsecond ordering on
every backend.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
