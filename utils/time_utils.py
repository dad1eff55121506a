# utils/time_utils.py
from datetime import datetime, timezone


def utcnow():
    """Naive UTC timestamp, matching the DateTime columns of the ledger."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
