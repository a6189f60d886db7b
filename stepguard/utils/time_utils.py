from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back from the store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
