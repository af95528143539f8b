from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_from_now(seconds: float) -> datetime:
    return utcnow() + timedelta(seconds=seconds)
