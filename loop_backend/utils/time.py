from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now_aware() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    """Naive UTC timestamp; DateTime columns store UTC without tzinfo."""
    return utc_now_aware().replace(tzinfo=None)


def utc_after_days(days: int, *, now: datetime | None = None) -> datetime:
    return (now or utc_now_naive()) + timedelta(days=days)


def is_past(moment: datetime | None, *, now: datetime | None = None) -> bool:
    if moment is None:
        return False
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment < (now or utc_now_naive())


def iso_utc(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")
