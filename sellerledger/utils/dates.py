from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, Tuple, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an upstream timestamp into naive UTC. Returns None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    s = str(value).strip()
    if not s:
        return None
    if s.endswith('Z') or s.endswith('z'):
        s = s[:-1] + '+00:00'
    try:
        return to_naive_utc(datetime.fromisoformat(s))
    except ValueError:
        return None


def isoformat_z(value: datetime) -> str:
    return to_naive_utc(value).replace(microsecond=0).isoformat() + 'Z'


def day_range(start_date: date, end_date: date) -> Tuple[datetime, datetime]:
    """Inclusive calendar range as a half-open [start 00:00, end+1 00:00) datetime window."""
    return datetime.combine(start_date, time.min), datetime.combine(end_date + timedelta(days=1), time.min)
