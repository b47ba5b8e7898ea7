"""Timestamp helpers shared by rooms and messages."""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Return *dt* as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_activity_time(dt: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Render a room's last activity the way the conversation list shows it.

    Args:
        dt: Activity timestamp (None renders as an empty string).
        now: Reference time, defaults to the current UTC time.

    Returns:
        ``"HH:MM"`` within 24 hours, ``"Nd ago"`` within a week,
        otherwise ``"Mon D"``.

    Examples:
        >>> format_activity_time(datetime(2025, 1, 6, 9, 5), now=datetime(2025, 1, 6, 12, 0))
        '09:05'
        >>> format_activity_time(datetime(2025, 1, 3, 9, 5), now=datetime(2025, 1, 6, 12, 0))
        '3d ago'
    """
    if dt is None:
        return ""

    dt = as_utc(dt)
    now = as_utc(now) if now is not None else utcnow()
    hours = (now - dt).total_seconds() / 3600

    if hours < 24:
        return dt.strftime("%H:%M")
    if hours < 168:
        return f"{int(hours // 24)}d ago"
    return f"{dt.strftime('%b')} {dt.day}"
