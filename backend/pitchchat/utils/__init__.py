"""Small shared helpers."""
from .time_utils import as_utc, format_activity_time, utcnow

__all__ = ["as_utc", "format_activity_time", "utcnow"]
