from datetime import datetime
import pytz

from complaint_desk.core.config import settings

UTC = pytz.utc

def get_utc_now() -> datetime:
    """Get current time in UTC."""
    return datetime.now(UTC)

def to_display_tz(dt: datetime) -> datetime:
    """Convert a datetime to the configured display timezone."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Assume UTC if naive (SQLite drops tzinfo)
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(pytz.timezone(settings.DISPLAY_TIMEZONE))

def format_display(dt: datetime) -> str:
    """Human readable timestamp for e-mails, e.g. '18 Oct 2026, 02:30 PM IST'."""
    if dt is None:
        return None
    return to_display_tz(dt).strftime("%d %b %Y, %I:%M %p %Z")
