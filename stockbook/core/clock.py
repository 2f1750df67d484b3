"""Timezone-aware "now" and "today" helpers."""

from datetime import date, datetime

import pytz

from stockbook.config import get_settings

settings = get_settings()
tz = pytz.timezone(settings.TIMEZONE)


def now() -> datetime:
    """Get the current time in the configured timezone."""
    return datetime.now(tz)


def today() -> date:
    """Get the current date in the configured timezone."""
    return now().date()
