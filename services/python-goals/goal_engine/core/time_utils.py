import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def local_today(tz_name: Optional[str] = None) -> date:
    """Current calendar day in `tz_name` ("local" or None means the system timezone)."""
    now = datetime.now(timezone.utc)
    if tz_name and tz_name != "local":
        try:
            return now.astimezone(ZoneInfo(tz_name)).date()
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using the system timezone", tz_name)
    return now.astimezone().date()


def parse_iso_date(value: Union[str, date, None]) -> Optional[date]:
    """Parse 'YYYY-MM-DD' (a longer ISO timestamp is cut to its date part). Raises ValueError on junk."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if s == "":
        return None
    return date.fromisoformat(s[:10])


def monday_of(d: date) -> date:
    # Monday = 0, Sunday = 6
    return d - timedelta(days=d.weekday())


def sunday_of(d: date) -> date:
    return monday_of(d) + timedelta(days=6)


def first_of_month(d: date) -> date:
    return d.replace(day=1)


def last_of_month(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def date_span(start: date, end: date) -> List[date]:
    """Inclusive list of days from start to end."""
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]
