"""Date manipulation utilities"""

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

# Microsoft JSON date as emitted by the ledger platform: /Date(1700000000000+0000)/
_MS_JSON_DATE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")


def generate_date_range(start: date, end: date) -> List[date]:
    """Generate list of dates from start to end (inclusive)"""
    days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(days)]


def subtract_months(from_date: date, months: int) -> date:
    """Same day `months` earlier, clamped to the end of shorter months"""
    month_index = from_date.year * 12 + (from_date.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def parse_ledger_date(value: Optional[str]) -> Optional[date]:
    """Parse an ISO date/datetime or a /Date(ms)/ value into a calendar date"""
    if not value:
        return None
    match = _MS_JSON_DATE.match(value)
    if match:
        millis = int(match.group(1))
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date()
    if "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return date.fromisoformat(value)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
