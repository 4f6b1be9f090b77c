# dates.py
"""Parsing of user-supplied dates and time estimates into the formats Jira accepts."""
import logging
import re
from datetime import date, datetime, timedelta
from typing import Optional

logger = logging.getLogger(__name__)

_RELATIVE_WORDS = {
    "today": 0, "dnes": 0,
    "tomorrow": 1, "zítra": 1,
    "yesterday": -1, "včera": -1,
    "next week": 7, "příští týden": 7,
}
_NEXT_MONTH = ("next month", "příští měsíc")

_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_RELATIVE = re.compile(r"^\+(\d+)([dwmy])$")
_DAY_FIRST = re.compile(r"^(\d{1,2})[./](\d{1,2})[./](\d{4})$")

_ESTIMATE = re.compile(r"^\d+[wdhm](\s+\d+[wdhm])*$")
_ESTIMATE_UNITS = {
    "hours": "h", "hour": "h", "hodin": "h", "hodina": "h", "hodiny": "h",
    "days": "d", "day": "d", "den": "d", "dny": "d", "dní": "d",
    "weeks": "w", "week": "w", "týden": "w", "týdny": "w", "týdnů": "w",
    "minutes": "m", "minute": "m", "minut": "m", "minuta": "m", "minuty": "m",
}


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month
    for day in range(start.day, 27, -1):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    return date(year, month, min(start.day, 28))


def parse_date(value: str, today: Optional[date] = None) -> str:
    """
    Parses a date into Jira's YYYY-MM-DD format.

    Accepts ISO dates, DD.MM.YYYY / DD/MM/YYYY, relative words (English and Czech)
    and offsets like "+7d", "+2w", "+1m", "+1y". Unrecognized input is returned
    unchanged so Jira can report it.
    """
    today = today or date.today()
    text = value.strip()
    lowered = text.lower()

    if lowered in _RELATIVE_WORDS:
        return (today + timedelta(days=_RELATIVE_WORDS[lowered])).isoformat()
    if lowered in _NEXT_MONTH:
        return _add_months(today, 1).isoformat()

    relative = _RELATIVE.match(lowered)
    if relative:
        amount, unit = int(relative.group(1)), relative.group(2)
        if unit == "d":
            return (today + timedelta(days=amount)).isoformat()
        if unit == "w":
            return (today + timedelta(weeks=amount)).isoformat()
        if unit == "m":
            return _add_months(today, amount).isoformat()
        return _add_months(today, amount * 12).isoformat()

    if _ISO.match(text):
        return text

    day_first = _DAY_FIRST.match(text)
    if day_first:
        day, month, year = (int(part) for part in day_first.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            logger.warning(f"Invalid calendar date: {value}")
            return value

    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        logger.warning(f"Could not parse date, passing through as-is: {value}")
        return value


def parse_time_estimate(value: str) -> str:
    """Normalizes estimates like "2 hours" or "3 dny 4 hodiny" to Jira's "2h" / "3d 4h" form."""
    text = value.strip().lower()
    if _ESTIMATE.match(text):
        return text

    for long_unit, short_unit in _ESTIMATE_UNITS.items():
        text = re.sub(rf"(\d)\s*{long_unit}\b", rf"\1{short_unit}", text)
    text = re.sub(r"\s+", " ", text).strip()

    if _ESTIMATE.match(text):
        return text
    logger.warning(f"Could not parse time estimate, passing through as-is: {value}")
    return value
