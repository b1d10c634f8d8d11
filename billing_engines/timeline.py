"""
Timeline parsing and calendar arithmetic for payment schedules.

The free-text project timeline on a quote ("6-8 weeks", "2-3 months") is
reduced to a single week count that drives all due-date spacing. This is
an intentional simplification, not a natural-language parser:

    contains "week"  -> leading integer before "-" (default 4)
    contains "month" -> leading integer before "-" (default 2) x 4
    otherwise        -> 8
"""

import calendar
import re
from datetime import date, timedelta

from billing_kernel.logging_config import get_logger

logger = get_logger("engines.timeline")

DEFAULT_WEEKS = 8
DEFAULT_WEEK_COUNT = 4
DEFAULT_MONTH_COUNT = 2
WEEKS_PER_MONTH = 4

_LEADING_INT = re.compile(r"^\s*(\d+)")


def _leading_integer(text: str) -> int | None:
    head = text.split("-")[0]
    match = _LEADING_INT.match(head)
    if match is None:
        return None
    value = int(match.group(1))
    return value or None


def parse_timeline_weeks(text: str | None) -> int:
    """Parse a free-text timeline into a whole number of weeks."""
    if not text:
        return DEFAULT_WEEKS
    lowered = text.lower()
    if "week" in lowered:
        weeks = _leading_integer(lowered) or DEFAULT_WEEK_COUNT
    elif "month" in lowered:
        weeks = (_leading_integer(lowered) or DEFAULT_MONTH_COUNT) * WEEKS_PER_MONTH
    else:
        weeks = DEFAULT_WEEKS
    logger.debug("timeline_parsed", extra={"timeline": text, "weeks": weeks})
    return weeks


def add_days(start: date, days: int) -> date:
    return start + timedelta(days=days)


def add_months(start: date, months: int) -> date:
    """Same day-of-month ``months`` later, clamped to the month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)
