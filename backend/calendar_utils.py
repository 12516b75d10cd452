"""Pure calendar arithmetic: offsets, month/week grids and recurrence expansion."""

import calendar
from datetime import date, datetime, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

RECURRENCE_NONE = 'none'
RECURRENCE_DAILY = 'daily'
RECURRENCE_WEEKDAYS = 'weekdays'
RECURRENCE_WEEKLY = 'weekly'
RECURRENCE_BIWEEKLY = 'biweekly'
RECURRENCE_MONTHLY = 'monthly'

RECURRENCE_RULES = (
    RECURRENCE_DAILY,
    RECURRENCE_WEEKDAYS,
    RECURRENCE_WEEKLY,
    RECURRENCE_BIWEEKLY,
    RECURRENCE_MONTHLY,
)

DEFAULT_RECURRENCE_MONTHS = 3
GRID_CELLS = 42

# date.weekday(): Monday=0 ... Sunday=6
_SATURDAY = 5
_SUNDAY = 6


def format_date(day: date) -> str:
    return day.isoformat()


def parse_date(raw) -> Optional[date]:
    """Parse 'YYYY-MM-DD' (or pass a date through); None when invalid."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw), '%Y-%m-%d').date()
    except (TypeError, ValueError):
        return None


def format_display_date(day: date) -> str:
    return f"{day.strftime('%A, %B')} {day.day}"


def format_time_12h(time_str: Optional[str]) -> str:
    """'13:05' -> '1:05 PM'. Empty string for a missing time."""
    if not time_str:
        return ''
    hours, minutes = [int(part) for part in str(time_str).split(':')[:2]]
    suffix = 'PM' if hours >= 12 else 'AM'
    hour12 = hours % 12 or 12
    return f"{hour12}:{minutes:02d} {suffix}"


def add_days(day: date, n: int) -> date:
    return day + timedelta(days=n)


def add_weeks(day: date, n: int) -> date:
    return add_days(day, n * 7)


def add_months(day: date, n: int) -> date:
    """Offset by whole months, clamping to the last day of the target month."""
    month_index = day.month - 1 + n
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    _, last_dom = calendar.monthrange(year, month)
    return date(year, month, min(day.day, last_dom))


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    _, last_dom = calendar.monthrange(year, month)
    return date(year, month, 1), date(year, month, last_dom)


def month_grid(year: int, month: int, today: Optional[date] = None) -> List[Dict]:
    """Six Sunday-first weeks covering the month, padded with adjacent-month days."""
    today = today or date.today()
    first, last = month_bounds(year, month)
    # Days to step back so the grid starts on a Sunday.
    leading = (first.weekday() + 1) % 7
    start = first - timedelta(days=leading)
    cells = []
    for offset in range(GRID_CELLS):
        current = start + timedelta(days=offset)
        cells.append({
            'date': current,
            'is_current_month': first <= current <= last,
            'is_today': current == today,
            'is_past': current < today,
        })
    return cells


def week_days(day: date, today: Optional[date] = None) -> List[Dict]:
    """The Sunday-first week containing ``day``."""
    today = today or date.today()
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    days = []
    for offset in range(7):
        current = start + timedelta(days=offset)
        days.append({
            'date': current,
            'is_today': current == today,
            'day_name': current.strftime('%a'),
        })
    return days


def _is_weekend(day: date) -> bool:
    return day.weekday() in (_SATURDAY, _SUNDAY)


def expand_recurrence(start: date, rule: Optional[str], end: Optional[date] = None) -> Iterator[date]:
    """Yield the dates after ``start`` (exclusive) up to ``end`` (inclusive) matching ``rule``.

    ``rule`` of None or 'none' yields nothing. When ``end`` is omitted the
    range stops three months after ``start``. An ``end`` before ``start`` is
    an empty range, not an error.
    """
    normalized = (rule or RECURRENCE_NONE).strip().lower()
    if normalized == RECURRENCE_NONE:
        return
    if normalized not in RECURRENCE_RULES:
        raise ValueError(f"Unknown recurrence rule: {rule!r}")
    if end is None:
        end = add_months(start, DEFAULT_RECURRENCE_MONTHS)
    if end < start:
        return

    if normalized == RECURRENCE_MONTHLY:
        # Step from the original start so a 31st stays on month ends.
        k = 1
        current = add_months(start, k)
        while current <= end:
            yield current
            k += 1
            current = add_months(start, k)
        return

    if normalized == RECURRENCE_WEEKLY:
        step = 7
    elif normalized == RECURRENCE_BIWEEKLY:
        step = 14
    else:
        step = 1

    current = add_days(start, step)
    while current <= end:
        if normalized == RECURRENCE_WEEKDAYS and _is_weekend(current):
            current = add_days(current, 1)
            continue
        yield current
        current = add_days(current, step)
