import re
from datetime import date, datetime, time


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_time_str(val):
    """Parse 24h or am/pm strings into a time object; return None on failure."""
    if not val:
        return None
    if isinstance(val, time):
        return val
    s = str(val).strip().lower().replace(" ", "")

    pattern = r"^(?P<hour>\d{1,2})(:(?P<minute>\d{1,2}))?(:(?P<second>\d{1,2}))?(?P<ampm>a|p|am|pm)?$"
    m = re.match(pattern, s)
    if not m:
        return None
    try:
        hour = int(m.group("hour"))
        minute = int(m.group("minute") or 0)
        ampm = m.group("ampm")
        if m.group("second") is not None:
            sec_val = int(m.group("second"))
            if not (0 <= sec_val <= 59):
                return None
        if ampm:
            if ampm in ("p", "pm") and hour != 12:
                hour += 12
            if ampm in ("a", "am") and hour == 12:
                hour = 0
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            return None
        return time(hour=hour, minute=minute)
    except (TypeError, ValueError):
        return None


def normalize_time_value(val):
    """Canonical 'HH:MM' string for a schedule time, or None when unset/invalid."""
    parsed = parse_time_str(val)
    if parsed is None:
        return None
    return parsed.strftime("%H:%M")


def parse_day_value(raw):
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw), "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def parse_month_value(raw):
    """Parse 'YYYY-MM' into (year, month); None when invalid."""
    m = re.match(r"^(?P<year>\d{4})-(?P<month>\d{1,2})$", str(raw or "").strip())
    if not m:
        return None
    year, month = int(m.group("year")), int(m.group("month"))
    if not 1 <= month <= 12:
        return None
    return year, month


def parse_int_list(raw, minimum=0, maximum=None):
    """Parse '0,5,10' or [0, 5] into a sorted, de-duplicated tuple of ints."""
    if raw is None:
        return ()
    if isinstance(raw, (list, tuple)):
        values = raw
    else:
        values = [v for v in str(raw).split(",") if v.strip()]
    result = set()
    for val in values:
        try:
            num = int(val)
        except (TypeError, ValueError):
            continue
        if num < minimum or (maximum is not None and num > maximum):
            continue
        result.add(num)
    return tuple(sorted(result))


def parse_day_list(raw):
    """Parse a list of 'YYYY-MM-DD' strings; returns (days, invalid_values)."""
    days = []
    invalid = []
    for value in raw or []:
        parsed = parse_day_value(value)
        if parsed is None:
            invalid.append(value)
        elif parsed not in days:
            days.append(parsed)
    return days, invalid
