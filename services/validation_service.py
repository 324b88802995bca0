import re
from datetime import date, datetime, time

from backend.errors import InvalidTask
from models import ALLOWED_PRIORITIES, ALLOWED_STATUSES

TIME_PATTERN = re.compile(
    r"^(?P<hour>\d{1,2})(:(?P<minute>\d{1,2}))?(:(?P<second>\d{1,2}))?(?P<ampm>a|p|am|pm)?$"
)


def parse_int(value, default=None):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_time_str(val):
    """Parse 24h or am/pm strings into a time object; return None on failure."""
    if not val:
        return None
    if isinstance(val, time):
        return val
    s = str(val).strip().lower().replace(" ", "")

    m = TIME_PATTERN.match(s)
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


def parse_day_value(raw):
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw), "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def clean_task_fields(data, partial=True):
    """
    Normalize a task payload into model-ready values.

    Unknown keys are ignored. Bad priority/status values fall back to the
    defaults on create and are dropped on update; an unparseable day is an error.
    """
    data = data or {}
    fields = {}
    if 'title' in data or not partial:
        title = (data.get('title') or '').strip()
        if not title:
            if not partial:
                raise InvalidTask('Title is required')
        else:
            fields['title'] = title
    if 'description' in data:
        fields['description'] = (data.get('description') or '').strip() or None
    if 'status' in data or not partial:
        status = data.get('status') or 'not_started'
        if status in ALLOWED_STATUSES:
            fields['status'] = status
        elif not partial:
            fields['status'] = 'not_started'
    if 'priority' in data or not partial:
        priority = (data.get('priority') or 'medium').lower()
        if priority in ALLOWED_PRIORITIES:
            fields['priority'] = priority
        elif not partial:
            fields['priority'] = 'medium'
    if 'day' in data:
        day_value = parse_day_value(data.get('day'))
        if not day_value:
            raise InvalidTask('Invalid day')
        fields['day'] = day_value
    if 'start_time' in data:
        fields['start_time'] = parse_time_str(data.get('start_time'))
    if 'duration_minutes' in data:
        duration = parse_int(data.get('duration_minutes'))
        fields['duration_minutes'] = duration if duration is None or duration >= 0 else None
    return fields
