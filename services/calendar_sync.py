"""Event payloads exchanged with an external calendar.

Series are stored with a structured rule; RRULE text only exists in the
payloads built and read here.
"""

import dataclasses
from datetime import datetime, timedelta

import pytz

from backend import rule_codec
from backend.errors import InvalidTask
from backend.recurrence import Until
from backend.rule_codec import SYNCABLE_FREQUENCIES, UNTIL_CLAUSE
from services.validation_service import parse_day_value


def _event_bounds(day_value, start_time, duration_minutes, tz_name):
    if start_time is None:
        return (
            {'date': day_value.isoformat()},
            {'date': (day_value + timedelta(days=1)).isoformat()},
        )
    tz = pytz.timezone(tz_name or rule_codec.DEFAULT_TIMEZONE)
    start = tz.localize(datetime.combine(day_value, start_time))
    end = start + timedelta(minutes=duration_minutes or 30)
    return (
        {'dateTime': start.isoformat(), 'timeZone': tz.zone},
        {'dateTime': end.isoformat(), 'timeZone': tz.zone},
    )


def export_series(series, tz_name=None):
    """Build an external event payload for ``series``; a dissolved series gets a truncated UNTIL."""
    rule = series.rule
    if rule.freq not in SYNCABLE_FREQUENCIES:
        raise InvalidTask(f'{rule.freq.value.title()} series cannot be synced to an external calendar')

    recurrence = rule_codec.with_primary_rule([], rule_codec.encode(rule, tz_name))
    if series.dissolved_on is not None:
        all_day = series.start_time is None
        if all_day:
            occurrence_start = datetime.combine(series.dissolved_on, datetime.min.time())
        else:
            tz = pytz.timezone(tz_name or rule_codec.DEFAULT_TIMEZONE)
            occurrence_start = tz.localize(datetime.combine(series.dissolved_on, series.start_time))
        recurrence = rule_codec.truncate_for_following(recurrence, occurrence_start, all_day=all_day)

    start, end = _event_bounds(series.anchor_day, series.start_time, series.duration_minutes, tz_name)
    return {
        'summary': series.title,
        'description': series.description,
        'start': start,
        'end': end,
        'recurrence': recurrence,
        'extendedProperties': {'private': {'seriesMasterId': str(series.id)}},
    }


def parse_event_start(start):
    """Return ``(day, 'HH:MM' or None)`` for an event start object."""
    start = start or {}
    if start.get('date'):
        return parse_day_value(start['date']), None
    raw = start.get('dateTime')
    if not raw:
        return None, None
    try:
        value = datetime.fromisoformat(str(raw).replace('Z', '+00:00'))
    except ValueError:
        return None, None
    if value.tzinfo is not None and start.get('timeZone'):
        try:
            value = value.astimezone(pytz.timezone(start['timeZone']))
        except pytz.UnknownTimeZoneError:
            pass
    return value.date(), value.strftime('%H:%M')


def _clip_until(rule, rule_text, start_time, tz_name):
    """Drop the UNTIL day when the timed UNTIL instant falls before that day's start time."""
    if rule is None or rule.until is None or not start_time:
        return rule
    match = UNTIL_CLAUSE.search(rule_text or '')
    token = match.group(0)[len('UNTIL='):] if match else ''
    if 'T' not in token.upper():
        return rule
    local_until = rule_codec.until_rule_to_input(token, tz_name)
    if local_until[:10] == rule.until.isoformat() and local_until[11:16] < start_time:
        return dataclasses.replace(rule, end=Until(rule.until - timedelta(days=1)))
    return rule


def import_event(payload, tz_name=None):
    """
    Read an external event payload.

    Returns ``(rule, anchor_day, fields)`` ready for ``SeriesService.create_series``.
    A missing or unsupported RRULE yields ``rule=None`` (a standalone task).
    """
    payload = payload or {}
    anchor_day, start_time = parse_event_start(payload.get('start'))
    if anchor_day is None:
        raise InvalidTask('Event start is missing or invalid')

    rule_text = rule_codec.primary_rule(payload.get('recurrence'))
    rule = _clip_until(rule_codec.decode(rule_text, tz_name), rule_text, start_time, tz_name)
    fields = {
        'title': payload.get('summary') or '',
        'description': payload.get('description'),
        'day': anchor_day.isoformat(),
    }
    if start_time:
        fields['start_time'] = start_time
        end_day, end_time = parse_event_start(payload.get('end'))
        if end_day and end_time:
            start_dt = datetime.combine(anchor_day, datetime.strptime(start_time, '%H:%M').time())
            end_dt = datetime.combine(end_day, datetime.strptime(end_time, '%H:%M').time())
            minutes = int((end_dt - start_dt).total_seconds() // 60)
            if minutes > 0:
                fields['duration_minutes'] = minutes
    return rule, anchor_day, fields
