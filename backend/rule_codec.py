"""Conversion between RecurrenceRule and RRULE text used by external calendars.

UNTIL values on the wire are UTC date-times without separators
(``YYYYMMDDTHHMMSSZ``). Local values are naive datetimes in the configured
timezone. Malformed tokens decode to an absent value instead of raising.
"""

import logging
import re
from datetime import datetime, time, timedelta

import pytz

from backend.errors import InvalidRule, UnsupportedFrequency
from backend.recurrence import Count, Frequency, RecurrenceRule, Until, normalize_by_day

logger = logging.getLogger(__name__)

RRULE_PREFIX = 'RRULE:'
DEFAULT_TIMEZONE = 'America/New_York'
# Yearly rules stay local-only
SYNCABLE_FREQUENCIES = {Frequency.DAILY, Frequency.WEEKLY, Frequency.MONTHLY}

UNTIL_DATE_ONLY = re.compile(r'^(\d{4})(\d{2})(\d{2})$')
UNTIL_FULL = re.compile(r'^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})$')
UNTIL_OFFSET = re.compile(r'(Z|[+-]\d{2}:?\d{2})$')
UNTIL_CLAUSE = re.compile(r'UNTIL=[^;]+')


def _tz(tz_name=None):
    try:
        return pytz.timezone(tz_name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone %s, falling back to %s", tz_name, DEFAULT_TIMEZONE)
        return pytz.timezone(DEFAULT_TIMEZONE)


def _parse_until_token(raw, tz_name=None):
    """Return the local naive datetime encoded by an UNTIL token; raise InvalidRule when malformed."""
    text = str(raw or '').strip().upper()
    offset = None
    if 'T' in text:
        offset_match = UNTIL_OFFSET.search(text)
        if offset_match:
            offset = offset_match.group(1).replace(':', '')
            text = text[:offset_match.start()]
    cleaned = re.sub(r'[-:]', '', text)
    if not cleaned:
        raise InvalidRule('Empty UNTIL value')

    match = UNTIL_DATE_ONLY.match(cleaned)
    if match:
        y, m, d = (int(part) for part in match.groups())
        try:
            return datetime(y, m, d)
        except ValueError:
            raise InvalidRule(f'Invalid UNTIL date: {raw!r}')

    match = UNTIL_FULL.match(cleaned)
    if not match:
        raise InvalidRule(f'Invalid UNTIL value: {raw!r}')
    try:
        value = datetime(*(int(part) for part in match.groups()))
    except ValueError:
        raise InvalidRule(f'Invalid UNTIL value: {raw!r}')

    # No offset means UTC
    if offset and offset != 'Z':
        sign = 1 if offset[0] == '+' else -1
        delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5]))
        utc_value = value - sign * delta
    else:
        utc_value = value
    return pytz.UTC.localize(utc_value).astimezone(_tz(tz_name)).replace(tzinfo=None)


def until_rule_to_input(raw, tz_name=None):
    """UNTIL wire token -> local ``YYYY-MM-DDTHH:MM`` string, or ``''`` when malformed."""
    if not raw:
        return ''
    try:
        local_value = _parse_until_token(raw, tz_name)
    except InvalidRule as exc:
        logger.debug("Ignoring UNTIL token: %s", exc)
        return ''
    return local_value.strftime('%Y-%m-%dT%H:%M')


def until_input_to_rule(value, tz_name=None):
    """Local datetime (or ISO string) -> UTC UNTIL wire token, or ``None`` when malformed."""
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    if value.tzinfo is None:
        try:
            value = _tz(tz_name).localize(value)
        except (pytz.AmbiguousTimeError, pytz.NonExistentTimeError):
            value = _tz(tz_name).localize(value, is_dst=False)
    return value.astimezone(pytz.UTC).strftime('%Y%m%dT%H%M%SZ')


def until_date_to_rule(day, tz_name=None):
    """Inclusive until date -> wire token at the local end of that day."""
    return until_input_to_rule(datetime.combine(day, time(23, 59, 59)), tz_name)


def until_rule_to_date(raw, tz_name=None):
    if not raw:
        return None
    try:
        return _parse_until_token(raw, tz_name).date()
    except InvalidRule as exc:
        logger.debug("Ignoring UNTIL token: %s", exc)
        return None


def _positive_int(raw):
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def decode(rule_text, tz_name=None):
    """Parse RRULE text into a RecurrenceRule; ``None`` means no recurrence."""
    if not rule_text or not str(rule_text).startswith(RRULE_PREFIX):
        return None

    freq = None
    by_day = ()
    by_month_day = None
    interval = 1
    until_raw = None
    count = None

    for part in str(rule_text)[len(RRULE_PREFIX):].split(';'):
        key, _, value = part.partition('=')
        key = key.strip().upper()
        value = value.strip()
        if key == 'FREQ' and value.upper() in {f.value for f in SYNCABLE_FREQUENCIES}:
            freq = Frequency(value.upper())
        elif key == 'BYDAY' and value:
            by_day = normalize_by_day(value)
        elif key == 'BYMONTHDAY' and value:
            parsed = _positive_int(value)
            if parsed and parsed <= 31:
                by_month_day = parsed
        elif key == 'INTERVAL' and value:
            interval = _positive_int(value) or 1
        elif key == 'UNTIL' and value:
            until_raw = value
        elif key == 'COUNT' and value:
            count = _positive_int(value)

    if freq is None:
        return None

    end = None
    if until_raw is not None:
        until_day = until_rule_to_date(until_raw, tz_name)
        if until_day is not None:
            end = Until(until_day)
    if end is None and count is not None:
        end = Count(count)

    try:
        return RecurrenceRule(
            freq=freq,
            interval=interval,
            by_day=by_day if freq is Frequency.WEEKLY else (),
            by_month_day=by_month_day if freq is Frequency.MONTHLY else None,
            end=end,
        )
    except InvalidRule as exc:
        logger.debug("Dropping malformed rule %r: %s", rule_text, exc)
        return None


def encode(rule, tz_name=None):
    """Render a RecurrenceRule as RRULE text; ``None`` rule encodes to ``None``."""
    if rule is None:
        return None
    if rule.freq not in SYNCABLE_FREQUENCIES:
        raise UnsupportedFrequency(rule.freq)

    parts = [f'FREQ={rule.freq.value}']
    if rule.interval != 1:
        parts.append(f'INTERVAL={rule.interval}')
    if rule.by_day:
        parts.append(f"BYDAY={','.join(rule.by_day)}")
    if rule.by_month_day is not None:
        parts.append(f'BYMONTHDAY={rule.by_month_day}')
    if rule.until is not None:
        parts.append(f'UNTIL={until_date_to_rule(rule.until, tz_name)}')
    elif rule.count is not None:
        parts.append(f'COUNT={rule.count}')
    return RRULE_PREFIX + ';'.join(parts)


def primary_rule(recurrence):
    """First line of an external event's recurrence list, if any."""
    if not recurrence:
        return None
    return recurrence[0]


def with_primary_rule(recurrence, rule_text):
    """Replace the first recurrence line, keeping EXDATE/RDATE extras."""
    extras = list(recurrence[1:]) if recurrence else []
    if not rule_text:
        return extras
    return [rule_text] + extras


def truncate_for_following(recurrence, occurrence_start, all_day=False):
    """
    Stop an external series just before ``occurrence_start``.

    All-day series end on the previous day as a date-only (local) UNTIL, timed
    series one second before the occurrence. An existing UNTIL clause is
    rewritten, otherwise one is appended.
    ``occurrence_start`` must be timezone-aware for timed events.
    """
    base_rule = primary_rule(recurrence)
    if not base_rule:
        return list(recurrence or [])

    if all_day:
        until_token = (occurrence_start.date() - timedelta(days=1)).strftime('%Y%m%d')
    else:
        until_value = occurrence_start - timedelta(seconds=1)
        if until_value.tzinfo is None:
            until_value = pytz.UTC.localize(until_value)
        until_token = until_value.astimezone(pytz.UTC).strftime('%Y%m%dT%H%M%SZ')

    if 'UNTIL=' in base_rule:
        next_rule = UNTIL_CLAUSE.sub(f'UNTIL={until_token}', base_rule)
    else:
        next_rule = f'{base_rule};UNTIL={until_token}'
    # UNTIL and COUNT are mutually exclusive
    next_rule = re.sub(r';COUNT=[^;]+', '', next_rule)
    return [next_rule] + list(recurrence[1:])
