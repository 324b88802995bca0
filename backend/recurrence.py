"""Recurrence rules and the occurrence generator.

A rule expands into an ordered, bounded list of plain dates. Nothing here
knows about time-of-day, storage or time zones.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum

from backend.errors import InvalidRule, UnsupportedFrequency

# ~1 year of weekly occurrences
DEFAULT_MAX_OCCURRENCES = 52

WEEKDAY_TAGS = ('MO', 'TU', 'WE', 'TH', 'FR', 'SA', 'SU')
# Monday=1 ... Sunday=7, same numbering as date.isoweekday()
DAY_MAP = {tag: idx + 1 for idx, tag in enumerate(WEEKDAY_TAGS)}


class Frequency(str, Enum):
    DAILY = 'DAILY'
    WEEKLY = 'WEEKLY'
    MONTHLY = 'MONTHLY'
    YEARLY = 'YEARLY'


@dataclass(frozen=True)
class Until:
    date: date


@dataclass(frozen=True)
class Count:
    n: int

    def __post_init__(self):
        if not isinstance(self.n, int) or isinstance(self.n, bool) or self.n < 1:
            raise InvalidRule(f'Count must be a positive integer, got {self.n!r}')


def normalize_by_day(raw):
    """Deduplicate weekday tags and order them Monday first; unknown tags are dropped."""
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = raw.split(',')
    tags = {str(tag).strip().upper() for tag in raw}
    return tuple(tag for tag in WEEKDAY_TAGS if tag in tags)


@dataclass(frozen=True)
class RecurrenceRule:
    freq: Frequency
    interval: int = 1
    by_day: tuple = field(default=())
    by_month_day: int = None
    end: object = None

    def __post_init__(self):
        try:
            freq = Frequency(self.freq)
        except ValueError:
            raise UnsupportedFrequency(self.freq) from None
        object.__setattr__(self, 'freq', freq)

        if not isinstance(self.interval, int) or isinstance(self.interval, bool) or self.interval < 1:
            raise InvalidRule(f'Interval must be a positive integer, got {self.interval!r}')

        by_day = normalize_by_day(self.by_day)
        if by_day and freq is not Frequency.WEEKLY:
            raise InvalidRule('by_day only applies to weekly rules')
        object.__setattr__(self, 'by_day', by_day)

        if self.by_month_day is not None:
            if freq is not Frequency.MONTHLY:
                raise InvalidRule('by_month_day only applies to monthly rules')
            if isinstance(self.by_month_day, bool) or not isinstance(self.by_month_day, int) \
                    or not (1 <= self.by_month_day <= 31):
                raise InvalidRule(f'by_month_day must be within 1-31, got {self.by_month_day!r}')

        if self.end is not None and not isinstance(self.end, (Until, Count)):
            raise InvalidRule(f'Unknown end condition: {self.end!r}')

    @property
    def count(self):
        return self.end.n if isinstance(self.end, Count) else None

    @property
    def until(self):
        return self.end.date if isinstance(self.end, Until) else None

    def to_dict(self):
        data = {'freq': self.freq.value, 'interval': self.interval}
        if self.by_day:
            data['by_day'] = list(self.by_day)
        if self.by_month_day is not None:
            data['by_month_day'] = self.by_month_day
        if self.until is not None:
            data['until'] = self.until.isoformat()
        if self.count is not None:
            data['count'] = self.count
        return data

    @classmethod
    def from_dict(cls, data):
        """Build a rule from its stored/JSON form. ``None`` means no recurrence."""
        if data is None:
            return None
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            raise InvalidRule('Recurrence must be an object')
        freq = str(data.get('freq') or '').upper()
        if freq not in Frequency.__members__:
            raise InvalidRule(f'Unknown frequency: {data.get("freq")!r}')
        interval = data.get('interval', 1)
        try:
            interval = int(interval) if interval is not None else 1
        except (TypeError, ValueError):
            raise InvalidRule(f'Invalid interval: {interval!r}')

        by_month_day = data.get('by_month_day', data.get('byMonthDay'))
        if by_month_day is not None:
            try:
                by_month_day = int(by_month_day)
            except (TypeError, ValueError):
                raise InvalidRule(f'Invalid by_month_day: {by_month_day!r}')

        until_raw = data.get('until')
        count_raw = data.get('count')
        if until_raw and count_raw:
            raise InvalidRule('until and count are mutually exclusive')
        end = None
        if until_raw:
            try:
                end = Until(until_raw if isinstance(until_raw, date) else date.fromisoformat(str(until_raw)))
            except ValueError:
                raise InvalidRule(f'Invalid until date: {until_raw!r}')
        elif count_raw is not None:
            try:
                end = Count(int(count_raw))
            except (TypeError, ValueError):
                raise InvalidRule(f'Invalid count: {count_raw!r}')

        return cls(
            freq=freq,
            interval=interval,
            by_day=data.get('by_day', data.get('byDay')) or (),
            by_month_day=by_month_day,
            end=end,
        )


def _should_stop(occurrences, limit, current, until):
    if len(occurrences) >= limit:
        return True
    if until is not None and current > until:
        return True
    return False


def add_months(value, months, day=None):
    """Shift ``value`` by whole months, clamping the day to the target month length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    _, last_dom = calendar.monthrange(year, month)
    return date(year, month, min(day or value.day, last_dom))


def add_years(value, years):
    # Feb 29 constrains to Feb 28 in non-leap years
    return add_months(value, years * 12)


def _generate_daily(rule, anchor, limit, until):
    occurrences = []
    current = anchor
    while not _should_stop(occurrences, limit, current, until):
        occurrences.append(current)
        current = current + timedelta(days=rule.interval)
    return occurrences


def _generate_weekly(rule, anchor, limit, until):
    target_days = sorted(DAY_MAP[tag] for tag in rule.by_day) or [anchor.isoweekday()]
    week_start = anchor - timedelta(days=anchor.isoweekday() - 1)
    occurrences = []
    while not _should_stop(occurrences, limit, week_start, until):
        for day_of_week in target_days:
            current = week_start + timedelta(days=day_of_week - 1)
            if current < anchor:
                continue
            if _should_stop(occurrences, limit, current, until):
                return occurrences
            occurrences.append(current)
        week_start = week_start + timedelta(weeks=rule.interval)
    return occurrences


def _generate_monthly(rule, anchor, limit, until):
    by_month_day = rule.by_month_day or anchor.day
    month_start = anchor.replace(day=1)
    occurrences = []
    while not _should_stop(occurrences, limit, month_start, until):
        _, days_in_month = calendar.monthrange(month_start.year, month_start.month)
        current = month_start.replace(day=min(by_month_day, days_in_month))
        if current >= anchor:
            if _should_stop(occurrences, limit, current, until):
                return occurrences
            occurrences.append(current)
        month_start = add_months(month_start, rule.interval, day=1)
    return occurrences


def _generate_yearly(rule, anchor, limit, until):
    occurrences = []
    step = 0
    current = anchor
    while not _should_stop(occurrences, limit, current, until):
        occurrences.append(current)
        step += 1
        current = add_years(anchor, step * rule.interval)
    return occurrences


_GENERATORS = {
    Frequency.DAILY: _generate_daily,
    Frequency.WEEKLY: _generate_weekly,
    Frequency.MONTHLY: _generate_monthly,
    Frequency.YEARLY: _generate_yearly,
}


def generate(rule, anchor, max_occurrences=DEFAULT_MAX_OCCURRENCES):
    """
    Expand ``rule`` into occurrence dates starting at ``anchor``.

    The result holds at most ``rule.count`` dates, or ``max_occurrences`` when
    the rule has no count. Dates after ``rule.until`` are excluded; the until
    date itself is included.
    """
    generator = _GENERATORS.get(getattr(rule, 'freq', None))
    if generator is None:
        raise UnsupportedFrequency(getattr(rule, 'freq', None))
    limit = rule.count if rule.count is not None else max_occurrences
    return generator(rule, anchor, limit, rule.until)


def rules_equal(a, b):
    if a is None or b is None:
        return a is None and b is None
    return RecurrenceRule.from_dict(a) == RecurrenceRule.from_dict(b)


def describe(rule):
    if rule is None:
        return 'Does not repeat'
    prefix = f'Every {rule.interval} ' if rule.interval > 1 else ''
    if rule.freq is Frequency.DAILY:
        return f'{prefix}days' if prefix else 'Daily'
    if rule.freq is Frequency.WEEKLY:
        days = ', '.join(rule.by_day) if rule.by_day else None
        base = f'{prefix}weeks' if prefix else 'Weekly'
        return f'{base} on {days}' if days else base
    if rule.freq is Frequency.MONTHLY:
        base = f'{prefix}months' if prefix else 'Monthly'
        return f'{base} on day {rule.by_month_day}' if rule.by_month_day else base
    return f'{prefix}years' if prefix else 'Yearly'
