from datetime import date, datetime

import pytest
import pytz

from backend.errors import UnsupportedFrequency
from backend import rule_codec
from backend.recurrence import Count, Frequency, RecurrenceRule, Until

TZ = 'America/New_York'


def test_monthly_by_month_day_reencodes_identically():
    text = 'RRULE:FREQ=MONTHLY;BYMONTHDAY=31;COUNT=3'
    rule = rule_codec.decode(text, TZ)

    assert rule == RecurrenceRule(Frequency.MONTHLY, by_month_day=31, end=Count(3))
    assert rule_codec.encode(rule, TZ) == text


def test_weekly_decode_normalizes_days_and_keeps_interval():
    rule = rule_codec.decode('RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=WE,MO;COUNT=4', TZ)

    assert rule.by_day == ('MO', 'WE')
    assert rule.interval == 2
    assert rule_codec.encode(rule, TZ) == 'RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;COUNT=4'


def test_until_round_trips_through_local_end_of_day():
    text = 'RRULE:FREQ=DAILY;UNTIL=20240131T045959Z'
    rule = rule_codec.decode(text, TZ)

    assert rule.until == date(2024, 1, 30)
    assert rule_codec.encode(rule, TZ) == text


def test_date_only_until_is_a_local_date():
    rule = rule_codec.decode('RRULE:FREQ=DAILY;UNTIL=20240131', TZ)
    assert rule.end == Until(date(2024, 1, 31))


def test_until_takes_precedence_and_malformed_until_falls_back_to_count():
    assert rule_codec.decode('RRULE:FREQ=DAILY;COUNT=4;UNTIL=20240131', TZ).end == Until(date(2024, 1, 31))
    assert rule_codec.decode('RRULE:FREQ=DAILY;UNTIL=garbage;COUNT=5', TZ).end == Count(5)
    assert rule_codec.decode('RRULE:FREQ=DAILY;UNTIL=garbage', TZ).end is None


def test_decode_returns_none_for_non_rules():
    assert rule_codec.decode(None) is None
    assert rule_codec.decode('') is None
    assert rule_codec.decode('FREQ=DAILY;COUNT=2') is None
    assert rule_codec.decode('RRULE:COUNT=2') is None
    assert rule_codec.decode('RRULE:FREQ=YEARLY;COUNT=2') is None
    assert rule_codec.decode('RRULE:FREQ=HOURLY') is None


def test_decode_ignores_unknown_keys():
    rule = rule_codec.decode('RRULE:FREQ=DAILY;WKST=MO;X-NAME=foo', TZ)
    assert rule == RecurrenceRule(Frequency.DAILY)


def test_encode_none_and_unsyncable():
    assert rule_codec.encode(None) is None
    with pytest.raises(UnsupportedFrequency):
        rule_codec.encode(RecurrenceRule(Frequency.YEARLY))


def test_until_conversions_follow_dst():
    assert rule_codec.until_input_to_rule('2024-01-15T09:00', TZ) == '20240115T140000Z'
    assert rule_codec.until_input_to_rule(datetime(2024, 7, 1, 9, 0), TZ) == '20240701T130000Z'
    assert rule_codec.until_rule_to_input('20240115T140000Z', TZ) == '2024-01-15T09:00'
    assert rule_codec.until_rule_to_input('20240701T130000Z', TZ) == '2024-07-01T09:00'


def test_until_conversions_tolerate_bad_input():
    assert rule_codec.until_rule_to_input('not-a-date', TZ) == ''
    assert rule_codec.until_rule_to_input('', TZ) == ''
    assert rule_codec.until_input_to_rule('yesterday', TZ) is None
    assert rule_codec.until_input_to_rule(None, TZ) is None


def test_until_offset_token_is_converted():
    assert rule_codec.until_rule_to_input('20240115T090000-0500', TZ) == '2024-01-15T09:00'


def test_truncate_timed_series_before_occurrence():
    start = pytz.timezone(TZ).localize(datetime(2024, 1, 15, 9, 0))
    recurrence = ['RRULE:FREQ=WEEKLY;BYDAY=MO;COUNT=10', 'EXDATE:20240108T140000Z']

    assert rule_codec.truncate_for_following(recurrence, start) == [
        'RRULE:FREQ=WEEKLY;BYDAY=MO;UNTIL=20240115T135959Z',
        'EXDATE:20240108T140000Z',
    ]


def test_truncate_all_day_series_rewrites_existing_until():
    recurrence = ['RRULE:FREQ=DAILY;UNTIL=20241231']
    truncated = rule_codec.truncate_for_following(recurrence, datetime(2024, 3, 10), all_day=True)

    assert truncated == ['RRULE:FREQ=DAILY;UNTIL=20240309']
    assert rule_codec.truncate_for_following([], datetime(2024, 3, 10)) == []


def test_primary_rule_helpers():
    assert rule_codec.primary_rule(None) is None
    assert rule_codec.primary_rule(['RRULE:FREQ=DAILY', 'EXDATE:x']) == 'RRULE:FREQ=DAILY'
    assert rule_codec.with_primary_rule(['RRULE:FREQ=DAILY', 'EXDATE:x'], 'RRULE:FREQ=WEEKLY') == [
        'RRULE:FREQ=WEEKLY',
        'EXDATE:x',
    ]
    assert rule_codec.with_primary_rule(['RRULE:FREQ=DAILY', 'EXDATE:x'], None) == ['EXDATE:x']


def test_decode_inverts_encode_for_syncable_rules():
    rules = [
        RecurrenceRule(Frequency.DAILY),
        RecurrenceRule(Frequency.DAILY, interval=3, end=Count(10)),
        RecurrenceRule(Frequency.WEEKLY, by_day=('TU', 'TH'), end=Until(date(2024, 12, 31))),
        RecurrenceRule(Frequency.MONTHLY, interval=2, by_month_day=15, end=Until(date(2024, 7, 4))),
    ]
    for rule in rules:
        assert rule_codec.decode(rule_codec.encode(rule, TZ), TZ) == rule
