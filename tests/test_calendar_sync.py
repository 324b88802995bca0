from datetime import date, time

import pytest

from backend.errors import InvalidTask
from backend.recurrence import Count, Frequency, generate
from models import TaskSeries
from services import calendar_sync

TZ = 'America/New_York'


def _series(**overrides):
    values = {
        'id': 7,
        'title': 'Standup',
        'description': 'Daily sync',
        'anchor_day': date(2024, 1, 1),
        'recurrence': {'freq': 'WEEKLY', 'interval': 1, 'by_day': ['MO'], 'count': 10},
        'start_time': time(9, 0),
        'duration_minutes': 15,
    }
    values.update(overrides)
    return TaskSeries(**values)


def test_export_timed_series():
    payload = calendar_sync.export_series(_series(), TZ)

    assert payload['recurrence'] == ['RRULE:FREQ=WEEKLY;BYDAY=MO;COUNT=10']
    assert payload['start'] == {'dateTime': '2024-01-01T09:00:00-05:00', 'timeZone': TZ}
    assert payload['end'] == {'dateTime': '2024-01-01T09:15:00-05:00', 'timeZone': TZ}
    assert payload['extendedProperties']['private']['seriesMasterId'] == '7'


def test_export_dissolved_series_is_truncated():
    payload = calendar_sync.export_series(_series(dissolved_on=date(2024, 1, 15)), TZ)
    assert payload['recurrence'] == ['RRULE:FREQ=WEEKLY;BYDAY=MO;UNTIL=20240115T135959Z']

    all_day = calendar_sync.export_series(_series(start_time=None, dissolved_on=date(2024, 1, 15)), TZ)
    assert all_day['recurrence'] == ['RRULE:FREQ=WEEKLY;BYDAY=MO;UNTIL=20240114']
    assert all_day['start'] == {'date': '2024-01-01'}
    assert all_day['end'] == {'date': '2024-01-02'}


def test_export_yearly_is_rejected():
    with pytest.raises(InvalidTask):
        calendar_sync.export_series(_series(recurrence={'freq': 'YEARLY'}), TZ)


def test_import_timed_event():
    rule, anchor, fields = calendar_sync.import_event({
        'summary': 'Gym',
        'start': {'dateTime': '2024-03-04T18:00:00-05:00', 'timeZone': TZ},
        'end': {'dateTime': '2024-03-04T19:30:00-05:00', 'timeZone': TZ},
        'recurrence': ['RRULE:FREQ=WEEKLY;BYDAY=TH,MO;COUNT=8'],
    }, TZ)

    assert rule.freq is Frequency.WEEKLY
    assert rule.by_day == ('MO', 'TH')
    assert rule.end == Count(8)
    assert anchor == date(2024, 3, 4)
    assert fields == {
        'title': 'Gym',
        'description': None,
        'day': '2024-03-04',
        'start_time': '18:00',
        'duration_minutes': 90,
    }


def test_import_all_day_event_without_rule():
    rule, anchor, fields = calendar_sync.import_event({
        'summary': 'Holiday',
        'start': {'date': '2024-07-04'},
        'end': {'date': '2024-07-05'},
    }, TZ)

    assert rule is None
    assert anchor == date(2024, 7, 4)
    assert 'start_time' not in fields


def test_import_requires_start():
    with pytest.raises(InvalidTask):
        calendar_sync.import_event({'summary': 'Nothing'}, TZ)


def _round_trip_days(series):
    rule, anchor, _ = calendar_sync.import_event(calendar_sync.export_series(series, TZ), TZ)
    return generate(rule, anchor)


def test_dissolved_all_day_series_keeps_last_day_through_export_and_import():
    series = _series(
        anchor_day=date(2024, 1, 10),
        recurrence={'freq': 'DAILY', 'interval': 1},
        start_time=None,
        dissolved_on=date(2024, 1, 15),
    )

    days = _round_trip_days(series)

    assert days[0] == date(2024, 1, 10)
    assert days[-1] == date(2024, 1, 14)


def test_dissolved_timed_series_stops_before_split_through_export_and_import():
    series = _series(
        anchor_day=date(2024, 1, 10),
        recurrence={'freq': 'DAILY', 'interval': 1},
        dissolved_on=date(2024, 1, 15),
    )

    assert _round_trip_days(series)[-1] == date(2024, 1, 14)


def test_until_end_of_day_survives_export_and_import():
    series = _series(recurrence={'freq': 'WEEKLY', 'interval': 1, 'by_day': ['MO'], 'until': '2024-01-29'})

    assert _round_trip_days(series)[-1] == date(2024, 1, 29)
