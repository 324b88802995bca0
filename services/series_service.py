"""Create, update and delete tasks with a recurrence scope.

Every public method runs its writes inside one ``store.transaction()`` so a
scoped change (including delete + regenerate) is applied completely or not
at all.
"""

import logging

from backend.errors import InvalidTask, NotFound
from backend.recurrence import DEFAULT_MAX_OCCURRENCES, RecurrenceRule, generate, rules_equal
from models import Task, TaskSeries
from services.scope_resolver import (
    ALL,
    FOLLOWING,
    THIS,
    normalize_scope,
    plan_regeneration,
    require_series,
    select_targets,
    split_day,
)
from services.task_store import SqlTaskStore
from services.validation_service import clean_task_fields

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = ('title', 'description', 'status', 'priority', 'start_time', 'duration_minutes')


def _template_from(source, overrides=None):
    template = {name: getattr(source, name) for name in TEMPLATE_FIELDS}
    for name, value in (overrides or {}).items():
        if name in TEMPLATE_FIELDS:
            template[name] = value
    return template


def _apply_fields(row, fields):
    changed = False
    for name, value in fields.items():
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed = True
    return changed


class SeriesService:
    def __init__(self, store=None, max_occurrences=DEFAULT_MAX_OCCURRENCES):
        self.store = store or SqlTaskStore()
        self.max_occurrences = max_occurrences

    def _get_target(self, instance_id):
        target = self.store.get_instance(instance_id)
        if target is None:
            raise NotFound(instance_id)
        return target

    def _materialize(self, series, rule, anchor, template, skip_days=()):
        days = generate(rule, anchor, self.max_occurrences)
        return [
            Task(series_master_id=series.id, day=day_value, is_exception=False, **template)
            for day_value in days
            if day_value not in skip_days
        ]

    def preview(self, rule, anchor):
        return generate(rule, anchor, self.max_occurrences)

    def create_series(self, rule, anchor_day, fields):
        """Create a standalone task (no rule) or a series with its materialized instances."""
        rule = RecurrenceRule.from_dict(rule)
        cleaned = clean_task_fields(fields, partial=False)
        anchor_day = cleaned.pop('day', None) or anchor_day
        if anchor_day is None:
            raise InvalidTask('A start day is required')

        with self.store.transaction():
            if rule is None:
                task = Task(series_master_id=None, day=anchor_day, is_exception=False, **cleaned)
                created = self.store.upsert_instances([task])
            else:
                series = self.store.add_series(
                    TaskSeries(anchor_day=anchor_day, recurrence=rule.to_dict(), **cleaned)
                )
                created = self.store.upsert_instances(
                    self._materialize(series, rule, anchor_day, cleaned)
                )
                logger.info("Created series %s with %d instances", series.id, len(created))
        return created

    def update_instance(self, instance_id, data, scope):
        """
        Apply ``data`` to the instance and, depending on scope, to later or all
        instances of its series. Returns the rows that now represent the change.
        """
        scope = normalize_scope(scope)
        data = data or {}
        target = self._get_target(instance_id)
        require_series(target, scope)
        fields = clean_task_fields(data, partial=True)

        if 'recurrence' in data:
            new_rule = RecurrenceRule.from_dict(data.get('recurrence'))
            if target.series_master_id is None:
                if new_rule is not None:
                    return self._start_series_from(target, new_rule, fields)
            else:
                series = self.store.get_series(target.series_master_id)
                if not rules_equal(series.rule, new_rule):
                    if scope == THIS:
                        raise InvalidTask('Changing the recurrence requires scope "following" or "all"')
                    return self._regenerate(target, series, new_rule, fields, scope)

        if 'day' in fields and fields['day'] == target.day:
            fields.pop('day')
        if 'day' in fields and scope != THIS:
            raise InvalidTask('Only a single occurrence can be moved to another day')
        if 'day' in fields and target.series_master_id is not None:
            siblings = self.store.list_instances(target.series_master_id)
            if any(row.day == fields['day'] and row.id != target.id for row in siblings):
                raise InvalidTask('Another occurrence of this series is already on that day')

        series_rows = [] if scope == THIS else self.store.list_instances(target.series_master_id)
        rows = select_targets(target, scope, series_rows)
        with self.store.transaction():
            for row in rows:
                changed = _apply_fields(row, fields)
                if changed and scope == THIS and row.series_master_id is not None:
                    row.is_exception = True
            if scope == ALL:
                series = self.store.get_series(target.series_master_id)
                _apply_fields(series, {k: v for k, v in fields.items() if k in TEMPLATE_FIELDS})
            updated = self.store.upsert_instances(rows)
        if scope != THIS:
            logger.info("Updated %d instances of series %s (scope=%s)", len(updated), target.series_master_id, scope)
        return updated

    def delete_instance(self, instance_id, scope):
        scope = normalize_scope(scope)
        target = self._get_target(instance_id)
        require_series(target, scope)
        series_rows = [] if scope == THIS else self.store.list_instances(target.series_master_id)
        rows = select_targets(target, scope, series_rows)
        series_id = target.series_master_id

        with self.store.transaction():
            if scope == FOLLOWING:
                self._dissolve(self.store.get_series(series_id), target.day)
            self.store.delete_instances([row.id for row in rows])
        if scope != THIS:
            logger.info("Deleted %d instances of series %s (scope=%s)", len(rows), series_id, scope)

    def _dissolve(self, series, split):
        if series.dissolved_on is None or split < series.dissolved_on:
            series.dissolved_on = split

    def _regenerate(self, target, series, new_rule, fields, scope):
        """Dissolve ``series`` at the split day and replace its tail with a new series."""
        split = split_day(target, scope, series)
        anchor = fields.pop('day', None) or split
        if scope == FOLLOWING and anchor < split:
            raise InvalidTask('A split series cannot start before the edited occurrence')
        to_delete, preserved = plan_regeneration(self.store.list_instances(series.id), split)
        template = _template_from(target if not target.is_exception else series, fields)

        with self.store.transaction():
            self._dissolve(series, split)
            if new_rule is None:
                # Series ends here; the edited occurrence stays as a standalone task.
                self.store.delete_instances([row.id for row in to_delete if row.id != target.id])
                _apply_fields(target, fields)
                target.series_master_id = None
                target.is_exception = False
                result = self.store.upsert_instances([target])
            else:
                self.store.delete_instances([row.id for row in to_delete])
                new_series = self.store.add_series(
                    TaskSeries(anchor_day=anchor, recurrence=new_rule.to_dict(), **template)
                )
                skip_days = {row.day for row in preserved}
                result = self.store.upsert_instances(
                    self._materialize(new_series, new_rule, anchor, template, skip_days)
                )
        logger.info(
            "Regenerated series %s from %s (scope=%s): %d removed, %d preserved, %d created",
            series.id, split, scope, len(to_delete), len(preserved), len(result),
        )
        return result

    def _start_series_from(self, target, rule, fields):
        """Turn a standalone task into the first occurrence of a new series."""
        with self.store.transaction():
            _apply_fields(target, fields)
            anchor = target.day
            series = self.store.add_series(
                TaskSeries(anchor_day=anchor, recurrence=rule.to_dict(), **_template_from(target))
            )
            days = generate(rule, anchor, self.max_occurrences)
            target.series_master_id = series.id
            # An anchor off the pattern keeps the task as a diverging occurrence.
            target.is_exception = not days or days[0] != anchor
            new_rows = [
                Task(series_master_id=series.id, day=day_value, is_exception=False, **_template_from(target))
                for day_value in days
                if day_value != anchor
            ]
            if target.is_exception and rule.count is not None:
                new_rows = new_rows[:max(rule.count - 1, 0)]
            result = self.store.upsert_instances([target] + new_rows)
        return sorted(result, key=lambda row: row.day)
