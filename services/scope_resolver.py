"""Translate a mutation scope into the rows it touches.

Nothing here talks to storage; callers hand in the target row and the rows of
its series and get back plain lists.
"""

from backend.errors import InvalidTask, NotRecurring

THIS = 'this'
FOLLOWING = 'following'
ALL = 'all'
SCOPES = (THIS, FOLLOWING, ALL)


def normalize_scope(raw, required=True):
    """Return a known scope; a missing scope defaults to ``this`` only when not required."""
    if raw is None or str(raw).strip() == '':
        if required:
            raise InvalidTask('scope is required (one of: this, following, all)')
        return THIS
    scope = str(raw).strip().lower()
    if scope not in SCOPES:
        raise InvalidTask(f'Unknown scope: {raw!r}')
    return scope


def require_series(target, scope):
    if scope != THIS and target.series_master_id is None:
        raise NotRecurring(target.id, scope)


def select_targets(target, scope, series_instances):
    """Rows a uniform edit or delete applies to, in day order."""
    require_series(target, scope)
    if scope == THIS:
        return [target]
    rows = sorted(series_instances, key=lambda row: (row.day, row.id or 0))
    if scope == FOLLOWING:
        return [row for row in rows if row.day >= target.day]
    return rows


def split_day(target, scope, series):
    """Day from which a regeneration replaces the series."""
    if scope == FOLLOWING:
        return target.day
    return series.anchor_day


def plan_regeneration(series_instances, split):
    """
    Split the rows of a series for a rule-driven regeneration.

    Returns ``(to_delete, preserved)``: regular rows on or after ``split`` are
    replaced, exception rows on or after ``split`` survive untouched. Rows
    before ``split`` appear in neither list.
    """
    to_delete = []
    preserved = []
    for row in series_instances:
        if row.day < split:
            continue
        if row.is_exception:
            preserved.append(row)
        else:
            to_delete.append(row)
    return to_delete, preserved
