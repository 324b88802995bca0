"""
Client-side cache reconciliation for task mutations.

Single-row mutations (non-recurring create, ``this`` update, ``this`` delete)
are applied optimistically and rolled back on failure. Anything that can fan
out to several rows skips the optimistic path and invalidates the partition
on success so the authoritative list is refetched.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime

import pytz

from background_jobs import start_guarded_job
from services.scope_resolver import THIS, normalize_scope

logger = logging.getLogger(__name__)

TASKS_PARTITION = 'tasks'
OPTIMISTIC_OWNER = 'optimistic'


def _now_iso():
    return datetime.now(pytz.UTC).replace(tzinfo=None).isoformat()


def apply_created(rows, temp_id, created_rows):
    """Drop the optimistic row and append the server rows."""
    kept = [row for row in (rows or []) if row.get('id') != temp_id]
    return kept + list(created_rows or [])


def apply_updated(rows, updated_rows):
    """Replace rows by id with the server's canonical versions; unknown ids are appended."""
    by_id = {row['id']: row for row in (updated_rows or [])}
    result = []
    for row in rows or []:
        result.append(by_id.pop(row.get('id'), row))
    return result + list(by_id.values())


def apply_patch(rows, row_id, fields):
    result = []
    for row in rows or []:
        if row.get('id') == row_id:
            row = dict(row, **fields)
            row['updated_at'] = _now_iso()
        result.append(row)
    return result


def apply_removed(rows, row_id):
    return [row for row in (rows or []) if row.get('id') != row_id]


def rollback(context):
    """Snapshot to put back after a failed optimistic mutation."""
    return context.previous


def build_optimistic_row(payload):
    now = _now_iso()
    return {
        'id': f'temp-{uuid.uuid4()}',
        'owner': OPTIMISTIC_OWNER,
        'series_master_id': None,
        'title': (payload.get('title') or '').strip(),
        'description': payload.get('description'),
        'status': payload.get('status') or 'not_started',
        'priority': payload.get('priority') or 'medium',
        'day': payload.get('day'),
        'start_time': payload.get('start_time'),
        'duration_minutes': payload.get('duration_minutes'),
        'is_exception': False,
        'created_at': now,
        'updated_at': now,
    }


class MutationContext:
    def __init__(self, partition, previous=None, optimistic=False, temp_id=None):
        self.partition = partition
        self.previous = previous
        self.optimistic = optimistic
        self.temp_id = temp_id


class MutationFailed(Exception):
    """A mutation failed; the cache is back to its previous state and ``retry()`` refetches."""

    def __init__(self, message, cause=None, retry=None):
        super().__init__(message)
        self.cause = cause
        self._retry = retry

    def retry(self):
        if self._retry:
            return self._retry()
        return None


class TaskCache:
    """
    Cached task lists keyed by partition.

    Each partition has a fetch generation. Starting an optimistic mutation
    bumps it, so a fetch that began earlier is dropped when it completes.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._rows = {}
        self._generations = {}
        self._stale = set()

    def get(self, partition):
        with self._lock:
            rows = self._rows.get(partition)
            return copy.deepcopy(rows) if rows is not None else None

    def set(self, partition, rows):
        with self._lock:
            self._rows[partition] = copy.deepcopy(list(rows))
            self._stale.discard(partition)

    def snapshot(self, partition):
        return self.get(partition)

    def restore(self, partition, snapshot):
        with self._lock:
            if snapshot is None:
                self._rows.pop(partition, None)
            else:
                self._rows[partition] = copy.deepcopy(snapshot)

    def update(self, partition, apply_fn):
        with self._lock:
            rows = apply_fn(self._rows.get(partition) or [])
            self._rows[partition] = rows
            return copy.deepcopy(rows)

    def cancel_fetches(self, partition):
        with self._lock:
            self._generations[partition] = self._generations.get(partition, 0) + 1

    def begin_fetch(self, partition):
        with self._lock:
            return self._generations.get(partition, 0)

    def complete_fetch(self, partition, token, rows):
        """Store fetched rows unless the fetch was cancelled meanwhile."""
        with self._lock:
            if token != self._generations.get(partition, 0):
                logger.debug("Discarding stale fetch for %s (token %s)", partition, token)
                return False
            self.set(partition, rows)
            return True

    def invalidate(self, partition):
        with self._lock:
            self._stale.add(partition)

    def is_stale(self, partition):
        with self._lock:
            return partition in self._stale


class TaskReconciler:
    def __init__(self, cache, transport, partition=TASKS_PARTITION, background=True):
        self.cache = cache
        self.transport = transport
        self.partition = partition
        self.background = background
        # One optimistic effect visible per partition at a time.
        self._mutation_lock = threading.Lock()

    def refetch(self):
        token = self.cache.begin_fetch(self.partition)
        rows = self.transport.list_tasks()
        return self.cache.complete_fetch(self.partition, token, rows)

    def invalidate(self):
        self.cache.invalidate(self.partition)
        if self.background:
            return start_guarded_job(self.refetch, on_error=self._log_refetch_error, name='task-refetch')
        return self.refetch()

    def _log_refetch_error(self, exc):
        logger.warning("Task refetch failed for %s: %s", self.partition, exc)

    def _settle(self):
        # A refetch cancelled by an optimistic mutation left the partition stale.
        if self.cache.is_stale(self.partition):
            logger.debug("Refetching %s after optimistic mutation", self.partition)
            self.invalidate()

    def _begin_optimistic(self, apply_fn, temp_id=None):
        self.cache.cancel_fetches(self.partition)
        previous = self.cache.snapshot(self.partition)
        self.cache.update(self.partition, apply_fn)
        return MutationContext(self.partition, previous=previous, optimistic=True, temp_id=temp_id)

    def _fail(self, context, exc):
        if context.optimistic:
            self.cache.restore(self.partition, rollback(context))
        logger.warning("Task mutation failed on %s: %s", self.partition, exc)
        raise MutationFailed(str(exc) or 'Task update failed', cause=exc, retry=self.invalidate) from exc

    def create_task(self, payload):
        if payload.get('recurrence') or payload.get('rrule'):
            try:
                created = self.transport.create_task(payload)
            except Exception as exc:
                self._fail(MutationContext(self.partition), exc)
            self.invalidate()
            return created

        temp_row = build_optimistic_row(payload)
        try:
            with self._mutation_lock:
                context = self._begin_optimistic(lambda rows: rows + [temp_row], temp_id=temp_row['id'])
                try:
                    created = self.transport.create_task(payload)
                except Exception as exc:
                    self._fail(context, exc)
                self.cache.update(self.partition, lambda rows: apply_created(rows, context.temp_id, created))
        finally:
            self._settle()
        return created

    def update_task(self, task_id, fields, scope):
        scope = normalize_scope(scope)
        if scope != THIS or 'recurrence' in fields:
            try:
                updated = self.transport.update_task(task_id, fields, scope)
            except Exception as exc:
                self._fail(MutationContext(self.partition), exc)
            self.invalidate()
            return updated

        try:
            with self._mutation_lock:
                context = self._begin_optimistic(lambda rows: apply_patch(rows, task_id, fields))
                try:
                    updated = self.transport.update_task(task_id, fields, scope)
                except Exception as exc:
                    self._fail(context, exc)
                self.cache.update(self.partition, lambda rows: apply_updated(rows, updated))
        finally:
            self._settle()
        return updated

    def delete_task(self, task_id, scope):
        scope = normalize_scope(scope)
        if scope != THIS:
            try:
                self.transport.delete_task(task_id, scope)
            except Exception as exc:
                self._fail(MutationContext(self.partition), exc)
            self.invalidate()
            return

        try:
            with self._mutation_lock:
                context = self._begin_optimistic(lambda rows: apply_removed(rows, task_id))
                try:
                    self.transport.delete_task(task_id, scope)
                except Exception as exc:
                    self._fail(context, exc)
        finally:
            self._settle()
