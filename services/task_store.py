"""SQLAlchemy-backed storage for series and task rows.

Methods only stage changes on the session; ``transaction()`` is the commit
boundary so a multi-row change either lands completely or not at all.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from backend.errors import TransactionFailed
from models import db, Task, TaskSeries

logger = logging.getLogger(__name__)


class SqlTaskStore:
    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    def get_instance(self, instance_id):
        return self.session.get(Task, instance_id)

    def get_series(self, series_id):
        return self.session.get(TaskSeries, series_id)

    def list_all(self, start_day=None, end_day=None):
        query = self.session.query(Task)
        if start_day:
            query = query.filter(Task.day >= start_day)
        if end_day:
            query = query.filter(Task.day <= end_day)
        return query.order_by(Task.day.asc(), Task.start_time.asc(), Task.id.asc()).all()

    def list_instances(self, series_master_id):
        return self.session.query(Task).filter_by(series_master_id=series_master_id).order_by(
            Task.day.asc(), Task.id.asc()
        ).all()

    def add_series(self, series):
        self.session.add(series)
        self.session.flush()
        return series

    def upsert_instances(self, instances):
        instances = list(instances)
        self.session.add_all(instances)
        self.session.flush()
        return instances

    def delete_instances(self, ids):
        ids = [i for i in ids if i is not None]
        if not ids:
            return 0
        deleted = self.session.query(Task).filter(Task.id.in_(ids)).delete(synchronize_session='fetch')
        self.session.flush()
        return deleted

    @contextmanager
    def transaction(self):
        """Commit everything staged inside the block, or roll all of it back."""
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Task transaction rolled back: %s", exc)
            raise TransactionFailed('Could not apply task changes atomically', cause=exc) from exc
        except Exception:
            self.session.rollback()
            raise
