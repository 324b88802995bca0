from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, date

from backend.recurrence import RecurrenceRule

db = SQLAlchemy()

ALLOWED_PRIORITIES = {'low', 'medium', 'high'}
ALLOWED_STATUSES = {'not_started', 'in_progress', 'done'}


class TaskSeries(db.Model):
    """
    Master record of a recurring task. Owns the recurrence rule and the anchor
    day; the rule is never rewritten. Changing the pattern dissolves the series
    as of a split day (dissolved_on) and starts a new one.
    """
    __tablename__ = 'task_series'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default='not_started')
    priority = db.Column(db.String(10), default='medium')
    start_time = db.Column(db.Time, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)
    anchor_day = db.Column(db.Date, nullable=False)
    recurrence = db.Column(db.JSON, nullable=False)
    dissolved_on = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def rule(self):
        return RecurrenceRule.from_dict(self.recurrence)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'priority': self.priority,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'duration_minutes': self.duration_minutes,
            'anchor_day': self.anchor_day.isoformat() if self.anchor_day else None,
            'recurrence': self.recurrence,
            'dissolved_on': self.dissolved_on.isoformat() if self.dissolved_on else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Task(db.Model):
    """
    One dated task. series_master_id is null for standalone items.
    All dates/times are naive local values; is_exception marks an occurrence
    that was edited on its own and must survive regeneration.
    """
    __tablename__ = 'task'

    id = db.Column(db.Integer, primary_key=True)
    series_master_id = db.Column(db.Integer, db.ForeignKey('task_series.id'), nullable=True, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default='not_started')  # not_started | in_progress | done
    priority = db.Column(db.String(10), default='medium')  # low | medium | high
    day = db.Column(db.Date, nullable=False, default=date.today)
    start_time = db.Column(db.Time, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)
    is_exception = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'series_master_id': self.series_master_id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'priority': self.priority,
            'day': self.day.isoformat() if self.day else None,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'duration_minutes': self.duration_minutes,
            'is_exception': bool(self.is_exception),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
