import os
from datetime import date

from dotenv import load_dotenv
from flask import Flask, request, jsonify

load_dotenv()

from backend import rule_codec
from backend.errors import InvalidRule, InvalidTask, NotFound, PlannerError
from backend.recurrence import DEFAULT_MAX_OCCURRENCES, RecurrenceRule, describe
from models import db, Task
from services import calendar_sync
from services.series_service import SeriesService
from services.task_store import SqlTaskStore
from services.validation_service import parse_day_value, parse_int

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///planner.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', rule_codec.DEFAULT_TIMEZONE)
# Safety cap for rules without count/until
app.config['RECURRENCE_MAX_OCCURRENCES'] = parse_int(
    os.environ.get('RECURRENCE_MAX_OCCURRENCES'), DEFAULT_MAX_OCCURRENCES
)

db.init_app(app)

with app.app_context():
    db.create_all()


def get_series_service():
    return SeriesService(
        SqlTaskStore(db.session),
        max_occurrences=app.config['RECURRENCE_MAX_OCCURRENCES'],
    )


def _rule_from_payload(data):
    """
    Read the recurrence of a request body.

    ``recurrence`` holds the structured rule; ``rrule`` is accepted as wire
    text and decoded. Returns ``(present, rule)``.
    """
    if 'recurrence' in data:
        return True, RecurrenceRule.from_dict(data.get('recurrence'))
    if 'rrule' in data:
        return True, rule_codec.decode(data.get('rrule'), app.config['DEFAULT_TIMEZONE'])
    return False, None


@app.errorhandler(PlannerError)
def _handle_planner_error(exc):
    if exc.status_code >= 500:
        app.logger.error("Planner error: %s", exc)
    return jsonify(exc.to_dict()), exc.status_code


@app.route('/api/tasks', methods=['GET', 'POST'])
def handle_tasks():
    store = SqlTaskStore(db.session)
    if request.method == 'GET':
        start_raw = request.args.get('start')
        end_raw = request.args.get('end')
        start_day = parse_day_value(start_raw) if start_raw else None
        end_day = parse_day_value(end_raw) if end_raw else None
        if (start_raw and not start_day) or (end_raw and not end_day):
            return jsonify({'error': 'Invalid date range'}), 400
        if start_day and end_day and end_day < start_day:
            return jsonify({'error': 'end must be on/after start'}), 400
        return jsonify([task.to_dict() for task in store.list_all(start_day, end_day)])

    data = request.json or {}
    _, rule = _rule_from_payload(data)
    anchor_day = parse_day_value(data.get('day') or date.today().isoformat())
    if not anchor_day:
        return jsonify({'error': 'Invalid day'}), 400

    created = get_series_service().create_series(rule, anchor_day, data)
    return jsonify([task.to_dict() for task in created]), 201


@app.route('/api/tasks/<int:task_id>', methods=['GET', 'PUT', 'DELETE'])
def handle_task(task_id):
    service = get_series_service()
    if request.method == 'GET':
        task = db.session.get(Task, task_id)
        if not task:
            raise NotFound(task_id)
        return jsonify(task.to_dict())

    if request.method == 'DELETE':
        scope = request.args.get('scope')
        if scope is None:
            scope = (request.get_json(silent=True) or {}).get('scope')
        service.delete_instance(task_id, scope)
        return '', 204

    body = request.json or {}
    fields = dict(body.get('task') if isinstance(body.get('task'), dict) else body)
    fields.pop('scope', None)
    present, rule = _rule_from_payload(fields)
    fields.pop('rrule', None)
    if present:
        fields['recurrence'] = rule
    updated = service.update_instance(task_id, fields, body.get('scope'))
    return jsonify([task.to_dict() for task in updated])


@app.route('/api/series/<int:series_id>', methods=['GET'])
def series_detail(series_id):
    store = SqlTaskStore(db.session)
    series = store.get_series(series_id)
    if not series:
        return jsonify({'error': 'Series not found'}), 404
    payload = series.to_dict()
    payload['summary'] = describe(series.rule)
    payload['instances'] = [task.to_dict() for task in store.list_instances(series.id)]
    return jsonify(payload)


@app.route('/api/series/<int:series_id>/export', methods=['GET'])
def export_series(series_id):
    series = SqlTaskStore(db.session).get_series(series_id)
    if not series:
        return jsonify({'error': 'Series not found'}), 404
    return jsonify(calendar_sync.export_series(series, app.config['DEFAULT_TIMEZONE']))


@app.route('/api/series/import', methods=['POST'])
def import_series():
    rule, anchor_day, fields = calendar_sync.import_event(request.json or {}, app.config['DEFAULT_TIMEZONE'])
    created = get_series_service().create_series(rule, anchor_day, fields)
    app.logger.info("Imported external event as %d task(s)", len(created))
    return jsonify([task.to_dict() for task in created]), 201


@app.route('/api/recurrence/preview', methods=['POST'])
def preview_recurrence():
    data = request.json or {}
    present, rule = _rule_from_payload(data)
    if not present or rule is None:
        raise InvalidRule('A recurrence rule is required')
    anchor_day = parse_day_value(data.get('day') or date.today().isoformat())
    if not anchor_day:
        raise InvalidTask('Invalid day')
    days = get_series_service().preview(rule, anchor_day)
    payload = {
        'summary': describe(rule),
        'recurrence': rule.to_dict(),
        'dates': [d.isoformat() for d in days],
    }
    try:
        payload['rrule'] = rule_codec.encode(rule, app.config['DEFAULT_TIMEZONE'])
    except PlannerError:
        payload['rrule'] = None
    return jsonify(payload)


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG', '').lower() in ('1', 'true', 'yes', 'on'))
