"""Error types raised by the recurrence engine and the series service.

Every error carries an HTTP status and a stable ``code`` so the Flask error
handler in app.py can render it without knowing the concrete class.
"""


class PlannerError(Exception):
    status_code = 500
    code = 'planner_error'

    def __init__(self, message=None):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    def default_message(self):
        return 'Planner operation failed'

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class UnsupportedFrequency(PlannerError):
    """A frequency outside the supported set reached the generator or codec."""
    status_code = 500
    code = 'unsupported_frequency'

    def __init__(self, frequency=None):
        self.frequency = frequency
        super().__init__(f'Unsupported recurrence frequency: {frequency!r}')


class InvalidRule(PlannerError, ValueError):
    status_code = 400
    code = 'invalid_rule'

    def default_message(self):
        return 'Invalid recurrence rule'


class InvalidTask(PlannerError, ValueError):
    status_code = 400
    code = 'invalid_task'

    def default_message(self):
        return 'Invalid task'


class NotFound(PlannerError):
    status_code = 404
    code = 'not_found'

    def __init__(self, task_id=None):
        self.task_id = task_id
        super().__init__(f'Task not found: {task_id}')


class NotRecurring(PlannerError):
    status_code = 409
    code = 'not_recurring'

    def __init__(self, task_id=None, scope=None):
        self.task_id = task_id
        self.scope = scope
        super().__init__(f'Task {task_id} is not part of a series; scope {scope!r} does not apply')


class TransactionFailed(PlannerError):
    status_code = 500
    code = 'transaction_failed'

    def __init__(self, message=None, cause=None):
        self.cause = cause
        super().__init__(message)

    def default_message(self):
        return 'Task operation failed'
