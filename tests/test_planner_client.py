import pytest
import requests

from services.planner_client import PlannerClient, PlannerClientError


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=b'x'):
        self.status_code = status_code
        self._body = body
        self.content = content if body is not None or status_code != 204 else b''

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_update_sends_task_and_scope():
    session = FakeSession(FakeResponse(200, [{'id': 3, 'title': 'X'}]))
    client = PlannerClient('http://planner.local/', session=session)

    result = client.update_task(3, {'title': 'X'}, 'following')

    method, url, kwargs = session.calls[0]
    assert method == 'PUT'
    assert url == 'http://planner.local/api/tasks/3'
    assert kwargs['json'] == {'task': {'title': 'X'}, 'scope': 'following'}
    assert result == [{'id': 3, 'title': 'X'}]


def test_delete_passes_scope_and_handles_no_content():
    session = FakeSession(FakeResponse(204, content=b''))
    client = PlannerClient('http://planner.local', session=session)

    assert client.delete_task(9, 'all') is None
    assert session.calls[0][2]['params'] == {'scope': 'all'}


def test_error_body_is_surfaced():
    session = FakeSession(FakeResponse(409, {'error': 'Task 4 is not part of a series', 'code': 'not_recurring'}))
    client = PlannerClient('http://planner.local', session=session)

    with pytest.raises(PlannerClientError) as excinfo:
        client.delete_task(4, 'following')

    assert excinfo.value.status_code == 409
    assert excinfo.value.code == 'not_recurring'
    assert 'not part of a series' in str(excinfo.value)


def test_error_without_json_body():
    session = FakeSession(FakeResponse(502, None))
    client = PlannerClient('http://planner.local', session=session)

    with pytest.raises(PlannerClientError) as excinfo:
        client.list_tasks()
    assert str(excinfo.value) == 'HTTP 502'


def test_network_errors_are_wrapped():
    session = FakeSession(error=requests.ConnectionError('refused'))
    client = PlannerClient('http://planner.local', session=session)

    with pytest.raises(PlannerClientError) as excinfo:
        client.create_task({'title': 'x'})
    assert excinfo.value.status_code is None


def test_list_tasks_range_params():
    session = FakeSession(FakeResponse(200, []))
    client = PlannerClient('http://planner.local', session=session)

    assert client.list_tasks('2024-01-01', '2024-01-31') == []
    assert session.calls[0][2]['params'] == {'start': '2024-01-01', 'end': '2024-01-31'}
