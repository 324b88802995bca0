"""HTTP transport for the task API, used by the client reconciliation layer."""

import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class PlannerClientError(Exception):
    def __init__(self, message, status_code=None, code=None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class PlannerClient:
    def __init__(self, base_url, session=None, timeout=DEFAULT_TIMEOUT, headers=None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        if headers:
            self.session.headers.update(headers)

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("Planner API %s %s failed: %s", method, path, exc)
            raise PlannerClientError(f"Request failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                body = response.json() or {}
            except ValueError:
                body = {}
            message = body.get('error') or f"HTTP {response.status_code}"
            raise PlannerClientError(message, status_code=response.status_code, code=body.get('code'))

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def list_tasks(self, start=None, end=None):
        params = {}
        if start:
            params['start'] = str(start)
        if end:
            params['end'] = str(end)
        return self._request('GET', '/api/tasks', params=params or None) or []

    def create_task(self, payload):
        return self._request('POST', '/api/tasks', json=payload) or []

    def update_task(self, task_id, fields, scope):
        return self._request('PUT', f'/api/tasks/{task_id}', json={'task': fields, 'scope': scope}) or []

    def delete_task(self, task_id, scope):
        self._request('DELETE', f'/api/tasks/{task_id}', params={'scope': scope})
