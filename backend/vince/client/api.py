"""HTTP client for the Vince server, used by the attempt countdown session.

Every call is blocking (``requests``); the asyncio session runs them in a
worker thread. Failures are split the way the session handles them:

- ``ApiRejected``: the server answered 4xx. Never retried.
- ``TransientApiError``: no answer, or a 5xx. Retried on the next cycle.
"""
import logging
import threading
from typing import Optional
from urllib.parse import urljoin

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
BEACON_TIMEOUT = 2.0


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body or {}


class ApiRejected(ApiError):
    pass


class TransientApiError(ApiError):
    pass


class VinceApi:
    def __init__(self, base_url: str, token: str, convincer_id: int,
                 timeout: float = DEFAULT_TIMEOUT, http: Optional[requests.Session] = None):
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.token = token
        self.convincer_id = convincer_id
        self.timeout = timeout
        self.http = http or requests.Session()

    def _headers(self) -> dict:
        return {'Authorization': f'Bearer {self.token}'}

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip('/'))

    def _request(self, method: str, path: str, json: Optional[dict] = None):
        try:
            resp = self.http.request(method, self._url(path), json=json, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransientApiError(f'{method} {path} failed: {exc}') from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 500:
            raise TransientApiError(f'{method} {path} -> {resp.status_code}', resp.status_code, body)
        if resp.status_code >= 400:
            message = body.get('error') if isinstance(body, dict) else None
            raise ApiRejected(message or f'{method} {path} -> {resp.status_code}', resp.status_code, body)
        return body

    # Attempts

    def start_attempt(self) -> dict:
        return self._request('POST', '/attempts')

    def get_attempt(self, attempt_id: int) -> dict:
        return self._request('GET', f'/attempts/{attempt_id}')

    def get_active_attempt(self) -> Optional[dict]:
        try:
            return self._request('GET', f'/convincers/{self.convincer_id}/attempts/active')
        except ApiRejected as exc:
            if exc.status_code == 404:
                return None
            raise

    def update_attempt(self, attempt_id: int, **fields) -> dict:
        return self._request('PATCH', f'/attempts/{attempt_id}', json=fields)

    # Time ledger

    def read_balance(self) -> int:
        return int(self._request('GET', f'/time-balance/{self.convincer_id}')['amount_time_seconds'])

    def debit(self, seconds: int) -> int:
        body = self._request('PUT', f'/time-balance/{self.convincer_id}', json={'seconds_to_subtract': int(seconds)})
        return int(body['amount_time_seconds'])

    def beacon(self, seconds: int) -> threading.Thread:
        """Fire-and-forget debit for page teardown. Never blocks, never raises."""
        url = self._url(f'/time-balance/{self.convincer_id}')
        payload = {'seconds_to_subtract': int(seconds)}
        headers = self._headers()

        def _send():
            try:
                requests.post(url, json=payload, headers=headers, timeout=BEACON_TIMEOUT)
            except requests.RequestException as exc:
                logger.warning('beacon lost %ss: %s', seconds, exc)

        thread = threading.Thread(target=_send, name='vince-beacon', daemon=True)
        thread.start()
        return thread

    # Conversation

    def send_message(self, attempt_id: int, text: str) -> dict:
        return self._request('POST', '/messages', json={'attempt_id': attempt_id, 'message': text})

    def request_reply(self, message_id: int) -> dict:
        return self._request('POST', f'/messages/{message_id}/reply')
