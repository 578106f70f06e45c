import logging
from typing import Optional

import socketio

from vince.client.session import AttemptSession

logger = logging.getLogger(__name__)

NAMESPACE = '/ws'
PUSHED_EVENTS = ('attempt_updated', 'ai_response_created', 'attempt_closed')


class AttemptFeed:
    """Listens on ``/ws`` for one attempt and hands events to its session.

    python-socketio runs callbacks on its own thread; events cross into the
    session's loop through ``AttemptSession.dispatch_event``. Subscription is
    re-sent on every (re)connect.
    """

    def __init__(self, url: str, token: str, session: AttemptSession, client: Optional[socketio.Client] = None):
        self.url = url
        self.token = token
        self.session = session
        self.sio = client or socketio.Client(reconnection=True)
        self.sio.on('connect', self._on_connect, namespace=NAMESPACE)
        self.sio.on('subscribed', self._on_subscribed, namespace=NAMESPACE)
        self.sio.on('error', self._on_error, namespace=NAMESPACE)
        for event in PUSHED_EVENTS:
            self.sio.on(event, self._on_event, namespace=NAMESPACE)

    def connect(self) -> None:
        self.sio.connect(self.url, auth={'token': self.token}, namespaces=[NAMESPACE])

    def disconnect(self) -> None:
        if self.session.attempt_id is not None and self.sio.connected:
            self.sio.emit('unsubscribe_attempt', {'attemptId': self.session.attempt_id}, namespace=NAMESPACE)
        self.sio.disconnect()

    def _on_connect(self) -> None:
        if self.session.attempt_id is None:
            return
        self.sio.emit('subscribe_attempt', {'attemptId': self.session.attempt_id}, namespace=NAMESPACE)

    def _on_subscribed(self, data) -> None:
        # Catch up on anything missed while disconnected
        self.session.dispatch_event(dict(data, type='attempt_updated'))

    def _on_error(self, data) -> None:
        logger.warning('realtime error: %s', data)

    def _on_event(self, data) -> None:
        self.session.dispatch_event(data)
