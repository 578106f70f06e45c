"""Realtime channel: attempt subscriptions over Socket.IO namespace ``/ws``.

Clients connect with ``auth={'token': <bearer token>}``, then send
``subscribe_attempt`` with ``{'attemptId': <id>}``. The server pushes
``attempt_updated`` and ``ai_response_created`` to every connection
subscribed to that attempt. Delivery is best-effort: a connection that is
gone when an event fires simply misses it and catches up on its next read.
"""
import threading
from typing import Dict, FrozenSet, Optional, Set

from flask import current_app, request
from flask_socketio import emit

from vince import socketio, db

NAMESPACE = '/ws'
EXTENSION_KEY = 'vince_realtime'


class SubscriberRegistry:
    """attempt id -> subscribed connection ids, plus who each connection is.

    Entries for a connection are removed as soon as it closes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_attempt: Dict[int, Set[str]] = {}
        self._by_sid: Dict[str, Set[int]] = {}
        self._identity: Dict[str, Optional[int]] = {}

    def connect(self, sid: str, convincer_id: Optional[int]) -> None:
        with self._lock:
            self._identity[sid] = convincer_id
            self._by_sid.setdefault(sid, set())

    def convincer_for(self, sid: str) -> Optional[int]:
        with self._lock:
            return self._identity.get(sid)

    def add(self, attempt_id: int, sid: str) -> None:
        with self._lock:
            self._by_attempt.setdefault(attempt_id, set()).add(sid)
            self._by_sid.setdefault(sid, set()).add(attempt_id)

    def remove(self, attempt_id: int, sid: str) -> bool:
        with self._lock:
            sids = self._by_attempt.get(attempt_id)
            if not sids or sid not in sids:
                return False
            sids.discard(sid)
            if not sids:
                del self._by_attempt[attempt_id]
            attempts = self._by_sid.get(sid)
            if attempts is not None:
                attempts.discard(attempt_id)
            return True

    def disconnect(self, sid: str) -> Set[int]:
        """Forget a closed connection; returns the attempts it was watching."""
        with self._lock:
            self._identity.pop(sid, None)
            attempts = self._by_sid.pop(sid, set())
            for attempt_id in attempts:
                sids = self._by_attempt.get(attempt_id)
                if sids is None:
                    continue
                sids.discard(sid)
                if not sids:
                    del self._by_attempt[attempt_id]
            return attempts

    def drop_attempt(self, attempt_id: int) -> Set[str]:
        with self._lock:
            sids = self._by_attempt.pop(attempt_id, set())
            for sid in sids:
                attempts = self._by_sid.get(sid)
                if attempts is not None:
                    attempts.discard(attempt_id)
            return sids

    def subscribers(self, attempt_id: int) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._by_attempt.get(attempt_id, ()))

    def subscription_count(self) -> int:
        with self._lock:
            return sum(len(s) for s in self._by_attempt.values())

    def connection_count(self) -> int:
        with self._lock:
            return len(self._identity)


class RealtimeNotifier:
    """Pushes attempt mutations to the connections watching them."""

    def __init__(self, server, registry: Optional[SubscriberRegistry] = None, namespace: str = NAMESPACE):
        self.server = server
        self.registry = registry or SubscriberRegistry()
        self.namespace = namespace

    def _broadcast(self, attempt_id: int, event: str, payload: dict) -> int:
        sent = 0
        for sid in self.registry.subscribers(attempt_id):
            try:
                self.server.emit(event, payload, to=sid, namespace=self.namespace)
                sent += 1
            except Exception as exc:
                # At-most-once: a failed push is dropped, the client catches up on read
                current_app.logger.info(f"[ws-drop] attempt={attempt_id} event={event} sid={sid} err={exc}")
        return sent

    def attempt_updated(self, attempt) -> int:
        return self._broadcast(attempt.id, 'attempt_updated', {
            'type': 'attempt_updated',
            'attemptId': attempt.id,
            'convincing_score': attempt.convincing_score,
            'status': attempt.status,
        })

    def ai_response_created(self, ai_response, convincing_score: int) -> int:
        return self._broadcast(ai_response.attempt_id, 'ai_response_created', {
            'type': 'ai_response_created',
            'attemptId': ai_response.attempt_id,
            'aiResponseId': ai_response.id,
            'aiResponse': ai_response.ai_response,
            'convincingScore': convincing_score,
        })

    def close_attempt(self, attempt) -> Set[str]:
        """Final notice for a terminated attempt, then drop its subscribers."""
        self._broadcast(attempt.id, 'attempt_closed', {
            'type': 'attempt_closed',
            'attemptId': attempt.id,
            'status': attempt.status,
        })
        sids = self.registry.drop_attempt(attempt.id)
        if sids:
            current_app.logger.info(f"[ws-close] attempt={attempt.id} dropped={len(sids)}")
        return sids


def get_notifier() -> RealtimeNotifier:
    return current_app.extensions[EXTENSION_KEY]


def _get_sid() -> str:
    return request.sid  # type: ignore[attr-defined]


def _attempt_id_from(data) -> Optional[int]:
    raw = (data or {}).get('attemptId', (data or {}).get('attempt_id'))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def handle_connect(auth=None):
    from vince.auth import convincer_id_from_token

    token = (auth or {}).get('token') if isinstance(auth, dict) else None
    convincer_id = convincer_id_from_token(token)
    get_notifier().registry.connect(_get_sid(), convincer_id)
    emit('connected', {'message': 'Connected to /ws', 'authenticated': convincer_id is not None})


def handle_disconnect(*args):
    attempts = get_notifier().registry.disconnect(_get_sid())
    if attempts:
        current_app.logger.info(f"[ws-disconnect] pruned attempts={sorted(attempts)}")


def handle_subscribe_attempt(data):
    from vince.models import Attempt

    notifier = get_notifier()
    sid = _get_sid()
    attempt_id = _attempt_id_from(data)
    if attempt_id is None:
        emit('error', {'message': 'attemptId is required'})
        return
    convincer_id = notifier.registry.convincer_for(sid)
    if convincer_id is None:
        emit('error', {'message': 'Authentication required', 'attemptId': attempt_id})
        return
    attempt = db.session.get(Attempt, attempt_id)
    if attempt is None:
        emit('error', {'message': 'Attempt not found', 'attemptId': attempt_id})
        return
    if attempt.convincer_id != convincer_id:
        current_app.logger.warning(f"[ws-denied] attempt={attempt_id} convincer={convincer_id}")
        emit('error', {'message': 'Access denied', 'attemptId': attempt_id})
        return
    if not attempt.is_active:
        emit('error', {'message': 'Attempt is not active', 'attemptId': attempt_id, 'status': attempt.status})
        return
    notifier.registry.add(attempt_id, sid)
    # Snapshot so the subscriber starts from the current state
    emit('subscribed', {
        'attemptId': attempt_id,
        'convincing_score': attempt.convincing_score,
        'status': attempt.status,
    })


def handle_unsubscribe_attempt(data):
    attempt_id = _attempt_id_from(data)
    if attempt_id is None:
        emit('error', {'message': 'attemptId is required'})
        return
    get_notifier().registry.remove(attempt_id, _get_sid())
    emit('unsubscribed', {'attemptId': attempt_id})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('subscribe_attempt', handle_subscribe_attempt, namespace=NAMESPACE)
    socketio.on_event('unsubscribe_attempt', handle_unsubscribe_attempt, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
