from vince import db
from vince.models import AIResponse, Attempt, Message
from vince.services import replies

from conftest import buy_time

WINNING_ARGUMENT = 'comprovado definitivo irrefutável óbvio'


def _active_attempt(client, who, seconds=300):
    buy_time(client, who['token'], seconds)
    return client.post('/attempts', headers=who['headers']).get_json()['id']


def _send(client, who, attempt_id, text):
    return client.post('/messages', json={'attempt_id': attempt_id, 'message': text}, headers=who['headers'])


def test_message_snapshots_current_score(client, alice):
    attempt_id = _active_attempt(client, alice)
    client.patch(f'/attempts/{attempt_id}', json={'convincing_score': 42}, headers=alice['headers'])
    res = _send(client, alice, attempt_id, 'porque sim')
    assert res.status_code == 201
    message = res.get_json()
    assert message['convincing_score_snapshot'] == 42
    assert message['status'] == 'sent'


def test_blank_message_is_rejected(client, alice):
    attempt_id = _active_attempt(client, alice)
    res = _send(client, alice, attempt_id, '   ')
    assert res.status_code == 400
    assert client.get(f'/attempts/{attempt_id}/messages', headers=alice['headers']).get_json() == []


def test_reply_scores_and_records(client, alice):
    attempt_id = _active_attempt(client, alice)
    message_id = _send(client, alice, attempt_id, 'A evidência científica').get_json()['id']
    res = client.post(f'/messages/{message_id}/reply', headers=alice['headers'])
    assert res.status_code == 200
    body = res.get_json()
    assert body['newScore'] == 16
    assert body['status'] == 'active'
    assert body['isWinner'] is False
    assert body['aiResponse']['user_message_id'] == message_id
    assert body['aiResponse']['convincing_score_snapshot'] == 16

    # Asking again returns the same reply without scoring twice
    again = client.post(f'/messages/{message_id}/reply', headers=alice['headers']).get_json()
    assert again['aiResponse']['id'] == body['aiResponse']['id']
    assert again['newScore'] == 16

    history = client.get(f'/attempts/{attempt_id}/ai-responses', headers=alice['headers']).get_json()
    assert len(history) == 1


def test_winning_conversation_completes_attempt(client, alice):
    attempt_id = _active_attempt(client, alice)
    body = None
    for _ in range(4):
        message_id = _send(client, alice, attempt_id, WINNING_ARGUMENT).get_json()['id']
        body = client.post(f'/messages/{message_id}/reply', headers=alice['headers']).get_json()
    assert body['newScore'] == 100
    assert body['status'] == 'completed'
    assert body['isWinner'] is True
    assert 'Parabéns' in body['aiResponse']['ai_response']

    # No more messages once the attempt is over
    res = _send(client, alice, attempt_id, 'porque')
    assert res.status_code == 409


def test_reply_after_stop_is_refused(client, alice):
    attempt_id = _active_attempt(client, alice)
    message_id = _send(client, alice, attempt_id, 'porque').get_json()['id']
    client.patch(f'/attempts/{attempt_id}', json={'status': 'abandoned'}, headers=alice['headers'])
    res = client.post(f'/messages/{message_id}/reply', headers=alice['headers'])
    assert res.status_code == 409


def test_pending_reply_is_dropped_when_attempt_ends(client, flask_app, alice):
    attempt_id = _active_attempt(client, alice)
    message_id = _send(client, alice, attempt_id, 'porque').get_json()['id']
    client.patch(f'/attempts/{attempt_id}', json={'status': 'abandoned'}, headers=alice['headers'])

    # The scheduled job fires after the stop
    with flask_app.app_context():
        assert replies.generate_reply(message_id) is None
        assert AIResponse.query.filter_by(user_message_id=message_id).count() == 0
        assert db.session.get(Attempt, attempt_id).convincing_score == 0


def test_scheduled_reply_runs_in_background(client, flask_app, alice, monkeypatch):
    attempt_id = _active_attempt(client, alice)
    message_id = _send(client, alice, attempt_id, 'porque').get_json()['id']

    started = []
    monkeypatch.setitem(flask_app.config, 'ENABLE_SCHEDULER_IN_TESTS', True)
    monkeypatch.setattr(replies.socketio, 'start_background_task', lambda fn, *args: started.append((fn, args)))
    res = client.post(f'/messages/{message_id}/reply', headers=alice['headers'])
    assert res.status_code == 202
    assert res.get_json() == {'message_id': message_id, 'scheduled': True}
    assert len(started) == 1

    # Run the job the way the background task would
    fn, args = started[0]
    fn(message_id, 0)
    with flask_app.app_context():
        assert AIResponse.query.filter_by(user_message_id=message_id).count() == 1
        assert db.session.get(Attempt, attempt_id).convincing_score == 8


def test_external_ai_response(client, alice):
    attempt_id = _active_attempt(client, alice)
    message_id = _send(client, alice, attempt_id, 'olá').get_json()['id']
    payload = {
        'attempt_id': attempt_id,
        'user_message_id': message_id,
        'ai_response': 'Interessante.',
        'convincing_score_snapshot': 0,
    }
    res = client.post('/ai-responses', json=payload, headers=alice['headers'])
    assert res.status_code == 201
    response_id = res.get_json()['id']
    assert client.get(f'/ai-responses/{response_id}', headers=alice['headers']).status_code == 200

    res = client.post('/ai-responses', json=payload, headers=alice['headers'])
    assert res.status_code == 409


def test_messages_of_others_are_private(client, alice, bob):
    attempt_id = _active_attempt(client, alice)
    message_id = _send(client, alice, attempt_id, 'porque').get_json()['id']
    assert _send(client, bob, attempt_id, 'porque').status_code == 403
    assert client.post(f'/messages/{message_id}/reply', headers=bob['headers']).status_code == 403
    assert client.get(f'/attempts/{attempt_id}/messages', headers=bob['headers']).status_code == 403
    with client.application.app_context():
        assert Message.query.count() == 1


def test_crossing_threshold_by_reply_awards_once(client, flask_app, alice):
    from vince.models import PrizeCertificate

    attempt_id = _active_attempt(client, alice)
    client.patch(f'/attempts/{attempt_id}', json={'convincing_score': 94}, headers=alice['headers'])
    message_id = _send(client, alice, attempt_id, 'porque').get_json()['id']
    body = client.post(f'/messages/{message_id}/reply', headers=alice['headers']).get_json()
    assert body['newScore'] == 100
    assert body['status'] == 'completed'
    with flask_app.app_context():
        assert PrizeCertificate.query.count() == 1


def test_replies_are_scored_in_send_order(client, flask_app, alice):
    attempt_id = _active_attempt(client, alice)
    first_id = _send(client, alice, attempt_id, 'porque').get_json()['id']
    second_id = _send(client, alice, attempt_id, 'acho').get_json()['id']

    # The job for the later message fires first
    with flask_app.app_context():
        second = replies.generate_reply(second_id)
        assert second.user_message_id == second_id
        first = AIResponse.query.filter_by(user_message_id=first_id).one()
        assert first.id < second.id
        assert first.convincing_score_snapshot == 8
        assert second.convincing_score_snapshot == 3
        assert db.session.get(Attempt, attempt_id).convincing_score == 3

        # The earlier job then finds its reply already written
        assert replies.generate_reply(first_id).id == first.id
        assert db.session.get(Attempt, attempt_id).convincing_score == 3


def test_earlier_win_closes_out_queued_messages(client, flask_app, alice):
    attempt_id = _active_attempt(client, alice)
    client.patch(f'/attempts/{attempt_id}', json={'convincing_score': 94}, headers=alice['headers'])
    first_id = _send(client, alice, attempt_id, 'porque').get_json()['id']
    second_id = _send(client, alice, attempt_id, 'acho').get_json()['id']

    res = client.post(f'/messages/{second_id}/reply', headers=alice['headers'])
    assert res.status_code == 409
    assert res.get_json()['details'] == {'status': 'completed'}
    with flask_app.app_context():
        assert AIResponse.query.filter_by(user_message_id=first_id).count() == 1
        assert AIResponse.query.filter_by(user_message_id=second_id).count() == 0
