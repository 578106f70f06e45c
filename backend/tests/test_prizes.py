from vince.models import Prize, PrizeCertificate

from conftest import buy_time


def _win(client, who):
    buy_time(client, who['token'], 300)
    attempt_id = client.post('/attempts', headers=who['headers']).get_json()['id']
    res = client.patch(f'/attempts/{attempt_id}', json={'convincing_score': 95}, headers=who['headers'])
    assert res.get_json()['status'] == 'completed'
    return attempt_id


def test_current_prize_defaults(client):
    res = client.get('/prizes/current')
    assert res.status_code == 200
    prize = res.get_json()
    assert prize['amount'] == 100.0
    assert prize['status'] == 'open'


def test_win_distributes_prize_and_opens_next(client, flask_app, alice):
    client.get('/prizes/current')
    attempt_id = _win(client, alice)

    res = client.get('/prizes/current')
    assert res.get_json()['amount'] == 150.0

    with flask_app.app_context():
        distributed = Prize.query.filter_by(status='distributed').one()
        assert distributed.winner_convincer_id == alice['id']
        assert distributed.winning_attempt_id == attempt_id
        assert distributed.distributed_at is not None
        certificate = PrizeCertificate.query.one()
        assert certificate.prize_id == distributed.id
        assert len(certificate.hash) == 64
        cert_hash = certificate.hash

    res = client.get(f'/prize-certificates/{cert_hash}')
    assert res.status_code == 200
    body = res.get_json()
    assert body['convincer_id'] == alice['id']
    assert body['prize']['amount'] == 100.0


def test_completion_retries_award_once(client, flask_app, alice):
    attempt_id = _win(client, alice)
    for _ in range(3):
        res = client.patch(f'/attempts/{attempt_id}', json={'status': 'completed'}, headers=alice['headers'])
        assert res.status_code == 200
    with flask_app.app_context():
        assert PrizeCertificate.query.count() == 1
        assert Prize.query.filter_by(status='distributed').count() == 1
        assert Prize.query.filter_by(status='open').count() == 1


def test_each_winner_gets_the_next_prize(client, alice, bob):
    _win(client, alice)
    _win(client, bob)
    assert client.get('/prizes/current').get_json()['amount'] == 200.0


def test_statistics(client, alice, bob):
    _win(client, alice)
    buy_time(client, bob['token'], 60)
    attempt_id = client.post('/attempts', headers=bob['headers']).get_json()['id']
    client.patch(f'/attempts/{attempt_id}', json={'status': 'abandoned'}, headers=bob['headers'])

    stats = client.get('/prizes/statistics').get_json()
    assert stats['totalAttempts'] == 2
    assert stats['successfulAttempts'] == 1
    assert stats['failedAttempts'] == 1
    assert stats['successRate'] == '50.00%'
    assert stats['currentPrizeAmount'] == 150.0


def test_unknown_certificate_is_404(client):
    assert client.get('/prize-certificates/deadbeef').status_code == 404
