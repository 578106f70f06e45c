import pytest
from sqlalchemy.exc import OperationalError

from vince import db
from vince.errors import ValidationFailed
from vince.models import Convincer
from vince.services import ledger

from conftest import auth, buy_time, register


def _convincer(email='ledger@example.com'):
    convincer = Convincer(name='Ledger', email=email, status='active')
    convincer.set_password('secret123')
    db.session.add(convincer)
    db.session.commit()
    return convincer


def test_balance_is_zero_without_a_row(app_ctx):
    convincer = _convincer()
    assert ledger.read_balance(convincer.id) == 0


def test_credit_then_debit(app_ctx):
    convincer = _convincer()
    assert ledger.credit(convincer.id, 300, payment_reference='payment:1') is True
    assert ledger.read_balance(convincer.id) == 300
    assert ledger.debit(convincer.id, 40) == 260


def test_credit_is_idempotent_per_payment(app_ctx):
    convincer = _convincer()
    assert ledger.credit(convincer.id, 120, payment_reference='payment:7') is True
    assert ledger.credit(convincer.id, 120, payment_reference='payment:7') is False
    assert ledger.read_balance(convincer.id) == 120


def test_debit_floors_at_zero(app_ctx):
    convincer = _convincer()
    ledger.credit(convincer.id, 30, payment_reference='payment:2')
    assert ledger.debit(convincer.id, 45) == 0
    assert ledger.debit(convincer.id, 10) == 0


def test_debit_without_a_row_changes_nothing(app_ctx):
    convincer = _convincer()
    assert ledger.debit(convincer.id, 10) == 0


def test_negative_amounts_are_rejected(app_ctx):
    convincer = _convincer()
    with pytest.raises(ValidationFailed):
        ledger.debit(convincer.id, -1)
    with pytest.raises(ValidationFailed):
        ledger.credit(convincer.id, 0, payment_reference='payment:3')


def test_payment_confirm_credits_once(client):
    _, token = register(client, 'Payer')
    res = client.post('/payments', json={'amount_paid': 5, 'time_purchased_seconds': 600}, headers=auth(token))
    assert res.status_code == 201
    payment = res.get_json()
    assert payment['status'] == 'pending'

    res = client.post(f"/payments/{payment['id']}/confirm", headers=auth(token))
    assert res.status_code == 200
    assert res.get_json()['timeBalance']['amount_time_seconds'] == 600

    # A second confirmation is refused and does not credit again
    res = client.post(f"/payments/{payment['id']}/confirm", headers=auth(token))
    assert res.status_code == 409
    convincer_id = payment['convincer_id']
    res = client.get(f'/time-balance/{convincer_id}', headers=auth(token))
    assert res.get_json()['amount_time_seconds'] == 600


def test_failed_credit_leaves_payment_pending_for_retry(client, monkeypatch):
    convincer, token = register(client, 'Retry')
    payment_id = client.post(
        '/payments', json={'amount_paid': 5, 'time_purchased_seconds': 300}, headers=auth(token)
    ).get_json()['id']

    real_credit = ledger.credit
    calls = []

    def credit_fails_once(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError('UPDATE time_balance', {}, Exception('database is locked'))
        return real_credit(*args, **kwargs)

    monkeypatch.setattr(ledger, 'credit', credit_fails_once)
    with pytest.raises(OperationalError):
        client.post(f'/payments/{payment_id}/confirm', headers=auth(token))
    assert client.get(f'/payments/{payment_id}', headers=auth(token)).get_json()['status'] == 'pending'

    res = client.post(f'/payments/{payment_id}/confirm', headers=auth(token))
    assert res.status_code == 200
    assert res.get_json()['payment']['status'] == 'completed'
    assert res.get_json()['timeBalance']['amount_time_seconds'] == 300
    res = client.get(f"/time-balance/{convincer['id']}", headers=auth(token))
    assert res.get_json()['amount_time_seconds'] == 300


def test_debit_endpoint_accepts_put_and_beacon_post(client, alice):
    buy_time(client, alice['token'], 100)
    res = client.put(f"/time-balance/{alice['id']}", json={'seconds_to_subtract': 30}, headers=alice['headers'])
    assert res.status_code == 200
    assert res.get_json()['amount_time_seconds'] == 70

    # Beacons may arrive without a JSON content type
    res = client.post(
        f"/time-balance/{alice['id']}",
        data='{"seconds_to_subtract": 20}',
        content_type='text/plain',
        headers=alice['headers'],
    )
    assert res.status_code == 200
    assert res.get_json()['amount_time_seconds'] == 50


def test_balance_of_someone_else_is_forbidden(client, alice, bob):
    res = client.get(f"/time-balance/{alice['id']}", headers=bob['headers'])
    assert res.status_code == 403
    res = client.put(f"/time-balance/{alice['id']}", json={'seconds_to_subtract': 5}, headers=bob['headers'])
    assert res.status_code == 403


def test_ledger_requires_a_token(client, alice):
    res = client.get(f"/time-balance/{alice['id']}")
    assert res.status_code == 401


def test_invalid_debit_body_is_400(client, alice):
    res = client.put(f"/time-balance/{alice['id']}", json={'seconds_to_subtract': -5}, headers=alice['headers'])
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Invalid request body'
