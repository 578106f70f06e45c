import os
import sys
import pytest

# Ensure the backend root (containing the `vince` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from vince import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = []
    TOKEN_MAX_AGE_SEC = 3600
    WIN_THRESHOLD = 95
    SYNC_INTERVAL_SEC = 15
    AI_REPLY_DELAY_SEC = 0
    INITIAL_PRIZE_AMOUNT = 100
    PRIZE_INCREMENT = 50


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import vince.models  # noqa: F401
        db.create_all()
    # Requests push their own app context so each one resolves its own bearer token
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_ctx(flask_app):
    """App context for calling services directly."""
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


def auth(token):
    return {'Authorization': f'Bearer {token}'}


def register(client, name='Alice', email=None, password='secret123'):
    """Create a convincer over HTTP; returns (convincer dict, token)."""
    email = email or f'{name.lower()}@example.com'
    res = client.post('/convincers', json={'name': name, 'email': email, 'password': password})
    assert res.status_code == 201, res.get_json()
    data = res.get_json()
    return data['convincer'], data['token']


def buy_time(client, token, seconds):
    """Pay for ``seconds`` and confirm; returns the new balance."""
    res = client.post('/payments', json={'amount_paid': 9.9, 'time_purchased_seconds': seconds}, headers=auth(token))
    assert res.status_code == 201, res.get_json()
    payment_id = res.get_json()['id']
    res = client.post(f'/payments/{payment_id}/confirm', headers=auth(token))
    assert res.status_code == 200, res.get_json()
    return res.get_json()['timeBalance']['amount_time_seconds']


@pytest.fixture()
def alice(client):
    convincer, token = register(client, 'Alice')
    return {'id': convincer['id'], 'token': token, 'headers': auth(token)}


@pytest.fixture()
def bob(client):
    convincer, token = register(client, 'Bob')
    return {'id': convincer['id'], 'token': token, 'headers': auth(token)}


@pytest.fixture()
def sio_client(flask_app, alice):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws',
        auth={'token': alice['token']},
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
