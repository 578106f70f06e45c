from conftest import auth, register


def test_health(client):
    res = client.get('/health')
    assert res.status_code == 200
    assert res.get_json() == {'status': 'ok'}


def test_register_returns_token(client):
    convincer, token = register(client, 'Alice', email='Alice@Example.com')
    assert convincer['email'] == 'alice@example.com'
    assert convincer['status'] == 'active'
    assert 'password_hash' not in convincer
    res = client.get(f"/convincers/{convincer['id']}", headers=auth(token))
    assert res.status_code == 200
    assert res.get_json()['name'] == 'Alice'


def test_duplicate_email_is_conflict(client):
    register(client, 'Alice')
    res = client.post('/convincers', json={'name': 'Other', 'email': 'alice@example.com', 'password': 'secret123'})
    assert res.status_code == 409


def test_invalid_registration_lists_fields(client):
    res = client.post('/convincers', json={'name': '', 'email': 'not-an-email', 'password': '1'})
    assert res.status_code == 400
    body = res.get_json()
    assert body['error'] == 'Invalid request body'
    fields = {d['field'] for d in body['details']}
    assert {'name', 'email', 'password'} <= fields


def test_login(client):
    register(client, 'Alice')
    res = client.post('/login', json={'email': 'alice@example.com', 'password': 'secret123'})
    assert res.status_code == 200
    assert res.get_json()['token']

    res = client.post('/login', json={'email': 'alice@example.com', 'password': 'wrong-one'})
    assert res.status_code == 401


def test_profile_is_private(client, alice, bob):
    res = client.get(f"/convincers/{alice['id']}", headers=bob['headers'])
    assert res.status_code == 403
    res = client.get(f"/convincers/{alice['id']}")
    assert res.status_code == 401


def test_tampered_token_is_anonymous(client, alice):
    res = client.get(f"/convincers/{alice['id']}", headers=auth(alice['token'] + 'x'))
    assert res.status_code == 401
