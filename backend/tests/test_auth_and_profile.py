from fastapi.testclient import TestClient

from academicpro.main import app

client = TestClient(app)


def _signup(email='grace@example.com', password='pass123', confirm=None, first='Grace', last='Hopper'):
    return client.post('/api/users/signup', json={
        'first_name': first,
        'last_name': last,
        'email': email,
        'password': password,
        'confirm_password': password if confirm is None else confirm,
    })


def test_signup_returns_token_and_display_name():
    r = _signup()
    assert r.status_code == 201
    body = r.json()
    assert body['username'] == 'Grace Hopper'
    assert body['email'] == 'grace@example.com'
    assert body['access_token']
    assert 'password' not in body and 'password_hash' not in body


def test_signup_rejects_password_mismatch():
    r = _signup(confirm='other123')
    assert r.status_code == 400
    assert r.json()['message'] == 'Passwords do not match'


def test_signup_rejects_duplicate_email():
    assert _signup().status_code == 201
    r = _signup(first='Someone')
    assert r.status_code == 409
    assert r.json()['message'] == 'User already exists'


def test_signup_validation_names_the_field():
    r = _signup(password='123', confirm='123')
    assert r.status_code == 400
    assert r.json()['message'].startswith('password')
    r2 = _signup(email='not-an-email')
    assert r2.status_code == 400
    assert r2.json()['message'].startswith('email')


def test_login_success_and_uniform_failure():
    _signup()
    ok = client.post('/api/users/login', json={'email': 'grace@example.com', 'password': 'pass123'})
    assert ok.status_code == 200
    assert ok.json()['username'] == 'Grace Hopper'
    assert ok.json()['access_token']

    wrong_pw = client.post('/api/users/login', json={'email': 'grace@example.com', 'password': 'nope123'})
    unknown = client.post('/api/users/login', json={'email': 'nobody@example.com', 'password': 'pass123'})
    assert wrong_pw.status_code == 401
    assert unknown.status_code == 401
    assert wrong_pw.json() == unknown.json() == {'message': 'Invalid email or password'}


def test_profile_read_and_update(make_user):
    headers, user_id = make_user(first_name='Alan', last_name='Turing')
    r = client.get('/api/users/profile', headers=headers)
    assert r.status_code == 200
    assert r.json()['id'] == user_id
    assert r.json()['username'] == 'Alan Turing'
    assert r.json()['profile_pic'] == '/images/default_avatar.png'

    r2 = client.put('/api/users/profile', json={'last_name': 'M. Turing', 'first_name': '', 'location': 'Wilmslow'}, headers=headers)
    assert r2.status_code == 200
    body = r2.json()
    assert body['first_name'] == 'Alan'
    assert body['username'] == 'Alan M. Turing'
    assert body['location'] == 'Wilmslow'
    assert body['access_token']


def test_profile_password_change(make_user):
    headers, _ = make_user(email='pw@example.com')
    bad = client.put('/api/users/profile', json={'password': 'newpass1', 'confirm_password': 'newpass2'}, headers=headers)
    assert bad.status_code == 400
    assert bad.json()['message'] == 'New passwords do not match'

    ok = client.put('/api/users/profile', json={'password': 'newpass1', 'confirm_password': 'newpass1'}, headers=headers)
    assert ok.status_code == 200
    login = client.post('/api/users/login', json={'email': 'pw@example.com', 'password': 'newpass1'})
    assert login.status_code == 200


def test_profile_blank_email_and_password_are_ignored(make_user):
    headers, _ = make_user(first_name='Alan', email='alan@example.com', password='secret123')
    r = client.put('/api/users/profile', json={
        'first_name': 'Alonzo', 'email': '', 'password': '', 'confirm_password': '',
    }, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()['first_name'] == 'Alonzo'
    assert r.json()['email'] == 'alan@example.com'
    login = client.post('/api/users/login', json={'email': 'alan@example.com', 'password': 'secret123'})
    assert login.status_code == 200

    short = client.put('/api/users/profile', json={'password': 'abc', 'confirm_password': 'abc'}, headers=headers)
    assert short.status_code == 400
    assert short.json()['message'].startswith('password')


def test_profile_email_change_conflict(make_user):
    make_user(email='taken@example.com')
    headers, _ = make_user()
    r = client.put('/api/users/profile', json={'email': 'taken@example.com'}, headers=headers)
    assert r.status_code == 409


def test_lookup_by_email(make_user):
    headers, _ = make_user()
    _, target_id = make_user(first_name='Barbara', email='barbara@example.com')
    r = client.get('/api/users/lookup', params={'email': 'barbara@example.com'}, headers=headers)
    assert r.status_code == 200
    assert r.json()['id'] == target_id

    missing = client.get('/api/users/lookup', params={'email': 'ghost@example.com'}, headers=headers)
    assert missing.status_code == 404
    blank = client.get('/api/users/lookup', headers=headers)
    assert blank.status_code == 400


def test_protected_routes_reject_bad_tokens():
    r = client.get('/api/users/profile')
    assert r.status_code == 401 or r.status_code == 403
    r2 = client.get('/api/notes', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r2.status_code == 401
    assert r2.json()['message'] == 'invalid token'


def test_request_id_header_exists():
    r = client.get('/health')
    assert r.status_code == 200
    assert 'X-Request-ID' in r.headers
    echoed = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert echoed.headers['X-Request-ID'] == 'abc123'
