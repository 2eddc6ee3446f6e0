import pytest

from storefront import create_app, db
from storefront.auth.models import User, RoleEnum, StaffPermission, PERMISSION_KEYS


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def client():
    app = create_app('testing')
    with app.app_context():
        db.create_all()

        admin = User(username='admin', name='Admin', role=RoleEnum.admin)
        admin.set_password('admin123')
        staff = User(username='staff1', name='Staff One', role=RoleEnum.staff)
        staff.set_password('password')
        shopper = User(username='shopper', name='Shopper', role=RoleEnum.user)
        shopper.set_password('password')
        db.session.add_all([admin, staff, shopper])
        db.session.commit()

        yield app.test_client()
        db.session.remove()
        db.drop_all()


def login(client, username, password):
    return client.post('/auth/login', json={'username': username, 'password': password})


def user(username):
    return User.query.filter_by(username=username).one()


# ── Model ─────────────────────────────────────────────────────────

def test_admin_can_everything_staff_only_granted(client):
    admin, staff, shopper = user('admin'), user('staff1'), user('shopper')
    assert admin.allowed_modules() == list(PERMISSION_KEYS)
    assert staff.allowed_modules() == []

    db.session.add(StaffPermission(staff_id=staff.id, permission_key='billing', allowed=True))
    db.session.add(StaffPermission(staff_id=staff.id, permission_key='inventory', allowed=False))
    db.session.commit()
    assert staff.can('billing')
    assert not staff.can('inventory')
    assert not shopper.can('billing')


def test_password_is_hashed(client):
    admin = user('admin')
    assert admin.password_hash != 'admin123'
    assert admin.check_password('admin123')
    assert not admin.check_password('wrong')


# ── Login ─────────────────────────────────────────────────────────

def test_login_returns_modules(client):
    resp = login(client, 'admin', 'admin123')
    assert resp.status_code == 200
    assert resp.get_json()['modules'] == list(PERMISSION_KEYS)

    me = client.get('/auth/me').get_json()
    assert me['user']['username'] == 'admin'


def test_login_failures(client):
    assert login(client, 'admin', 'nope').status_code == 401
    assert login(client, 'ghost', 'x').status_code == 401
    assert login(client, '', '').status_code == 400
    assert login(client, 'shopper', 'password').status_code == 403
    assert client.get('/auth/me').status_code == 401


def test_logout_clears_session(client):
    login(client, 'admin', 'admin123')
    client.post('/auth/logout')
    assert client.get('/auth/me').status_code == 401


# ── Admin: permissions ────────────────────────────────────────────

def test_grant_permissions_opens_module(client):
    login(client, 'staff1', 'password')
    assert client.post('/billing/drafts').status_code == 403
    client.post('/auth/logout')

    login(client, 'admin', 'admin123')
    staff_id = user('staff1').id
    resp = client.put(f'/admin/users/{staff_id}/permissions', json={'billing': True, 'customers': False})
    assert resp.status_code == 200
    flags = resp.get_json()['permissions']
    assert flags == {'inventory': False, 'billing': True, 'invoice_archive': False, 'customers': False}
    client.post('/auth/logout')

    login(client, 'staff1', 'password')
    assert client.post('/billing/drafts').status_code == 201
    assert client.get('/billing/invoices').status_code == 403


def test_permissions_update_existing_rows(client):
    login(client, 'admin', 'admin123')
    staff_id = user('staff1').id
    client.put(f'/admin/users/{staff_id}/permissions', json={'inventory': True})
    client.put(f'/admin/users/{staff_id}/permissions', json={'inventory': False})
    assert StaffPermission.query.filter_by(staff_id=staff_id).count() == 1
    assert client.get(f'/admin/users/{staff_id}/permissions').get_json()['permissions']['inventory'] is False


def test_permissions_reject_unknown_keys_and_non_staff(client):
    login(client, 'admin', 'admin123')
    staff_id = user('staff1').id
    resp = client.put(f'/admin/users/{staff_id}/permissions', json={'payroll': True})
    assert resp.status_code == 400
    assert 'payroll' in resp.get_json()['errors']

    shopper_id = user('shopper').id
    assert client.put(f'/admin/users/{shopper_id}/permissions', json={'billing': True}).status_code == 400
    assert client.get('/admin/users/999/permissions').status_code == 404


# ── Admin: roles ──────────────────────────────────────────────────

def test_change_role(client):
    login(client, 'admin', 'admin123')
    shopper_id = user('shopper').id
    resp = client.put(f'/admin/users/{shopper_id}/role', json={'role': 'staff'})
    assert resp.status_code == 200
    assert resp.get_json()['role'] == 'staff'

    assert client.put(f'/admin/users/{shopper_id}/role', json={'role': 'owner'}).status_code == 400


def test_admin_cannot_demote_self(client):
    login(client, 'admin', 'admin123')
    admin_id = user('admin').id
    assert client.put(f'/admin/users/{admin_id}/role', json={'role': 'staff'}).status_code == 409
    db.session.expire_all()
    assert user('admin').role == RoleEnum.admin


def test_admin_routes_need_admin(client):
    assert client.get('/admin/users').status_code == 401
    login(client, 'staff1', 'password')
    assert client.get('/admin/users').status_code == 403
    client.post('/auth/logout')

    login(client, 'admin', 'admin123')
    usernames = {u['username'] for u in client.get('/admin/users').get_json()}
    assert usernames == {'admin', 'staff1', 'shopper'}
