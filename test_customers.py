import pytest

from storefront import create_app, db
from storefront.auth.models import User, RoleEnum, StaffPermission
from storefront.customers.models import Customer, next_customer_code


def test_next_customer_code():
    assert next_customer_code([]) == 'CUST001'
    assert next_customer_code(['CUST001', 'CUST009', None, 'VIP7']) == 'CUST010'
    assert next_customer_code(['CUST999']) == 'CUST1000'


@pytest.fixture
def client():
    app = create_app(config_name='testing')
    with app.app_context():
        db.create_all()

        admin = User(username='admin', name='Admin User', role=RoleEnum.admin)
        admin.set_password('admin123')
        db.session.add(admin)

        # billing-only staff can still add a customer from the invoice screen
        counter = User(username='counter', name='Counter', role=RoleEnum.staff)
        counter.set_password('password')
        db.session.add(counter)
        db.session.flush()
        db.session.add(StaffPermission(staff_id=counter.id, permission_key='billing', allowed=True))
        db.session.commit()

        yield app.test_client()
        db.session.remove()
        db.drop_all()


def login(client, username='admin', password='admin123'):
    return client.post('/auth/login', json={'username': username, 'password': password})


def test_create_and_search_customer(client):
    login(client)
    resp = client.post('/customers/', json={'name': 'John Doe', 'phone': '9876543210', 'state': 'Kerala'})
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['name'] == 'John Doe'
    assert data['cust_id'] == 'CUST001'

    resp = client.get('/customers/search?q=9876')
    data = resp.get_json()
    assert len(data) == 1
    assert data[0]['name'] == 'John Doe'

    assert client.get('/customers/search?q=cust001').get_json()[0]['phone'] == '9876543210'
    assert client.get('/customers/search').get_json() == []


def test_codes_increment(client):
    login(client)
    client.post('/customers/', json={'name': 'Asha'})
    assert client.get('/customers/next-code').get_json() == {'cust_id': 'CUST002'}
    assert client.post('/customers/', json={'name': 'Ravi'}).get_json()['cust_id'] == 'CUST002'


def test_duplicate_code_conflict(client):
    login(client)
    client.post('/customers/', json={'name': 'Asha', 'cust_id': 'CUST050'})
    resp = client.post('/customers/', json={'name': 'Ravi', 'cust_id': 'CUST050'})
    assert resp.status_code == 409
    assert Customer.query.count() == 1


def test_name_is_required(client):
    login(client)
    resp = client.post('/customers/', json={'name': '   ', 'phone': '123'})
    assert resp.status_code == 400
    assert 'name' in resp.get_json()['errors']


def test_update_and_delete(client):
    login(client)
    cid = client.post('/customers/', json={'name': 'Meena'}).get_json()['id']

    resp = client.patch(f'/customers/{cid}', json={'phone': '9000000001'})
    assert resp.status_code == 200
    assert resp.get_json()['name'] == 'Meena'
    assert resp.get_json()['phone'] == '9000000001'

    assert client.delete(f'/customers/{cid}').status_code == 204
    assert client.delete(f'/customers/{cid}').status_code == 404


def test_staff_without_customer_module(client):
    login(client, 'counter', 'password')
    assert client.post('/customers/', json={'name': 'Walk-in'}).status_code == 201
    assert client.get('/customers/').status_code == 403
    cid = Customer.query.one().id
    assert client.delete(f'/customers/{cid}').status_code == 403


def test_customer_feeds_draft(client):
    login(client)
    cid = client.post('/customers/', json={'name': 'Ravi', 'phone': '98450', 'state': 'Goa'}).get_json()['id']
    draft_id = client.post('/billing/drafts').get_json()['id']

    data = client.put(f'/billing/drafts/{draft_id}/customer', json={'customer_id': cid}).get_json()
    assert data['customer_name'] == 'Ravi'
    assert data['customer_state'] == 'Goa'
    assert data['label'] == 'Ravi'

    resp = client.put(f'/billing/drafts/{draft_id}/customer', json={'customer_id': 999})
    assert resp.status_code == 400


def test_numeric_phone_is_stored_as_text(client):
    login(client)
    resp = client.post('/customers/', json={'name': 'Ravi', 'phone': 9876543210})
    assert resp.status_code == 201
    assert resp.get_json()['phone'] == '9876543210'

    cid = resp.get_json()['id']
    resp = client.patch(f'/customers/{cid}', json={'phone': 9000000001})
    assert resp.status_code == 200
    assert resp.get_json()['phone'] == '9000000001'

    resp = client.post('/customers/', json={'name': ['Ravi'], 'phone': {'home': 1}})
    assert resp.status_code == 400
    assert resp.get_json()['errors'] == {'name': 'Must be text.', 'phone': 'Must be text.'}


def test_draft_customer_fields_accept_numbers(client):
    login(client)
    draft_id = client.post('/billing/drafts').get_json()['id']

    resp = client.put(f'/billing/drafts/{draft_id}/customer',
                      json={'customer_name': 'Ravi', 'customer_phone': 9876543210})
    assert resp.status_code == 200
    assert resp.get_json()['customer_phone'] == '9876543210'

    resp = client.put(f'/billing/drafts/{draft_id}/customer', json={'customer_phone': ['98']})
    assert resp.status_code == 400
