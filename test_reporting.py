import csv
import io
import pytest
import time as systime
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from storefront import create_app, db
from storefront.auth.models import User, RoleEnum, StaffPermission
from storefront.billing.models import Invoice, DailyIncome
from storefront.catalog.models import Product, Variant
from storefront.reporting.aggregation import (
    method_group, preset_range, daily_income_summary, inventory_summary
)


# ── Payment method groups ─────────────────────────────────────────

@pytest.mark.parametrize('method, group', [
    ('upi', 'UPI'),
    ('GPay', 'UPI'),
    ('phonepe-business', 'UPI'),
    ('cash', 'CASH'),
    ('Cash on delivery', 'CASH'),
    ('cod', 'CASH'),
    ('bank_transfer', 'BANK'),
    ('NEFT', 'BANK'),
    ('card', 'OTHER'),
    ('', 'OTHER'),
    (None, 'OTHER'),
])
def test_method_group(method, group):
    assert method_group(method) == group


# ── Date presets ──────────────────────────────────────────────────

WEDNESDAY = date(2026, 10, 14)


def test_preset_ranges():
    assert preset_range('today', WEDNESDAY) == (WEDNESDAY, WEDNESDAY)
    assert preset_range('yesterday', WEDNESDAY) == (date(2026, 10, 13), date(2026, 10, 13))
    assert preset_range('week', WEDNESDAY) == (date(2026, 10, 12), date(2026, 10, 18))
    assert preset_range('month', WEDNESDAY) == (date(2026, 10, 1), date(2026, 10, 31))
    assert preset_range('month', date(2028, 2, 10)) == (date(2028, 2, 1), date(2028, 2, 29))


def test_unknown_preset():
    with pytest.raises(ValueError):
        preset_range('decade', WEDNESDAY)


# ── Daily income ──────────────────────────────────────────────────

INVOICES = [
    {'id': 1, 'invoice_number': 'INV-2026-0001', 'created_at': datetime(2026, 10, 10, 11, 0),
     'grand_total': Decimal('1000.00'), 'paid_amount': Decimal('1000.00')},
    {'id': 2, 'invoice_number': 'INV-2026-0002', 'created_at': datetime(2026, 10, 12, 16, 30),
     'grand_total': Decimal('500.00'), 'paid_amount': Decimal('200.00')},
]

PAYMENTS = [
    {'invoice_id': 1, 'amount': Decimal('400'), 'payment_method': 'cash', 'payment_date': date(2026, 10, 10)},
    {'invoice_id': 1, 'amount': Decimal('600'), 'payment_method': 'upi', 'payment_date': date(2026, 10, 12)},
    {'invoice_id': 2, 'amount': Decimal('200'), 'payment_method': 'gpay', 'payment_date': date(2026, 10, 12)},
]


def test_daily_income_groups_by_payment_date_newest_first():
    summary = daily_income_summary(PAYMENTS, INVOICES, date(2026, 10, 1), date(2026, 10, 31))
    days = summary['days']
    assert [d['date'] for d in days] == [date(2026, 10, 12), date(2026, 10, 10)]

    latest = days[0]
    assert latest['total_paid'] == Decimal('800')
    assert latest['old_overdue_paid'] == Decimal('600')      # invoice 1 was raised two days earlier
    assert latest['same_day_paid'] == Decimal('200')
    assert latest['method_counts'] == {'UPI': 2, 'CASH': 0, 'BANK': 0, 'OTHER': 0}
    assert latest['total_invoiced'] == Decimal('500.00')
    assert latest['total_overdue'] == Decimal('300.00')

    first = days[1]
    assert first['total_paid'] == Decimal('400')
    assert first['old_overdue_paid'] == Decimal('0')
    assert first['rows'][0]['invoice_number'] == 'INV-2026-0001'


def test_daily_income_totals():
    totals = daily_income_summary(PAYMENTS, INVOICES)['totals']
    assert totals['total_paid'] == Decimal('1200')
    assert totals['old_overdue_paid'] == Decimal('600')
    assert totals['same_day_paid'] == Decimal('600')
    assert totals['total_invoiced'] == Decimal('1500.00')
    assert totals['total_overdue'] == Decimal('300.00')


def test_group_filter_sums_only_that_group_but_counts_all():
    days = daily_income_summary(PAYMENTS, INVOICES, group='CASH')['days']
    latest, first = days
    assert latest['total_paid'] == Decimal('0')
    assert latest['rows'] == []
    assert latest['method_counts']['UPI'] == 2
    assert first['total_paid'] == Decimal('400')


def test_date_bounds_are_inclusive():
    days = daily_income_summary(PAYMENTS, INVOICES, date(2026, 10, 11), date(2026, 10, 12))['days']
    assert [d['date'] for d in days] == [date(2026, 10, 12)]


def test_payment_without_invoice_still_counts():
    payments = [{'invoice_id': 99, 'amount': '50', 'payment_method': 'bank', 'payment_date': '2026-10-05'}]
    day = daily_income_summary(payments, [])['days'][0]
    assert day['total_paid'] == Decimal('50')
    assert day['rows'][0]['invoice_number'] is None
    assert day['total_invoiced'] == Decimal('0')


# ── Inventory ─────────────────────────────────────────────────────

PRODUCTS = [
    {'id': 1, 'name': 'Kurta', 'category': 'Apparel', 'price': Decimal('1000'), 'offer_price': Decimal('800')},
    {'id': 2, 'name': 'Scarf', 'category': None, 'price': '300', 'offer_price': None},
]
VARIANTS = [{'product_id': 1, 'stock_quantity': 5}, {'product_id': 1, 'stock_quantity': 2}]
SALES = [
    {'product_id': 1, 'quantity': 2, 'created_at': datetime(2026, 10, 12, 10)},
    {'product_id': 1, 'quantity': 1, 'created_at': datetime(2026, 10, 10, 9)},
    {'product_id': 2, 'quantity': 1, 'created_at': datetime(2026, 10, 12, 18)},
]


def test_inventory_per_product():
    kurta, scarf = inventory_summary(PRODUCTS, VARIANTS, SALES)['products']
    assert kurta['variant_total'] == 7
    assert kurta['sold_units'] == 3
    assert kurta['unit_price'] == Decimal('800')
    assert kurta['revenue'] == Decimal('2400')
    assert kurta['available'] == 4
    assert kurta['low_stock'] is True

    assert scarf['variant_total'] == 0
    assert scarf['available'] == -1
    assert scarf['revenue'] == Decimal('300')


def test_inventory_daily_series_and_totals():
    summary = inventory_summary(PRODUCTS, VARIANTS, SALES, low_stock_threshold=3)
    assert summary['daily'] == [
        {'date': date(2026, 10, 10), 'units': 1, 'revenue': Decimal('800')},
        {'date': date(2026, 10, 12), 'units': 3, 'revenue': Decimal('1900')},
    ]
    assert summary['totals'] == {
        'variant_total': 7, 'sold_units': 4, 'revenue': Decimal('2700'), 'available': 3,
    }
    assert summary['products'][0]['low_stock'] is False


# ── Routes ────────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def client():
    app = create_app('testing')
    with app.app_context():
        db.create_all()

        admin = User(username='admin', name='Admin', role=RoleEnum.admin)
        admin.set_password('admin123')
        db.session.add(admin)

        clerk = User(username='clerk', name='Accounts Clerk', role=RoleEnum.staff)
        clerk.set_password('password')
        db.session.add(clerk)
        db.session.flush()
        db.session.add(StaffPermission(staff_id=clerk.id, permission_key='invoice_archive', allowed=True))

        today = date.today()
        earlier = today - timedelta(days=2)
        inv = Invoice(
            invoice_number='INV-2026-0001', customer_name='Ravi', tax_type='NONE',
            subtotal=1000, taxable_amount=1000, grand_total=1000, paid_amount=700, status='partial',
            created_at=datetime.combine(earlier, time(10, 0)),
        )
        db.session.add(inv)
        db.session.flush()
        db.session.add_all([
            DailyIncome(invoice_id=inv.id, amount=300, payment_method='cash', payment_date=earlier),
            DailyIncome(invoice_id=inv.id, amount=400, payment_method='upi', payment_date=today),
        ])

        kurta = Product(name='Cotton Kurta', price=1000)
        db.session.add(kurta)
        db.session.flush()
        db.session.add(Variant(product_id=kurta.id, color='Red', size='M', stock_quantity=5))
        db.session.commit()

        yield app.test_client()
        db.session.remove()
        db.drop_all()


def login(client, username='admin', password='admin123'):
    return client.post('/auth/login', json={'username': username, 'password': password})


def window(days_back=3):
    today = date.today()
    return f'start={(today - timedelta(days=days_back)).isoformat()}&end={(today + timedelta(days=1)).isoformat()}'


def test_daily_income_route(client):
    login(client, 'clerk', 'password')
    data = client.get(f'/reporting/daily-income?{window()}').get_json()
    assert [d['date'] for d in data['days']] == [
        date.today().isoformat(), (date.today() - timedelta(days=2)).isoformat(),
    ]
    assert data['totals']['total_paid'] == '700.00'
    assert data['totals']['old_overdue_paid'] == '400.00'
    assert data['days'][0]['rows'][0]['invoice_number'] == 'INV-2026-0001'
    assert data['group'] == 'ALL'


def test_daily_income_preset_and_group(client):
    login(client)
    today = client.get('/reporting/daily-income?preset=today').get_json()
    assert today['totals']['total_paid'] == '400.00'

    cash = client.get(f'/reporting/daily-income?{window()}&group=cash').get_json()
    assert cash['totals']['total_paid'] == '300.00'


def test_daily_income_rejects_bad_input(client):
    login(client)
    assert client.get('/reporting/daily-income?preset=decade').status_code == 400
    assert client.get('/reporting/daily-income?group=crypto').status_code == 400
    assert client.get('/reporting/daily-income?start=2026-10-20&end=2026-10-01').status_code == 400
    assert client.get('/reporting/daily-income?start=yesterday').status_code == 400


def test_inventory_route_counts_online_orders(client):
    login(client)
    kurta = Product.query.filter_by(name='Cotton Kurta').one()
    red = kurta.variants[0]
    resp = client.post('/orders/', json={
        'customer_name': 'Asha',
        'items': [{'product_id': kurta.id, 'variant_id': red.id, 'quantity': 2}],
    })
    assert resp.status_code == 201

    data = client.get(f'/reporting/inventory?{window()}').get_json()
    row = data['products'][0]
    assert row['name'] == 'Cotton Kurta'
    assert row['variant_total'] == 3          # stock already deducted by the order
    assert row['sold_units'] == 2
    assert row['revenue'] == '2000.00'
    assert row['available'] == 1
    assert row['low_stock'] is True


def test_inventory_route_needs_inventory_permission(client):
    login(client, 'clerk', 'password')
    assert client.get('/reporting/inventory').status_code == 403


def test_export_invoices_csv(client):
    login(client, 'clerk', 'password')
    resp = client.get(f'/reporting/export/invoices?{window()}')
    assert resp.status_code == 200
    assert resp.headers['Content-Type'].startswith('text/csv')
    assert 'attachment' in resp.headers['Content-Disposition']

    rows = list(csv.reader(io.StringIO(resp.data.decode('utf-8'))))
    assert rows[0][0] == 'Invoice #'
    assert rows[1][0] == 'INV-2026-0001'
    assert rows[1][8] == '1000.00'
    assert rows[1][10] == 'partial'


def test_export_daily_income_csv(client):
    login(client)
    resp = client.get(f'/reporting/export/daily-income?{window()}')
    rows = list(csv.reader(io.StringIO(resp.data.decode('utf-8'))))
    assert rows[0] == ['Invoice', 'Amount', 'Overdue', 'OldPaidOverdue', 'Method', 'PaymentDate', 'InvoiceTotal']
    assert len(rows) == 3
    assert rows[1][1] == '400.00'
    assert rows[1][3] == '400.00'


def test_export_permissions(client):
    assert client.get('/reporting/export/invoices').status_code == 401
    login(client, 'clerk', 'password')
    assert client.get('/reporting/export/inventory').status_code == 403
    assert client.get('/reporting/export/payroll').status_code == 404


# ── Local clock ───────────────────────────────────────────────────

# At any moment one of these zones is on a different calendar date from UTC.
@pytest.fixture(params=['Etc/GMT-12', 'Etc/GMT+12'])
def local_zone(request, monkeypatch):
    if not hasattr(systime, 'tzset'):
        pytest.skip('time.tzset is not available on this platform')
    monkeypatch.setenv('TZ', request.param)
    systime.tzset()
    yield request.param
    monkeypatch.undo()
    systime.tzset()


def test_counter_sale_is_same_day_income(local_zone, client):
    login(client)
    kurta = Product.query.filter_by(name='Cotton Kurta').one()
    draft_id = client.post('/billing/drafts').get_json()['id']
    client.put(f'/billing/drafts/{draft_id}/customer', json={'customer_name': 'Meera'})
    client.post(f'/billing/drafts/{draft_id}/lines', json={'kind': 'product'})
    client.patch(f'/billing/drafts/{draft_id}/lines/0',
                 json={'product_id': kurta.id, 'variant_id': kurta.variants[0].id, 'quantity': 1})
    client.put(f'/billing/drafts/{draft_id}/payment', json={'status': 'paid', 'payment_method': 'cash'})
    resp = client.post(f'/billing/drafts/{draft_id}/commit')
    assert resp.status_code == 201, resp.get_json()
    invoice = resp.get_json()
    assert invoice['created_at'][:10] == date.today().isoformat()

    data = client.get('/reporting/daily-income?preset=today').get_json()
    day = next(d for d in data['days'] if d['date'] == date.today().isoformat())
    row = next(r for r in day['rows'] if r['invoice_number'] == invoice['invoice_number'])
    assert row['amount'] == invoice['grand_total']
    assert row['old_overdue_paid'] == '0.00'
    assert day['total_invoiced'] == invoice['grand_total']

    dashboard = client.get('/').get_json()
    assert dashboard['invoice_count'] == 1
    assert dashboard['invoiced'] == invoice['grand_total']
