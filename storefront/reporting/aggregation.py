"""
storefront/reporting/aggregation.py
-----------------------------------
Read-side grouping for the daily-income and inventory reports.

Everything here is a pure function over plain dict rows, recomputed from
scratch on every call. Routes do the querying and hand the rows in.

Daily income
────────────
Payments are grouped by payment_date. For each day:

    total_paid        Σ amount
    old_overdue_paid  Σ amount whose invoice was created before that day
    same_day_paid     total_paid − old_overdue_paid
    total_invoiced    Σ grand_total of invoices created that day
    total_overdue     Σ max(grand_total − paid_amount, 0) of those invoices

Inventory
─────────
    variant_total   Σ variant stock_quantity for the product
    sold_units      Σ quantity over invoice items + order items in range
    revenue         sold_units × current unit price (offer_price or price)
    available       variant_total − sold_units

`available` is an estimate: it is not a ledger, and it drifts whenever
stock is adjusted by hand.
"""
import calendar
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal

from storefront.utils.money import ZERO, to_decimal


METHOD_GROUPS = ('UPI', 'CASH', 'BANK', 'OTHER')

_GROUP_KEYWORDS = (
    ('UPI',  ('upi', 'gpay', 'phonepe', 'paytm', 'bhim')),
    ('CASH', ('cash', 'cod', 'on_delivery')),
    ('BANK', ('bank', 'bank_transfer', 'neft', 'rtgs', 'imps')),
)

PRESETS = ('today', 'yesterday', 'week', 'month')


def method_group(method) -> str:
    """Bucket a free-text payment method. Substring match, first group wins."""
    s = (method or '').strip().lower()
    if not s:
        return 'OTHER'
    for group, keywords in _GROUP_KEYWORDS:
        if any(k in s for k in keywords):
            return group
    return 'OTHER'


def preset_range(name: str, today: date = None):
    """(start, end) for a named range; week is Monday–Sunday."""
    today = today or date.today()
    if name == 'today':
        return today, today
    if name == 'yesterday':
        y = today - timedelta(days=1)
        return y, y
    if name == 'week':
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    if name == 'month':
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1), today.replace(day=last)
    raise ValueError(f'Unknown date preset "{name}".')


def _as_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ── Daily income ──────────────────────────────────────────────────

def payment_detail(payment: dict, invoice: dict = None) -> dict:
    """One payment row joined with its invoice, as shown in a day's breakdown."""
    pay_date = _as_date(payment['payment_date'])
    amount = to_decimal(payment.get('amount'))
    created = _as_date(invoice.get('created_at')) if invoice else None
    total = to_decimal(invoice.get('grand_total')) if invoice else ZERO
    paid = to_decimal(invoice.get('paid_amount')) if invoice else ZERO
    return {
        'invoice_id':       payment.get('invoice_id'),
        'invoice_number':   invoice.get('invoice_number') if invoice else None,
        'amount':           amount,
        'payment_method':   payment.get('payment_method') or '',
        'method_group':     method_group(payment.get('payment_method')),
        'payment_date':     pay_date,
        'invoice_total':    total,
        'overdue':          max(total - paid, ZERO),
        'old_overdue_paid': amount if created and created < pay_date else ZERO,
    }


def daily_income_summary(payments, invoices, start=None, end=None, group='ALL') -> dict:
    """
    Group payment rows by payment date, newest date first.

    Args:
        payments: [{'invoice_id', 'amount', 'payment_method', 'payment_date'}]
        invoices: [{'id', 'invoice_number', 'created_at', 'grand_total', 'paid_amount'}]
        start, end: inclusive payment-date bounds (None = open)
        group: 'ALL' or one of METHOD_GROUPS; filters which payments count

    Returns {'days': [...], 'totals': {...}}; each day carries its detail rows.
    """
    start, end = _as_date(start), _as_date(end)
    invoices_by_id = {inv['id']: inv for inv in invoices}

    invoiced_by_date = defaultdict(lambda: {'total_invoiced': ZERO, 'total_overdue': ZERO})
    for inv in invoices:
        d = _as_date(inv.get('created_at'))
        if d is None:
            continue
        total = to_decimal(inv.get('grand_total'))
        remaining = max(total - to_decimal(inv.get('paid_amount')), ZERO)
        invoiced_by_date[d]['total_invoiced'] += total
        invoiced_by_date[d]['total_overdue'] += remaining

    days = {}
    for payment in payments:
        row = payment_detail(payment, invoices_by_id.get(payment.get('invoice_id')))
        d = row['payment_date']
        if start and d < start:
            continue
        if end and d > end:
            continue

        day = days.get(d)
        if day is None:
            day = days[d] = {
                'date':             d,
                'total_paid':       ZERO,
                'old_overdue_paid': ZERO,
                'same_day_paid':    ZERO,
                'method_counts':    {g: 0 for g in METHOD_GROUPS},
                'rows':             [],
            }
        day['method_counts'][row['method_group']] += 1

        if group != 'ALL' and row['method_group'] != group:
            continue
        day['rows'].append(row)
        day['total_paid'] += row['amount']
        day['old_overdue_paid'] += row['old_overdue_paid']

    summary = []
    for d in sorted(days, reverse=True):
        day = days[d]
        day['same_day_paid'] = day['total_paid'] - day['old_overdue_paid']
        day['total_invoiced'] = invoiced_by_date[d]['total_invoiced'] if d in invoiced_by_date else ZERO
        day['total_overdue'] = invoiced_by_date[d]['total_overdue'] if d in invoiced_by_date else ZERO
        summary.append(day)

    totals = {
        key: sum((day[key] for day in summary), ZERO)
        for key in ('total_paid', 'old_overdue_paid', 'same_day_paid',
                    'total_invoiced', 'total_overdue')
    }
    return {'days': summary, 'totals': totals}


# ── Inventory ─────────────────────────────────────────────────────

def _unit_price(product: dict) -> Decimal:
    if product.get('offer_price') is not None:
        return to_decimal(product['offer_price'])
    return to_decimal(product.get('price'))


def inventory_summary(products, variants, sales_rows, low_stock_threshold=5) -> dict:
    """
    Per-product stock versus units sold, plus a per-day sales series.

    Args:
        products:   [{'id', 'name', 'category', 'price', 'offer_price'}]
        variants:   [{'product_id', 'stock_quantity'}]
        sales_rows: [{'product_id', 'quantity', 'created_at'}] from both
                    invoice items and order items
    """
    prices = {p['id']: _unit_price(p) for p in products}

    variant_total = defaultdict(int)
    for v in variants:
        if v.get('product_id') is not None:
            variant_total[v['product_id']] += int(v.get('stock_quantity') or 0)

    sold = defaultdict(int)
    daily = {}
    for s in sales_rows:
        pid, qty = s.get('product_id'), int(s.get('quantity') or 0)
        if not pid or not qty:
            continue
        sold[pid] += qty
        d = _as_date(s.get('created_at')) or date.today()
        day = daily.setdefault(d, {'date': d, 'units': 0, 'revenue': ZERO})
        day['units'] += qty
        day['revenue'] += prices.get(pid, ZERO) * qty

    rows = []
    for p in products:
        total = variant_total[p['id']]
        sold_units = sold[p['id']]
        available = total - sold_units
        rows.append({
            'id':            p['id'],
            'name':          p['name'],
            'category':      p.get('category'),
            'unit_price':    prices[p['id']],
            'variant_total': total,
            'sold_units':    sold_units,
            'revenue':       prices[p['id']] * sold_units,
            'available':     available,
            'low_stock':     available <= low_stock_threshold,
        })

    return {
        'products': rows,
        'daily':    [daily[d] for d in sorted(daily)],
        'totals': {
            'variant_total': sum(r['variant_total'] for r in rows),
            'sold_units':    sum(r['sold_units'] for r in rows),
            'revenue':       sum((r['revenue'] for r in rows), ZERO),
            'available':     sum(r['available'] for r in rows),
        },
    }
