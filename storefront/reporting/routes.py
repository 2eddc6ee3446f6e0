"""
storefront/reporting/routes.py
------------------------------
  GET /reporting/daily-income        → payments grouped by day (?start ?end ?preset ?group)
  GET /reporting/inventory           → stock vs. units sold per product (?start ?end)
  GET /reporting/export/<report>     → streamed CSV: daily-income | inventory | invoices
"""
import csv
import io
from itertools import chain
from datetime import date, datetime, time
from decimal import Decimal

from flask import request, jsonify, Response, stream_with_context, abort, g, current_app

from storefront import db
from storefront.reporting import reporting
from storefront.reporting.aggregation import (
    METHOD_GROUPS, PRESETS, preset_range, daily_income_summary, inventory_summary
)
from storefront.auth.decorators import login_required, permission_required
from storefront.billing.models import Invoice, InvoiceItem, DailyIncome
from storefront.catalog.models import Product, Variant
from storefront.orders.models import OrderItem
from storefront.utils.money import money_str


# ── Helpers ───────────────────────────────────────────────────────

def _get_date_range():
    """?preset wins over ?start/?end; default is the current month."""
    preset = request.args.get('preset')
    if preset:
        if preset not in PRESETS:
            abort(400, description=f'Unknown preset "{preset}".')
        return preset_range(preset)

    today = date.today()
    try:
        start = date.fromisoformat(request.args['start']) if request.args.get('start') else today.replace(day=1)
        end   = date.fromisoformat(request.args['end']) if request.args.get('end') else today
    except ValueError:
        abort(400, description='Dates must be YYYY-MM-DD.')
    if start > end:
        abort(400, description='Start date is after end date.')
    return start, end


def _jsonable(value):
    if isinstance(value, Decimal):
        return money_str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _income_rows(start, end):
    payments = [
        {
            'invoice_id':     r.invoice_id,
            'amount':         r.amount,
            'payment_method': r.payment_method,
            'payment_date':   r.payment_date,
        }
        for r in DailyIncome.query.filter(
            DailyIncome.payment_date >= start,
            DailyIncome.payment_date <= end,
        ).order_by(DailyIncome.payment_date.desc(), DailyIncome.id).all()
    ]
    # Invoices created in range (for per-day totals) plus any that were paid in range.
    invoice_ids = {p['invoice_id'] for p in payments}
    window = Invoice.query.filter(
        Invoice.created_at >= datetime.combine(start, time.min),
        Invoice.created_at <= datetime.combine(end, time.max),
    )
    if invoice_ids:
        window = window.union(Invoice.query.filter(Invoice.id.in_(invoice_ids)))
    invoices = [
        {
            'id':             inv.id,
            'invoice_number': inv.invoice_number,
            'created_at':     inv.created_at,
            'grand_total':    inv.grand_total,
            'paid_amount':    inv.paid_amount,
        }
        for inv in window.all()
    ]
    return payments, invoices


def _inventory_rows(start, end):
    products = [
        {
            'id':          p.id,
            'name':        p.name,
            'category':    p.category,
            'price':       p.price,
            'offer_price': p.offer_price,
        }
        for p in Product.query.order_by(Product.name).all()
    ]
    variants = [
        {'product_id': pid, 'stock_quantity': qty}
        for pid, qty in db.session.query(Variant.product_id, Variant.stock_quantity).all()
    ]
    lo, hi = datetime.combine(start, time.min), datetime.combine(end, time.max)
    sales = []
    for model in (InvoiceItem, OrderItem):
        sales.extend(
            {'product_id': pid, 'quantity': qty, 'created_at': created}
            for pid, qty, created in db.session.query(
                model.product_id, model.quantity, model.created_at
            ).filter(model.created_at >= lo, model.created_at <= hi).all()
        )
    return products, variants, sales


# ── Daily income ──────────────────────────────────────────────────

@reporting.route('/daily-income')
@permission_required('invoice_archive')
def daily_income():
    start, end = _get_date_range()
    group = request.args.get('group', 'ALL').upper()
    if group != 'ALL' and group not in METHOD_GROUPS:
        abort(400, description=f'Unknown payment method group "{group}".')

    payments, invoices = _income_rows(start, end)
    summary = daily_income_summary(payments, invoices, start, end, group)
    summary.update({'start': start, 'end': end, 'group': group})
    return jsonify(_jsonable(summary))


# ── Inventory ─────────────────────────────────────────────────────

@reporting.route('/inventory')
@permission_required('inventory')
def inventory():
    start, end = _get_date_range()
    summary = inventory_summary(
        *_inventory_rows(start, end),
        low_stock_threshold=current_app.config.get('LOW_STOCK_THRESHOLD', 5),
    )
    summary.update({'start': start, 'end': end})
    return jsonify(_jsonable(summary))


# ── CSV Export ────────────────────────────────────────────────────

_EXPORT_PERMISSIONS = {
    'daily-income': 'invoice_archive',
    'inventory':    'inventory',
    'invoices':     'invoice_archive',
}


@reporting.route('/export/<report_type>')
@login_required
def export_csv(report_type):
    if report_type not in _EXPORT_PERMISSIONS:
        abort(404)
    if not g.user.can(_EXPORT_PERMISSIONS[report_type]):
        abort(403)

    start, end = _get_date_range()
    group = request.args.get('group', 'ALL').upper()
    if group != 'ALL' and group not in METHOD_GROUPS:
        abort(400, description=f'Unknown payment method group "{group}".')

    # Queries run here, inside the request; the generator only formats rows.
    if report_type == 'daily-income':
        payments, invoices = _income_rows(start, end)
        summary = daily_income_summary(payments, invoices, start, end, group)
        header = ['Invoice', 'Amount', 'Overdue', 'OldPaidOverdue', 'Method', 'PaymentDate', 'InvoiceTotal']
        rows = (
            [r['invoice_number'] or r['invoice_id'], money_str(r['amount']), money_str(r['overdue']),
             money_str(r['old_overdue_paid']), r['payment_method'], r['payment_date'].isoformat(),
             money_str(r['invoice_total'])]
            for day in summary['days'] for r in day['rows']
        )
    elif report_type == 'inventory':
        summary = inventory_summary(*_inventory_rows(start, end))
        header = ['Product', 'Category', 'Unit Price', 'Variant Stock', 'Sold', 'Revenue', 'Available']
        rows = (
            [r['name'], r['category'] or '', money_str(r['unit_price']), r['variant_total'],
             r['sold_units'], money_str(r['revenue']), r['available']]
            for r in summary['products']
        )
    else:
        invoices = Invoice.query.filter(
            Invoice.created_at >= datetime.combine(start, time.min),
            Invoice.created_at <= datetime.combine(end, time.max),
        ).order_by(Invoice.created_at.desc()).all()
        header = ['Invoice #', 'Date', 'Customer', 'Phone', 'Taxable', 'CGST', 'SGST', 'IGST',
                  'Grand Total', 'Paid', 'Status']
        rows = (
            [inv.invoice_number, inv.created_at.strftime('%Y-%m-%d %H:%M'), inv.customer_name,
             inv.customer_phone or '', money_str(inv.taxable_amount), money_str(inv.cgst),
             money_str(inv.sgst), money_str(inv.igst), money_str(inv.grand_total),
             money_str(inv.paid_amount), inv.status]
            for inv in invoices
        )

    def generate():
        data = io.StringIO()
        w = csv.writer(data)
        for row in chain([header], rows):
            w.writerow(row)
            yield data.getvalue()
            data.seek(0)
            data.truncate(0)

    current_app.logger.info(f"CSV export {report_type} {start}..{end} by user {g.user.id}")
    headers = {
        'Content-Disposition': f'attachment; filename={report_type}_report_{start}_{end}.csv',
        'Content-Type': 'text/csv; charset=utf-8',
    }
    return Response(stream_with_context(generate()), headers=headers)
