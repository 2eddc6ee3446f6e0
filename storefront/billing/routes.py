"""
storefront/billing/routes.py
----------------------------
Billing screen (draft editing + commit) and the invoice archive.

Drafts:
  POST   /billing/drafts                          → open a new draft tab
  GET    /billing/drafts                          → open tabs (id + label)
  GET    /billing/drafts/<id>                     → draft with live totals
  DELETE /billing/drafts/<id>                     → close tab
  POST   /billing/drafts/<id>/lines               → add line
  PATCH  /billing/drafts/<id>/lines/<n>           → edit line fields / pick product or variant
  DELETE /billing/drafts/<id>/lines/<n>           → remove line
  PUT    /billing/drafts/<id>/customer            → customer snapshot
  PUT    /billing/drafts/<id>/tax                 → tax type + percent
  PUT    /billing/drafts/<id>/payment             → status / paid amount / method
  GET    /billing/drafts/<id>/stock               → stock hint against current rows
  POST   /billing/drafts/<id>/commit              → persist as an invoice

Archive:
  GET    /billing/invoices                        → filtered, paginated list
  GET    /billing/invoices/<id>                   → invoice + items, payments, history
  POST   /billing/invoices/<id>/status            → manual status change
  POST   /billing/invoices/<id>/payments          → add payment / discount
"""
from datetime import datetime
from decimal import Decimal

from flask import request, jsonify, abort, g, current_app
from sqlalchemy import func, desc, or_
from sqlalchemy.exc import SQLAlchemyError

from storefront import db
from storefront.billing import billing
from storefront.billing.drafts import (
    create_draft, get_draft, save_draft, dispose_draft, list_drafts
)
from storefront.billing.errors import InvoiceError
from storefront.billing.models import Invoice
from storefront.billing.payments import change_status, add_payment
from storefront.billing.service import commit_invoice
from storefront.billing.stock import check_stock
from storefront.catalog.models import Product, Variant
from storefront.customers.models import Customer
from storefront.auth.decorators import permission_required
from storefront.utils.money import to_decimal


@billing.errorhandler(InvoiceError)
def invoice_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _get_row(model, value):
    try:
        return db.session.get(model, int(value))
    except (TypeError, ValueError):
        return None


def _draft_response(draft_id, draft, status=200):
    data = draft.to_json()
    data['id'] = draft_id
    return jsonify(data), status


# ═══════════════════════════════════════════════════════════════════
# DRAFTS
# ═══════════════════════════════════════════════════════════════════

@billing.route('/drafts', methods=['POST'])
@permission_required('billing')
def new_draft():
    draft_id, draft = create_draft()
    return _draft_response(draft_id, draft, 201)


@billing.route('/drafts')
@permission_required('billing')
def drafts():
    return jsonify(list_drafts())


@billing.route('/drafts/<draft_id>')
@permission_required('billing')
def show_draft(draft_id):
    return _draft_response(draft_id, get_draft(draft_id))


@billing.route('/drafts/<draft_id>', methods=['DELETE'])
@permission_required('billing')
def close_draft(draft_id):
    dispose_draft(draft_id)
    return '', 204


# ── Lines ─────────────────────────────────────────────────────────

@billing.route('/drafts/<draft_id>/lines', methods=['POST'])
@permission_required('billing')
def add_line(draft_id):
    draft = get_draft(draft_id)
    draft.add_line(_payload().get('kind', 'product'))
    save_draft(draft_id, draft)
    return _draft_response(draft_id, draft, 201)


@billing.route('/drafts/<draft_id>/lines/<int:index>', methods=['PATCH'])
@permission_required('billing')
def edit_line(draft_id, index):
    """
    Apply one or more edits to a line.

    `product_id` is applied first and fills the line from the catalog,
    then `variant_id` tags it with a variant of that product, then every
    other key is set as a plain field.
    """
    draft = get_draft(draft_id)
    data = dict(_payload())

    if 'product_id' in data:
        value = data.pop('product_id')
        product = _get_row(Product, value)
        if product is None or not product.is_active:
            raise InvoiceError(f'Product ID {value} not found.', {'product_id': value})
        draft.select_product(index, product)

    if 'variant_id' in data:
        value = data.pop('variant_id')
        variant = _get_row(Variant, value)
        if variant is None:
            raise InvoiceError(f'Variant ID {value} not found.', {'variant_id': value})
        draft.select_variant(index, variant)

    for key, value in data.items():
        draft.update_line(index, key, value)

    save_draft(draft_id, draft)
    return _draft_response(draft_id, draft)


@billing.route('/drafts/<draft_id>/lines/<int:index>', methods=['DELETE'])
@permission_required('billing')
def remove_line(draft_id, index):
    draft = get_draft(draft_id)
    draft.remove_line(index)
    save_draft(draft_id, draft)
    return _draft_response(draft_id, draft)


# ── Customer / tax / payment fields ───────────────────────────────

@billing.route('/drafts/<draft_id>/customer', methods=['PUT'])
@permission_required('billing')
def set_customer(draft_id):
    draft = get_draft(draft_id)
    data = _payload()

    customer = None
    if data.get('customer_id') is not None:
        customer = _get_row(Customer, data['customer_id'])
        if customer is None:
            raise InvoiceError(
                f"Customer ID {data['customer_id']} not found.", {'customer_id': data['customer_id']}
            )
    draft.set_customer(customer, **data)
    save_draft(draft_id, draft)
    return _draft_response(draft_id, draft)


@billing.route('/drafts/<draft_id>/tax', methods=['PUT'])
@permission_required('billing')
def set_tax(draft_id):
    draft = get_draft(draft_id)
    data = _payload()
    draft.set_tax(data.get('tax_type', draft.tax_type), data.get('tax_percent', draft.tax_percent))
    save_draft(draft_id, draft)
    return _draft_response(draft_id, draft)


@billing.route('/drafts/<draft_id>/payment', methods=['PUT'])
@permission_required('billing')
def set_payment(draft_id):
    draft = get_draft(draft_id)
    data = _payload()

    if 'payment_method' in data:
        draft.set_payment_method(data['payment_method'])
    if 'status' in data:
        draft.set_payment_status(data['status'])
    if 'paid_amount' in data:
        draft.set_paid_amount(data['paid_amount'])

    save_draft(draft_id, draft)
    return _draft_response(draft_id, draft)


@billing.route('/drafts/<draft_id>/stock')
@permission_required('billing')
def stock_hint(draft_id):
    """Advisory check without locks. The commit re-checks under lock."""
    draft = get_draft(draft_id)
    product_ids = {ln.product_id for ln in draft.lines if ln.product_id is not None}
    if not product_ids:
        return jsonify({'ok': True})

    products = {p.id: p for p in Product.query.filter(Product.id.in_(product_ids)).all()}
    variants = Variant.query.filter(Variant.product_id.in_(product_ids)).all()
    check_stock(draft.lines, variants, products)
    return jsonify({'ok': True})


@billing.route('/drafts/<draft_id>/commit', methods=['POST'])
@permission_required('billing')
def commit(draft_id):
    draft = get_draft(draft_id)
    invoice = commit_invoice(draft, user_id=g.user.id)
    dispose_draft(draft_id)
    return jsonify(invoice.to_dict(detail=True)), 201


# ═══════════════════════════════════════════════════════════════════
# ARCHIVE
# ═══════════════════════════════════════════════════════════════════

def _parse_date(value):
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        abort(400, description=f'Invalid date "{value}", expected YYYY-MM-DD.')


def _parse_amount(value):
    if value in (None, ''):
        return None
    amount = to_decimal(value, default=None)
    if amount is None:
        abort(400, description=f'Invalid amount "{value}".')
    return amount


def _apply_filters(query, args):
    """Status, customer, grand-total range, created-at range and free text."""
    status = args.get('status', '').strip()
    if status:
        query = query.filter(Invoice.status == status)

    customer_id = args.get('customer_id', type=int)
    if customer_id:
        query = query.filter(Invoice.customer_id == customer_id)

    min_total = _parse_amount(args.get('min_total'))
    if min_total is not None:
        query = query.filter(Invoice.grand_total >= min_total)
    max_total = _parse_amount(args.get('max_total'))
    if max_total is not None:
        query = query.filter(Invoice.grand_total <= max_total)

    start = _parse_date(args.get('start'))
    if start:
        query = query.filter(func.date(Invoice.created_at) >= start.isoformat())
    end = _parse_date(args.get('end'))
    if end:
        query = query.filter(func.date(Invoice.created_at) <= end.isoformat())

    q = args.get('q', '').strip()
    if q:
        like = f'%{q}%'
        query = query.filter(or_(
            Invoice.invoice_number.ilike(like),
            Invoice.customer_name.ilike(like),
            Invoice.customer_phone.ilike(like),
            Invoice.reference_by.ilike(like),
        ))
    return query


@billing.route('/invoices')
@permission_required('invoice_archive')
def invoices():
    """Newest first. Pagination is manual limit/offset."""
    page_size = current_app.config.get('ARCHIVE_PAGE_SIZE', 25)
    try:
        page = max(1, int(request.args.get('page', 1)))
    except (ValueError, TypeError):
        page = 1

    base_q = _apply_filters(Invoice.query, request.args)

    agg = _apply_filters(
        db.session.query(
            func.count(Invoice.id).label('total_count'),
            func.coalesce(func.sum(Invoice.grand_total), 0).label('grand_sum'),
            func.coalesce(func.sum(Invoice.paid_amount), 0).label('paid_sum'),
        ),
        request.args,
    ).first()

    total_count = agg.total_count or 0
    total_pages = max(1, -(-total_count // page_size))   # ceiling division
    page        = min(page, total_pages)

    rows = (
        base_q.order_by(desc(Invoice.created_at), desc(Invoice.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return jsonify({
        'invoices':    [inv.to_dict() for inv in rows],
        'page':        page,
        'total_pages': total_pages,
        'total_count': total_count,
        'grand_sum':   f'{Decimal(str(agg.grand_sum)):.2f}',
        'paid_sum':    f'{Decimal(str(agg.paid_sum)):.2f}',
    })


@billing.route('/invoices/<int:invoice_id>')
@permission_required('invoice_archive')
def invoice(invoice_id):
    inv = db.session.get(Invoice, invoice_id)
    if inv is None:
        abort(404)
    return jsonify(inv.to_dict(detail=True))


def _locked_invoice(invoice_id):
    inv = (
        db.session.query(Invoice)
        .filter(Invoice.id == invoice_id)
        .with_for_update()
        .first()
    )
    if inv is None:
        abort(404)
    return inv


@billing.route('/invoices/<int:invoice_id>/status', methods=['POST'])
@permission_required('invoice_archive')
def update_status(invoice_id):
    data = _payload()
    inv = _locked_invoice(invoice_id)
    try:
        change_status(
            inv,
            data.get('status', ''),
            reason=data.get('reason'),
            payment_method=data.get('payment_method', 'cash'),
            user_id=g.user.id,
        )
        db.session.commit()
    except InvoiceError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"Status change on invoice {invoice_id} rolled back: {exc}")
        raise InvoiceError('A database error occurred. Please try again.') from exc
    return jsonify(inv.to_dict(detail=True))


@billing.route('/invoices/<int:invoice_id>/payments', methods=['POST'])
@permission_required('invoice_archive')
def record_payment(invoice_id):
    data = _payload()
    inv = _locked_invoice(invoice_id)
    try:
        add_payment(
            inv,
            data.get('amount', 0),
            method=data.get('payment_method', 'cash'),
            discount=data.get('discount', 0),
            discount_reason=data.get('discount_reason'),
            user_id=g.user.id,
        )
        db.session.commit()
    except InvoiceError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"Payment on invoice {invoice_id} rolled back: {exc}")
        raise InvoiceError('A database error occurred. Please try again.') from exc
    return jsonify(inv.to_dict(detail=True)), 201
