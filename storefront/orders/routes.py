"""
storefront/orders/routes.py
---------------------------
  POST /orders/        → place an online order (storefront checkout)
  GET  /orders/        → list orders, newest first
  GET  /orders/<id>    → one order with its items

Placing an order goes through the same stock gate and row-locked
deduction as an invoice commit, in one transaction.
"""
from decimal import Decimal

from flask import request, jsonify, abort, current_app
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from storefront import db
from storefront.orders import orders
from storefront.orders.models import Order, OrderItem
from storefront.billing.draft import DraftLine
from storefront.billing.errors import InvoiceError
from storefront.billing.stock import (
    check_stock, lock_stock_rows, deduct_variant_stock, deduct_product_stock
)
from storefront.auth.decorators import permission_required
from storefront.utils.money import quantize


@orders.errorhandler(InvoiceError)
def order_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def validate_order_form(data: dict) -> dict:
    errors = {}
    if not (data.get('customer_name') or '').strip():
        errors['customer_name'] = 'Customer name is required.'
    items = data.get('items')
    if not isinstance(items, list) or not items:
        errors['items'] = 'Add at least one item.'
        return errors
    for i, item in enumerate(items):
        try:
            if int(item.get('quantity', 0)) < 1:
                errors[f'items.{i}.quantity'] = 'Quantity must be at least 1.'
        except (TypeError, ValueError, AttributeError):
            errors[f'items.{i}.quantity'] = 'Quantity must be a whole number.'
        if not isinstance(item, dict):
            continue
        for key in ('product_id', 'variant_id'):
            value = item.get(key)
            if value is None:
                if key == 'product_id':
                    errors[f'items.{i}.product_id'] = 'Product is required.'
                continue
            try:
                int(value)
            except (TypeError, ValueError):
                errors[f'items.{i}.{key}'] = 'Must be a numeric ID.'
    return errors


def place_order(data: dict) -> Order:
    """
    Lock, check, deduct and persist. Prices come from the catalog, never
    from the payload. Caller has validated `data`.
    """
    lines = [
        DraftLine(
            kind='product',
            product_id=int(item['product_id']),
            variant_id=int(item['variant_id']) if item.get('variant_id') is not None else None,
            quantity=int(item['quantity']),
        )
        for item in data['items']
    ]

    try:
        products, variants = lock_stock_rows(lines)
        variants_by_id = {v.id: v for v in variants}

        for line in lines:
            product = products[line.product_id]
            if not product.is_active:
                raise InvoiceError(f'"{product.name}" is no longer available.',
                                   {'product_id': product.id})
            line.description = product.name
            line.unit_price = product.unit_price
            if line.variant_id is not None:
                variant = variants_by_id.get(line.variant_id)
                if variant is None or variant.product_id != line.product_id:
                    raise InvoiceError('Variant does not belong to the selected product.',
                                       {'variant_id': line.variant_id})
                line.description = f'{product.name} ({variant.label})'
                if variant.price is not None:
                    line.unit_price = Decimal(str(variant.price))

        check_stock(lines, variants, products)

        order = Order(
            customer_name=data['customer_name'].strip(),
            customer_phone=(data.get('customer_phone') or '').strip() or None,
            shipping_address=(data.get('shipping_address') or '').strip() or None,
        )
        db.session.add(order)
        db.session.flush()
        order.order_number = f'ORD-{order.id:06d}'

        total = Decimal('0')
        for line in lines:
            line_total = quantize(line.unit_price * line.quantity)
            total += line_total
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total=line_total,
            ))
            if line.variant_id is not None:
                deduct_variant_stock(line.variant_id, line.quantity)
            else:
                deduct_product_stock(line.product_id, line.quantity)
        order.total_amount = total

        db.session.commit()

    except InvoiceError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Order rolled back: {exc}")
        raise

    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"Order rolled back (database error): {exc}")
        raise InvoiceError('A database error occurred. Please try again.') from exc

    current_app.logger.info(f"Order {order.order_number} placed: {len(lines)} items, ₹{order.total_amount}")
    return order


@orders.route('/', methods=['POST'])
def create():
    data = request.get_json(silent=True) or {}
    errors = validate_order_form(data)
    if errors:
        return jsonify({'errors': errors}), 400
    order = place_order(data)
    return jsonify(order.to_dict()), 201


@orders.route('/')
@permission_required('billing')
def index():
    status = request.args.get('status', '').strip()
    q = Order.query
    if status:
        q = q.filter(Order.status == status)
    rows = q.order_by(desc(Order.created_at), desc(Order.id)).limit(200).all()
    return jsonify([o.to_dict() for o in rows])


@orders.route('/<int:order_id>')
@permission_required('billing')
def detail(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        abort(404)
    return jsonify(order.to_dict())
