"""
storefront/main/routes.py
─────────────────────────
Health check and the back-office dashboard KPIs.
"""
from datetime import date, datetime
from decimal import Decimal

from flask import jsonify, current_app
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError

from storefront import db
from storefront.main import main
from storefront.auth.decorators import login_required
from storefront.utils.money import money_str


@main.route('/health')
def health():
    """Health check for load balancers and monitoring."""
    status = 'ok'
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        status = 'error'
        current_app.logger.error(f"Health check failed (DB): {e}")

    response = {
        'status':    status,
        'timestamp': datetime.now().isoformat(),
        'details':   {'db': status},
    }
    return jsonify(response), 200 if status == 'ok' else 500


@main.route('/')
@login_required
def index():
    """Today's invoices, income and stock alerts."""
    from storefront.billing.models import Invoice, DailyIncome
    from storefront.catalog.models import Product, Variant

    today = date.today()

    # Single query: count + sum of invoices raised today
    today_agg = db.session.query(
        func.count(Invoice.id).label('count'),
        func.coalesce(func.sum(Invoice.grand_total), 0).label('invoiced'),
        func.coalesce(func.sum(Invoice.grand_total - Invoice.paid_amount), 0).label('outstanding'),
    ).filter(
        func.date(Invoice.created_at) == today.isoformat()
    ).first()

    income = db.session.query(
        func.coalesce(func.sum(DailyIncome.amount), 0)
    ).filter(DailyIncome.payment_date == today).scalar()

    threshold = current_app.config.get('LOW_STOCK_THRESHOLD', 5)
    low_stock = (
        db.session.query(func.count(Variant.id))
        .join(Product, Product.id == Variant.product_id)
        .filter(Product.is_active.is_(True), Variant.stock_quantity <= threshold)
        .scalar()
    )

    return jsonify({
        'date':             today.isoformat(),
        'invoice_count':    today_agg.count if today_agg else 0,
        'invoiced':         money_str(Decimal(str(today_agg.invoiced or 0))),
        'outstanding':      money_str(Decimal(str(today_agg.outstanding or 0))),
        'income':           money_str(Decimal(str(income or 0))),
        'product_count':    Product.query.filter(Product.is_active.is_(True)).count(),
        'low_stock_count':  low_stock or 0,
    })
