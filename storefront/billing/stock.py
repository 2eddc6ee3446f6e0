"""
storefront/billing/stock.py
---------------------------
Stock availability gate and the stock-deduction operations.

Two layers
──────────
* check_stock() is a pure function over a snapshot of variant / product
  rows. The billing screen calls it against whatever it loaded earlier, as
  a hint; the commit calls it again against freshly locked rows.

* deduct_variant_stock() / deduct_product_stock() decrement with a floor
  of zero on rows held under SELECT … FOR UPDATE. They are what actually
  prevents overselling when two invoices race for the same units.

Availability rules
──────────────────
* line with a variant        → that variant's stock_quantity
* line with only a product   → sum of stock_quantity over the product's
                               variants (the product's own stock_quantity
                               when it has no variants)
* manual lines               → not checked

Demand from earlier lines on the same stock is subtracted before a later
line is checked, so two lines of 3 against a stock of 5 fail on the second.
"""
from collections import defaultdict

from storefront import db
from storefront.billing.errors import InvoiceError, InsufficientStockError
from storefront.catalog.models import Product, Variant


def _stock_lines(lines):
    return [ln for ln in lines if ln.kind == 'product' and ln.product_id is not None]


def check_stock(lines, variants, products=None) -> None:
    """
    Fail fast on the first line whose quantity exceeds what is left.

    Args:
        lines:    draft lines (kind, product_id, variant_id, quantity, description)
        variants: iterable of variant rows (id, product_id, stock_quantity)
        products: optional {product_id: product} used for products without variants
    """
    products = products or {}
    variant_stock = {}
    pool = defaultdict(int)
    has_variants = set()
    for v in variants:
        variant_stock[v.id] = int(v.stock_quantity or 0)
        pool[v.product_id] += int(v.stock_quantity or 0)
        has_variants.add(v.product_id)
    for pid, product in products.items():
        if pid not in has_variants:
            pool[pid] = int(product.stock_quantity or 0)

    used_variant = defaultdict(int)
    used_pool = defaultdict(int)

    for line in _stock_lines(lines):
        pid, vid, qty = line.product_id, line.variant_id, int(line.quantity)
        pool_left = pool[pid] - used_pool[pid]

        if vid is not None:
            available = min(variant_stock.get(vid, 0) - used_variant[vid], pool_left)
        else:
            available = pool_left

        if available < qty:
            if vid is None and pid in products:
                label = products[pid].name
            else:
                label = line.description or f'product #{pid}'
            raise InsufficientStockError(label, max(available, 0), qty)

        if vid is not None:
            used_variant[vid] += qty
        used_pool[pid] += qty


def lock_stock_rows(lines):
    """
    SELECT … FOR UPDATE every product and variant the lines touch.
    Rows are locked in id order so concurrent commits can't deadlock.

    Returns (products_by_id, variants) for check_stock().
    """
    product_ids = sorted({ln.product_id for ln in _stock_lines(lines)})
    if not product_ids:
        return {}, []

    products = (
        db.session.query(Product)
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id)
        .with_for_update()
        .all()
    )
    missing = set(product_ids) - {p.id for p in products}
    if missing:
        raise InvoiceError(
            f'Product ID {min(missing)} no longer exists.', {'product_id': min(missing)}
        )

    variants = (
        db.session.query(Variant)
        .filter(Variant.product_id.in_(product_ids))
        .order_by(Variant.id)
        .with_for_update()
        .all()
    )
    return {p.id: p for p in products}, variants


def deduct_variant_stock(variant_id: int, quantity: int) -> int:
    """Decrement one variant's stock; never below zero. Returns the new stock."""
    variant = (
        db.session.query(Variant)
        .filter(Variant.id == variant_id)
        .with_for_update()
        .first()
    )
    if variant is None:
        raise InvoiceError(f'Variant ID {variant_id} no longer exists.', {'variant_id': variant_id})
    if variant.stock_quantity < quantity:
        raise InsufficientStockError(
            f'variant #{variant_id} ({variant.label})', variant.stock_quantity, quantity
        )
    variant.stock_quantity -= quantity
    return variant.stock_quantity


def deduct_product_stock(product_id: int, quantity: int) -> int:
    """
    Decrement stock for a product-level line.

    Products with variants give up units from their variants in id order;
    products without variants use their own stock_quantity. Returns the
    product's remaining stock.
    """
    product = (
        db.session.query(Product)
        .filter(Product.id == product_id)
        .with_for_update()
        .first()
    )
    if product is None:
        raise InvoiceError(f'Product ID {product_id} no longer exists.', {'product_id': product_id})

    variants = (
        db.session.query(Variant)
        .filter(Variant.product_id == product_id)
        .order_by(Variant.id)
        .with_for_update()
        .all()
    )

    if not variants:
        if product.stock_quantity < quantity:
            raise InsufficientStockError(product.name, product.stock_quantity, quantity)
        product.stock_quantity -= quantity
        return product.stock_quantity

    total = sum(v.stock_quantity for v in variants)
    if total < quantity:
        raise InsufficientStockError(product.name, total, quantity)

    remaining = quantity
    for v in variants:
        if remaining == 0:
            break
        take = min(v.stock_quantity, remaining)
        v.stock_quantity -= take
        remaining -= take
    return total - quantity
