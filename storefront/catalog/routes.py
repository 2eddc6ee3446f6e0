from flask import request, jsonify, abort, current_app, Response
from sqlalchemy.exc import IntegrityError

from storefront import db
from storefront.catalog import catalog
from storefront.catalog.models import Product, Variant
from storefront.catalog.validators import (
    validate_product_form, parse_product_form,
    validate_variant_form, parse_variant_form,
)
from storefront.catalog.csv_import import TEMPLATE, CSVImportError, import_products
from storefront.auth.decorators import login_required, permission_required


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _get_product_or_404(product_id) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        abort(404)
    return product


# ── LIST / SEARCH ─────────────────────────────────────────────────

@catalog.route('/products')
@login_required
def list_products():
    """Active products ordered by name; ?q= filters on name / category / HSN."""
    q = request.args.get('q', '').strip()
    include_inactive = request.args.get('all') == '1'

    query = Product.query
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if q:
        like = f'%{q}%'
        query = query.filter(
            Product.name.ilike(like) | Product.category.ilike(like) | Product.hsn_code.ilike(like)
        )
    products = query.order_by(Product.name.asc()).all()
    return jsonify([p.to_dict(with_variants=True) for p in products])


@catalog.route('/products/<int:product_id>')
@login_required
def get_product(product_id):
    return jsonify(_get_product_or_404(product_id).to_dict(with_variants=True))


# ── CREATE ────────────────────────────────────────────────────────

@catalog.route('/products', methods=['POST'])
@permission_required('inventory')
def create_product():
    """Create a product, optionally with nested variants."""
    data = _payload()
    errors = validate_product_form(data)
    variant_rows = data.get('variants') or []
    for i, row in enumerate(variant_rows):
        for field, message in validate_variant_form(row).items():
            errors[f'variants.{i}.{field}'] = message
    if errors:
        return jsonify({'errors': errors}), 400

    product = Product(**parse_product_form(data))
    for row in variant_rows:
        product.variants.append(Variant(**parse_variant_form(row)))

    try:
        db.session.add(product)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.error(f"Product create rolled back: {exc}")
        return jsonify({'error': 'A database error occurred. Please try again.'}), 409

    current_app.logger.info(f"Created product {product.id}: {product.name} ({len(product.variants)} variants)")
    return jsonify(product.to_dict(with_variants=True)), 201


# ── EDIT ──────────────────────────────────────────────────────────

@catalog.route('/products/<int:product_id>', methods=['PUT', 'PATCH'])
@permission_required('inventory')
def update_product(product_id):
    product = _get_product_or_404(product_id)

    # Start from current values so partial updates validate as a whole form
    data = _payload()
    merged = product.to_dict()
    merged.update(data)
    if 'image_urls' in data and 'image_url' not in data:
        # A fresh image list replaces the primary image too
        merged['image_url'] = None

    errors = validate_product_form(merged)
    if errors:
        return jsonify({'errors': errors}), 400

    for field, value in parse_product_form(merged).items():
        setattr(product, field, value)

    db.session.commit()
    current_app.logger.info(f"Updated product {product.id}: {product.name}")
    return jsonify(product.to_dict(with_variants=True))


# ── DELETE ────────────────────────────────────────────────────────

@catalog.route('/products/<int:product_id>', methods=['DELETE'])
@permission_required('inventory')
def delete_product(product_id):
    """Soft delete: invoices keep pointing at the row."""
    product = _get_product_or_404(product_id)
    product.is_active = False
    db.session.commit()
    current_app.logger.info(f"Soft-deleted product {product.id}: {product.name}")
    return '', 204


# ── VARIANTS ──────────────────────────────────────────────────────

@catalog.route('/products/<int:product_id>/variants', methods=['POST'])
@permission_required('inventory')
def add_variant(product_id):
    product = _get_product_or_404(product_id)
    data = _payload()
    errors = validate_variant_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    variant = Variant(product_id=product.id, **parse_variant_form(data))
    db.session.add(variant)
    db.session.commit()
    current_app.logger.info(f"Added variant {variant.id} ({variant.label}) to product {product.id}")
    return jsonify(variant.to_dict()), 201


@catalog.route('/variants/<int:variant_id>', methods=['PUT', 'PATCH'])
@permission_required('inventory')
def update_variant(variant_id):
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        abort(404)

    merged = variant.to_dict()
    merged.update(_payload())
    errors = validate_variant_form(merged)
    if errors:
        return jsonify({'errors': errors}), 400

    old_stock = variant.stock_quantity
    for field, value in parse_variant_form(merged).items():
        setattr(variant, field, value)
    db.session.commit()

    if old_stock != variant.stock_quantity:
        current_app.logger.info(
            f"Variant {variant.id} stock adjusted {old_stock} -> {variant.stock_quantity}"
        )
    return jsonify(variant.to_dict())


@catalog.route('/variants/<int:variant_id>', methods=['DELETE'])
@permission_required('inventory')
def delete_variant(variant_id):
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        abort(404)
    db.session.delete(variant)
    db.session.commit()
    current_app.logger.info(f"Deleted variant {variant_id}")
    return '', 204


# ── CSV ───────────────────────────────────────────────────────────

@catalog.route('/csv/template')
@login_required
def csv_template():
    headers = {
        'Content-Disposition': 'attachment; filename=products_with_variants_template.csv',
        'Content-Type': 'text/csv',
    }
    return Response(TEMPLATE, headers=headers)


@catalog.route('/csv/upload', methods=['POST'])
@permission_required('inventory')
def csv_upload():
    """Accepts a multipart `file` (.csv) or a raw text/csv body."""
    upload = request.files.get('file')
    if upload is not None:
        if not upload.filename.lower().endswith('.csv'):
            return jsonify({'error': 'Please upload a .csv file'}), 400
        text = upload.read().decode('utf-8-sig')
    else:
        text = request.get_data(as_text=True)

    try:
        created = import_products(text)
    except CSVImportError as exc:
        current_app.logger.warning(f"CSV upload rejected: {exc}")
        return jsonify({'error': str(exc)}), 400
    except IntegrityError:
        return jsonify({'error': 'A database error occurred. Nothing was imported.'}), 409

    return jsonify({
        'created': len(created),
        'products': [p.to_dict(with_variants=True) for p in created],
    }), 201
