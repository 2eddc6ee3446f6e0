"""
storefront/catalog/csv_import.py
--------------------------------
Bulk product upload from CSV.

One CSV row per variant. Rows sharing the same (name, hsn_code) pair are
grouped into a single product with the variant rows nested under it:

    name,...,hsn_code,image_urls,...,variant_size,variant_color,...
    Classic Black Frame,...,9001,"a.jpg|b.jpg",...,M,Black,...
    Classic Black Frame,...,9001,"a.jpg|b.jpg",...,L,Black,...

`image_urls` and `features` are '|'-separated. The first image URL becomes
the product's primary image; the remaining ones are stored as extras.

The whole file is inserted in one transaction. A bad group aborts the
upload without leaving half the catalog behind.
"""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from flask import current_app

from storefront import db
from storefront.catalog.models import Product, Variant
from storefront.utils.money import to_decimal


TEMPLATE = """name,description,price,offer_price,category,hsn_code,image_urls,stock_quantity,is_active,featured,features,variant_size,variant_color,variant_price,variant_stock,variant_image
Classic Black Frame,"Stylish black frame",1200,999,eyeglasses,9001,"https://example.com/img1.jpg|https://example.com/img2.jpg",50,true,false,"High quality|Lightweight",M,Black,999,20,https://example.com/var_img1.jpg
Classic Black Frame,"Stylish black frame",1200,999,eyeglasses,9001,"https://example.com/img1.jpg|https://example.com/img2.jpg",50,true,false,"High quality|Lightweight",L,Black,999,10,https://example.com/var_img2.jpg
Kids Blue Frame,"Kids frame, flexible",800,700,kids,9002,"https://example.com/kid1.jpg",20,true,false,"Kids safe",S,Blue,700,40,https://example.com/kid_var1.jpg
"""

VARIANT_COLUMNS = ('variant_size', 'variant_color', 'variant_price', 'variant_stock', 'variant_image')


class CSVImportError(ValueError):
    """The uploaded file cannot be turned into products."""


@dataclass
class ProductGroup:
    """One product and the variant rows that belong to it."""
    product:  dict
    variants: List[dict] = field(default_factory=list)


# ── Parsing ───────────────────────────────────────────────────────

def parse_csv(text: str) -> List[dict]:
    """
    Parse CSV text into row dicts keyed by the (trimmed) header names.
    Quoted fields may contain commas; blank lines are skipped.
    """
    if text.startswith('\ufeff'):
        text = text[1:]
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader)
    except StopIteration:
        return []
    except csv.Error as exc:
        raise CSVImportError(f'Malformed CSV header: {exc}') from exc

    keys = [h.strip() for h in header]
    rows = []
    try:
        for values in reader:
            if not any(v.strip() for v in values):
                continue
            rows.append({
                key: (values[i].strip() if i < len(values) else '')
                for i, key in enumerate(keys)
            })
    except csv.Error as exc:
        raise CSVImportError(f'Malformed CSV on line {reader.line_num}: {exc}') from exc
    return rows


def _split_pipe(value: str) -> Optional[List[str]]:
    parts = [p.strip() for p in (value or '').split('|') if p.strip()]
    return parts or None


def _int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _bool(value: str, default: bool) -> bool:
    if not value:
        return default
    return value.strip().lower() == 'true'


def _optional_money(value: str) -> Optional[Decimal]:
    return to_decimal(value) if value else None


def row_to_product(row: dict) -> dict:
    images = _split_pipe(row.get('image_urls', ''))
    return {
        'name':           row.get('name') or 'Unnamed Product',
        'description':    row.get('description') or None,
        'price':          to_decimal(row.get('price')),
        'offer_price':    _optional_money(row.get('offer_price')),
        'category':       row.get('category') or None,
        'hsn_code':       row.get('hsn_code') or None,
        'image_url':      images[0] if images else None,
        'image_urls':     images[1:] if images and len(images) > 1 else None,
        'stock_quantity': _int(row.get('stock_quantity')),
        'is_active':      _bool(row.get('is_active'), True),
        'featured':       _bool(row.get('featured'), False),
        'features':       _split_pipe(row.get('features', '')),
    }


def row_to_variant(row: dict) -> Optional[dict]:
    if not any(row.get(col) for col in VARIANT_COLUMNS):
        return None
    return {
        'size':           row.get('variant_size') or None,
        'color':          row.get('variant_color') or None,
        'price':          _optional_money(row.get('variant_price')),
        'stock_quantity': _int(row.get('variant_stock')),
        'image_url':      row.get('variant_image') or None,
    }


def group_rows(rows: List[dict]) -> List[ProductGroup]:
    """Group rows by (name, hsn_code), preserving first-seen order."""
    groups: dict = {}
    for row in rows:
        key = ((row.get('name') or '').strip(), (row.get('hsn_code') or '').strip())
        if key not in groups:
            groups[key] = ProductGroup(product=row_to_product(row))
        variant = row_to_variant(row)
        if variant:
            groups[key].variants.append(variant)
    return list(groups.values())


# ── Import ────────────────────────────────────────────────────────

def import_products(text: str) -> List[Product]:
    """Parse, group and insert. Returns the created products (committed)."""
    rows = parse_csv(text)
    if not rows:
        raise CSVImportError('The CSV file has no data rows.')
    if 'name' not in rows[0]:
        raise CSVImportError('The CSV file must have a "name" column.')

    groups = group_rows(rows)
    created = []
    try:
        for group in groups:
            product = Product(**group.product)
            for v in group.variants:
                product.variants.append(Variant(**v))
            db.session.add(product)
            created.append(product)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"CSV import rolled back after {len(created)} group(s)")
        raise

    variant_count = sum(len(g.variants) for g in groups)
    current_app.logger.info(
        f"CSV import: {len(created)} product(s), {variant_count} variant(s) from {len(rows)} row(s)"
    )
    return created
