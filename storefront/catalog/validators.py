"""
storefront/catalog/validators.py
--------------------------------
Pure-Python validation for product and variant form data.
Returns a dict of field -> error_message.
An empty dict means all fields are valid.
"""
from decimal import Decimal, InvalidOperation


TRUTHY = ('1', 'true', 'on', 'yes')


def _text(form_data: dict, key: str, default: str = '') -> str:
    value = form_data.get(key)
    if value is None:
        return default
    return str(value).strip()


def _flag(form_data: dict, key: str, default: bool) -> bool:
    value = form_data.get(key)
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


def _url_list(value) -> list:
    """Accept a JSON list or a '|'-separated string."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split('|') if part.strip()]


def _check_money(errors: dict, field: str, raw: str, required: bool, label: str) -> None:
    if not raw:
        if required:
            errors[field] = f'{label} is required.'
        return
    try:
        if Decimal(raw) < 0:
            errors[field] = f'{label} cannot be negative.'
    except InvalidOperation:
        errors[field] = f'{label} must be a valid number.'


def _check_stock(errors: dict, field: str, raw: str) -> None:
    try:
        if int(raw or '0') < 0:
            errors[field] = 'Stock cannot be negative.'
    except ValueError:
        errors[field] = 'Stock must be a whole number.'


def validate_product_form(form_data: dict) -> dict:
    """Validate raw data for create / edit product."""
    errors = {}

    name = _text(form_data, 'name')
    if not name:
        errors['name'] = 'Product name is required.'
    elif len(name) > 200:
        errors['name'] = 'Product name must be 200 characters or fewer.'

    _check_money(errors, 'price', _text(form_data, 'price'), True, 'Price')
    _check_money(errors, 'offer_price', _text(form_data, 'offer_price'), False, 'Offer price')
    _check_stock(errors, 'stock_quantity', _text(form_data, 'stock_quantity', '0'))

    hsn = _text(form_data, 'hsn_code')
    if len(hsn) > 20:
        errors['hsn_code'] = 'HSN code must be 20 characters or fewer.'

    return errors


def parse_product_form(form_data: dict) -> dict:
    """
    Convert validated raw values to model types.
    Call only after validate_product_form returns no errors.
    The first image URL becomes the primary image; the rest are extras.
    """
    images = _url_list(form_data.get('image_urls'))
    primary = _text(form_data, 'image_url') or (images.pop(0) if images else None)
    offer_raw = _text(form_data, 'offer_price')
    return {
        'name':           _text(form_data, 'name'),
        'description':    _text(form_data, 'description') or None,
        'item_code':      _text(form_data, 'item_code') or None,
        'price':          Decimal(_text(form_data, 'price', '0')),
        'offer_price':    Decimal(offer_raw) if offer_raw else None,
        'category':       _text(form_data, 'category') or None,
        'hsn_code':       _text(form_data, 'hsn_code') or None,
        'stock_quantity': int(_text(form_data, 'stock_quantity', '0') or '0'),
        'image_url':      primary,
        'image_urls':     images or None,
        'features':       _url_list(form_data.get('features')) or None,
        'is_active':      _flag(form_data, 'is_active', True),
        'featured':       _flag(form_data, 'featured', False),
    }


def validate_variant_form(form_data: dict) -> dict:
    errors = {}
    if not _text(form_data, 'color') and not _text(form_data, 'size'):
        errors['color'] = 'A variant needs a colour or a size.'
    _check_money(errors, 'price', _text(form_data, 'price'), False, 'Variant price')
    _check_stock(errors, 'stock_quantity', _text(form_data, 'stock_quantity', '0'))
    return errors


def parse_variant_form(form_data: dict) -> dict:
    price_raw = _text(form_data, 'price')
    return {
        'color':          _text(form_data, 'color') or None,
        'size':           _text(form_data, 'size') or None,
        'price':          Decimal(price_raw) if price_raw else None,
        'stock_quantity': int(_text(form_data, 'stock_quantity', '0') or '0'),
        'image_url':      _text(form_data, 'image_url') or None,
    }
