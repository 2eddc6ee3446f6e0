from flask import request, jsonify, abort, current_app
from sqlalchemy.exc import IntegrityError

from storefront import db
from storefront.customers import customers
from storefront.customers.models import Customer, next_customer_code
from storefront.auth.decorators import login_required, permission_required


TEXT_FIELDS = ('cust_id', 'name', 'phone', 'address', 'state')


def _text(value) -> str:
    # JSON numbers (phones typed as 98450...) are kept as their digits
    return '' if value is None else str(value).strip()


def validate_customer_form(data: dict) -> dict:
    errors = {
        key: 'Must be text.'
        for key in TEXT_FIELDS if isinstance(data.get(key), (dict, list))
    }
    if errors:
        return errors
    name = _text(data.get('name'))
    if not name:
        errors['name'] = 'Customer name is required.'
    elif len(name) > 120:
        errors['name'] = 'Customer name must be 120 characters or fewer.'
    phone = _text(data.get('phone'))
    if phone and len(phone) > 20:
        errors['phone'] = 'Phone must be 20 characters or fewer.'
    return errors


def _clean(data: dict, key: str):
    return _text(data.get(key)) or None


def create_customer(data: dict) -> Customer:
    """Insert a customer with the next free CUSTnnn code. Caller has validated `data`."""
    codes = [row.cust_id for row in db.session.query(Customer.cust_id).all()]
    customer = Customer(
        cust_id=_clean(data, 'cust_id') or next_customer_code(codes),
        name=_text(data['name']),
        phone=_clean(data, 'phone'),
        address=_clean(data, 'address'),
        state=_clean(data, 'state'),
    )
    db.session.add(customer)
    db.session.commit()
    current_app.logger.info(f"Customer created: {customer.cust_id} {customer.name}")
    return customer


@customers.route('/')
@permission_required('customers')
def index():
    rows = Customer.query.order_by(Customer.created_at.desc()).all()
    return jsonify([c.to_dict() for c in rows])


@customers.route('/next-code')
@login_required
def next_code():
    codes = [row.cust_id for row in db.session.query(Customer.cust_id).all()]
    return jsonify({'cust_id': next_customer_code(codes)})


@customers.route('/search')
@login_required
def search():
    q = request.args.get('q', '').strip()
    if not q:
        return jsonify([])

    results = Customer.query.filter(
        (Customer.phone.ilike(f'%{q}%')) |
        (Customer.name.ilike(f'%{q}%')) |
        (Customer.cust_id.ilike(f'%{q}%'))
    ).order_by(Customer.name).limit(10).all()

    return jsonify([c.to_dict() for c in results])


@customers.route('/', methods=['POST'])
@login_required
def create():
    """Customers are created ad hoc from the invoice screen, so only login is needed."""
    data = request.get_json(silent=True) or {}
    errors = validate_customer_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    try:
        customer = create_customer(data)
    except IntegrityError:
        db.session.rollback()
        return jsonify({'errors': {'cust_id': 'Customer ID already exists.'}}), 409

    return jsonify(customer.to_dict()), 201


@customers.route('/<int:customer_id>', methods=['PUT', 'PATCH'])
@permission_required('customers')
def update(customer_id):
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        abort(404)

    data = customer.to_dict()
    data.update(request.get_json(silent=True) or {})
    errors = validate_customer_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    customer.name    = _text(data['name'])
    customer.phone   = _clean(data, 'phone')
    customer.address = _clean(data, 'address')
    customer.state   = _clean(data, 'state')
    db.session.commit()
    return jsonify(customer.to_dict())


@customers.route('/<int:customer_id>', methods=['DELETE'])
@permission_required('customers')
def delete(customer_id):
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        abort(404)
    db.session.delete(customer)
    db.session.commit()
    current_app.logger.info(f"Customer deleted: {customer.cust_id}")
    return '', 204
