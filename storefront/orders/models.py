from datetime import datetime
from storefront import db
from storefront.utils.money import money_str


class Order(db.Model):
    """An online storefront order: the second source of sold units next to invoices."""
    __tablename__ = 'orders'

    id               = db.Column(db.Integer, primary_key=True)
    order_number     = db.Column(db.String(30), unique=True, nullable=True, index=True)
    customer_name    = db.Column(db.String(120), nullable=False)
    customer_phone   = db.Column(db.String(20), nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    total_amount     = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status           = db.Column(db.String(20), nullable=False, default='placed', index=True)
    created_at       = db.Column(db.DateTime, nullable=False, default=datetime.now, index=True)

    items = db.relationship('OrderItem', backref='order', lazy='select',
                            order_by='OrderItem.id', cascade='all, delete-orphan')

    def to_dict(self) -> dict:
        return {
            'id':               self.id,
            'order_number':     self.order_number,
            'customer_name':    self.customer_name,
            'customer_phone':   self.customer_phone,
            'shipping_address': self.shipping_address,
            'total_amount':     money_str(self.total_amount),
            'status':           self.status,
            'created_at':       self.created_at.isoformat(),
            'items':            [i.to_dict() for i in self.items],
        }

    def __repr__(self):
        return f"<Order {self.order_number!r} ₹{self.total_amount}>"


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id         = db.Column(db.Integer, primary_key=True)
    order_id   = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey('product_variants.id', ondelete='SET NULL'),
                           nullable=True)
    quantity   = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total      = db.Column(db.Numeric(12, 2), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now, index=True)

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_order_item_quantity_positive'),
    )

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'variant_id': self.variant_id,
            'quantity':   self.quantity,
            'unit_price': money_str(self.unit_price),
            'total':      money_str(self.total),
        }
