from decimal import Decimal
from datetime import datetime
from storefront import db
from storefront.utils.money import money_str


class Product(db.Model):
    """A catalog product. Sellable stock lives on its variants."""
    __tablename__ = 'products'

    id             = db.Column(db.Integer, primary_key=True)
    name           = db.Column(db.String(200), nullable=False, index=True)
    description    = db.Column(db.Text, nullable=True)
    item_code      = db.Column(db.String(60), nullable=True)
    price          = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    offer_price    = db.Column(db.Numeric(10, 2), nullable=True)
    category       = db.Column(db.String(100), nullable=True, index=True)
    hsn_code       = db.Column(db.String(20), nullable=True)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    image_url      = db.Column(db.String(500), nullable=True)   # primary image
    image_urls     = db.Column(db.JSON, nullable=True)          # extra images
    features       = db.Column(db.JSON, nullable=True)
    is_active      = db.Column(db.Boolean, nullable=False, default=True, index=True)
    featured       = db.Column(db.Boolean, nullable=False, default=False)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at     = db.Column(
        db.DateTime,
        nullable=False,
        default=datetime.now,
        onupdate=datetime.now
    )

    variants = db.relationship('Variant', backref='product', lazy='select',
                               order_by='Variant.id', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('stock_quantity >= 0', name='check_product_stock_non_negative'),
        db.CheckConstraint('price >= 0', name='check_product_price_non_negative'),
    )

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def unit_price(self) -> Decimal:
        """Price charged on an invoice: the offer price when one is set."""
        if self.offer_price is not None:
            return Decimal(str(self.offer_price))
        return Decimal(str(self.price or 0))

    @property
    def total_variant_stock(self) -> int:
        return sum(v.stock_quantity or 0 for v in self.variants)

    def to_dict(self, with_variants=False) -> dict:
        data = {
            'id':             self.id,
            'name':           self.name,
            'description':    self.description,
            'item_code':      self.item_code,
            'price':          money_str(self.price or 0),
            'offer_price':    money_str(self.offer_price) if self.offer_price is not None else None,
            'category':       self.category,
            'hsn_code':       self.hsn_code,
            'stock_quantity': self.stock_quantity,
            'image_url':      self.image_url,
            'image_urls':     self.image_urls or [],
            'features':       self.features or [],
            'is_active':      self.is_active,
            'featured':       self.featured,
        }
        if with_variants:
            data['variants'] = [v.to_dict() for v in self.variants]
            data['total_variant_stock'] = self.total_variant_stock
        return data

    def __repr__(self):
        return f"<Product {self.id} {self.name!r}>"


class Variant(db.Model):
    """A size/colour SKU under a product, with its own stock count."""
    __tablename__ = 'product_variants'

    id             = db.Column(db.Integer, primary_key=True)
    product_id     = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'),
                               nullable=False, index=True)
    color          = db.Column(db.String(60), nullable=True)
    size           = db.Column(db.String(30), nullable=True)
    price          = db.Column(db.Numeric(10, 2), nullable=True)   # optional override
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    image_url      = db.Column(db.String(500), nullable=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        db.CheckConstraint('stock_quantity >= 0', name='check_variant_stock_non_negative'),
    )

    @property
    def label(self) -> str:
        return f"{self.color or ''} {self.size or ''}".strip()

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'product_id':     self.product_id,
            'color':          self.color,
            'size':           self.size,
            'price':          money_str(self.price) if self.price is not None else None,
            'stock_quantity': self.stock_quantity,
            'image_url':      self.image_url,
        }

    def __repr__(self):
        return f"<Variant {self.id} P:{self.product_id} {self.label!r} qty:{self.stock_quantity}>"
