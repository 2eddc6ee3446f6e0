from datetime import datetime
from decimal import Decimal
from storefront import db
from storefront.utils.money import money_str


class InvoiceSequence(db.Model):
    """
    One row per calendar year. Holds the last-used invoice sequence number.

    Invoice numbers come from this row under SELECT … FOR UPDATE, so two
    concurrent commits are serialised instead of both reading the same
    counter (or the same wall-clock timestamp) and colliding.
    """
    __tablename__ = 'invoice_sequences'

    year     = db.Column(db.Integer, primary_key=True)
    last_seq = db.Column(db.Integer, nullable=False, default=0)

    @classmethod
    def allocate(cls, year: int, prefix: str = 'INV') -> str:
        """
        Claim the next number of `year`, e.g. INV-2026-0042.

        Runs inside the caller's commit transaction: the row lock is held
        until that transaction ends, and a rollback hands the number back,
        so the series has no gaps. The first invoice of a year creates the
        row; two tills racing for that insert collide on the primary key
        and the loser's commit fails with a database error.
        """
        seq = db.session.get(cls, year, with_for_update=True)
        if seq is None:
            seq = cls(year=year, last_seq=0)
            db.session.add(seq)
        seq.last_seq += 1
        db.session.flush()
        # four digits minimum, wider once a year passes 9999
        return f"{prefix}-{year}-{seq.last_seq:04d}"

    def __repr__(self):
        return f"<InvoiceSequence year={self.year} last_seq={self.last_seq}>"


class Invoice(db.Model):
    """
    One committed invoice. Customer fields are a snapshot taken at commit
    time; summary figures are stored, not recomputed from items, because
    later discounts adjust grand_total directly.
    """
    __tablename__ = 'invoices'

    id             = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(30), unique=True, nullable=False, index=True)

    customer_id    = db.Column(db.Integer, db.ForeignKey('customers.id', ondelete='SET NULL'),
                               nullable=True, index=True)
    customer_name  = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(20), nullable=True)
    customer_state = db.Column(db.String(60), nullable=True)
    reference_by   = db.Column(db.String(120), nullable=True)

    subtotal       = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    taxable_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cgst           = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    sgst           = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    igst           = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_type       = db.Column(db.String(10), nullable=False, default='CGST_SGST')
    tax_percent    = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    grand_total    = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status         = db.Column(db.String(10), nullable=False, default='unpaid', index=True)
    paid_amount    = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_by     = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.now, index=True)
    updated_at     = db.Column(db.DateTime, nullable=False, default=datetime.now,
                               onupdate=datetime.now)

    # ── Relationships ─────────────────────────────────────────────
    customer = db.relationship('Customer', lazy='select')
    items    = db.relationship('InvoiceItem', backref='invoice', lazy='select',
                               order_by='InvoiceItem.id', cascade='all, delete-orphan')
    payments = db.relationship('Payment', backref='invoice', lazy='select',
                               order_by='Payment.id', cascade='all, delete-orphan')
    history  = db.relationship('InvoiceEditHistory', backref='invoice', lazy='select',
                               order_by='InvoiceEditHistory.id', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint("status IN ('unpaid', 'partial', 'paid')", name='check_invoice_status'),
        db.CheckConstraint('paid_amount >= 0', name='check_paid_non_negative'),
    )

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def remaining(self) -> Decimal:
        return Decimal(str(self.grand_total)) - Decimal(str(self.paid_amount))

    def to_dict(self, detail=False) -> dict:
        data = {
            'id':             self.id,
            'invoice_number': self.invoice_number,
            'customer_id':    self.customer_id,
            'customer_name':  self.customer_name,
            'customer_phone': self.customer_phone,
            'customer_state': self.customer_state,
            'reference_by':   self.reference_by,
            'subtotal':       money_str(self.subtotal),
            'total_discount': money_str(self.total_discount),
            'taxable_amount': money_str(self.taxable_amount),
            'cgst':           money_str(self.cgst),
            'sgst':           money_str(self.sgst),
            'igst':           money_str(self.igst),
            'tax_type':       self.tax_type,
            'tax_percent':    str(self.tax_percent),
            'grand_total':    money_str(self.grand_total),
            'status':         self.status,
            'paid_amount':    money_str(self.paid_amount),
            'remaining':      money_str(self.remaining),
            'created_at':     self.created_at.isoformat(),
        }
        if detail:
            data['items']    = [i.to_dict() for i in self.items]
            data['payments'] = [p.to_dict() for p in self.payments]
            data['history']  = [h.to_dict() for h in self.history]
        return data

    def __repr__(self):
        return f"<Invoice {self.invoice_number!r} ₹{self.grand_total} {self.status}>"


class InvoiceItem(db.Model):
    """
    One line of a committed invoice: a snapshot of price, discount and
    description at the time of sale.
    """
    __tablename__ = 'invoice_items'

    id               = db.Column(db.Integer, primary_key=True)
    invoice_id       = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False, index=True)
    item_type        = db.Column(db.String(10), nullable=False, default='product')
    product_id       = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=True, index=True)
    variant_id       = db.Column(db.Integer, db.ForeignKey('product_variants.id', ondelete='SET NULL'),
                                 nullable=True)
    item_code        = db.Column(db.String(60), nullable=True)
    description      = db.Column(db.String(300), nullable=False, default='')
    hsn_code         = db.Column(db.String(20), nullable=True)
    quantity         = db.Column(db.Integer, nullable=False)
    unit_price       = db.Column(db.Numeric(10, 2), nullable=False)
    discount_percent = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    discount_amount  = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total            = db.Column(db.Numeric(12, 2), nullable=False)
    created_at       = db.Column(db.DateTime, nullable=False, default=datetime.now, index=True)

    def to_dict(self) -> dict:
        return {
            'id':               self.id,
            'item_type':        self.item_type,
            'product_id':       self.product_id,
            'variant_id':       self.variant_id,
            'item_code':        self.item_code,
            'description':      self.description,
            'hsn_code':         self.hsn_code,
            'quantity':         self.quantity,
            'unit_price':       money_str(self.unit_price),
            'discount_percent': str(self.discount_percent),
            'discount_amount':  money_str(self.discount_amount),
            'total':            money_str(self.total),
        }

    def __repr__(self):
        return f"<InvoiceItem invoice={self.invoice_id} product={self.product_id} qty={self.quantity}>"


class Payment(db.Model):
    """Append-only payment log. Status downgrades reset paid_amount but keep these rows."""
    __tablename__ = 'invoice_payments'

    id             = db.Column(db.Integer, primary_key=True)
    invoice_id     = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False, index=True)
    amount         = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(20), nullable=False, default='cash')
    recorded_by    = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'amount':         money_str(self.amount),
            'payment_method': self.payment_method,
            'recorded_by':    self.recorded_by,
            'created_at':     self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<Payment invoice={self.invoice_id} ₹{self.amount} {self.payment_method}>"


class DailyIncome(db.Model):
    """
    Cash-flow row written alongside every payment, dated by the day the
    money came in. Discounts never produce one.
    """
    __tablename__ = 'invoice_daily_income'

    id             = db.Column(db.Integer, primary_key=True)
    invoice_id     = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False, index=True)
    payment_id     = db.Column(db.Integer, db.ForeignKey('invoice_payments.id'), nullable=True)
    amount         = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(20), nullable=False, default='cash')
    payment_date   = db.Column(db.Date, nullable=False, index=True)

    invoice = db.relationship('Invoice', lazy='select')

    def __repr__(self):
        return f"<DailyIncome {self.payment_date} invoice={self.invoice_id} ₹{self.amount}>"


class InvoiceEditHistory(db.Model):
    """Audit trail: payments added, status changes (with reason), discounts."""
    __tablename__ = 'invoice_edit_history'

    id          = db.Column(db.Integer, primary_key=True)
    invoice_id  = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False, index=True)
    action_type = db.Column(db.String(30), nullable=False)
    old_values  = db.Column(db.JSON, nullable=True)
    new_values  = db.Column(db.JSON, nullable=True)
    reason      = db.Column(db.Text, nullable=True)
    edited_by   = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    edit_time   = db.Column(db.DateTime, nullable=False, default=datetime.now, index=True)

    def to_dict(self) -> dict:
        return {
            'id':          self.id,
            'action_type': self.action_type,
            'old_values':  self.old_values,
            'new_values':  self.new_values,
            'reason':      self.reason,
            'edited_by':   self.edited_by,
            'edit_time':   self.edit_time.isoformat(),
        }

    def __repr__(self):
        return f"<InvoiceEditHistory invoice={self.invoice_id} {self.action_type}>"
