"""
storefront/billing/draft.py
---------------------------
In-memory invoice draft and totals calculator.

A draft is the not-yet-persisted invoice being edited on the billing
screen: customer snapshot, line items (product-backed or free text), tax
parameters and the payment fields. Every mutation recomputes the affected
line and re-clamps the paid amount against the new grand total, so a
draft is always internally consistent.

No DB access happens here. Callers look up products / variants and pass
the rows in; the draft only copies what it needs from them.

Line discount
─────────────
A line carries both discount_percent and discount_amount. Whichever was
edited last is authoritative (`discount_source`); the other is derived
from it and re-derived when the unit price changes.

Totals
──────
    subtotal       = Σ unit_price × quantity
    total_discount = Σ discount_amount × quantity
    taxable        = max(0, subtotal − total_discount)
    CGST_SGST      → cgst = sgst = taxable × (tax% / 2) / 100
    IGST           → igst = taxable × tax% / 100
    grand_total    = taxable + cgst + sgst + igst
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import List, Optional

from storefront.billing.errors import InvoiceError
from storefront.utils.money import ZERO, non_negative, quantize, money_str


LINE_KINDS   = ('product', 'manual')
TAX_TYPES    = ('NONE', 'CGST_SGST', 'IGST')
STATUSES     = ('unpaid', 'partial', 'paid')
PAY_METHODS  = ('cash', 'upi', 'card', 'bank')

HUNDRED = Decimal('100')
DEFAULT_LABEL = 'New Invoice'

_MONEY_FIELDS = ('unit_price', 'discount_percent', 'discount_amount', 'total')


@dataclass
class DraftLine:
    """One invoice line being edited."""
    kind:             str = 'product'
    product_id:       Optional[int] = None
    variant_id:       Optional[int] = None
    item_code:        str = ''
    description:      str = ''
    hsn_code:         str = ''
    quantity:         int = 1
    unit_price:       Decimal = ZERO
    discount_percent: Decimal = ZERO
    discount_amount:  Decimal = ZERO
    discount_source:  Optional[str] = None      # 'percent' | 'amount'
    total:            Decimal = ZERO

    def recompute(self) -> None:
        """Re-derive the non-authoritative discount field and the line total."""
        if self.discount_source == 'percent':
            self.discount_amount = quantize(self.unit_price * self.discount_percent / HUNDRED)
        elif self.discount_source == 'amount':
            if self.unit_price > 0:
                self.discount_percent = quantize(self.discount_amount / self.unit_price * HUNDRED)
            else:
                self.discount_percent = ZERO
        self.total = quantize(max(ZERO, (self.unit_price - self.discount_amount) * self.quantity))

    @property
    def gross(self) -> Decimal:
        return quantize(self.unit_price * self.quantity)

    @property
    def line_discount(self) -> Decimal:
        return quantize(self.discount_amount * self.quantity)

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in _MONEY_FIELDS:
            data[key] = money_str(data[key])
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'DraftLine':
        line = cls(
            kind=data.get('kind', 'product'),
            product_id=data.get('product_id'),
            variant_id=data.get('variant_id'),
            item_code=data.get('item_code') or '',
            description=data.get('description') or '',
            hsn_code=data.get('hsn_code') or '',
            quantity=int(non_negative(data.get('quantity', 1))),
            unit_price=non_negative(data.get('unit_price')),
            discount_percent=non_negative(data.get('discount_percent')),
            discount_amount=non_negative(data.get('discount_amount')),
            discount_source=data.get('discount_source'),
        )
        line.recompute()
        return line


@dataclass
class InvoiceDraft:
    """The whole invoice-in-progress."""
    customer_id:    Optional[int] = None
    customer_name:  str = ''
    customer_phone: str = ''
    customer_state: str = ''
    reference_by:   str = ''
    tax_type:       str = 'CGST_SGST'
    tax_percent:    Decimal = ZERO
    payment_status: str = 'unpaid'
    paid_amount:    Decimal = ZERO
    payment_method: str = 'cash'
    lines:          List[DraftLine] = field(default_factory=list)

    # ── Lines ─────────────────────────────────────────────────────

    def _line(self, index: int) -> DraftLine:
        if not 0 <= index < len(self.lines):
            raise InvoiceError(f'No line at position {index}.', {'index': index})
        return self.lines[index]

    def add_line(self, kind: str = 'product') -> DraftLine:
        """Append a zeroed line (quantity 1, price 0)."""
        if kind not in LINE_KINDS:
            raise InvoiceError(f'Unknown line type "{kind}".', {'kind': kind})
        line = DraftLine(kind=kind)
        self.lines.append(line)
        self._sync_payment()
        return line

    def remove_line(self, index: int) -> None:
        self._line(index)
        del self.lines[index]
        self._sync_payment()

    def update_line(self, index: int, field_name: str, value) -> DraftLine:
        """
        Set one field on a line and recompute.
        Numbers are coerced to non-negative values; junk input becomes 0.
        """
        line = self._line(index)

        if field_name == 'quantity':
            line.quantity = int(non_negative(value))
        elif field_name == 'unit_price':
            line.unit_price = quantize(non_negative(value))
        elif field_name == 'discount_percent':
            line.discount_percent = non_negative(value)
            line.discount_source = 'percent'
        elif field_name == 'discount_amount':
            line.discount_amount = quantize(non_negative(value))
            line.discount_source = 'amount'
        elif field_name in ('description', 'hsn_code', 'item_code'):
            setattr(line, field_name, '' if value is None else str(value))
        else:
            raise InvoiceError(f'Field "{field_name}" cannot be edited.', {'field': field_name})

        line.recompute()
        self._sync_payment()
        return line

    def select_product(self, index: int, product) -> DraftLine:
        """Fill a line from a catalog product; any chosen variant is cleared."""
        line = self._line(index)
        line.kind = 'product'
        line.product_id = product.id
        line.variant_id = None
        line.item_code = product.item_code or ''
        line.description = product.name or ''
        line.hsn_code = product.hsn_code or ''
        line.unit_price = quantize(product.unit_price)
        line.recompute()
        self._sync_payment()
        return line

    def select_variant(self, index: int, variant) -> DraftLine:
        """Tag the line with a variant: '(colour size)' is appended to the base description."""
        line = self._line(index)
        if line.product_id is None or variant.product_id != line.product_id:
            raise InvoiceError(
                'Variant does not belong to the selected product.',
                {'index': index, 'variant_id': variant.id},
            )
        line.variant_id = variant.id
        base = line.description.split(' (')[0]
        line.description = f"{base} ({variant.color or ''} {variant.size or ''})"
        return line

    # ── Customer / tax ────────────────────────────────────────────

    def set_customer(self, customer=None, **fields) -> None:
        """Attach a saved customer, or set the snapshot fields directly."""
        if customer is not None:
            self.customer_id = customer.id
            self.customer_name = customer.name or ''
            self.customer_phone = customer.phone or ''
            self.customer_state = customer.state or ''
        for key in ('customer_name', 'customer_phone', 'customer_state', 'reference_by'):
            if key not in fields:
                continue
            value = fields[key]
            if isinstance(value, (dict, list)):
                raise InvoiceError(f'Field "{key}" must be text.', {'field': key})
            setattr(self, key, '' if value is None else str(value).strip())

    def set_tax(self, tax_type: str, tax_percent) -> None:
        if tax_type not in TAX_TYPES:
            raise InvoiceError(f'Unknown tax type "{tax_type}".', {'tax_type': tax_type})
        self.tax_type = tax_type
        self.tax_percent = non_negative(tax_percent)
        self._sync_payment()

    # ── Payment fields ────────────────────────────────────────────

    def set_payment_status(self, status: str) -> None:
        if status not in STATUSES:
            raise InvoiceError(f'Unknown payment status "{status}".', {'status': status})
        grand = self.grand_total
        if status == 'unpaid':
            self.paid_amount = ZERO
        elif status == 'paid':
            self.paid_amount = grand
        elif self.paid_amount <= 0 or self.paid_amount > grand:
            self.paid_amount = ZERO
        self.payment_status = status

    def set_paid_amount(self, value) -> None:
        """Clamp to [0, grand_total] and derive the status from where it lands."""
        grand = self.grand_total
        capped = quantize(min(non_negative(value), grand))
        self.paid_amount = capped
        if capped == 0:
            self.payment_status = 'unpaid'
        elif capped == grand:
            self.payment_status = 'paid'
        else:
            self.payment_status = 'partial'

    def set_payment_method(self, method: str) -> None:
        if method not in PAY_METHODS:
            raise InvoiceError(f'Unknown payment method "{method}".', {'payment_method': method})
        self.payment_method = method

    def _sync_payment(self) -> None:
        grand = self.grand_total
        if self.payment_status == 'paid':
            self.paid_amount = grand
        elif self.payment_status == 'unpaid':
            self.paid_amount = ZERO
        else:
            self.paid_amount = min(self.paid_amount, grand)
            if grand > 0 and self.paid_amount >= grand:
                self.payment_status = 'paid'

    # ── Totals ────────────────────────────────────────────────────

    @property
    def subtotal(self) -> Decimal:
        return sum((line.gross for line in self.lines), ZERO)

    @property
    def total_discount(self) -> Decimal:
        return sum((line.line_discount for line in self.lines), ZERO)

    @property
    def taxable_amount(self) -> Decimal:
        return max(ZERO, self.subtotal - self.total_discount)

    @property
    def cgst(self) -> Decimal:
        if self.tax_type != 'CGST_SGST':
            return ZERO
        return quantize(self.taxable_amount * (self.tax_percent / 2) / HUNDRED)

    @property
    def sgst(self) -> Decimal:
        return self.cgst

    @property
    def igst(self) -> Decimal:
        if self.tax_type != 'IGST':
            return ZERO
        return quantize(self.taxable_amount * self.tax_percent / HUNDRED)

    @property
    def grand_total(self) -> Decimal:
        return quantize(self.taxable_amount + self.cgst + self.sgst + self.igst)

    @property
    def remaining_amount(self) -> Decimal:
        if self.payment_status == 'paid':
            return ZERO
        if self.payment_status == 'partial':
            return self.grand_total - self.paid_amount
        return self.grand_total

    @property
    def label(self) -> str:
        return self.customer_name.strip() or DEFAULT_LABEL

    def totals(self) -> dict:
        return {
            'subtotal':       self.subtotal,
            'total_discount': self.total_discount,
            'taxable_amount': self.taxable_amount,
            'cgst':           self.cgst,
            'sgst':           self.sgst,
            'igst':           self.igst,
            'grand_total':    self.grand_total,
        }

    # ── Commit preconditions ──────────────────────────────────────

    def validate(self) -> None:
        """Presence checks that must pass before anything is written."""
        if not self.customer_name.strip():
            raise InvoiceError('Please enter customer name.', {'field': 'customer_name'})
        if not self.lines:
            raise InvoiceError('Please add at least one item.', {'field': 'lines'})
        for i, line in enumerate(self.lines):
            if line.kind == 'product' and line.product_id is None:
                raise InvoiceError(f'Line {i + 1}: select a product.', {'index': i})
            if line.quantity <= 0:
                raise InvoiceError(f'Line {i + 1}: quantity must be at least 1.', {'index': i})

    # ── Serialisation (session storage) ───────────────────────────

    def to_dict(self) -> dict:
        data = {
            'customer_id':    self.customer_id,
            'customer_name':  self.customer_name,
            'customer_phone': self.customer_phone,
            'customer_state': self.customer_state,
            'reference_by':   self.reference_by,
            'tax_type':       self.tax_type,
            'tax_percent':    str(self.tax_percent),
            'payment_status': self.payment_status,
            'paid_amount':    money_str(self.paid_amount),
            'payment_method': self.payment_method,
            'lines':          [line.to_dict() for line in self.lines],
        }
        return data

    def to_json(self) -> dict:
        """to_dict() plus the derived figures, for API responses."""
        data = self.to_dict()
        data.update({key: money_str(value) for key, value in self.totals().items()})
        data['remaining_amount'] = money_str(self.remaining_amount)
        data['label'] = self.label
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'InvoiceDraft':
        draft = cls(
            customer_id=data.get('customer_id'),
            customer_name=data.get('customer_name') or '',
            customer_phone=data.get('customer_phone') or '',
            customer_state=data.get('customer_state') or '',
            reference_by=data.get('reference_by') or '',
            tax_type=data.get('tax_type') or 'CGST_SGST',
            tax_percent=non_negative(data.get('tax_percent')),
            payment_status=data.get('payment_status') or 'unpaid',
            paid_amount=non_negative(data.get('paid_amount')),
            payment_method=data.get('payment_method') or 'cash',
            lines=[DraftLine.from_dict(row) for row in data.get('lines', [])],
        )
        draft._sync_payment()
        return draft

