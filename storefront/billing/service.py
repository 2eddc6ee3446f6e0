"""
storefront/billing/service.py
-----------------------------
Turns an InvoiceDraft into a committed invoice.

    1. Presence checks on the draft (customer name, lines, products)
    2. Lock every product / variant row the lines touch (SELECT … FOR UPDATE)
    3. Re-check stock against the locked rows
    4. Allocate the invoice number from InvoiceSequence (same transaction)
    5. Persist Invoice + InvoiceItems
    6. Deduct stock per product line
    7. Record the initial payment, if any (payment, daily income, history)
    8. Commit

Any failure after step 1 rolls the whole transaction back: no invoice,
no items, no stock movement, no sequence number consumed.
"""
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from storefront import db
from storefront.billing.errors import InvoiceError
from storefront.billing.models import Invoice, InvoiceItem, InvoiceSequence
from storefront.billing.payments import record_payment, write_history
from storefront.billing.stock import (
    check_stock, lock_stock_rows, deduct_variant_stock, deduct_product_stock
)
from storefront.utils.money import ZERO, money_str


def _initial_status(draft) -> str:
    if draft.payment_status == 'partial' and draft.paid_amount <= 0:
        return 'unpaid'
    return draft.payment_status


def commit_invoice(draft, user_id=None) -> Invoice:
    """
    Persist `draft` as a new invoice and return it.

    Raises InvoiceError (or a subclass) when the draft is incomplete or
    stock ran out; the database is untouched in that case.
    """
    draft.validate()

    try:
        products, variants = lock_stock_rows(draft.lines)
        check_stock(draft.lines, variants, products)

        # one local clock for the number, created_at and the counter payment
        now = datetime.now()
        invoice_number = InvoiceSequence.allocate(now.year, current_app.config.get('INVOICE_PREFIX', 'INV'))
        totals = draft.totals()
        paid = draft.paid_amount if draft.paid_amount > 0 else ZERO

        invoice = Invoice(
            invoice_number = invoice_number,
            customer_id    = draft.customer_id,
            customer_name  = draft.customer_name.strip(),
            customer_phone = draft.customer_phone or None,
            customer_state = draft.customer_state or None,
            reference_by   = draft.reference_by or None,
            subtotal       = totals['subtotal'],
            total_discount = totals['total_discount'],
            taxable_amount = totals['taxable_amount'],
            cgst           = totals['cgst'],
            sgst           = totals['sgst'],
            igst           = totals['igst'],
            tax_type       = draft.tax_type,
            tax_percent    = draft.tax_percent,
            grand_total    = totals['grand_total'],
            status         = _initial_status(draft),
            paid_amount    = paid,
            created_by     = user_id,
            created_at     = now,
        )
        db.session.add(invoice)
        db.session.flush()   # assigns invoice.id without committing

        for line in draft.lines:
            db.session.add(InvoiceItem(
                invoice_id       = invoice.id,
                item_type        = line.kind,
                product_id       = line.product_id,
                variant_id       = line.variant_id,
                item_code        = line.item_code or None,
                description      = line.description,
                hsn_code         = line.hsn_code or None,
                quantity         = line.quantity,
                unit_price       = line.unit_price,
                discount_percent = line.discount_percent,
                discount_amount  = line.discount_amount,
                total            = line.total,
            ))

        for line in draft.lines:
            if line.kind != 'product' or line.product_id is None:
                continue
            if line.variant_id is not None:
                left = deduct_variant_stock(line.variant_id, line.quantity)
            else:
                left = deduct_product_stock(line.product_id, line.quantity)
            current_app.logger.info(
                f"Stock deducted for {invoice_number}: product {line.product_id}"
                f" variant {line.variant_id} qty {line.quantity} (left {left})"
            )

        if paid > 0:
            record_payment(invoice, paid, draft.payment_method, user_id, payment_date=now.date())
            write_history(invoice, 'payment_add', {'paid_amount': '0.00'},
                          {'added_amount': money_str(paid), 'payment_method': draft.payment_method},
                          'Initial payment at invoice creation', user_id)
            write_history(invoice, 'status_change', {'status': 'unpaid'},
                          {'status': invoice.status},
                          'Initial status at invoice creation', user_id)

        db.session.commit()

    except InvoiceError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Invoice commit rolled back: {exc}")
        raise

    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"Invoice commit rolled back (database error): {exc}")
        raise InvoiceError('A database error occurred. Please try again.') from exc

    current_app.logger.info(
        f"Invoice {invoice.invoice_number} committed by user {user_id}: "
        f"{len(draft.lines)} lines, total ₹{invoice.grand_total}, {invoice.status}"
    )
    return invoice

