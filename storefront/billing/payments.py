"""
storefront/billing/payments.py
------------------------------
Payment / status state machine for committed invoices.

States: unpaid → partial → paid.

    paid_amount is always within [0, grand_total]
    → paid      paid_amount = grand_total (the balance is recorded as a payment)
    → unpaid    paid_amount = 0
    → partial   paid_amount kept when 0 < paid < grand_total, else reset to 0

Downgrades (paid → partial/unpaid, partial → unpaid) need a non-empty
reason, stored in the edit history. Everything else applies at once.

Payments add to paid_amount and auto-promote the status: remaining ≤ 0
makes the invoice paid, any positive amount lifts unpaid to partial.
Each payment writes a Payment row and a DailyIncome row; a discount lowers
grand_total but never counts as income.

None of these functions commit. The caller owns the transaction.
"""
from datetime import date
from decimal import Decimal

from flask import current_app

from storefront import db
from storefront.billing.draft import STATUSES, PAY_METHODS
from storefront.billing.errors import InvoiceError, ReasonRequiredError
from storefront.billing.models import Payment, DailyIncome, InvoiceEditHistory
from storefront.utils.money import ZERO, non_negative, quantize, round_down_rupees, money_str


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


def clamp_paid(paid, grand_total) -> Decimal:
    return min(max(ZERO, _dec(paid)), _dec(grand_total))


def derive_status(paid, grand_total) -> str:
    if _dec(grand_total) - _dec(paid) <= 0:
        return 'paid'
    if _dec(paid) > 0:
        return 'partial'
    return 'unpaid'


def is_downgrade(old_status: str, new_status: str) -> bool:
    return (
        (old_status == 'paid' and new_status != 'paid') or
        (old_status == 'partial' and new_status == 'unpaid')
    )


def _snapshot(invoice) -> dict:
    return {
        'status':         invoice.status,
        'paid_amount':    money_str(invoice.paid_amount),
        'grand_total':    money_str(invoice.grand_total),
        'total_discount': money_str(invoice.total_discount),
    }


def _check_method(method: str) -> None:
    if method not in PAY_METHODS:
        raise InvoiceError(f'Unknown payment method "{method}".', {'payment_method': method})


def write_history(invoice, action_type, old_values=None, new_values=None, reason=None, user_id=None):
    entry = InvoiceEditHistory(
        invoice_id=invoice.id,
        action_type=action_type,
        old_values=old_values,
        new_values=new_values,
        reason=reason,
        edited_by=user_id,
    )
    db.session.add(entry)
    return entry


def record_payment(invoice, amount, method='cash', user_id=None, payment_date=None) -> Payment:
    """Append a payment and its same-day daily-income row."""
    payment = Payment(
        invoice_id=invoice.id,
        amount=amount,
        payment_method=method,
        recorded_by=user_id,
    )
    db.session.add(payment)
    db.session.flush()

    db.session.add(DailyIncome(
        invoice_id=invoice.id,
        payment_id=payment.id,
        amount=amount,
        payment_method=method,
        payment_date=payment_date or date.today(),
    ))
    return payment


def change_status(invoice, new_status, reason=None, payment_method='cash', user_id=None):
    """Apply a manual status change to a committed invoice."""
    if new_status not in STATUSES:
        raise InvoiceError(f'Unknown payment status "{new_status}".', {'status': new_status})
    _check_method(payment_method)

    old_status = invoice.status
    if new_status == old_status:
        return invoice

    reason = (reason or '').strip()
    downgrade = is_downgrade(old_status, new_status)
    if downgrade and not reason:
        current_app.logger.warning(
            f"Status downgrade {old_status} -> {new_status} on {invoice.invoice_number} refused: no reason"
        )
        raise ReasonRequiredError(
            'A reason is required to downgrade the payment status.',
            {'from': old_status, 'to': new_status},
        )

    before = _snapshot(invoice)
    grand = _dec(invoice.grand_total)
    paid = _dec(invoice.paid_amount)

    if new_status == 'partial' and not downgrade and grand - paid <= 0:
        new_status = 'paid'

    if new_status == 'paid':
        balance = grand - paid
        if balance > 0:
            record_payment(invoice, balance, payment_method, user_id)
        invoice.paid_amount = grand
    elif new_status == 'unpaid':
        invoice.paid_amount = ZERO
    elif not (ZERO < paid < grand):
        invoice.paid_amount = ZERO

    invoice.status = new_status
    write_history(invoice, 'status_change', before, _snapshot(invoice), reason or None, user_id)

    current_app.logger.info(
        f"Invoice {invoice.invoice_number} status {old_status} -> {new_status}"
        + (f" (reason: {reason})" if reason else '')
    )
    return invoice


def add_payment(invoice, amount, method='cash', discount=0, discount_reason=None, user_id=None):
    """
    Record a payment and/or a settlement discount against an invoice.

    The payment is floored to whole rupees and capped at the balance left
    after the discount. Returns the amount actually recorded.
    """
    _check_method(method)
    pay = round_down_rupees(non_negative(amount))
    disc = quantize(non_negative(discount))
    reason = (discount_reason or '').strip()

    if pay <= 0 and disc <= 0:
        raise InvoiceError('Enter a payment or a discount.', {'amount': str(amount)})
    if disc > 0 and not reason:
        raise ReasonRequiredError('Discount reason required.', {'discount': str(disc)})

    before = _snapshot(invoice)
    grand = _dec(invoice.grand_total)
    paid = _dec(invoice.paid_amount)
    balance = grand - paid

    if disc > balance:
        raise InvoiceError(
            f'Discount cannot exceed the balance of ₹{money_str(balance)}.',
            {'discount': str(disc), 'balance': money_str(balance)},
        )
    if disc > 0:
        grand -= disc
        invoice.grand_total = grand
        invoice.total_discount = _dec(invoice.total_discount) + disc
        write_history(invoice, 'discount', before,
                      {'discount': money_str(disc), 'grand_total': money_str(grand)},
                      reason, user_id)

    pay = min(pay, grand - paid)
    if pay > 0:
        record_payment(invoice, pay, method, user_id)
        write_history(invoice, 'payment_add', {'paid_amount': money_str(paid)},
                      {'added_amount': money_str(pay), 'payment_method': method},
                      None, user_id)
    elif disc <= 0:
        raise InvoiceError('Invoice is already fully paid.', {'invoice': invoice.invoice_number})

    invoice.paid_amount = clamp_paid(paid + pay, grand)
    new_status = derive_status(invoice.paid_amount, grand)
    if new_status != invoice.status:
        old_status = invoice.status
        invoice.status = new_status
        write_history(invoice, 'status_change', {'status': old_status}, {'status': new_status},
                      None, user_id)

    current_app.logger.info(
        f"Payment on {invoice.invoice_number}: ₹{pay} via {method}"
        + (f", discount ₹{disc}" if disc > 0 else '')
        + f" -> {invoice.status} (paid {invoice.paid_amount} / {invoice.grand_total})"
    )
    return pay
