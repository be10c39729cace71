"""Invoice ledger: numbering, sending, payments, late fees and balance.

The balance is always derived from the payment ledger, never from a
cached amount_paid. Payments and late fees run with the invoice row
locked, so concurrent writers queue up instead of reading a stale balance.
"""

from __future__ import annotations

import datetime as dt
import os
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from dotenv import load_dotenv
from sqlalchemy import func
from sqlalchemy.orm import Session

from .database import transaction
from .exceptions import AlreadyExists, Forbidden, InvalidAmount, InvalidRequest, NotFound
from .logger import get_logger
from .messaging import emit
from .models import Invoice, InvoiceSequence, Payment, RentalOrder
from .pricing import as_utc, money, with_gst
from .statuses import InvoiceStatus, PaymentStatus, ensure_status, ensure_transition

load_dotenv()

logger = get_logger(__name__)

INVOICE_DUE_DAYS = int(os.getenv("INVOICE_DUE_DAYS", "7"))


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def format_invoice_number(year: int, sequence: int) -> str:
    return f"INV-{year:04d}-{sequence:04d}"


def next_invoice_number(db: Session, now: Optional[dt.datetime] = None) -> str:
    """Allocate the next number for the current year inside the caller's transaction.

    The year's counter row is locked while it is incremented, so two
    approvals can neither collide nor leave a gap.
    """
    year = (now or _now()).year
    seq = (
        db.query(InvoiceSequence)
        .filter(InvoiceSequence.year == year)
        .with_for_update()
        .first()
    )
    if seq is None:
        seq = InvoiceSequence(year=year, last_value=0)
        db.add(seq)
        db.flush()
    seq.last_value = seq.last_value + 1
    db.flush()
    return format_invoice_number(year, seq.last_value)


def create_invoice_for_order(
    db: Session,
    order: RentalOrder,
    *,
    security_deposit=Decimal("0.00"),
    now: Optional[dt.datetime] = None,
) -> Invoice:
    """Create the DRAFT invoice for a freshly confirmed order. Does not commit."""
    existing = db.query(Invoice).filter(Invoice.order_id == order.id).first()
    if existing:
        raise AlreadyExists(
            f"Order {order.id} already has invoice {existing.invoice_number}", order.id
        )

    deposit = money(security_deposit)
    if deposit < 0:
        raise InvalidAmount("Security deposit cannot be negative", order.id)

    now = now or _now()
    amounts = with_gst(order.subtotal)
    invoice = Invoice(
        order_id=order.id,
        invoice_number=next_invoice_number(db, now),
        status=InvoiceStatus.DRAFT.value,
        subtotal=amounts["subtotal"],
        tax_amount=amounts["tax_amount"],
        security_deposit=deposit,
        late_fee=Decimal("0.00"),
        total_amount=money(amounts["total_amount"] + deposit),
        amount_paid=Decimal("0.00"),
        due_date=now + dt.timedelta(days=INVOICE_DUE_DAYS),
        created_at=now,
    )
    db.add(invoice)
    db.flush()
    logger.info(
        "Invoice %s created for order %s: subtotal=%s tax=%s total=%s",
        invoice.invoice_number, order.id, invoice.subtotal, invoice.tax_amount, invoice.total_amount,
    )
    return invoice


def get_invoice(db: Session, invoice_id: int, *, lock: bool = False) -> Invoice:
    q = db.query(Invoice).filter(Invoice.id == invoice_id)
    if lock:
        q = q.with_for_update()
    invoice = q.first()
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found", invoice_id)
    return invoice


def _ensure_party(invoice: Invoice, caller_id: int, is_admin: bool, *, customer: bool = True, vendor: bool = True) -> None:
    if is_admin:
        return
    order = invoice.order
    if customer and order.customer_id == caller_id:
        return
    if vendor and order.vendor_id == caller_id:
        return
    raise Forbidden("You are not a party to this invoice", invoice.id)


def get_invoice_for_caller(db: Session, invoice_id: int, caller_id: int, *, is_admin: bool = False) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    _ensure_party(invoice, caller_id, is_admin)
    return invoice


def ledger_paid(db: Session, invoice_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.invoice_id == invoice_id)
        .scalar()
    )
    return money(total or 0)


def balance(db: Session, invoice: Invoice) -> Decimal:
    """Open balance, derived fresh from the payment ledger."""
    paid = ledger_paid(db, invoice.id)
    if paid != money(invoice.amount_paid):
        logger.warning(
            "Invoice %s amount_paid=%s disagrees with payment ledger %s",
            invoice.id, invoice.amount_paid, paid,
        )
    return money(money(invoice.total_amount) - paid)


def display_status(invoice: Invoice, now: Optional[dt.datetime] = None) -> InvoiceStatus:
    """Stored status, or OVERDUE when an open invoice is past its due date."""
    status = InvoiceStatus(invoice.status)
    if status in (InvoiceStatus.SENT, InvoiceStatus.PARTIAL) and invoice.due_date is not None:
        if as_utc(now or _now()) > as_utc(invoice.due_date):
            return InvoiceStatus.OVERDUE
    return status


def _status_for(paid: Decimal, total: Decimal) -> InvoiceStatus:
    if paid >= total:
        return InvoiceStatus.PAID
    if paid > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.SENT


def _parse_amount(amount, invoice_id) -> Decimal:
    try:
        value = money(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Invalid amount {amount!r}", invoice_id) from None
    if value <= 0:
        raise InvalidAmount("Amount must be greater than zero", invoice_id, amount=str(value))
    return value


def send_invoice(db: Session, invoice_id: int, caller_id: int, *, is_admin: bool = False) -> Invoice:
    with transaction(db, aggregate_id=invoice_id):
        invoice = get_invoice(db, invoice_id, lock=True)
        _ensure_party(invoice, caller_id, is_admin, customer=False)
        ensure_status(invoice.status, {InvoiceStatus.DRAFT}, aggregate="Invoice",
                      aggregate_id=invoice_id, action="send")
        invoice.status = InvoiceStatus.SENT.value
        invoice.sent_at = _now()
    db.refresh(invoice)
    logger.info("Invoice %s sent", invoice.invoice_number)
    emit(
        "invoice.sent",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        order_id=invoice.order_id,
        customer_id=invoice.order.customer_id,
        total_amount=invoice.total_amount,
    )
    return invoice


def record_payment(
    db: Session,
    invoice_id: int,
    caller_id: int,
    amount,
    payment_method: str,
    transaction_id: Optional[str] = None,
    *,
    is_admin: bool = False,
    now: Optional[dt.datetime] = None,
) -> Payment:
    """Append a payment and move the invoice to PARTIAL or PAID.

    Overpayment is rejected with InvalidAmount, never clamped.
    """
    value = _parse_amount(amount, invoice_id)
    if not payment_method or not payment_method.strip():
        raise InvalidRequest("Payment method is required", invoice_id)

    with transaction(db, aggregate_id=invoice_id):
        invoice = get_invoice(db, invoice_id, lock=True)
        _ensure_party(invoice, caller_id, is_admin, vendor=False)

        open_balance = balance(db, invoice)
        if value > open_balance:
            raise InvalidAmount(
                "Payment amount exceeds invoice balance",
                invoice_id,
                balance=str(open_balance),
                amount=str(value),
            )

        total = money(invoice.total_amount)
        paid = money(total - open_balance + value)
        target = _status_for(paid, total)

        payment = Payment(
            invoice_id=invoice.id,
            amount=value,
            payment_method=payment_method.strip().upper(),
            transaction_id=transaction_id or None,
            status=PaymentStatus.COMPLETED.value,
            paid_at=now or _now(),
        )
        db.add(payment)
        ensure_transition(invoice.status, target, aggregate="Invoice", aggregate_id=invoice.id)
        invoice.amount_paid = paid
        invoice.status = target.value
    db.refresh(payment)
    db.refresh(invoice)
    logger.info(
        "Invoice %s: payment %s of %s via %s, status=%s",
        invoice.invoice_number, payment.id, value, payment.payment_method, invoice.status,
    )
    emit(
        "payment.recorded",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        order_id=invoice.order_id,
        payment_id=payment.id,
        amount=value,
        status=invoice.status,
    )
    return payment


def apply_late_fee(db: Session, invoice: Invoice, amount) -> Invoice:
    """Add a late fee to a locked invoice inside the caller's transaction.

    A fee on a PAID invoice reopens the balance, so the status drops to PARTIAL.
    """
    value = _parse_amount(amount, invoice.id)
    invoice.late_fee = money(money(invoice.late_fee) + value)
    invoice.total_amount = money(money(invoice.total_amount) + value)
    if invoice.status == InvoiceStatus.PAID.value:
        ensure_transition(invoice.status, InvoiceStatus.PARTIAL, aggregate="Invoice", aggregate_id=invoice.id)
        invoice.status = InvoiceStatus.PARTIAL.value
    return invoice


def add_late_fee(db: Session, invoice_id: int, caller_id: int, amount, *, is_admin: bool = False) -> Invoice:
    with transaction(db, aggregate_id=invoice_id):
        invoice = get_invoice(db, invoice_id, lock=True)
        _ensure_party(invoice, caller_id, is_admin, customer=False)
        apply_late_fee(db, invoice, amount)
    db.refresh(invoice)
    logger.info("Invoice %s: late fee now %s, total=%s", invoice.invoice_number, invoice.late_fee, invoice.total_amount)
    emit(
        "invoice.late_fee_added",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        late_fee=invoice.late_fee,
        total_amount=invoice.total_amount,
    )
    return invoice


def list_payments(db: Session, invoice_id: int) -> List[Payment]:
    """Payments for an invoice, newest first."""
    return (
        db.query(Payment)
        .filter(Payment.invoice_id == invoice_id)
        .order_by(Payment.paid_at.desc(), Payment.id.desc())
        .all()
    )


def list_invoices_for(db: Session, caller_id: int, *, is_admin: bool = False, skip: int = 0, limit: int = 100) -> List[Invoice]:
    q = db.query(Invoice).join(RentalOrder, RentalOrder.id == Invoice.order_id)
    if not is_admin:
        q = q.filter((RentalOrder.customer_id == caller_id) | (RentalOrder.vendor_id == caller_id))
    return q.order_by(Invoice.id.desc()).offset(skip).limit(limit).all()
