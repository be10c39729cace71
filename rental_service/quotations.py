"""Quotation aggregate: the customer's rental cart.

Lines can only be added, re-quantified or removed while the quotation is
DRAFT. Each line freezes its unit price when added. `submit` bakes GST
into the total and hands the quotation to the vendors.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from . import availability
from .database import transaction
from .exceptions import EmptyCart, Forbidden, InvalidRequest, InvalidState, NotFound, Unavailable
from .logger import get_logger
from .messaging import emit
from .models import Quotation, QuotationLine
from .pricing import RateCard, RentalInterval, line_subtotal, money, price, with_gst
from .statuses import (
    ApprovalProgress,
    LineApprovalStatus,
    QuotationStatus,
    ensure_status,
    ensure_transition,
)

logger = get_logger(__name__)


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _check_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise InvalidRequest("Quantity must be a positive integer", quantity=quantity)


def get_quotation(db: Session, quotation_id: int, *, lock: bool = False) -> Quotation:
    q = db.query(Quotation).filter(Quotation.id == quotation_id)
    if lock:
        q = q.with_for_update()
    quotation = q.first()
    if not quotation:
        raise NotFound(f"Quotation {quotation_id} not found", quotation_id)
    return quotation


def get_owned_quotation(
    db: Session, quotation_id: int, caller_id: int, *, is_admin: bool = False, lock: bool = False
) -> Quotation:
    quotation = get_quotation(db, quotation_id, lock=lock)
    if quotation.customer_id != caller_id and not is_admin:
        raise Forbidden("You do not own this quotation", quotation_id)
    return quotation


def _get_line(quotation: Quotation, line_id: int) -> QuotationLine:
    for line in quotation.lines:
        if line.id == line_id:
            return line
    raise NotFound(f"Line {line_id} not found in quotation {quotation.id}", line_id)


def line_interval(line) -> RentalInterval:
    return RentalInterval(line.rental_start, line.rental_end)


def recalc_total(quotation: Quotation) -> None:
    """DRAFT totals are the plain sum of line subtotals; tax comes at submit."""
    subtotal = sum((money(line.subtotal) for line in quotation.lines), Decimal("0.00"))
    quotation.subtotal = money(subtotal)
    quotation.tax_amount = Decimal("0.00")
    quotation.total_amount = money(subtotal)


def approval_progress(quotation: Quotation) -> ApprovalProgress:
    decided = [l for l in quotation.lines if l.approval_status != LineApprovalStatus.PENDING.value]
    approved = [l for l in quotation.lines if l.approval_status == LineApprovalStatus.APPROVED.value]
    if not approved:
        return ApprovalProgress.NONE
    if len(decided) == len(quotation.lines) and len(approved) == len(quotation.lines):
        return ApprovalProgress.FULL
    return ApprovalProgress.PARTIAL


def settle_status(quotation: Quotation) -> None:
    """Derive the quotation status from per-vendor line decisions.

    Any approved line makes the quotation CONFIRMED; only when every line
    is rejected does it become REJECTED. Otherwise it stays SENT.
    """
    statuses = {line.approval_status for line in quotation.lines}
    if LineApprovalStatus.APPROVED.value in statuses:
        target = QuotationStatus.CONFIRMED
    elif statuses == {LineApprovalStatus.REJECTED.value}:
        target = QuotationStatus.REJECTED
    else:
        return
    ensure_transition(quotation.status, target, aggregate="Quotation", aggregate_id=quotation.id)
    quotation.status = target.value


def pending_lines_for_vendor(quotation: Quotation, vendor_id: int) -> List[QuotationLine]:
    return [
        line
        for line in quotation.lines
        if line.vendor_id == vendor_id and line.approval_status == LineApprovalStatus.PENDING.value
    ]


def ensure_vendor_can_decide(quotation: Quotation, vendor_id: int, caller_id: int, is_admin: bool) -> List[QuotationLine]:
    """Check the quotation awaits this vendor and return the vendor's undecided lines."""
    if vendor_id != caller_id and not is_admin:
        raise Forbidden("Vendors can only decide on their own lines", quotation.id)
    ensure_status(
        quotation.status,
        {QuotationStatus.SENT, QuotationStatus.CONFIRMED},
        aggregate="Quotation",
        aggregate_id=quotation.id,
        action="decide on",
    )
    lines = pending_lines_for_vendor(quotation, vendor_id)
    if not lines:
        if any(line.vendor_id == vendor_id for line in quotation.lines):
            raise InvalidState(
                f"Vendor {vendor_id} has already decided on quotation {quotation.id}",
                quotation.id,
            )
        raise Forbidden(f"Quotation {quotation.id} has no lines for vendor {vendor_id}", quotation.id)
    return lines


# -----------------------------
# Customer operations
# -----------------------------


def create_quotation(db: Session, customer_id: int) -> Quotation:
    with transaction(db):
        quotation = Quotation(
            customer_id=customer_id,
            status=QuotationStatus.DRAFT.value,
            subtotal=Decimal("0.00"),
            tax_amount=Decimal("0.00"),
            total_amount=Decimal("0.00"),
        )
        db.add(quotation)
    db.refresh(quotation)
    logger.info("Quotation %s created for customer %s", quotation.id, customer_id)
    return quotation


def add_line(
    db: Session,
    quotation_id: int,
    caller_id: int,
    product_id: int,
    quantity: int,
    interval: RentalInterval,
    *,
    is_admin: bool = False,
) -> QuotationLine:
    _check_quantity(quantity)
    with transaction(db, aggregate_id=quotation_id):
        quotation = get_owned_quotation(db, quotation_id, caller_id, is_admin=is_admin, lock=True)
        ensure_status(quotation.status, {QuotationStatus.DRAFT}, aggregate="Quotation",
                      aggregate_id=quotation_id, action="add lines to")

        product = availability.get_product(db, product_id)
        if not product.is_published:
            raise NotFound(f"Product {product_id} is not available for rent", product_id)

        result = availability.check_availability(db, product_id, interval, quantity, product=product)
        if not result.is_available:
            raise Unavailable(
                f"Product {product_id} is not available for the selected dates",
                product_id,
                availability=result.to_dict(),
            )

        quote = price(RateCard.from_product(product), interval)
        line = QuotationLine(
            product_id=product_id,
            vendor_id=product.vendor_id,
            quantity=quantity,
            rental_start=interval.start,
            rental_end=interval.end,
            pricing_type=quote.classification,
            unit_price=quote.amount,
            subtotal=line_subtotal(quote.amount, quantity),
            approval_status=LineApprovalStatus.PENDING.value,
        )
        quotation.lines.append(line)
        recalc_total(quotation)
    db.refresh(line)
    logger.info(
        "Quotation %s: added line %s (product=%s qty=%s unit=%s)",
        quotation_id, line.id, product_id, quantity, line.unit_price,
    )
    return line


def update_line_quantity(
    db: Session, quotation_id: int, line_id: int, caller_id: int, new_quantity: int, *, is_admin: bool = False
) -> QuotationLine:
    _check_quantity(new_quantity)
    with transaction(db, aggregate_id=quotation_id):
        quotation = get_owned_quotation(db, quotation_id, caller_id, is_admin=is_admin, lock=True)
        ensure_status(quotation.status, {QuotationStatus.DRAFT}, aggregate="Quotation",
                      aggregate_id=quotation_id, action="edit lines of")
        line = _get_line(quotation, line_id)

        # no reservation exists for a DRAFT line, so nothing of its own to exclude
        result = availability.check_availability(db, line.product_id, line_interval(line), new_quantity)
        if not result.is_available:
            raise Unavailable(
                f"Requested quantity of product {line.product_id} is not available",
                line.product_id,
                availability=result.to_dict(),
            )

        line.quantity = new_quantity
        line.subtotal = line_subtotal(line.unit_price, new_quantity)
        recalc_total(quotation)
    db.refresh(line)
    return line


def remove_line(db: Session, quotation_id: int, line_id: int, caller_id: int, *, is_admin: bool = False) -> Quotation:
    with transaction(db, aggregate_id=quotation_id):
        quotation = get_owned_quotation(db, quotation_id, caller_id, is_admin=is_admin, lock=True)
        ensure_status(quotation.status, {QuotationStatus.DRAFT}, aggregate="Quotation",
                      aggregate_id=quotation_id, action="remove lines from")
        line = _get_line(quotation, line_id)
        quotation.lines.remove(line)
        recalc_total(quotation)
    db.refresh(quotation)
    return quotation


def delete_quotation(db: Session, quotation_id: int, caller_id: int, *, is_admin: bool = False) -> None:
    with transaction(db, aggregate_id=quotation_id):
        quotation = get_owned_quotation(db, quotation_id, caller_id, is_admin=is_admin, lock=True)
        ensure_status(quotation.status, {QuotationStatus.DRAFT}, aggregate="Quotation",
                      aggregate_id=quotation_id, action="delete")
        db.delete(quotation)
    logger.info("Quotation %s deleted", quotation_id)


def submit(
    db: Session, quotation_id: int, caller_id: int, delivery_address: Optional[str] = None, *, is_admin: bool = False
) -> Quotation:
    with transaction(db, aggregate_id=quotation_id):
        quotation = get_owned_quotation(db, quotation_id, caller_id, is_admin=is_admin, lock=True)
        ensure_status(quotation.status, {QuotationStatus.DRAFT}, aggregate="Quotation",
                      aggregate_id=quotation_id, action="submit")
        if not quotation.lines:
            raise EmptyCart(f"Quotation {quotation_id} has no lines", quotation_id)

        recalc_total(quotation)
        amounts = with_gst(quotation.subtotal)
        quotation.subtotal = amounts["subtotal"]
        quotation.tax_amount = amounts["tax_amount"]
        quotation.total_amount = amounts["total_amount"]
        quotation.delivery_address = delivery_address or ""
        quotation.status = QuotationStatus.SENT.value
        quotation.submitted_at = _now()
    db.refresh(quotation)
    logger.info("Quotation %s submitted, total=%s", quotation_id, quotation.total_amount)
    emit(
        "quotation.submitted",
        quotation_id=quotation.id,
        customer_id=quotation.customer_id,
        vendor_ids=sorted({line.vendor_id for line in quotation.lines}),
        total_amount=quotation.total_amount,
    )
    return quotation


def cancel(db: Session, quotation_id: int, caller_id: int, *, is_admin: bool = False) -> Quotation:
    with transaction(db, aggregate_id=quotation_id):
        quotation = get_owned_quotation(db, quotation_id, caller_id, is_admin=is_admin, lock=True)
        ensure_status(quotation.status, {QuotationStatus.SENT}, aggregate="Quotation",
                      aggregate_id=quotation_id, action="cancel")
        quotation.status = QuotationStatus.CANCELLED.value
    db.refresh(quotation)
    logger.info("Quotation %s cancelled by customer", quotation_id)
    return quotation


# -----------------------------
# Vendor operations
# -----------------------------


def reject(
    db: Session, quotation_id: int, vendor_id: int, caller_id: int, reason: str = "", *, is_admin: bool = False
) -> Quotation:
    with transaction(db, aggregate_id=quotation_id):
        quotation = get_quotation(db, quotation_id, lock=True)
        lines = ensure_vendor_can_decide(quotation, vendor_id, caller_id, is_admin)
        now = _now()
        for line in lines:
            line.approval_status = LineApprovalStatus.REJECTED.value
            line.decided_at = now
        quotation.rejection_reason = reason or ""
        settle_status(quotation)
    db.refresh(quotation)
    logger.info("Quotation %s rejected by vendor %s: %s", quotation_id, vendor_id, reason)
    emit(
        "quotation.rejected",
        quotation_id=quotation.id,
        customer_id=quotation.customer_id,
        vendor_id=vendor_id,
        reason=reason,
    )
    return quotation


# -----------------------------
# Reads
# -----------------------------


def list_customer_quotations(db: Session, customer_id: int, skip: int = 0, limit: int = 100) -> List[Quotation]:
    return (
        db.query(Quotation)
        .filter(Quotation.customer_id == customer_id)
        .order_by(Quotation.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_vendor_quotations(db: Session, vendor_id: int, skip: int = 0, limit: int = 100) -> List[Quotation]:
    """Submitted quotations that still have undecided lines for this vendor."""
    return (
        db.query(Quotation)
        .join(QuotationLine, QuotationLine.quotation_id == Quotation.id)
        .filter(
            QuotationLine.vendor_id == vendor_id,
            QuotationLine.approval_status == LineApprovalStatus.PENDING.value,
            Quotation.status.in_([QuotationStatus.SENT.value, QuotationStatus.CONFIRMED.value]),
        )
        .distinct()
        .order_by(Quotation.id.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )
