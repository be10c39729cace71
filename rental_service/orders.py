"""Order/reservation transition and the rental order lifecycle.

`approve` turns one vendor's lines of a submitted quotation into a
confirmed order with its order lines, one reservation per line and a
DRAFT invoice, all in a single transaction. Product rows are locked
and availability is re-checked inside that transaction, so two
approvals racing for the same stock cannot both commit.
"""

from __future__ import annotations

import datetime as dt
import os
from decimal import Decimal
from typing import List, Optional, Tuple

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from . import availability, invoices
from .database import transaction
from .exceptions import AlreadyExists, Forbidden, InvalidState, NotFound, Unavailable
from .logger import get_logger
from .messaging import emit
from .models import Invoice, OrderLine, RentalOrder, Reservation
from .pricing import as_utc, late_fee, money, with_gst
from .quotations import ensure_vendor_can_decide, get_quotation, line_interval, settle_status
from .statuses import (
    LineApprovalStatus,
    OrderStatus,
    ReservationStatus,
    ensure_status,
    ensure_transition,
)

load_dotenv()

logger = get_logger(__name__)

LATE_FEE_RATE = Decimal(os.getenv("LATE_FEE_RATE", "0.10"))


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def get_order(db: Session, order_id: int, *, lock: bool = False) -> RentalOrder:
    q = db.query(RentalOrder).filter(RentalOrder.id == order_id)
    if lock:
        q = q.with_for_update()
    order = q.first()
    if not order:
        raise NotFound(f"Order {order_id} not found", order_id)
    return order


def get_order_for_caller(db: Session, order_id: int, caller_id: int, *, is_admin: bool = False) -> RentalOrder:
    order = get_order(db, order_id)
    if not is_admin and caller_id not in (order.customer_id, order.vendor_id):
        raise Forbidden("You are not a party to this order", order_id)
    return order


def _move_reservation(reservation: Reservation, target: ReservationStatus) -> None:
    ensure_transition(reservation.status, target, aggregate="Reservation", aggregate_id=reservation.id)
    reservation.status = target.value


def _validate_capacity(db: Session, lines, products) -> None:
    """Re-check every line against committed holds and the lines approved alongside it."""
    accepted = []
    for line in sorted(lines, key=lambda l: (l.product_id, l.id)):
        interval = line_interval(line)
        result = availability.check_availability(
            db, line.product_id, interval, line.quantity, product=products[line.product_id]
        )
        in_batch = sum(
            other.quantity
            for other, other_interval in accepted
            if other.product_id == line.product_id and other_interval.overlaps(interval)
        )
        free = result.available_qty - in_batch
        if free < line.quantity:
            details = result.to_dict()
            details["available_quantity"] = free
            details["is_available"] = False
            raise Unavailable(
                f"Product {line.product_id} is no longer available for the selected dates",
                line.product_id,
                availability=details,
            )
        accepted.append((line, interval))


def approve(
    db: Session,
    quotation_id: int,
    vendor_id: int,
    caller_id: int,
    *,
    is_admin: bool = False,
    delivery_address: Optional[str] = None,
    security_deposit=Decimal("0.00"),
    now: Optional[dt.datetime] = None,
) -> Tuple[RentalOrder, Invoice]:
    """Confirm one vendor's share of a submitted quotation.

    Creates the order, its lines, one RESERVED reservation per line and a
    DRAFT invoice (vendor subtotal + 18% GST + deposit), then marks the
    lines approved. Either all of it commits or none of it does.
    """
    now = now or _now()
    with transaction(
        db,
        aggregate_id=quotation_id,
        conflict_message=f"An order already exists for quotation {quotation_id} and vendor {vendor_id}",
    ):
        quotation = get_quotation(db, quotation_id, lock=True)
        if vendor_id != caller_id and not is_admin:
            raise Forbidden("Vendors can only approve their own lines", quotation_id)

        existing = (
            db.query(RentalOrder)
            .filter(RentalOrder.quotation_id == quotation_id, RentalOrder.vendor_id == vendor_id)
            .first()
        )
        if existing:
            raise AlreadyExists(
                f"Order {existing.id} already exists for quotation {quotation_id} and vendor {vendor_id}",
                quotation_id,
            )

        lines = ensure_vendor_can_decide(quotation, vendor_id, caller_id, is_admin)
        products = availability.lock_products(db, [line.product_id for line in lines])
        _validate_capacity(db, lines, products)

        subtotal = sum((money(line.subtotal) for line in lines), Decimal("0.00"))
        amounts = with_gst(subtotal)
        order = RentalOrder(
            quotation_id=quotation.id,
            customer_id=quotation.customer_id,
            vendor_id=vendor_id,
            status=OrderStatus.CONFIRMED.value,
            subtotal=amounts["subtotal"],
            tax_amount=amounts["tax_amount"],
            total_amount=amounts["total_amount"],
            delivery_address=delivery_address or quotation.delivery_address or "",
            created_at=now,
        )
        db.add(order)
        db.flush()

        for qline in lines:
            oline = OrderLine(
                order_id=order.id,
                quotation_line_id=qline.id,
                product_id=qline.product_id,
                quantity=qline.quantity,
                rental_start=qline.rental_start,
                rental_end=qline.rental_end,
                unit_price=qline.unit_price,
                subtotal=qline.subtotal,
            )
            db.add(oline)
            db.flush()
            db.add(
                Reservation(
                    product_id=oline.product_id,
                    order_id=order.id,
                    order_line_id=oline.id,
                    quantity=oline.quantity,
                    reserved_from=oline.rental_start,
                    reserved_until=oline.rental_end,
                    status=ReservationStatus.RESERVED.value,
                    created_at=now,
                )
            )
            qline.approval_status = LineApprovalStatus.APPROVED.value
            qline.order_id = order.id
            qline.decided_at = now
        db.flush()

        invoice = invoices.create_invoice_for_order(db, order, security_deposit=security_deposit, now=now)
        settle_status(quotation)

    db.refresh(order)
    db.refresh(invoice)
    logger.info(
        "Quotation %s approved by vendor %s: order %s, %s reservation(s), invoice %s",
        quotation_id, vendor_id, order.id, len(order.reservations), invoice.invoice_number,
    )
    emit(
        "order.confirmed",
        order_id=order.id,
        quotation_id=quotation_id,
        customer_id=order.customer_id,
        vendor_id=vendor_id,
        invoice_number=invoice.invoice_number,
        total_amount=invoice.total_amount,
        items=[
            {"product_id": r.product_id, "quantity": r.quantity,
             "reserved_from": r.reserved_from, "reserved_until": r.reserved_until}
            for r in order.reservations
        ],
    )
    return order, invoice


def _is_picked_up(order: RentalOrder) -> bool:
    return any(r.status == ReservationStatus.ACTIVE.value for r in order.reservations)


def cancel_order(db: Session, order_id: int, caller_id: int, *, is_admin: bool = False) -> RentalOrder:
    """Customer cancels before pickup; every reservation is released at once."""
    with transaction(db, aggregate_id=order_id):
        order = get_order(db, order_id, lock=True)
        if order.customer_id != caller_id and not is_admin:
            raise Forbidden("Only the customer can cancel this order", order_id)
        ensure_status(order.status, {OrderStatus.CONFIRMED}, aggregate="Order",
                      aggregate_id=order_id, action="cancel")
        if _is_picked_up(order):
            raise InvalidState("Order has already been picked up", order_id)

        ensure_transition(order.status, OrderStatus.CANCELLED, aggregate="Order", aggregate_id=order_id)
        order.status = OrderStatus.CANCELLED.value
        for reservation in order.reservations:
            _move_reservation(reservation, ReservationStatus.RELEASED)
    db.refresh(order)
    logger.info("Order %s cancelled, %s reservation(s) released", order_id, len(order.reservations))
    emit(
        "order.cancelled",
        order_id=order.id,
        customer_id=order.customer_id,
        vendor_id=order.vendor_id,
        items=[{"product_id": r.product_id, "quantity": r.quantity} for r in order.reservations],
    )
    return order


def pickup_order(
    db: Session, order_id: int, caller_id: int, *, is_admin: bool = False, now: Optional[dt.datetime] = None
) -> RentalOrder:
    """Vendor hands the goods over: RESERVED holds become ACTIVE."""
    with transaction(db, aggregate_id=order_id):
        order = get_order(db, order_id, lock=True)
        if order.vendor_id != caller_id and not is_admin:
            raise Forbidden("Only the vendor can hand over this order", order_id)
        ensure_status(order.status, {OrderStatus.CONFIRMED}, aggregate="Order",
                      aggregate_id=order_id, action="pick up")
        if _is_picked_up(order):
            raise InvalidState("Order has already been picked up", order_id)
        for reservation in order.reservations:
            _move_reservation(reservation, ReservationStatus.ACTIVE)
        order.picked_up_at = now or _now()
    db.refresh(order)
    logger.info("Order %s picked up", order_id)
    emit("order.picked_up", order_id=order.id, customer_id=order.customer_id, vendor_id=order.vendor_id)
    return order


def _daily_rate(product) -> Optional[Decimal]:
    if product.price_per_day:
        return money(product.price_per_day)
    if product.price_per_hour:
        return money(money(product.price_per_hour) * 24)
    if product.price_per_week:
        return money(money(product.price_per_week) / 7)
    return None


def compute_late_fee(order: RentalOrder, returned_at: dt.datetime) -> Decimal:
    total = Decimal("0.00")
    for line in order.lines:
        rate = _daily_rate(line.product)
        if not rate:
            continue
        total += late_fee(line.rental_end, returned_at, rate, LATE_FEE_RATE) * line.quantity
    return money(total)


def return_order(
    db: Session,
    order_id: int,
    caller_id: int,
    *,
    is_admin: bool = False,
    returned_at: Optional[dt.datetime] = None,
) -> RentalOrder:
    """Vendor takes the goods back: order COMPLETED, holds released, late fee billed."""
    returned_at = as_utc(returned_at or _now())
    with transaction(db, aggregate_id=order_id):
        order = get_order(db, order_id, lock=True)
        if order.vendor_id != caller_id and not is_admin:
            raise Forbidden("Only the vendor can take this order back", order_id)
        ensure_status(order.status, {OrderStatus.CONFIRMED}, aggregate="Order",
                      aggregate_id=order_id, action="return")
        if not _is_picked_up(order):
            raise InvalidState("Order has not been picked up yet", order_id)

        ensure_transition(order.status, OrderStatus.COMPLETED, aggregate="Order", aggregate_id=order_id)
        order.status = OrderStatus.COMPLETED.value
        order.returned_at = returned_at
        for reservation in order.reservations:
            _move_reservation(reservation, ReservationStatus.RELEASED)

        fee = compute_late_fee(order, returned_at)
        if fee > 0 and order.invoice is not None:
            invoice = invoices.get_invoice(db, order.invoice.id, lock=True)
            invoices.apply_late_fee(db, invoice, fee)
    db.refresh(order)
    logger.info("Order %s returned, late fee=%s", order_id, fee)
    emit(
        "order.completed",
        order_id=order.id,
        customer_id=order.customer_id,
        vendor_id=order.vendor_id,
        late_fee=fee,
    )
    return order


def list_orders_for(
    db: Session, caller_id: int, *, is_admin: bool = False, skip: int = 0, limit: int = 100
) -> List[RentalOrder]:
    q = db.query(RentalOrder)
    if not is_admin:
        q = q.filter((RentalOrder.customer_id == caller_id) | (RentalOrder.vendor_id == caller_id))
    return q.order_by(RentalOrder.id.desc()).offset(skip).limit(limit).all()


def list_order_reservations(db: Session, order_id: int) -> List[Reservation]:
    return (
        db.query(Reservation)
        .filter(Reservation.order_id == order_id)
        .order_by(Reservation.reserved_from.asc(), Reservation.id.asc())
        .all()
    )
