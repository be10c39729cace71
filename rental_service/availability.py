"""Inventory availability over the reservation log.

We never decrement stock. Free quantity for an interval is derived as
product.quantity_on_hand - sum(overlapping RESERVED/ACTIVE reservations).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .exceptions import NotFound
from .logger import get_logger
from .models import Product, Reservation
from .pricing import RateCard, RentalInterval, line_subtotal, price
from .statuses import HOLDING_RESERVATION_STATUSES

logger = get_logger(__name__)

_HOLDING = [s.value for s in HOLDING_RESERVATION_STATUSES]


@dataclass(frozen=True)
class Availability:
    product_id: int
    is_available: bool
    available_qty: int
    reserved_qty: int
    total_qty: int
    requested_qty: int

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "is_available": self.is_available,
            "available_quantity": self.available_qty,
            "reserved_quantity": self.reserved_qty,
            "total_quantity": self.total_qty,
            "requested_quantity": self.requested_qty,
        }


def get_product(db: Session, product_id: int, *, lock: bool = False) -> Product:
    q = db.query(Product).filter(Product.id == product_id)
    if lock:
        q = q.with_for_update()
    product = q.first()
    if not product:
        raise NotFound(f"Product {product_id} not found", product_id)
    return product


def lock_products(db: Session, product_ids: Iterable[int]) -> dict[int, Product]:
    """Lock product rows in ascending id order to avoid deadlocks between approvals."""
    locked: dict[int, Product] = {}
    for pid in sorted(set(product_ids)):
        locked[pid] = get_product(db, pid, lock=True)
    return locked


def _overlapping(db: Session, product_id: int, interval: RentalInterval):
    # boundary-inclusive: a hold ending exactly at interval.start still counts
    return db.query(Reservation).filter(
        Reservation.product_id == product_id,
        Reservation.status.in_(_HOLDING),
        Reservation.reserved_from <= interval.end,
        Reservation.reserved_until >= interval.start,
    )


def reserved_quantity(db: Session, product_id: int, interval: RentalInterval) -> int:
    q = _overlapping(db, product_id, interval).with_entities(
        func.coalesce(func.sum(Reservation.quantity), 0)
    )
    return int(q.scalar() or 0)


def check_availability(
    db: Session,
    product_id: int,
    interval: RentalInterval,
    requested_qty: int,
    *,
    product: Optional[Product] = None,
) -> Availability:
    """Read-only availability check. Advisory unless the caller holds the product lock."""
    if product is None:
        product = get_product(db, product_id)

    total = int(product.quantity_on_hand or 0)
    reserved = reserved_quantity(db, product_id, interval)
    available = total - reserved

    if available < 0:
        logger.error(
            "Reservations exceed stock for product %s: total=%s reserved=%s interval=%s..%s",
            product_id,
            total,
            reserved,
            interval.start.isoformat(),
            interval.end.isoformat(),
        )

    return Availability(
        product_id=product_id,
        is_available=available >= requested_qty,
        available_qty=available,
        reserved_qty=reserved,
        total_qty=total,
        requested_qty=requested_qty,
    )


def quote_availability(db: Session, product_id: int, interval: RentalInterval, quantity: int) -> dict:
    """Availability plus the price of the rental, for the product page preview."""
    product = get_product(db, product_id)
    availability = check_availability(db, product_id, interval, quantity, product=product)
    quote = price(RateCard.from_product(product), interval)
    return {
        **availability.to_dict(),
        "pricing": {
            "unit_price": quote.amount,
            "total_price": line_subtotal(quote.amount, quantity),
            "duration": quote.duration.to_dict(),
            "pricing_type": quote.classification,
        },
    }


def list_reservations(db: Session, product_id: int) -> List[Reservation]:
    """Active holds on a product, earliest first (calendar view)."""
    get_product(db, product_id)
    return (
        db.query(Reservation)
        .filter(
            Reservation.product_id == product_id,
            Reservation.status.in_(_HOLDING),
        )
        .order_by(Reservation.reserved_from.asc(), Reservation.id.asc())
        .all()
    )
