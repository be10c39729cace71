"""Status enumerations and the transition tables that guard them.

Each aggregate's status only moves along the edges listed here;
`ensure_transition` is the single place that enforces it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet

from .exceptions import InvalidState


class QuotationStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class LineApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalProgress(str, Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class OrderStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class ReservationStatus(str, Enum):
    RESERVED = "RESERVED"
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    # display-only, derived from the due date; never stored
    OVERDUE = "OVERDUE"


class PaymentStatus(str, Enum):
    COMPLETED = "COMPLETED"


# Reservations in these states count against availability.
HOLDING_RESERVATION_STATUSES: FrozenSet[ReservationStatus] = frozenset(
    {ReservationStatus.RESERVED, ReservationStatus.ACTIVE}
)


QUOTATION_TRANSITIONS: Dict[QuotationStatus, FrozenSet[QuotationStatus]] = {
    QuotationStatus.DRAFT: frozenset({QuotationStatus.SENT}),
    QuotationStatus.SENT: frozenset(
        {QuotationStatus.CONFIRMED, QuotationStatus.REJECTED, QuotationStatus.CANCELLED}
    ),
    QuotationStatus.CONFIRMED: frozenset(),
    QuotationStatus.REJECTED: frozenset(),
    QuotationStatus.CANCELLED: frozenset(),
}

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CONFIRMED: frozenset({OrderStatus.CANCELLED, OrderStatus.COMPLETED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
}

RESERVATION_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.RESERVED: frozenset({ReservationStatus.ACTIVE, ReservationStatus.RELEASED}),
    ReservationStatus.ACTIVE: frozenset({ReservationStatus.RELEASED}),
    ReservationStatus.RELEASED: frozenset(),
}

# Payments may land on a DRAFT invoice; a late fee reopens a PAID one.
INVOICE_TRANSITIONS: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.PARTIAL, InvoiceStatus.PAID}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.PARTIAL, InvoiceStatus.PAID}),
    InvoiceStatus.PARTIAL: frozenset({InvoiceStatus.PAID}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.PARTIAL}),
    InvoiceStatus.OVERDUE: frozenset(),
}

_TABLES = {
    QuotationStatus: QUOTATION_TRANSITIONS,
    OrderStatus: ORDER_TRANSITIONS,
    ReservationStatus: RESERVATION_TRANSITIONS,
    InvoiceStatus: INVOICE_TRANSITIONS,
}


def can_transition(current: Enum, target: Enum) -> bool:
    if current == target:
        return True
    table = _TABLES[type(target)]
    return target in table.get(type(target)(current), frozenset())


def ensure_transition(current: Any, target: Enum, *, aggregate: str, aggregate_id: Any = None) -> None:
    """Raise InvalidState unless `current -> target` is an edge of the aggregate's table."""
    current = type(target)(current)
    if not can_transition(current, target):
        raise InvalidState(
            f"{aggregate} {aggregate_id} cannot move from {current.value} to {target.value}",
            aggregate_id,
            current_status=current.value,
        )


def ensure_status(current: Any, allowed: set, *, aggregate: str, aggregate_id: Any = None, action: str = "") -> None:
    """Raise InvalidState unless the aggregate is in one of the allowed statuses."""
    value = current.value if isinstance(current, Enum) else current
    if value not in {s.value for s in allowed}:
        raise InvalidState(
            f"Cannot {action or 'modify'} {aggregate} {aggregate_id} in status {value}",
            aggregate_id,
            current_status=value,
        )
