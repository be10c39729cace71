from decimal import Decimal
from unittest.mock import patch

import pytest

from rental_service import availability, invoices, orders, quotations
from rental_service.exceptions import AlreadyExists, Forbidden, InvalidState, StoreFailure, Unavailable
from rental_service.models import Invoice, OrderLine, RentalOrder, Reservation
from rental_service.statuses import (
    InvoiceStatus,
    LineApprovalStatus,
    OrderStatus,
    QuotationStatus,
    ReservationStatus,
)

from conftest import ADMIN, CUSTOMER, OTHER_CUSTOMER, VENDOR_A, VENDOR_B, at, interval


def _counts(db):
    return (
        db.query(RentalOrder).count(),
        db.query(OrderLine).count(),
        db.query(Reservation).count(),
        db.query(Invoice).count(),
    )


def test_approve_creates_order_reservations_and_invoice(db, make_product, submitted_quotation):
    product = make_product(quantity=5)
    quotation = submitted_quotation([(product, 2, interval(1, 3))])

    with patch("rental_service.orders.emit") as emit:
        order, invoice = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)

    assert order.status == OrderStatus.CONFIRMED.value
    assert order.customer_id == CUSTOMER
    assert order.subtotal == Decimal("400.00")
    assert order.total_amount == Decimal("472.00")
    assert order.delivery_address == "12 MG Road"
    assert len(order.lines) == 1
    assert [(r.quantity, r.status) for r in order.reservations] == [(2, ReservationStatus.RESERVED.value)]

    assert invoice.status == InvoiceStatus.DRAFT.value
    assert invoice.tax_amount == Decimal("72.00")
    assert invoice.total_amount == Decimal("472.00")
    assert invoice.amount_paid == Decimal("0.00")
    assert invoice.invoice_number.startswith("INV-")

    quotation = quotations.get_quotation(db, quotation.id)
    assert quotation.status == QuotationStatus.CONFIRMED.value
    assert quotation.lines[0].approval_status == LineApprovalStatus.APPROVED.value
    assert quotation.lines[0].order_id == order.id
    assert emit.call_args[0][0] == "order.confirmed"


def test_multi_vendor_approval_is_scoped_to_vendor(db, make_product, submitted_quotation):
    """Vendor A's 300 becomes an order of 354; vendor B's 700 waits."""
    a = make_product(vendor_id=VENDOR_A, per_day=Decimal("150"), name="Camera")
    b = make_product(vendor_id=VENDOR_B, per_day=Decimal("350"), name="Tent")
    quotation = submitted_quotation([(a, 1, interval(1, 3)), (b, 1, interval(1, 3))])
    assert quotation.subtotal == Decimal("1000.00")

    order, invoice = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    assert order.vendor_id == VENDOR_A
    assert order.subtotal == Decimal("300.00")
    assert invoice.total_amount == Decimal("354.00")
    assert [line.product_id for line in order.lines] == [a.id]
    assert availability.check_availability(db, b.id, interval(1, 3), 5).is_available

    quotation = quotations.get_quotation(db, quotation.id)
    pending = quotations.pending_lines_for_vendor(quotation, VENDOR_B)
    assert [line.product_id for line in pending] == [b.id]

    order_b, invoice_b = orders.approve(db, quotation.id, VENDOR_B, VENDOR_B)
    assert order_b.subtotal == Decimal("700.00")
    assert invoice_b.total_amount == Decimal("826.00")
    assert invoice_b.invoice_number != invoice.invoice_number


def test_second_approval_by_same_vendor_fails(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(), 1, interval(1, 3))])
    orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    with pytest.raises(AlreadyExists):
        orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    assert _counts(db) == (1, 1, 1, 1)


def test_approve_by_other_vendor_is_forbidden(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(vendor_id=VENDOR_A), 1, interval(1, 3))])
    with pytest.raises(Forbidden):
        orders.approve(db, quotation.id, VENDOR_A, VENDOR_B)
    assert _counts(db) == (0, 0, 0, 0)


def test_admin_approves_on_behalf_of_vendor(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(vendor_id=VENDOR_A), 1, interval(1, 3))])
    order, _ = orders.approve(db, quotation.id, VENDOR_A, ADMIN, is_admin=True)
    assert order.vendor_id == VENDOR_A


def test_final_recheck_blocks_oversell(db, make_product, submitted_quotation):
    """Two customers quoted the last unit; only the first approval wins."""
    product = make_product(quantity=1)
    first = submitted_quotation([(product, 1, interval(1, 3))], customer_id=CUSTOMER)
    second = submitted_quotation([(product, 1, interval(2, 4))], customer_id=OTHER_CUSTOMER)

    orders.approve(db, first.id, VENDOR_A, VENDOR_A)
    with pytest.raises(Unavailable) as exc:
        orders.approve(db, second.id, VENDOR_A, VENDOR_A)

    assert exc.value.availability["available_quantity"] == 0
    assert _counts(db) == (1, 1, 1, 1)
    second = quotations.get_quotation(db, second.id)
    assert second.status == QuotationStatus.SENT.value
    assert second.lines[0].approval_status == LineApprovalStatus.PENDING.value


def test_lines_of_one_approval_cannot_jointly_oversell(db, make_product):
    product = make_product(quantity=3)
    quotation = quotations.create_quotation(db, CUSTOMER)
    quotations.add_line(db, quotation.id, CUSTOMER, product.id, 2, interval(1, 3))
    quotations.add_line(db, quotation.id, CUSTOMER, product.id, 2, interval(2, 4))
    quotations.submit(db, quotation.id, CUSTOMER)

    with pytest.raises(Unavailable):
        orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    assert _counts(db) == (0, 0, 0, 0)


def test_failure_after_order_creation_rolls_back_everything(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(), 1, interval(1, 3))])

    with patch("rental_service.orders.invoices.create_invoice_for_order", side_effect=StoreFailure("boom")):
        with pytest.raises(StoreFailure):
            orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)

    assert _counts(db) == (0, 0, 0, 0)
    quotation = quotations.get_quotation(db, quotation.id)
    assert quotation.status == QuotationStatus.SENT.value
    assert quotation.lines[0].order_id is None


def test_security_deposit_is_added_to_invoice(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(), 1, interval(1, 3))])
    _, invoice = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A, security_deposit=Decimal("500"))
    assert invoice.security_deposit == Decimal("500.00")
    assert invoice.total_amount == Decimal("736.00")


def test_cancel_releases_capacity(db, make_product, submitted_quotation):
    product = make_product(quantity=5)
    quotation = submitted_quotation([(product, 5, interval(1, 3))])
    order, _ = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    assert availability.check_availability(db, product.id, interval(1, 3), 1).available_qty == 0

    order = orders.cancel_order(db, order.id, CUSTOMER)
    assert order.status == OrderStatus.CANCELLED.value
    assert {r.status for r in order.reservations} == {ReservationStatus.RELEASED.value}
    assert availability.check_availability(db, product.id, interval(1, 3), 5).available_qty == 5


def test_cancel_rules(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(), 1, interval(1, 3))])
    order, _ = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)

    with pytest.raises(Forbidden):
        orders.cancel_order(db, order.id, OTHER_CUSTOMER)

    orders.pickup_order(db, order.id, VENDOR_A)
    with pytest.raises(InvalidState):
        orders.cancel_order(db, order.id, CUSTOMER)


def test_cancelled_order_cannot_be_cancelled_again(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(), 1, interval(1, 3))])
    order, _ = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    orders.cancel_order(db, order.id, CUSTOMER)
    with pytest.raises(InvalidState):
        orders.cancel_order(db, order.id, CUSTOMER)


def test_pickup_and_on_time_return(db, make_product, submitted_quotation):
    product = make_product(quantity=1)
    quotation = submitted_quotation([(product, 1, interval(1, 3))])
    order, invoice = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)

    with pytest.raises(InvalidState):
        orders.return_order(db, order.id, VENDOR_A, returned_at=at(3))

    order = orders.pickup_order(db, order.id, VENDOR_A, now=at(1))
    assert {r.status for r in order.reservations} == {ReservationStatus.ACTIVE.value}
    assert order.status == OrderStatus.CONFIRMED.value
    assert not availability.check_availability(db, product.id, interval(2, 3), 1).is_available

    order = orders.return_order(db, order.id, VENDOR_A, returned_at=at(3))
    assert order.status == OrderStatus.COMPLETED.value
    assert {r.status for r in order.reservations} == {ReservationStatus.RELEASED.value}
    assert availability.check_availability(db, product.id, interval(2, 3), 1).is_available
    assert invoices.get_invoice(db, invoice.id).late_fee == Decimal("0.00")


def test_late_return_bills_late_fee(db, make_product, submitted_quotation):
    product = make_product(quantity=2, per_day=Decimal("100"))
    quotation = submitted_quotation([(product, 2, interval(1, 3))])
    order, invoice = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    orders.pickup_order(db, order.id, VENDOR_A)

    # two days late, two units: 2 x (2 x 100 x 10%)
    orders.return_order(db, order.id, VENDOR_A, returned_at=at(5))
    invoice = invoices.get_invoice(db, invoice.id)
    assert invoice.late_fee == Decimal("40.00")
    assert invoice.total_amount == Decimal("512.00")


def test_only_vendor_hands_over(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(vendor_id=VENDOR_A), 1, interval(1, 3))])
    order, _ = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    with pytest.raises(Forbidden):
        orders.pickup_order(db, order.id, CUSTOMER)
    orders.pickup_order(db, order.id, VENDOR_A)
    with pytest.raises(InvalidState):
        orders.pickup_order(db, order.id, VENDOR_A)


def test_order_listings(db, make_product, submitted_quotation):
    a = make_product(vendor_id=VENDOR_A, name="Camera")
    b = make_product(vendor_id=VENDOR_B, name="Tent")
    quotation = submitted_quotation([(a, 1, interval(1, 3)), (b, 1, interval(1, 3))])
    order_a, _ = orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    order_b, _ = orders.approve(db, quotation.id, VENDOR_B, VENDOR_B)

    assert {o.id for o in orders.list_orders_for(db, CUSTOMER)} == {order_a.id, order_b.id}
    assert [o.id for o in orders.list_orders_for(db, VENDOR_B)] == [order_b.id]
    assert len(orders.list_orders_for(db, ADMIN, is_admin=True)) == 2
    assert [r.order_id for r in orders.list_order_reservations(db, order_a.id)] == [order_a.id]
    with pytest.raises(Forbidden):
        orders.get_order_for_caller(db, order_a.id, VENDOR_B)
