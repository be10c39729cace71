from decimal import Decimal
from unittest.mock import patch

import pytest

from rental_service import orders, quotations
from rental_service.exceptions import EmptyCart, Forbidden, InvalidRequest, InvalidState, NotFound, Unavailable
from rental_service.models import Quotation
from rental_service.statuses import ApprovalProgress, LineApprovalStatus, QuotationStatus

from conftest import CUSTOMER, OTHER_CUSTOMER, VENDOR_A, VENDOR_B, interval


def test_add_line_freezes_price_and_updates_total(db, make_product):
    product = make_product(per_day=Decimal("100"))
    quotation = quotations.create_quotation(db, CUSTOMER)

    line = quotations.add_line(db, quotation.id, CUSTOMER, product.id, 2, interval(1, 3))
    assert line.unit_price == Decimal("200.00")
    assert line.subtotal == Decimal("400.00")
    assert line.vendor_id == VENDOR_A
    assert line.approval_status == LineApprovalStatus.PENDING.value

    # a later price change does not touch the frozen line
    product.price_per_day = Decimal("150")
    db.commit()
    db.refresh(quotation)
    assert quotation.lines[0].unit_price == Decimal("200.00")
    assert quotation.total_amount == Decimal("400.00")


def test_add_line_rejects_more_than_stock(db, make_product):
    product = make_product(quantity=2)
    quotation = quotations.create_quotation(db, CUSTOMER)
    with pytest.raises(Unavailable) as exc:
        quotations.add_line(db, quotation.id, CUSTOMER, product.id, 3, interval(1, 3))
    assert exc.value.availability["available_quantity"] == 2


def test_add_line_requires_published_product(db, make_product):
    product = make_product(published=False)
    quotation = quotations.create_quotation(db, CUSTOMER)
    with pytest.raises(NotFound):
        quotations.add_line(db, quotation.id, CUSTOMER, product.id, 1, interval(1, 3))


def test_add_line_rejects_non_positive_quantity(db, make_product):
    product = make_product()
    quotation = quotations.create_quotation(db, CUSTOMER)
    with pytest.raises(InvalidRequest):
        quotations.add_line(db, quotation.id, CUSTOMER, product.id, 0, interval(1, 3))


def test_only_owner_edits_quotation(db, make_product):
    product = make_product()
    quotation = quotations.create_quotation(db, CUSTOMER)
    with pytest.raises(Forbidden):
        quotations.add_line(db, quotation.id, OTHER_CUSTOMER, product.id, 1, interval(1, 3))


def test_update_line_quantity_rechecks_stock(db, make_product):
    product = make_product(quantity=3)
    quotation = quotations.create_quotation(db, CUSTOMER)
    line = quotations.add_line(db, quotation.id, CUSTOMER, product.id, 1, interval(1, 3))

    updated = quotations.update_line_quantity(db, quotation.id, line.id, CUSTOMER, 3)
    assert updated.subtotal == Decimal("600.00")
    with pytest.raises(Unavailable):
        quotations.update_line_quantity(db, quotation.id, line.id, CUSTOMER, 4)


def test_remove_line_recomputes_total(db, make_product):
    product = make_product()
    quotation = quotations.create_quotation(db, CUSTOMER)
    first = quotations.add_line(db, quotation.id, CUSTOMER, product.id, 1, interval(1, 3))
    quotations.add_line(db, quotation.id, CUSTOMER, product.id, 1, interval(5, 6))

    quotation = quotations.remove_line(db, quotation.id, first.id, CUSTOMER)
    assert len(quotation.lines) == 1
    assert quotation.total_amount == Decimal("100.00")


def test_submit_adds_gst(db, make_product):
    """Two lines summing 1000 -> tax 180, total 1180."""
    camera = make_product(per_day=Decimal("300"), name="Camera")
    lens = make_product(per_day=Decimal("200"), name="Lens")
    quotation = quotations.create_quotation(db, CUSTOMER)
    quotations.add_line(db, quotation.id, CUSTOMER, camera.id, 1, interval(1, 3))
    quotations.add_line(db, quotation.id, CUSTOMER, lens.id, 1, interval(1, 3))

    with patch("rental_service.quotations.emit") as emit:
        quotation = quotations.submit(db, quotation.id, CUSTOMER, "12 MG Road")

    assert quotation.status == QuotationStatus.SENT.value
    assert quotation.subtotal == Decimal("1000.00")
    assert quotation.tax_amount == Decimal("180.00")
    assert quotation.total_amount == Decimal("1180.00")
    assert quotation.delivery_address == "12 MG Road"
    emit.assert_called_once()
    assert emit.call_args[0][0] == "quotation.submitted"


def test_submit_empty_quotation_fails(db):
    quotation = quotations.create_quotation(db, CUSTOMER)
    with pytest.raises(EmptyCart):
        quotations.submit(db, quotation.id, CUSTOMER)
    db.refresh(quotation)
    assert quotation.status == QuotationStatus.DRAFT.value


def test_lines_are_frozen_after_submit(db, make_product, submitted_quotation):
    product = make_product()
    quotation = submitted_quotation([(product, 1, interval(1, 3))])
    with pytest.raises(InvalidState):
        quotations.add_line(db, quotation.id, CUSTOMER, product.id, 1, interval(5, 6))
    with pytest.raises(InvalidState):
        quotations.remove_line(db, quotation.id, quotation.lines[0].id, CUSTOMER)
    with pytest.raises(InvalidState):
        quotations.submit(db, quotation.id, CUSTOMER)


def test_resubmitting_sent_quotation_changes_nothing(db, make_product, submitted_quotation):
    product = make_product(per_day=Decimal("500"))
    quotation = submitted_quotation([(product, 1, interval(1, 3))], delivery_address="12 MG Road")
    submitted_at = quotation.submitted_at
    total = quotation.total_amount

    with patch("rental_service.quotations.emit") as emit:
        with pytest.raises(InvalidState) as exc:
            quotations.submit(db, quotation.id, CUSTOMER, "Other street")

    assert exc.value.aggregate_id == quotation.id
    assert exc.value.context["current_status"] == "SENT"
    emit.assert_not_called()
    db.refresh(quotation)
    assert quotation.status == QuotationStatus.SENT.value
    assert quotation.delivery_address == "12 MG Road"
    assert quotation.submitted_at == submitted_at
    assert quotation.total_amount == total == Decimal("1180.00")


def test_cancel_only_from_sent(db, make_product, submitted_quotation):
    draft = quotations.create_quotation(db, CUSTOMER)
    with pytest.raises(InvalidState):
        quotations.cancel(db, draft.id, CUSTOMER)

    quotation = submitted_quotation([(make_product(), 1, interval(1, 3))])
    assert quotations.cancel(db, quotation.id, CUSTOMER).status == QuotationStatus.CANCELLED.value
    with pytest.raises(InvalidState):
        orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)


def test_delete_draft_only(db, make_product, submitted_quotation):
    draft = quotations.create_quotation(db, CUSTOMER)
    quotations.add_line(db, draft.id, CUSTOMER, make_product().id, 1, interval(1, 3))
    quotations.delete_quotation(db, draft.id, CUSTOMER)
    assert db.query(Quotation).filter(Quotation.id == draft.id).first() is None

    sent = submitted_quotation([(make_product(name="Lens"), 1, interval(1, 3))])
    with pytest.raises(InvalidState):
        quotations.delete_quotation(db, sent.id, CUSTOMER)


def test_reject_by_only_vendor_rejects_quotation(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(), 1, interval(1, 3))])
    quotation = quotations.reject(db, quotation.id, VENDOR_A, VENDOR_A, "Out for repair")
    assert quotation.status == QuotationStatus.REJECTED.value
    assert quotation.rejection_reason == "Out for repair"
    assert quotation.lines[0].approval_status == LineApprovalStatus.REJECTED.value


def test_vendor_without_lines_cannot_decide(db, make_product, submitted_quotation):
    quotation = submitted_quotation([(make_product(vendor_id=VENDOR_A), 1, interval(1, 3))])
    with pytest.raises(Forbidden):
        quotations.reject(db, quotation.id, VENDOR_B, VENDOR_B)
    with pytest.raises(Forbidden):
        quotations.reject(db, quotation.id, VENDOR_A, VENDOR_B)


def test_mixed_decisions_track_progress(db, make_product, submitted_quotation):
    a = make_product(vendor_id=VENDOR_A, name="Camera")
    b = make_product(vendor_id=VENDOR_B, name="Tent")
    quotation = submitted_quotation([(a, 1, interval(1, 3)), (b, 1, interval(1, 3))])

    quotation = quotations.reject(db, quotation.id, VENDOR_B, VENDOR_B, "Busy")
    assert quotation.status == QuotationStatus.SENT.value
    assert quotations.approval_progress(quotation) == ApprovalProgress.NONE

    orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    quotation = quotations.get_quotation(db, quotation.id)
    assert quotation.status == QuotationStatus.CONFIRMED.value
    assert quotations.approval_progress(quotation) == ApprovalProgress.PARTIAL


def test_vendor_listing_shows_pending_lines_only(db, make_product, submitted_quotation):
    a = make_product(vendor_id=VENDOR_A, name="Camera")
    b = make_product(vendor_id=VENDOR_B, name="Tent")
    quotation = submitted_quotation([(a, 1, interval(1, 3)), (b, 1, interval(1, 3))])
    quotations.create_quotation(db, CUSTOMER)  # draft, never listed

    assert [q.id for q in quotations.list_vendor_quotations(db, VENDOR_A)] == [quotation.id]
    orders.approve(db, quotation.id, VENDOR_A, VENDOR_A)
    assert quotations.list_vendor_quotations(db, VENDOR_A) == []
    assert [q.id for q in quotations.list_vendor_quotations(db, VENDOR_B)] == [quotation.id]
    assert len(quotations.list_customer_quotations(db, CUSTOMER)) == 2
