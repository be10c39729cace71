from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Dict, Optional

from .. import orders, quotations, schemas
from ..auth import get_current_user, get_current_vendor
from ..database import get_db
from ..errors import http_error
from ..exceptions import Forbidden, RentalError
from ..pricing import RentalInterval, gst_split
from .invoice_router import invoice_out
from .order_router import order_out

router = APIRouter(
    prefix="/quotations",
    tags=["Quotations"]
)


def quotation_out(quotation) -> dict:
    data = schemas.QuotationOut.model_validate(quotation).model_dump()
    data.update(gst_split(quotation.tax_amount))
    data["approval_progress"] = quotations.approval_progress(quotation)
    return data


def _ensure_can_view(quotation, current_user: Dict) -> None:
    if current_user["is_admin"] or quotation.customer_id == current_user["id"]:
        return
    if any(line.vendor_id == current_user["id"] for line in quotation.lines):
        return
    raise Forbidden("You are not a party to this quotation", quotation.id)


@router.post("/", response_model=schemas.QuotationOut, status_code=status.HTTP_201_CREATED)
def create_quotation(
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open an empty DRAFT quotation (the rental cart) for the caller."""
    quotation = quotations.create_quotation(db, current_user["id"])
    return quotation_out(quotation)


@router.get("/mine", response_model=list[schemas.QuotationOut])
def list_my_quotations(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [
        quotation_out(q)
        for q in quotations.list_customer_quotations(db, current_user["id"], skip=skip, limit=limit)
    ]


@router.get("/pending", response_model=list[schemas.QuotationOut])
def list_pending_for_vendor(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    """Submitted quotations with lines still waiting on the calling vendor."""
    return [
        quotation_out(q)
        for q in quotations.list_vendor_quotations(db, current_vendor["id"], skip=skip, limit=limit)
    ]


@router.get("/{quotation_id:int}", response_model=schemas.QuotationOut)
def get_quotation(
    quotation_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        quotation = quotations.get_quotation(db, quotation_id)
        _ensure_can_view(quotation, current_user)
    except RentalError as e:
        raise http_error(e)
    return quotation_out(quotation)


@router.delete("/{quotation_id:int}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quotation(
    quotation_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        quotations.delete_quotation(db, quotation_id, current_user["id"], is_admin=current_user["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return None


# -----------------------------
# Lines (DRAFT only)
# -----------------------------


@router.post("/{quotation_id:int}/lines", response_model=schemas.QuotationOut, status_code=status.HTTP_201_CREATED)
def add_line(
    quotation_id: int,
    body: schemas.QuotationLineCreate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        interval = RentalInterval(body.rental_start, body.rental_end)
        quotations.add_line(
            db, quotation_id, current_user["id"], body.product_id, body.quantity, interval,
            is_admin=current_user["is_admin"],
        )
        quotation = quotations.get_quotation(db, quotation_id)
    except RentalError as e:
        raise http_error(e)
    return quotation_out(quotation)


@router.patch("/{quotation_id:int}/lines/{line_id:int}", response_model=schemas.QuotationOut)
def update_line(
    quotation_id: int,
    line_id: int,
    body: schemas.QuotationLineUpdate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        quotations.update_line_quantity(
            db, quotation_id, line_id, current_user["id"], body.quantity, is_admin=current_user["is_admin"]
        )
        quotation = quotations.get_quotation(db, quotation_id)
    except RentalError as e:
        raise http_error(e)
    return quotation_out(quotation)


@router.delete("/{quotation_id:int}/lines/{line_id:int}", response_model=schemas.QuotationOut)
def remove_line(
    quotation_id: int,
    line_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        quotation = quotations.remove_line(
            db, quotation_id, line_id, current_user["id"], is_admin=current_user["is_admin"]
        )
    except RentalError as e:
        raise http_error(e)
    return quotation_out(quotation)


# -----------------------------
# Lifecycle
# -----------------------------


@router.post("/{quotation_id:int}/submit", response_model=schemas.QuotationOut)
def submit_quotation(
    quotation_id: int,
    body: Optional[schemas.QuotationSubmit] = None,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Send the quotation to the vendors. GST is added to the total here."""
    delivery_address = body.delivery_address if body else None
    try:
        quotation = quotations.submit(
            db, quotation_id, current_user["id"], delivery_address, is_admin=current_user["is_admin"]
        )
    except RentalError as e:
        raise http_error(e)
    return quotation_out(quotation)


@router.post("/{quotation_id:int}/cancel", response_model=schemas.QuotationOut)
def cancel_quotation(
    quotation_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        quotation = quotations.cancel(db, quotation_id, current_user["id"], is_admin=current_user["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return quotation_out(quotation)


@router.post("/{quotation_id:int}/approve", response_model=schemas.ApprovalOut)
def approve_quotation(
    quotation_id: int,
    body: Optional[schemas.QuotationApprove] = None,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    """Vendor confirms their lines: creates the order, reservations and invoice in one go."""
    body = body or schemas.QuotationApprove()
    vendor_id = body.vendor_id or current_vendor["id"]
    try:
        order, invoice = orders.approve(
            db,
            quotation_id,
            vendor_id,
            current_vendor["id"],
            is_admin=current_vendor["is_admin"],
            delivery_address=body.delivery_address,
            security_deposit=body.security_deposit,
        )
        quotation = quotations.get_quotation(db, quotation_id)
    except RentalError as e:
        raise http_error(e)
    return {
        "order": order_out(order),
        "invoice": invoice_out(db, invoice),
        "quotation_status": quotation.status,
        "approval_progress": quotations.approval_progress(quotation),
    }


@router.post("/{quotation_id:int}/reject", response_model=schemas.QuotationOut)
def reject_quotation(
    quotation_id: int,
    body: Optional[schemas.QuotationReject] = None,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    body = body or schemas.QuotationReject()
    vendor_id = body.vendor_id or current_vendor["id"]
    try:
        quotation = quotations.reject(
            db, quotation_id, vendor_id, current_vendor["id"], body.reason, is_admin=current_vendor["is_admin"]
        )
    except RentalError as e:
        raise http_error(e)
    return quotation_out(quotation)
