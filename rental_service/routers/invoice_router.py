from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Dict

from .. import invoices, schemas
from ..auth import get_current_user, get_current_vendor
from ..database import get_db
from ..errors import http_error
from ..exceptions import RentalError
from ..pricing import gst_split

router = APIRouter(
    prefix="/invoices",
    tags=["Invoices"]
)


def invoice_out(db: Session, invoice) -> dict:
    """Invoice read model: stored fields plus balance, GST halves and display status."""
    return {
        "id": invoice.id,
        "order_id": invoice.order_id,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "display_status": invoices.display_status(invoice),
        "subtotal": invoice.subtotal,
        "tax_amount": invoice.tax_amount,
        **gst_split(invoice.tax_amount),
        "security_deposit": invoice.security_deposit,
        "late_fee": invoice.late_fee,
        "total_amount": invoice.total_amount,
        "amount_paid": invoice.amount_paid,
        "balance": invoices.balance(db, invoice),
        "due_date": invoice.due_date,
        "created_at": invoice.created_at,
        "sent_at": invoice.sent_at,
        "payments": [schemas.PaymentOut.model_validate(p).model_dump() for p in invoices.list_payments(db, invoice.id)],
    }


@router.get("/", response_model=list[schemas.InvoiceOut])
def list_my_invoices(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    found = invoices.list_invoices_for(
        db, current_user["id"], is_admin=current_user["is_admin"], skip=skip, limit=limit
    )
    return [invoice_out(db, i) for i in found]


@router.get("/{invoice_id:int}", response_model=schemas.InvoiceOut)
def get_invoice(
    invoice_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        invoice = invoices.get_invoice_for_caller(db, invoice_id, current_user["id"], is_admin=current_user["is_admin"])
        return invoice_out(db, invoice)
    except RentalError as e:
        raise http_error(e)


@router.post("/{invoice_id:int}/send", response_model=schemas.InvoiceOut)
def send_invoice(
    invoice_id: int,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    try:
        invoice = invoices.send_invoice(db, invoice_id, current_vendor["id"], is_admin=current_vendor["is_admin"])
        return invoice_out(db, invoice)
    except RentalError as e:
        raise http_error(e)


@router.get("/{invoice_id:int}/payments", response_model=list[schemas.PaymentOut])
def list_payments(
    invoice_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Payments against the invoice, newest first."""
    try:
        invoices.get_invoice_for_caller(db, invoice_id, current_user["id"], is_admin=current_user["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return invoices.list_payments(db, invoice_id)


@router.post("/{invoice_id:int}/payments", response_model=schemas.InvoiceOut, status_code=status.HTTP_201_CREATED)
def record_payment(
    invoice_id: int,
    body: schemas.PaymentCreate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Record a payment. Amounts above the open balance are rejected, not clamped."""
    try:
        invoices.record_payment(
            db,
            invoice_id,
            current_user["id"],
            body.amount,
            body.payment_method,
            body.transaction_id,
            is_admin=current_user["is_admin"],
        )
        return invoice_out(db, invoices.get_invoice(db, invoice_id))
    except RentalError as e:
        raise http_error(e)


@router.post("/{invoice_id:int}/late-fee", response_model=schemas.InvoiceOut)
def add_late_fee(
    invoice_id: int,
    body: schemas.LateFeeCreate,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    try:
        invoice = invoices.add_late_fee(
            db, invoice_id, current_vendor["id"], body.amount, is_admin=current_vendor["is_admin"]
        )
        return invoice_out(db, invoice)
    except RentalError as e:
        raise http_error(e)
