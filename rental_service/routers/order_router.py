from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Dict, Optional

from .. import orders, schemas
from ..auth import get_current_admin, get_current_user, get_current_vendor
from ..database import get_db
from ..errors import http_error
from ..exceptions import RentalError

router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


def order_out(order) -> dict:
    return schemas.OrderOut.model_validate(order).model_dump()


@router.get("/", response_model=list[schemas.OrderOut])
def list_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Orders where the caller is the customer or the vendor."""
    return [order_out(o) for o in orders.list_orders_for(db, current_user["id"], skip=skip, limit=limit)]


@router.get("/all", response_model=list[schemas.OrderOut])
def list_all_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return [order_out(o) for o in orders.list_orders_for(db, current_admin["id"], is_admin=True, skip=skip, limit=limit)]


@router.get("/{order_id:int}", response_model=schemas.OrderOut)
def get_order(
    order_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        order = orders.get_order_for_caller(db, order_id, current_user["id"], is_admin=current_user["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return order_out(order)


@router.get("/{order_id:int}/reservations", response_model=list[schemas.ReservationOut])
def get_order_reservations(
    order_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        orders.get_order_for_caller(db, order_id, current_user["id"], is_admin=current_user["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return orders.list_order_reservations(db, order_id)


@router.post("/{order_id:int}/cancel", response_model=schemas.OrderOut)
def cancel_order(
    order_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel before pickup. Reserved stock is free again as soon as this returns."""
    try:
        order = orders.cancel_order(db, order_id, current_user["id"], is_admin=current_user["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return order_out(order)


@router.post("/{order_id:int}/pickup", response_model=schemas.OrderOut)
def pickup_order(
    order_id: int,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    try:
        order = orders.pickup_order(db, order_id, current_vendor["id"], is_admin=current_vendor["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return order_out(order)


@router.post("/{order_id:int}/return", response_model=schemas.OrderOut)
def return_order(
    order_id: int,
    body: Optional[schemas.OrderReturn] = None,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    """Complete the rental. Late returns add a fee to the order's invoice."""
    returned_at = body.returned_at if body else None
    try:
        order = orders.return_order(
            db, order_id, current_vendor["id"], is_admin=current_vendor["is_admin"], returned_at=returned_at
        )
    except RentalError as e:
        raise http_error(e)
    return order_out(order)
