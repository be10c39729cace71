import datetime as dt

from fastapi import APIRouter, Depends, Form, Query, Response
from sqlalchemy.orm import Session
from typing import Optional, Dict
from decimal import Decimal

from .. import availability, products
from ..auth import get_current_vendor
from ..database import get_db
from ..errors import http_error
from ..exceptions import InvalidRequest, NotFound, RentalError
from ..pricing import RentalInterval, as_utc
from ..schemas import AvailabilityOut, AvailabilityRequest, ProductOut, ReservationOut

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("/", response_model=ProductOut, status_code=201)
def create_product(
    name: str = Form(..., description="**Product name** (required)"),
    quantity_on_hand: int = Form(..., ge=0, description="**Units owned** (must be >= 0)"),
    description: Optional[str] = Form(None, description="**Description** (optional)"),
    category: Optional[str] = Form(None, description="**Category** (optional)"),
    price_per_hour: Optional[Decimal] = Form(None, gt=0, description="**Hourly rate** (optional)"),
    price_per_day: Optional[Decimal] = Form(None, gt=0, description="**Daily rate** (optional)"),
    price_per_week: Optional[Decimal] = Form(None, gt=0, description="**Weekly rate** (optional)"),
    is_published: bool = Form(False, description="**Publish** right away"),
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db)
):
    product_data = {
        "name": name,
        "description": description,
        "category": category,
        "quantity_on_hand": quantity_on_hand,
        "price_per_hour": price_per_hour,
        "price_per_day": price_per_day,
        "price_per_week": price_per_week,
        "is_published": is_published,
    }
    try:
        return products.create_product(db, current_vendor["id"], product_data)
    except RentalError as e:
        raise http_error(e)


@router.get("/", response_model=list[ProductOut])
def list_products(
    skip: int = Query(0, ge=0, description="**Skip** number of products"),
    limit: int = Query(100, ge=1, le=1000, description="**Limit** number of products"),
    search: Optional[str] = Query(None, description="**Search** in name, description, or category"),
    db: Session = Depends(get_db)
):
    return products.get_products(db, skip=skip, limit=limit, search=search)


@router.get("/mine", response_model=list[ProductOut])
def list_my_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db)
):
    return products.get_vendor_products(db, current_vendor["id"], skip=skip, limit=limit)


@router.get("/{product_id:int}", response_model=ProductOut)
def view_product(
    product_id: int,
    db: Session = Depends(get_db)
):
    try:
        product = availability.get_product(db, product_id)
    except RentalError as e:
        raise http_error(e)
    if not product.is_published:
        raise http_error(NotFound(f"Product {product_id} not found", product_id))
    return product


@router.patch("/{product_id:int}", response_model=ProductOut)
def update_product(
    product_id: int,
    name: Optional[str] = Form(None, description="**New name** (optional)"),
    description: Optional[str] = Form(None, description="**New description** (optional)"),
    category: Optional[str] = Form(None, description="**New category** (optional)"),
    quantity_on_hand: Optional[int] = Form(None, ge=0, description="**New units owned** (optional)"),
    price_per_hour: Optional[Decimal] = Form(None, gt=0, description="**New hourly rate** (optional)"),
    price_per_day: Optional[Decimal] = Form(None, gt=0, description="**New daily rate** (optional)"),
    price_per_week: Optional[Decimal] = Form(None, gt=0, description="**New weekly rate** (optional)"),
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db)
):
    update_data = {
        "name": name,
        "description": description,
        "category": category,
        "quantity_on_hand": quantity_on_hand,
        "price_per_hour": price_per_hour,
        "price_per_day": price_per_day,
        "price_per_week": price_per_week,
    }
    try:
        return products.update_product(
            db, product_id, current_vendor["id"], update_data, is_admin=current_vendor["is_admin"]
        )
    except RentalError as e:
        raise http_error(e)


@router.post("/{product_id:int}/publish", response_model=ProductOut)
def publish_product(
    product_id: int,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db)
):
    try:
        return products.set_published(db, product_id, current_vendor["id"], True, is_admin=current_vendor["is_admin"])
    except RentalError as e:
        raise http_error(e)


@router.post("/{product_id:int}/unpublish", response_model=ProductOut)
def unpublish_product(
    product_id: int,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db)
):
    try:
        return products.set_published(db, product_id, current_vendor["id"], False, is_admin=current_vendor["is_admin"])
    except RentalError as e:
        raise http_error(e)


@router.delete("/{product_id:int}", status_code=204)
def delete_product(
    product_id: int,
    current_vendor: Dict = Depends(get_current_vendor),
    db: Session = Depends(get_db)
):
    try:
        products.delete_product(db, product_id, current_vendor["id"], is_admin=current_vendor["is_admin"])
    except RentalError as e:
        raise http_error(e)
    return Response(status_code=204)


# -----------------------------
# Availability and reservations
# -----------------------------


@router.post("/{product_id:int}/check-availability", response_model=AvailabilityOut)
def check_availability(
    product_id: int,
    body: AvailabilityRequest,
    db: Session = Depends(get_db),
):
    """Free quantity for the requested dates plus the price of the rental.

    Advisory only: nothing is held until a vendor approves a quotation.
    """
    try:
        if as_utc(body.rental_start) < dt.datetime.now(dt.timezone.utc):
            raise InvalidRequest("Rental start date cannot be in the past", product_id)
        interval = RentalInterval(body.rental_start, body.rental_end)
        return availability.quote_availability(db, product_id, interval, body.quantity)
    except RentalError as e:
        raise http_error(e)


@router.get("/{product_id:int}/reservations", response_model=list[ReservationOut])
def list_product_reservations(
    product_id: int,
    db: Session = Depends(get_db),
):
    try:
        return availability.list_reservations(db, product_id)
    except RentalError as e:
        raise http_error(e)
