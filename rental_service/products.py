from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .availability import get_product
from .database import transaction
from .exceptions import Forbidden, InvalidRequest, InvalidState
from .logger import get_logger
from .models import OrderLine, Product, QuotationLine, Reservation
from .pricing import RateCard, money

logger = get_logger(__name__)

PRICE_FIELDS = ("price_per_hour", "price_per_day", "price_per_week")
EDITABLE_FIELDS = ("name", "description", "category", "quantity_on_hand") + PRICE_FIELDS


def _clean_price(field: str, value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        price = money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidRequest(f"Invalid {field}", field=field) from None
    if price <= 0:
        raise InvalidRequest(f"{field} must be greater than zero", field=field)
    return price


def _clean(product_data: dict) -> dict:
    data = dict(product_data)
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise InvalidRequest("Product name is required")
        data["name"] = name
    if "quantity_on_hand" in data:
        qty = data["quantity_on_hand"]
        if qty is None or int(qty) < 0:
            raise InvalidRequest("Quantity on hand must be >= 0")
        data["quantity_on_hand"] = int(qty)
    for field in PRICE_FIELDS:
        if field in data:
            data[field] = _clean_price(field, data[field])
    return data


def _ensure_owner(product: Product, caller_id: int, is_admin: bool) -> None:
    if product.vendor_id != caller_id and not is_admin:
        raise Forbidden("Only the owning vendor can change this product", product.id)


def create_product(db: Session, vendor_id: int, product_data: dict) -> Product:
    """Create an unpublished product; at least one rate tier must be set."""
    data = _clean({k: v for k, v in product_data.items() if k in EDITABLE_FIELDS})
    if "name" not in data:
        raise InvalidRequest("Product name is required")
    product = Product(vendor_id=vendor_id, is_published=bool(product_data.get("is_published", False)), **data)
    if RateCard.from_product(product).is_empty():
        raise InvalidRequest("At least one of price per hour, day or week is required")

    with transaction(db):
        db.add(product)
    db.refresh(product)
    logger.info("Product %s created by vendor %s", product.id, vendor_id)
    return product


def update_product(db: Session, product_id: int, caller_id: int, update_data: dict, *, is_admin: bool = False) -> Product:
    """Owner edits. Prices only affect lines added afterwards; frozen line prices stay."""
    data = _clean({k: v for k, v in update_data.items() if k in EDITABLE_FIELDS and v is not None})
    with transaction(db, aggregate_id=product_id):
        product = get_product(db, product_id, lock=True)
        _ensure_owner(product, caller_id, is_admin)
        for key, value in data.items():
            setattr(product, key, value)
        if RateCard.from_product(product).is_empty():
            raise InvalidRequest("At least one of price per hour, day or week is required", product_id)
    db.refresh(product)
    logger.info("Product %s updated: %s", product_id, sorted(data))
    return product


def set_published(db: Session, product_id: int, caller_id: int, published: bool, *, is_admin: bool = False) -> Product:
    with transaction(db, aggregate_id=product_id):
        product = get_product(db, product_id, lock=True)
        _ensure_owner(product, caller_id, is_admin)
        product.is_published = published
    db.refresh(product)
    logger.info("Product %s %s", product_id, "published" if published else "unpublished")
    return product


def delete_product(db: Session, product_id: int, caller_id: int, *, is_admin: bool = False) -> None:
    """Remove a product that no quotation, order or reservation has ever referenced."""
    with transaction(db, aggregate_id=product_id):
        product = get_product(db, product_id, lock=True)
        _ensure_owner(product, caller_id, is_admin)
        for model, label in ((Reservation, "reservations"), (OrderLine, "orders"), (QuotationLine, "quotations")):
            if db.query(model.id).filter(model.product_id == product_id).first() is not None:
                raise InvalidState(f"Product {product_id} is referenced by {label} and cannot be deleted", product_id)
        db.delete(product)
    logger.info("Product %s deleted by %s", product_id, caller_id)


def get_products(db: Session, skip: int = 0, limit: int = 100, search: str = None) -> List[Product]:
    query = db.query(Product).filter(Product.is_published.is_(True))
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                Product.name.ilike(search_pattern),
                Product.description.ilike(search_pattern),
                Product.category.ilike(search_pattern)
            )
        )
    return query.order_by(Product.id.asc()).offset(skip).limit(limit).all()


def get_vendor_products(db: Session, vendor_id: int, skip: int = 0, limit: int = 100) -> List[Product]:
    return (
        db.query(Product)
        .filter(Product.vendor_id == vendor_id)
        .order_by(Product.id.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )
