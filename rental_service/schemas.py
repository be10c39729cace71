from pydantic import BaseModel, Field, model_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime

from .pricing import as_utc
from .statuses import (
    ApprovalProgress,
    InvoiceStatus,
    LineApprovalStatus,
    OrderStatus,
    QuotationStatus,
    ReservationStatus,
)


# -----------------------------
# Products
# -----------------------------

class ProductOut(BaseModel):
    id: int
    vendor_id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    quantity_on_hand: int
    price_per_hour: Optional[Decimal] = None
    price_per_day: Optional[Decimal] = None
    price_per_week: Optional[Decimal] = None
    is_published: bool

    model_config = {"from_attributes": True}


class RentalPeriod(BaseModel):
    rental_start: datetime
    rental_end: datetime

    @model_validator(mode="after")
    def _end_after_start(self):
        if as_utc(self.rental_end) <= as_utc(self.rental_start):
            raise ValueError("rental_end must be after rental_start")
        return self


class AvailabilityRequest(RentalPeriod):
    quantity: int = Field(1, gt=0)


class DurationOut(BaseModel):
    hours: Decimal
    days: Decimal
    weeks: Decimal


class PricingOut(BaseModel):
    unit_price: Decimal
    total_price: Decimal
    duration: DurationOut
    pricing_type: str


class AvailabilityOut(BaseModel):
    product_id: int
    is_available: bool
    available_quantity: int
    reserved_quantity: int
    total_quantity: int
    requested_quantity: int
    pricing: Optional[PricingOut] = None


class ReservationOut(BaseModel):
    id: int
    product_id: int
    order_id: int
    quantity: int
    reserved_from: datetime
    reserved_until: datetime
    status: ReservationStatus

    model_config = {"from_attributes": True}


# -----------------------------
# Quotations
# -----------------------------

class QuotationLineCreate(RentalPeriod):
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., gt=0, description="Units to rent")


class QuotationLineUpdate(BaseModel):
    quantity: int = Field(..., gt=0, description="New quantity")


class QuotationSubmit(BaseModel):
    delivery_address: Optional[str] = None


class QuotationApprove(BaseModel):
    vendor_id: Optional[int] = Field(None, gt=0, description="Vendor to act for (admins only)")
    delivery_address: Optional[str] = None
    security_deposit: Decimal = Field(Decimal("0.00"), ge=0)


class QuotationReject(BaseModel):
    vendor_id: Optional[int] = Field(None, gt=0, description="Vendor to act for (admins only)")
    reason: str = ""


class QuotationLineOut(BaseModel):
    id: int
    product_id: int
    vendor_id: int
    quantity: int
    rental_start: datetime
    rental_end: datetime
    pricing_type: Optional[str] = None
    unit_price: Decimal
    subtotal: Decimal
    approval_status: LineApprovalStatus
    order_id: Optional[int] = None

    model_config = {"from_attributes": True}


class QuotationOut(BaseModel):
    id: int
    customer_id: int
    status: QuotationStatus
    approval_progress: ApprovalProgress = ApprovalProgress.NONE
    subtotal: Decimal
    tax_amount: Decimal
    cgst: Decimal = Decimal("0.00")
    sgst: Decimal = Decimal("0.00")
    total_amount: Decimal
    delivery_address: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    lines: List[QuotationLineOut] = []

    model_config = {"from_attributes": True}


# -----------------------------
# Orders
# -----------------------------

class OrderLineOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    rental_start: datetime
    rental_end: datetime
    unit_price: Decimal
    subtotal: Decimal

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    quotation_id: int
    customer_id: int
    vendor_id: int
    status: OrderStatus
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    delivery_address: Optional[str] = None
    picked_up_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    lines: List[OrderLineOut] = []
    reservations: List[ReservationOut] = []

    model_config = {"from_attributes": True}


class OrderReturn(BaseModel):
    returned_at: Optional[datetime] = None


# -----------------------------
# Invoices
# -----------------------------

class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=30)
    transaction_id: Optional[str] = Field(None, max_length=100)


class LateFeeCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)


class PaymentOut(BaseModel):
    id: int
    invoice_id: int
    amount: Decimal
    payment_method: str
    transaction_id: Optional[str] = None
    status: str
    paid_at: datetime

    model_config = {"from_attributes": True}


class InvoiceOut(BaseModel):
    id: int
    order_id: int
    invoice_number: str
    status: InvoiceStatus
    display_status: InvoiceStatus
    subtotal: Decimal
    tax_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    security_deposit: Decimal
    late_fee: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    payments: List[PaymentOut] = []


class ApprovalOut(BaseModel):
    order: OrderOut
    invoice: InvoiceOut
    quotation_status: QuotationStatus
    approval_progress: ApprovalProgress
