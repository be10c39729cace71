from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from .statuses import (
    InvoiceStatus,
    LineApprovalStatus,
    OrderStatus,
    PaymentStatus,
    QuotationStatus,
    ReservationStatus,
)

Base = declarative_base()

MONEY = Numeric(12, 2)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    category = Column(String(50), index=True)
    quantity_on_hand = Column(Integer, nullable=False, default=0)
    price_per_hour = Column(MONEY, nullable=True)
    price_per_day = Column(MONEY, nullable=True)
    price_per_week = Column(MONEY, nullable=True)
    is_published = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Quotation(Base):
    __tablename__ = "quotations"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=QuotationStatus.DRAFT.value, index=True)
    subtotal = Column(MONEY, nullable=False, default=0)
    tax_amount = Column(MONEY, nullable=False, default=0)
    total_amount = Column(MONEY, nullable=False, default=0)
    delivery_address = Column(Text)
    rejection_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    submitted_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    lines = relationship(
        "QuotationLine",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationLine.id",
    )


class QuotationLine(Base):
    __tablename__ = "quotation_lines"

    id = Column(Integer, primary_key=True, index=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    rental_start = Column(DateTime(timezone=True), nullable=False)
    rental_end = Column(DateTime(timezone=True), nullable=False)
    pricing_type = Column(String(10))
    unit_price = Column(MONEY, nullable=False)
    subtotal = Column(MONEY, nullable=False)
    approval_status = Column(String(10), nullable=False, default=LineApprovalStatus.PENDING.value)
    order_id = Column(Integer, ForeignKey("rental_orders.id"), nullable=True)
    decided_at = Column(DateTime(timezone=True))

    quotation = relationship("Quotation", back_populates="lines")
    product = relationship("Product")


class RentalOrder(Base):
    __tablename__ = "rental_orders"
    __table_args__ = (
        UniqueConstraint("quotation_id", "vendor_id", name="uq_order_quotation_vendor"),
    )

    id = Column(Integer, primary_key=True, index=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.CONFIRMED.value, index=True)
    subtotal = Column(MONEY, nullable=False)
    tax_amount = Column(MONEY, nullable=False)
    total_amount = Column(MONEY, nullable=False)
    delivery_address = Column(Text)
    picked_up_at = Column(DateTime(timezone=True))
    returned_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    lines = relationship("OrderLine", back_populates="order", order_by="OrderLine.id")
    reservations = relationship("Reservation", back_populates="order", order_by="Reservation.id")
    invoice = relationship("Invoice", back_populates="order", uselist=False)


class OrderLine(Base):
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("rental_orders.id"), nullable=False, index=True)
    quotation_line_id = Column(Integer, ForeignKey("quotation_lines.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    rental_start = Column(DateTime(timezone=True), nullable=False)
    rental_end = Column(DateTime(timezone=True), nullable=False)
    unit_price = Column(MONEY, nullable=False)
    subtotal = Column(MONEY, nullable=False)

    order = relationship("RentalOrder", back_populates="lines")
    product = relationship("Product")


class Reservation(Base):
    """An inventory hold for one order line.

    Stock is never decremented; availability is quantity_on_hand minus the
    sum of overlapping RESERVED/ACTIVE holds. Rows are never deleted:
    cancellation and return flip them to RELEASED.
    """

    __tablename__ = "inventory_reservations"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("rental_orders.id"), nullable=False, index=True)
    order_line_id = Column(Integer, ForeignKey("order_lines.id"), nullable=False, unique=True)
    quantity = Column(Integer, nullable=False)
    reserved_from = Column(DateTime(timezone=True), nullable=False, index=True)
    reserved_until = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(10), nullable=False, default=ReservationStatus.RESERVED.value, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    order = relationship("RentalOrder", back_populates="reservations")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("rental_orders.id"), nullable=False, unique=True)
    invoice_number = Column(String(20), nullable=False, unique=True, index=True)
    status = Column(String(10), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)
    subtotal = Column(MONEY, nullable=False)
    tax_amount = Column(MONEY, nullable=False)
    security_deposit = Column(MONEY, nullable=False, default=0)
    late_fee = Column(MONEY, nullable=False, default=0)
    total_amount = Column(MONEY, nullable=False)
    amount_paid = Column(MONEY, nullable=False, default=0)
    due_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    sent_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    order = relationship("RentalOrder", back_populates="invoice")
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    payment_method = Column(String(30), nullable=False)
    transaction_id = Column(String(100))
    status = Column(String(20), nullable=False, default=PaymentStatus.COMPLETED.value)
    paid_at = Column(DateTime(timezone=True), nullable=False)

    invoice = relationship("Invoice", back_populates="payments")


class InvoiceSequence(Base):
    """Last invoice number handed out per calendar year."""

    __tablename__ = "invoice_sequences"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)
