"""Invoices, their line items and the invoice number counter."""

from sqlalchemy import Column, String, Integer, DateTime, Numeric, Text, ForeignKey, UniqueConstraint, CheckConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
import enum
from datetime import datetime

from app.core.database import Base
from app.models.types import JSONType, enum_type


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Statuses from which an invoice can still be paid
PAYABLE_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)


class LineItemType(str, enum.Enum):
    TIER_BASE = "tier_base"
    FEATURE = "feature"
    ADDITIONAL_MENU = "additional_menu"
    ADJUSTMENT = "adjustment"
    TAX = "tax"
    DISCOUNT = "discount"


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "period_start", "period_end", name="uq_invoices_subscription_period"
        ),
        CheckConstraint("period_end > period_start", name="ck_invoices_period_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        UUID(as_uuid=True), ForeignKey("restaurant_subscriptions.id"), nullable=False, index=True
    )
    invoice_number = Column(String, unique=True, index=True, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(
        enum_type(InvoiceStatus, "invoice_status_enum"),
        nullable=False,
        default=InvoiceStatus.PENDING,
    )
    paid_at = Column(DateTime, nullable=True)
    due_date = Column(DateTime, nullable=False)
    payment_method = Column(String, nullable=True)
    payment_metadata = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    subscription = relationship("Subscription", back_populates="invoices")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        order_by="InvoiceLineItem.position",
        cascade="all, delete-orphan",
    )


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(
        UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False)
    item_type = Column(
        enum_type(LineItemType, "invoice_line_item_type_enum"),
        nullable=False,
    )
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    # "metadata" is reserved on declarative classes
    item_metadata = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    invoice = relationship("Invoice", back_populates="line_items")


class InvoiceNumberSequence(Base):
    """Per-year counter behind the human-readable invoice numbers."""

    __tablename__ = "invoice_number_sequences"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)
