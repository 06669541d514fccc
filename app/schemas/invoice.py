"""Pydantic schemas for invoices."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field, model_validator

from app.models.invoice import InvoiceStatus, LineItemType


class GenerateInvoiceRequest(BaseModel):
    period_start: datetime
    period_end: datetime

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self


class MarkInvoicePaidRequest(BaseModel):
    payment_method: str = Field(..., min_length=1, max_length=100)
    metadata: Optional[Dict[str, Any]] = None


class InvoiceLineItemOut(BaseModel):
    id: UUID
    description: str
    item_type: LineItemType
    quantity: int
    unit_price: float
    total: float
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="item_metadata")

    class Config:
        from_attributes = True


class InvoiceOut(BaseModel):
    """Invoice with its line items."""
    id: UUID
    subscription_id: UUID
    invoice_number: str
    period_start: datetime
    period_end: datetime
    subtotal: float
    tax: float
    total: float
    status: InvoiceStatus
    paid_at: Optional[datetime]
    due_date: datetime
    payment_method: Optional[str]
    payment_metadata: Optional[Dict[str, Any]]
    created_at: datetime
    line_items: List[InvoiceLineItemOut]

    class Config:
        from_attributes = True


class MarkOverdueOut(BaseModel):
    updated: int
