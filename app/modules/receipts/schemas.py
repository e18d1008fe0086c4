from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from app.modules.invoices.models import PaymentMethod


class ReceiptCreate(BaseModel):
    customer_id: UUID
    invoice_ids: List[UUID] = Field(..., min_length=1, description="Facturas pagadas del cliente")

    @field_validator('invoice_ids')
    @classmethod
    def validate_invoice_ids(cls, v):
        if len(set(v)) != len(v):
            raise ValueError('La lista de facturas contiene duplicados')
        return v


class ReceiptAllocationOut(BaseModel):
    id: UUID
    invoice_id: UUID
    invoice_number: Optional[str] = None
    invoice_date: Optional[datetime] = None
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    allocated_amount: Decimal

    class Config:
        from_attributes = True


class ReceiptOut(BaseModel):
    id: UUID
    receipt_number: str
    customer_id: UUID
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    total_amount: Decimal
    is_sent: bool
    sent_date: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReceiptDetail(ReceiptOut):
    allocations: List[ReceiptAllocationOut] = Field(default_factory=list)


class ReceiptList(BaseModel):
    receipts: List[ReceiptOut]
    total: int
    limit: int
    offset: int


class ReceiptSendResult(BaseModel):
    receipt_id: UUID
    receipt_number: str
    is_sent: bool
    sent_date: Optional[datetime] = None
    message_id: Optional[str] = None
