from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from app.modules.invoices.models import InvoiceStatus, PaymentMethod
from app.common.money import to_rate


def _validate_job_ids(v):
    if v is None:
        return v
    if not v:
        raise ValueError('Debe incluir al menos un trabajo en la factura')
    if len(set(v)) != len(v):
        raise ValueError('La lista de trabajos contiene duplicados')
    return v


# Invoice Line Item Schemas
class InvoiceLineItemOut(BaseModel):
    id: UUID
    job_id: UUID
    position: int
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


# Invoice Schemas
class InvoiceCreate(BaseModel):
    customer_id: UUID
    job_ids: List[UUID] = Field(..., min_length=1, description="Trabajos completados sin facturar del cliente")
    vat_rate: Optional[Decimal] = Field(
        None, ge=0, le=1,
        description="Fracción 0-1. Si se omite: tasa reducida si todos son alquiler de contenedor, si no la estándar"
    )
    payment_terms_days: Optional[int] = Field(None, ge=0, le=365)
    notes: Optional[str] = None

    @field_validator('job_ids')
    @classmethod
    def validate_job_ids(cls, v):
        return _validate_job_ids(v)

    @field_validator('vat_rate')
    @classmethod
    def validate_vat_rate(cls, v):
        return to_rate(v) if v is not None else v


class InvoiceUpdate(BaseModel):
    """
    Actualización parcial de una factura en borrador.

    Con ``job_ids`` se reemplaza el conjunto de trabajos completo. Sin él, los
    campos enviados solo sobrescriben si son "no vacíos": IVA > 0, plazo > 0 y
    notas no en blanco (un IVA 0 explícito se ignora salvo ALLOW_ZERO_VAT_UPDATE).
    """
    job_ids: Optional[List[UUID]] = None
    vat_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    payment_terms_days: Optional[int] = Field(None, ge=0, le=365)
    notes: Optional[str] = None

    @field_validator('job_ids')
    @classmethod
    def validate_job_ids(cls, v):
        return _validate_job_ids(v)

    @field_validator('vat_rate')
    @classmethod
    def validate_vat_rate(cls, v):
        return to_rate(v) if v is not None else v


class InvoicePaymentRequest(BaseModel):
    payment_date: date = Field(default_factory=date.today)
    payment_method: PaymentMethod
    payment_reference: Optional[str] = Field(None, max_length=200)


class InvoiceOut(BaseModel):
    id: UUID
    invoice_number: str
    customer_id: UUID
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    # Estado presentado: OVERDUE se deriva de SENT + vencimiento
    status: InvoiceStatus = Field(validation_alias="display_status")
    subtotal: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total: Decimal
    payment_terms_days: int
    due_date: date
    days_until_due: Optional[int] = None
    is_overdue: bool = False
    sent_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    cancelled_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class InvoiceDetail(InvoiceOut):
    line_items: List[InvoiceLineItemOut] = Field(default_factory=list, validation_alias="active_line_items")


class InvoiceList(BaseModel):
    invoices: List[InvoiceOut]
    total: int
    limit: int
    offset: int


class OutstandingTotal(BaseModel):
    total_outstanding: Decimal
    invoice_count: int
