from fastapi import APIRouter, Query, status
from typing import Optional
from uuid import UUID

from app.dependencies.dbDependecies import db_dependency
from app.dependencies.userDependencies import principal_dependency
from app.modules.invoices.models import InvoiceStatus
from app.modules.invoices.service import InvoiceService
from app.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoicePaymentRequest,
    InvoiceOut, InvoiceDetail, InvoiceList, OutstandingTotal
)

# Router principal del módulo de facturas
router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("/", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(invoice_data: InvoiceCreate, db: db_dependency, user_id: principal_dependency):
    """
    Crear una factura en borrador

    Todos los trabajos deben estar completados, sin facturar y pertenecer al
    cliente. Si no se indica IVA se usa la tasa reducida cuando todos los
    trabajos son alquiler de contenedor y la estándar en otro caso.
    """
    service = InvoiceService(db)
    return service.create_invoice(invoice_data, user_id)


@router.get("/", response_model=InvoiceList)
def list_invoices(
    db: db_dependency,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    customer_id: Optional[UUID] = Query(None, description="Filtrar por cliente"),
    status: Optional[InvoiceStatus] = Query(None, description="draft, sent, delivered, paid, overdue, cancelled")
):
    service = InvoiceService(db)
    return service.get_invoices(limit=limit, offset=offset, customer_id=customer_id, status=status)


@router.get("/outstanding", response_model=OutstandingTotal)
def get_total_outstanding(db: db_dependency, customer_id: Optional[UUID] = None):
    """Total pendiente de cobro (facturas enviadas, vencidas o entregadas)"""
    service = InvoiceService(db)
    return service.get_total_outstanding(customer_id)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(invoice_id: UUID, db: db_dependency):
    """
    Obtener detalles completos de una factura
    """
    service = InvoiceService(db)
    return service.get_invoice(invoice_id)


@router.patch("/{invoice_id}", response_model=InvoiceDetail)
def update_invoice(invoice_id: UUID, invoice_update: InvoiceUpdate, db: db_dependency):
    """
    Actualizar una factura (solo si está en estado draft)

    Un IVA o plazo en 0 y notas vacías se ignoran.
    """
    service = InvoiceService(db)
    return service.update_invoice(invoice_id, invoice_update)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(invoice_id: UUID, db: db_dependency):
    """
    Eliminar una factura en borrador; sus trabajos quedan disponibles para facturar
    """
    service = InvoiceService(db)
    service.delete_invoice(invoice_id)


@router.post("/{invoice_id}/send", response_model=InvoiceOut)
def mark_invoice_as_sent(invoice_id: UUID, db: db_dependency):
    service = InvoiceService(db)
    return service.mark_as_sent(invoice_id)


@router.post("/{invoice_id}/deliver", response_model=InvoiceOut)
def mark_invoice_as_delivered(invoice_id: UUID, db: db_dependency):
    service = InvoiceService(db)
    return service.mark_as_delivered(invoice_id)


@router.post("/{invoice_id}/pay", response_model=InvoiceOut)
def mark_invoice_as_paid(invoice_id: UUID, payment: InvoicePaymentRequest, db: db_dependency):
    """
    Registrar el pago de una factura

    La fecha de pago no puede ser anterior a la fecha de envío.
    """
    service = InvoiceService(db)
    return service.mark_as_paid(invoice_id, payment)


@router.post("/{invoice_id}/cancel", response_model=InvoiceOut)
def cancel_invoice(invoice_id: UUID, db: db_dependency):
    """
    Anular una factura (no permitido si está pagada)
    """
    service = InvoiceService(db)
    return service.cancel_invoice(invoice_id)
