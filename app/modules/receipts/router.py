from fastapi import APIRouter, Depends, Query, Response, status
from typing import Annotated, Optional
from uuid import UUID

from app.dependencies.dbDependecies import db_dependency
from app.dependencies.userDependencies import principal_dependency
from app.modules.receipts.service import ReceiptService
from app.modules.receipts.schemas import ReceiptCreate, ReceiptDetail, ReceiptList, ReceiptSendResult

receipts_router = APIRouter(prefix="/receipts", tags=["Receipts"])


def get_receipt_service(db: db_dependency) -> ReceiptService:
    return ReceiptService(db)


receipt_service_dependency = Annotated[ReceiptService, Depends(get_receipt_service)]


@receipts_router.post("/", response_model=ReceiptDetail, status_code=status.HTTP_201_CREATED)
def create_receipt(
    receipt_data: ReceiptCreate,
    service: receipt_service_dependency,
    user_id: principal_dependency
):
    """
    Crear un recibo a partir de facturas pagadas del cliente

    Cada factura se asigna por su total y solo puede figurar en un recibo vigente.
    """
    return service.create_receipt(receipt_data, user_id)


@receipts_router.get("/", response_model=ReceiptList)
def list_receipts(
    service: receipt_service_dependency,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    customer_id: Optional[UUID] = Query(None, description="Filtrar por cliente")
):
    return service.get_receipts(limit=limit, offset=offset, customer_id=customer_id)


@receipts_router.get("/{receipt_id}", response_model=ReceiptDetail)
def get_receipt(receipt_id: UUID, service: receipt_service_dependency):
    return service.get_receipt(receipt_id)


@receipts_router.get("/{receipt_id}/document")
def download_receipt_document(receipt_id: UUID, service: receipt_service_dependency):
    """Descargar el recibo en PDF"""
    receipt = service.get_receipt(receipt_id)
    content = service.render_receipt_document(receipt_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{service.document_filename(receipt)}"'}
    )


@receipts_router.post("/{receipt_id}/send", response_model=ReceiptSendResult)
def send_receipt(receipt_id: UUID, service: receipt_service_dependency):
    """
    Enviar el recibo por email al cliente

    Solo se marca como enviado tras confirmación del servidor de correo.
    """
    return service.send_receipt(receipt_id)


@receipts_router.delete("/{receipt_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_receipt(receipt_id: UUID, service: receipt_service_dependency):
    """
    Eliminar (baja lógica) un recibo; las facturas no se modifican
    """
    service.delete_receipt(receipt_id)
