from fastapi import HTTPException
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
from decimal import Decimal
from typing import Dict, Optional, Sequence
from uuid import UUID
import logging

from app.common.exceptions import NotFoundError, ValidationFailedError, UnexpectedError
from app.common.guards import ensure_invoices_eligible_for_receipt, ensure_allocation_within_total
from app.common.mixins import utcnow
from app.common.money import to_money
from app.core.config import settings
from app.modules.customers.models import Customer
from app.modules.invoices.models import Invoice
from app.modules.receipts.models import Receipt, ReceiptInvoice
from app.modules.receipts.schemas import ReceiptCreate, ReceiptList, ReceiptOut, ReceiptSendResult
from app.modules.numbering.models import DocumentKind
from app.modules.numbering.service import (
    DocumentNumberService, DocumentNumberCollision, run_with_number_retry, is_number_collision
)
from app.modules.documents.renderer import DocumentRenderer
from app.modules.email.service import EmailService, EmailMessage

logger = logging.getLogger(__name__)


class ReceiptService:
    """
    Recibos: agrupan facturas pagadas de un cliente.

    El renderizador de documentos y el servicio de correo se inyectan para
    poder sustituirlos (por ejemplo en tests).
    """

    def __init__(
        self,
        db: Session,
        renderer: Optional[DocumentRenderer] = None,
        email_service: Optional[EmailService] = None
    ):
        self.db = db
        self.renderer = renderer or DocumentRenderer()
        self.email_service = email_service or EmailService()
        self.numbers = DocumentNumberService(db)

    # ===== CONSULTAS =====

    def _get_receipt(self, receipt_id: UUID, for_update: bool = False) -> Receipt:
        query = self.db.query(Receipt).filter(
            Receipt.id == receipt_id,
            Receipt.is_deleted == False
        )
        if for_update:
            query = query.with_for_update()
        receipt = query.first()
        if not receipt:
            raise NotFoundError("Recibo", receipt_id)
        return receipt

    def get_receipt(self, receipt_id: UUID) -> Receipt:
        return self._get_receipt(receipt_id)

    def get_receipts(self, limit: int = 100, offset: int = 0, customer_id: Optional[UUID] = None) -> ReceiptList:
        query = self.db.query(Receipt).filter(Receipt.is_deleted == False)
        if customer_id:
            query = query.filter(Receipt.customer_id == customer_id)

        total = query.count()
        receipts = query.order_by(Receipt.created_at.desc()).offset(offset).limit(limit).all()
        return ReceiptList(
            receipts=[ReceiptOut.model_validate(r) for r in receipts],
            total=total,
            limit=limit,
            offset=offset
        )

    def get_allocated_amounts(self, invoice_ids: Sequence[UUID]) -> Dict[UUID, Decimal]:
        """Importe ya asignado a cada factura en recibos no eliminados"""
        rows = self.db.query(
            ReceiptInvoice.invoice_id,
            func.coalesce(func.sum(ReceiptInvoice.allocated_amount), 0)
        ).join(Receipt, Receipt.id == ReceiptInvoice.receipt_id).filter(
            ReceiptInvoice.invoice_id.in_(list(invoice_ids)),
            Receipt.is_deleted == False
        ).group_by(ReceiptInvoice.invoice_id).all()
        return {invoice_id: to_money(Decimal(str(amount))) for invoice_id, amount in rows}

    # ===== OPERACIONES =====

    def create_receipt(self, receipt_data: ReceiptCreate, user_id: Optional[UUID] = None) -> Receipt:
        """
        Crear recibo con una asignación por factura pagada (importe = total de la factura).

        Recibo, asignaciones y número se confirman juntos; una colisión de número
        con otra creación concurrente reintenta la operación completa.
        """
        return run_with_number_retry(
            lambda: self._create_receipt_once(receipt_data, user_id),
            DocumentKind.RECEIPT
        )

    def _create_receipt_once(self, receipt_data: ReceiptCreate, user_id: Optional[UUID]) -> Receipt:
        try:
            customer = self.db.query(Customer).filter(
                Customer.id == receipt_data.customer_id,
                Customer.is_deleted == False
            ).first()
            if not customer:
                raise NotFoundError("Cliente", receipt_data.customer_id)

            loaded = self.db.query(Invoice).filter(
                Invoice.id.in_(receipt_data.invoice_ids),
                Invoice.is_deleted == False
            ).with_for_update().all()
            invoices = ensure_invoices_eligible_for_receipt(receipt_data.invoice_ids, loaded, customer.id)

            allocated = self.get_allocated_amounts(receipt_data.invoice_ids)
            for invoice in invoices:
                ensure_allocation_within_total(invoice, allocated.get(invoice.id, Decimal("0.00")), invoice.total)

            now = utcnow()
            receipt = Receipt(
                customer_id=customer.id,
                created_by=user_id,
                receipt_number=self.numbers.next_number(DocumentKind.RECEIPT, now.year),
                is_sent=False,
                created_at=now,
                updated_at=now
            )
            for invoice in invoices:
                receipt.allocations.append(ReceiptInvoice(
                    invoice_id=invoice.id,
                    allocated_amount=to_money(invoice.total)
                ))
            receipt.total_amount = to_money(sum(
                (a.allocated_amount for a in receipt.allocations), Decimal("0.00")
            ))

            self.db.add(receipt)
            self.db.commit()
            self.db.refresh(receipt)

            logger.info(
                f"Receipt {receipt.receipt_number} created for customer {customer.id}: "
                f"{len(invoices)} invoices, total {receipt.total_amount}"
            )
            return receipt

        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if is_number_collision(e, DocumentKind.RECEIPT):
                raise DocumentNumberCollision(DocumentKind.RECEIPT) from e
            logger.error(f"Integrity error creating receipt: {e}", exc_info=True)
            raise UnexpectedError() from e
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating receipt: {e}", exc_info=True)
            raise UnexpectedError() from e

    def delete_receipt(self, receipt_id: UUID) -> None:
        """Baja lógica; las facturas asignadas no se modifican"""
        try:
            receipt = self._get_receipt(receipt_id, for_update=True)
            receipt.soft_delete()
            self.db.commit()
            logger.info(f"Receipt {receipt.receipt_number} deleted")

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error deleting receipt {receipt_id}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def render_receipt_document(self, receipt_id: UUID) -> bytes:
        return self.renderer.render_receipt(self.get_receipt(receipt_id))

    def document_filename(self, receipt: Receipt) -> str:
        return f"{receipt.receipt_number}.pdf"

    def send_receipt(self, receipt_id: UUID) -> ReceiptSendResult:
        """
        Renderizar y enviar el recibo por correo al cliente.

        ``is_sent``/``sent_date`` solo se actualizan tras un envío confirmado; si
        el render o el correo fallan el recibo queda igual y el error se propaga.
        """
        receipt = self.get_receipt(receipt_id)
        customer = receipt.customer
        if not customer or not customer.email:
            raise ValidationFailedError("El cliente no tiene email", field="email", ids=[receipt.customer_id])

        document = self.renderer.render_receipt(receipt)
        html_body = self.email_service.render_template("receipt_email.html", {
            "company_name": settings.EMAIL_FROM_NAME,
            "customer_name": customer.name,
            "receipt_number": receipt.receipt_number,
            "total_amount": receipt.total_amount,
            "allocations": receipt.allocations,
        })
        message = EmailMessage(
            to_address=customer.email,
            to_name=customer.name,
            subject=f"Receipt {receipt.receipt_number} - {settings.EMAIL_FROM_NAME}",
            html_body=html_body,
            attachment=document,
            attachment_filename=self.document_filename(receipt)
        )

        try:
            result = self.email_service.send_with_retry(message)
        except HTTPException:
            logger.warning(f"Receipt {receipt_id} was not sent; state left unchanged")
            raise

        try:
            receipt = self._get_receipt(receipt_id, for_update=True)
            receipt.is_sent = True
            receipt.sent_date = utcnow()
            self.db.commit()
            self.db.refresh(receipt)

            logger.info(f"Receipt {receipt.receipt_number} sent to {customer.email} ({result.message_id})")
            return ReceiptSendResult(
                receipt_id=receipt.id,
                receipt_number=receipt.receipt_number,
                is_sent=receipt.is_sent,
                sent_date=receipt.sent_date,
                message_id=result.message_id
            )

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Receipt {receipt_id} emailed but could not be marked as sent: {e}", exc_info=True)
            raise UnexpectedError() from e
