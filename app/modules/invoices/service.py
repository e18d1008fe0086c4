from fastapi import HTTPException
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID
from datetime import date, timedelta
import logging

from app.common.exceptions import (
    NotFoundError, ValidationFailedError, ConflictingUniqueKeyError, UnexpectedError
)
from app.common.guards import (
    ensure_jobs_eligible_for_invoicing, ensure_invoice_mutable, ensure_invoice_deletable,
    ensure_invoice_sendable, ensure_invoice_deliverable, ensure_invoice_payable,
    ensure_invoice_cancellable
)
from app.common.mixins import utcnow
from app.common.money import calculate_totals, to_money
from app.core.config import settings
from app.modules.customers.models import Customer
from app.modules.jobs.models import Job, JobType
from app.modules.jobs.service import JobService
from app.modules.invoices.models import Invoice, InvoiceLineItem, InvoiceStatus
from app.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoicePaymentRequest, InvoiceList, InvoiceOut, OutstandingTotal
)
from app.modules.numbering.models import DocumentKind
from app.modules.numbering.service import (
    DocumentNumberService, DocumentNumberCollision, run_with_number_retry,
    is_number_collision, is_unique_violation
)

logger = logging.getLogger(__name__)

LINE_ITEM_JOB_MARKERS = ("uq_invoice_line_items_job_active", "invoice_line_items.job_id")

# Estados que cuentan como pendientes de cobro
OUTSTANDING_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.DELIVERED)


def default_vat_rate(jobs: Sequence[Job]) -> Decimal:
    """Tasa reducida si todos los trabajos son alquiler de contenedor; si no, la estándar"""
    if jobs and all(job.type == JobType.SKIP_RENTAL for job in jobs):
        return settings.VAT_RATE_REDUCED
    return settings.VAT_RATE_STANDARD


def compute_due_date(created: date, payment_terms_days: int) -> date:
    return created + timedelta(days=payment_terms_days)


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db
        self.job_service = JobService(db)
        self.numbers = DocumentNumberService(db)

    # ===== CONSULTAS =====

    def _get_customer(self, customer_id: UUID) -> Customer:
        customer = self.db.query(Customer).filter(
            Customer.id == customer_id,
            Customer.is_deleted == False
        ).first()
        if not customer:
            raise NotFoundError("Cliente", customer_id)
        return customer

    def _get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Invoice:
        query = self.db.query(Invoice).filter(
            Invoice.id == invoice_id,
            Invoice.is_deleted == False
        )
        if for_update:
            query = query.with_for_update()
        invoice = query.first()
        if not invoice:
            raise NotFoundError("Factura", invoice_id)
        return invoice

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self._get_invoice(invoice_id)

    def get_invoices(
        self,
        limit: int = 100,
        offset: int = 0,
        customer_id: Optional[UUID] = None,
        status: Optional[InvoiceStatus] = None,
        today: Optional[date] = None
    ) -> InvoiceList:
        """Listar facturas; el filtro OVERDUE se evalúa sobre el estado derivado"""
        today = today or utcnow().date()
        query = self.db.query(Invoice).filter(Invoice.is_deleted == False)

        if customer_id:
            query = query.filter(Invoice.customer_id == customer_id)
        if status == InvoiceStatus.OVERDUE:
            query = query.filter(Invoice.status == InvoiceStatus.SENT, Invoice.due_date < today)
        elif status == InvoiceStatus.SENT:
            query = query.filter(Invoice.status == InvoiceStatus.SENT, Invoice.due_date >= today)
        elif status:
            query = query.filter(Invoice.status == status)

        total = query.count()
        invoices = query.order_by(Invoice.created_at.desc()).offset(offset).limit(limit).all()
        return InvoiceList(
            invoices=[InvoiceOut.model_validate(i) for i in invoices],
            total=total,
            limit=limit,
            offset=offset
        )

    def get_total_outstanding(self, customer_id: Optional[UUID] = None) -> OutstandingTotal:
        """Suma del total de facturas enviadas o entregadas (incluye vencidas)"""
        query = self.db.query(
            func.coalesce(func.sum(Invoice.total), 0),
            func.count(Invoice.id)
        ).filter(
            Invoice.is_deleted == False,
            Invoice.status.in_(OUTSTANDING_STATUSES)
        )
        if customer_id:
            query = query.filter(Invoice.customer_id == customer_id)

        amount, count = query.one()
        return OutstandingTotal(total_outstanding=to_money(Decimal(str(amount))), invoice_count=count)

    # ===== HELPERS =====

    def _load_jobs(self, job_ids: Sequence[UUID]) -> List[Job]:
        return self.db.query(Job).filter(
            Job.id.in_(list(job_ids)),
            Job.is_deleted == False
        ).with_for_update().all()

    def _validate_job_count(self, job_ids: Sequence[UUID]) -> None:
        if len(job_ids) > settings.MAX_JOBS_PER_INVOICE:
            raise ValidationFailedError(
                f"Una factura admite como máximo {settings.MAX_JOBS_PER_INVOICE} trabajos",
                field="job_ids"
            )

    def _add_line_items(self, invoice: Invoice, jobs: Sequence[Job]) -> None:
        """Una línea por trabajo con el precio congelado al momento de facturar"""
        for position, job in enumerate(jobs, start=1):
            price = to_money(job.price)
            invoice.line_items.append(InvoiceLineItem(
                job_id=job.id,
                position=position,
                description=job.invoice_description(),
                quantity=1,
                unit_price=price,
                line_total=price
            ))

    def _recalculate_totals(self, invoice: Invoice) -> None:
        totals = calculate_totals([li.line_total for li in invoice.active_line_items], invoice.vat_rate)
        invoice.subtotal = totals.subtotal
        invoice.vat_amount = totals.vat_amount
        invoice.total = totals.total

    def _translate_integrity_error(self, e: IntegrityError, action: str):
        if is_number_collision(e, DocumentKind.INVOICE):
            raise DocumentNumberCollision(DocumentKind.INVOICE) from e
        if is_unique_violation(e, LINE_ITEM_JOB_MARKERS):
            logger.warning(f"Concurrent invoicing detected while {action}: {e.orig}")
            raise ConflictingUniqueKeyError(
                "Uno de los trabajos fue facturado por otra operación en curso",
                key="job_id"
            ) from e
        logger.error(f"Integrity error {action}: {e}", exc_info=True)
        raise UnexpectedError() from e

    # ===== OPERACIONES =====

    def create_invoice(self, invoice_data: InvoiceCreate, user_id: Optional[UUID] = None) -> Invoice:
        """
        Crear factura en borrador a partir de trabajos completados sin facturar.

        Número, líneas, totales y vínculo de los trabajos se confirman en una sola
        transacción; si el número colisiona con otra creación concurrente se
        reintenta la operación completa.
        """
        return run_with_number_retry(
            lambda: self._create_invoice_once(invoice_data, user_id),
            DocumentKind.INVOICE
        )

    def _create_invoice_once(self, invoice_data: InvoiceCreate, user_id: Optional[UUID]) -> Invoice:
        try:
            customer = self._get_customer(invoice_data.customer_id)
            self._validate_job_count(invoice_data.job_ids)

            jobs = ensure_jobs_eligible_for_invoicing(
                invoice_data.job_ids, self._load_jobs(invoice_data.job_ids), customer.id
            )

            vat_rate = invoice_data.vat_rate if invoice_data.vat_rate is not None else default_vat_rate(jobs)
            terms = (
                invoice_data.payment_terms_days
                if invoice_data.payment_terms_days is not None
                else settings.DEFAULT_PAYMENT_TERMS_DAYS
            )
            now = utcnow()

            invoice = Invoice(
                customer_id=customer.id,
                created_by=user_id,
                invoice_number=self.numbers.next_number(DocumentKind.INVOICE, now.year),
                status=InvoiceStatus.DRAFT,
                vat_rate=vat_rate,
                payment_terms_days=terms,
                due_date=compute_due_date(now.date(), terms),
                notes=invoice_data.notes,
                created_at=now,
                updated_at=now
            )
            self._add_line_items(invoice, jobs)
            self._recalculate_totals(invoice)
            self.db.add(invoice)
            self.db.flush()

            self.job_service.mark_invoiced(invoice_data.job_ids, invoice.id, customer.id, commit=False)

            self.db.commit()
            self.db.refresh(invoice)

            logger.info(
                f"Invoice {invoice.invoice_number} created for customer {customer.id}: "
                f"{len(jobs)} jobs, total {invoice.total}"
            )
            return invoice

        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            self._translate_integrity_error(e, "creating invoice")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating invoice: {e}", exc_info=True)
            raise UnexpectedError() from e

    def update_invoice(self, invoice_id: UUID, invoice_update: InvoiceUpdate) -> Invoice:
        """
        Actualizar una factura en borrador.

        Con ``job_ids`` se desvinculan los trabajos actuales, se descartan sus
        líneas y se valida y vincula el nuevo conjunto como en la creación.
        Sin ``job_ids`` el IVA y el plazo solo se sobrescriben si son > 0 y las
        notas si no están en blanco.
        """
        try:
            invoice = self._get_invoice(invoice_id, for_update=True)
            ensure_invoice_mutable(invoice)
            fields = invoice_update.model_fields_set

            if "job_ids" in fields and invoice_update.job_ids:
                self._replace_jobs(invoice, invoice_update.job_ids)
                if "vat_rate" in fields and invoice_update.vat_rate is not None:
                    invoice.vat_rate = invoice_update.vat_rate
            else:
                self._apply_patch(invoice, invoice_update)

            self._recalculate_totals(invoice)
            invoice.updated_at = utcnow()

            self.db.commit()
            self.db.refresh(invoice)

            logger.info(f"Invoice {invoice.invoice_number} updated ({', '.join(sorted(fields)) or 'no changes'})")
            return invoice

        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            self._translate_integrity_error(e, f"updating invoice {invoice_id}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating invoice {invoice_id}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def _replace_jobs(self, invoice: Invoice, job_ids: Sequence[UUID]) -> None:
        self._validate_job_count(job_ids)

        old_job_ids = [li.job_id for li in invoice.active_line_items]
        self.job_service.remove_from_invoice(old_job_ids, commit=False)
        for line_item in list(invoice.line_items):
            invoice.line_items.remove(line_item)
        # Las líneas viejas se borran antes de insertar las nuevas (índice único por trabajo)
        self.db.flush()

        jobs = ensure_jobs_eligible_for_invoicing(job_ids, self._load_jobs(job_ids), invoice.customer_id)
        self._add_line_items(invoice, jobs)
        self.db.flush()
        self.job_service.mark_invoiced(job_ids, invoice.id, invoice.customer_id, commit=False)

    def _apply_patch(self, invoice: Invoice, invoice_update: InvoiceUpdate) -> None:
        fields = invoice_update.model_fields_set

        if "vat_rate" in fields and invoice_update.vat_rate is not None:
            if invoice_update.vat_rate > 0 or settings.ALLOW_ZERO_VAT_UPDATE:
                invoice.vat_rate = invoice_update.vat_rate
            else:
                logger.info(f"Ignoring zero VAT rate update on invoice {invoice.invoice_number}")

        if "payment_terms_days" in fields and invoice_update.payment_terms_days:
            invoice.payment_terms_days = invoice_update.payment_terms_days
            invoice.due_date = compute_due_date(invoice.created_at.date(), invoice.payment_terms_days)

        if "notes" in fields and invoice_update.notes and invoice_update.notes.strip():
            invoice.notes = invoice_update.notes

    def delete_invoice(self, invoice_id: UUID) -> None:
        """Baja lógica de un borrador junto con sus líneas; libera los trabajos"""
        try:
            invoice = self._get_invoice(invoice_id, for_update=True)
            ensure_invoice_deletable(invoice)

            job_ids = [li.job_id for li in invoice.active_line_items]
            for line_item in invoice.active_line_items:
                line_item.soft_delete()
            invoice.soft_delete()
            self.db.flush()

            self.job_service.remove_from_invoice(job_ids, commit=False)
            self.db.commit()

            logger.info(f"Invoice {invoice.invoice_number} deleted, {len(job_ids)} jobs released")

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error deleting invoice {invoice_id}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def _change_status(self, invoice_id: UUID, action: str, apply) -> Invoice:
        """Carga con bloqueo, aplica la transición y confirma"""
        try:
            invoice = self._get_invoice(invoice_id, for_update=True)
            previous = invoice.display_status
            apply(invoice)
            invoice.updated_at = utcnow()

            self.db.commit()
            self.db.refresh(invoice)

            logger.info(f"Invoice {invoice.invoice_number} {action}: {previous.value} -> {invoice.status.value}")
            return invoice

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error on invoice {invoice_id} ({action}): {e}", exc_info=True)
            raise UnexpectedError() from e

    def mark_as_sent(self, invoice_id: UUID) -> Invoice:
        def apply(invoice: Invoice):
            ensure_invoice_sendable(invoice)
            invoice.status = InvoiceStatus.SENT
            invoice.sent_date = utcnow()

        return self._change_status(invoice_id, "sent", apply)

    def mark_as_delivered(self, invoice_id: UUID) -> Invoice:
        def apply(invoice: Invoice):
            ensure_invoice_deliverable(invoice)
            invoice.status = InvoiceStatus.DELIVERED
            invoice.delivered_date = utcnow()

        return self._change_status(invoice_id, "delivered", apply)

    def mark_as_paid(self, invoice_id: UUID, payment: InvoicePaymentRequest) -> Invoice:
        def apply(invoice: Invoice):
            ensure_invoice_payable(invoice, payment.payment_date)
            invoice.status = InvoiceStatus.PAID
            invoice.payment_date = payment.payment_date
            invoice.payment_method = payment.payment_method
            invoice.payment_reference = payment.payment_reference

        return self._change_status(invoice_id, "paid", apply)

    def cancel_invoice(self, invoice_id: UUID) -> Invoice:
        def apply(invoice: Invoice):
            ensure_invoice_cancellable(invoice)
            if invoice.status != InvoiceStatus.CANCELLED:
                invoice.status = InvoiceStatus.CANCELLED
                invoice.cancelled_date = utcnow()

        return self._change_status(invoice_id, "cancelled", apply)
