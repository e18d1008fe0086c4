"""
Guardas de invariantes entre entidades (trabajos, facturas, recibos).

Funciones puras sobre estado ya cargado: no consultan la base de datos, de modo
que los servicios las invocan antes de mutar nada y se prueban sin sesión.
Cada guarda tiene un predicado ``is_*`` y una variante ``ensure_*`` que lanza
la excepción de dominio correspondiente.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence
from uuid import UUID

from app.common.exceptions import InvalidStateTransitionError, ValidationFailedError
from app.modules.jobs.models import Job, JobStatus
from app.modules.invoices.models import Invoice, InvoiceStatus


# ===== TABLAS DE TRANSICIÓN =====

JOB_STATUS_TRANSITIONS = frozenset({
    (JobStatus.NEW, JobStatus.ACTIVE),
    (JobStatus.NEW, JobStatus.CANCELLED),
    (JobStatus.ACTIVE, JobStatus.COMPLETED),
    (JobStatus.ACTIVE, JobStatus.CANCELLED),
    (JobStatus.COMPLETED, JobStatus.ACTIVE),     # reapertura
    (JobStatus.COMPLETED, JobStatus.CANCELLED),
    (JobStatus.CANCELLED, JobStatus.NEW),        # reactivación
})

# Sobre el estado efectivo (OVERDUE es derivado de SENT)
INVOICE_STATUS_TRANSITIONS = frozenset({
    (InvoiceStatus.DRAFT, InvoiceStatus.SENT),
    (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED),
    (InvoiceStatus.SENT, InvoiceStatus.DELIVERED),
    (InvoiceStatus.SENT, InvoiceStatus.PAID),
    (InvoiceStatus.SENT, InvoiceStatus.CANCELLED),
    (InvoiceStatus.OVERDUE, InvoiceStatus.DELIVERED),
    (InvoiceStatus.OVERDUE, InvoiceStatus.PAID),
    (InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED),
    (InvoiceStatus.DELIVERED, InvoiceStatus.PAID),
    (InvoiceStatus.DELIVERED, InvoiceStatus.CANCELLED),
    (InvoiceStatus.CANCELLED, InvoiceStatus.CANCELLED),
})

# Campos que un trabajo ya facturado todavía puede cambiar
INVOICED_JOB_MUTABLE_FIELDS = frozenset({"status", "start_date", "end_date"})


def is_job_transition_allowed(current: JobStatus, requested: JobStatus) -> bool:
    """Mismo estado es un no-op permitido."""
    return current == requested or (current, requested) in JOB_STATUS_TRANSITIONS


def is_invoice_transition_allowed(current: InvoiceStatus, requested: InvoiceStatus) -> bool:
    return (current, requested) in INVOICE_STATUS_TRANSITIONS


def ensure_job_transition(job: Job, requested: JobStatus) -> None:
    if not is_job_transition_allowed(job.status, requested):
        raise InvalidStateTransitionError(
            f"No se puede cambiar el trabajo de {job.status.value} a {requested.value}",
            current_status=job.status,
            requested=requested,
        )


# ===== TRABAJOS =====

def job_ineligibility_reason(job: Optional[Job], customer_id: UUID) -> Optional[str]:
    """Motivo por el que un trabajo no puede facturarse, o None si es elegible."""
    if job is None or job.is_deleted:
        return "no existe"
    if job.customer_id != customer_id:
        return "pertenece a otro cliente"
    if job.status != JobStatus.COMPLETED:
        return f"no está completado (estado {job.status.value})"
    if job.invoice_id is not None:
        return "ya está facturado"
    return None


def is_job_eligible_for_invoicing(job: Optional[Job], customer_id: UUID) -> bool:
    return job_ineligibility_reason(job, customer_id) is None


def ensure_jobs_eligible_for_invoicing(
    job_ids: Sequence[UUID],
    jobs: Iterable[Job],
    customer_id: UUID
) -> List[Job]:
    """
    Valida el conjunto completo y reporta todos los trabajos problemáticos a la vez.

    Devuelve los trabajos en el orden de ``job_ids``.
    """
    if not job_ids:
        raise ValidationFailedError("Debe incluir al menos un trabajo", field="job_ids")

    duplicated = sorted({str(j) for j in job_ids if list(job_ids).count(j) > 1})
    if duplicated:
        raise ValidationFailedError(
            "Trabajos repetidos en la solicitud", field="job_ids", ids=duplicated
        )

    by_id = {job.id: job for job in jobs}
    offending = []
    reasons = []
    for job_id in job_ids:
        reason = job_ineligibility_reason(by_id.get(job_id), customer_id)
        if reason:
            offending.append(job_id)
            reasons.append(f"{job_id}: {reason}")

    if offending:
        raise ValidationFailedError(
            "Trabajos no facturables: " + "; ".join(reasons),
            field="job_ids",
            ids=offending,
        )
    return [by_id[job_id] for job_id in job_ids]


def changed_fields(job: Job, updates: dict) -> List[str]:
    """Campos cuyo valor solicitado difiere del actual."""
    return sorted(
        name for name, value in updates.items()
        if getattr(job, name, None) != value
    )


def is_job_edit_allowed(job: Job, updates: dict) -> bool:
    """Un trabajo facturado solo admite cambios de estado y fechas."""
    if job.invoice_id is None:
        return True
    return set(changed_fields(job, updates)) <= INVOICED_JOB_MUTABLE_FIELDS


def ensure_job_edit_allowed(job: Job, updates: dict) -> None:
    if not is_job_edit_allowed(job, updates):
        locked = [f for f in changed_fields(job, updates) if f not in INVOICED_JOB_MUTABLE_FIELDS]
        raise InvalidStateTransitionError(
            f"El trabajo está facturado; solo se puede cambiar estado y fechas (campos: {', '.join(locked)})",
            current_status=job.status,
        )


def is_job_period_valid(start_date: Optional[datetime], end_date: Optional[datetime]) -> bool:
    return not (start_date and end_date and end_date < start_date)


def ensure_job_period_valid(job: Job) -> None:
    """Se evalúa sobre los valores ya aplicados al trabajo."""
    if not is_job_period_valid(job.start_date, job.end_date):
        raise ValidationFailedError(
            "La fecha de finalización no puede ser anterior a la fecha de inicio",
            field="end_date",
            ids=[job.id],
        )


def ensure_job_deletable(job: Job) -> None:
    if job.invoice_id is not None:
        raise InvalidStateTransitionError(
            "No se puede eliminar un trabajo vinculado a una factura",
            current_status=job.status,
        )


# ===== FACTURAS =====

def _status(invoice: Invoice, today: Optional[date]) -> InvoiceStatus:
    return invoice.effective_status(today)


def is_invoice_mutable(invoice: Invoice) -> bool:
    return invoice.status == InvoiceStatus.DRAFT


def is_invoice_deletable(invoice: Invoice) -> bool:
    return invoice.status == InvoiceStatus.DRAFT


def is_invoice_sendable(invoice: Invoice, today: Optional[date] = None) -> bool:
    return is_invoice_transition_allowed(_status(invoice, today), InvoiceStatus.SENT)


def is_invoice_deliverable(invoice: Invoice, today: Optional[date] = None) -> bool:
    return is_invoice_transition_allowed(_status(invoice, today), InvoiceStatus.DELIVERED)


def is_invoice_payable(invoice: Invoice, payment_date: date, today: Optional[date] = None) -> bool:
    return (
        is_invoice_transition_allowed(_status(invoice, today), InvoiceStatus.PAID)
        and not is_payment_before_sent(invoice, payment_date)
    )


def is_payment_before_sent(invoice: Invoice, payment_date: date) -> bool:
    sent = invoice.sent_date
    if sent is None:
        return False
    sent_day = sent.date() if isinstance(sent, datetime) else sent
    return payment_date < sent_day


def is_invoice_cancellable(invoice: Invoice, today: Optional[date] = None) -> bool:
    return is_invoice_transition_allowed(_status(invoice, today), InvoiceStatus.CANCELLED)


def _raise_state(invoice: Invoice, message: str, requested: Any = None, today: Optional[date] = None):
    raise InvalidStateTransitionError(message, current_status=_status(invoice, today), requested=requested)


def ensure_invoice_mutable(invoice: Invoice) -> None:
    if not is_invoice_mutable(invoice):
        _raise_state(invoice, "Solo se pueden modificar facturas en borrador")


def ensure_invoice_deletable(invoice: Invoice) -> None:
    if not is_invoice_deletable(invoice):
        _raise_state(invoice, "Solo se pueden eliminar facturas en borrador")


def ensure_invoice_sendable(invoice: Invoice, today: Optional[date] = None) -> None:
    if not is_invoice_sendable(invoice, today):
        _raise_state(invoice, "Solo se pueden enviar facturas en borrador", InvoiceStatus.SENT, today)


def ensure_invoice_deliverable(invoice: Invoice, today: Optional[date] = None) -> None:
    if not is_invoice_deliverable(invoice, today):
        _raise_state(invoice, "Solo se pueden marcar como entregadas facturas enviadas", InvoiceStatus.DELIVERED, today)


def ensure_invoice_payable(invoice: Invoice, payment_date: date, today: Optional[date] = None) -> None:
    if not is_invoice_transition_allowed(_status(invoice, today), InvoiceStatus.PAID):
        _raise_state(
            invoice,
            "Solo se pueden pagar facturas enviadas, entregadas o vencidas",
            InvoiceStatus.PAID,
            today,
        )
    if is_payment_before_sent(invoice, payment_date):
        raise ValidationFailedError(
            "La fecha de pago no puede ser anterior a la fecha de envío",
            field="payment_date",
            ids=[invoice.id],
        )


def ensure_invoice_cancellable(invoice: Invoice, today: Optional[date] = None) -> None:
    if not is_invoice_cancellable(invoice, today):
        _raise_state(invoice, "No se puede anular una factura pagada", InvoiceStatus.CANCELLED, today)


# ===== RECIBOS =====

def receipt_ineligibility_reason(invoice: Optional[Invoice], customer_id: UUID) -> Optional[str]:
    if invoice is None or invoice.is_deleted:
        return "no existe"
    if invoice.customer_id != customer_id:
        return "pertenece a otro cliente"
    if invoice.status != InvoiceStatus.PAID:
        return f"no está pagada (estado {invoice.display_status.value})"
    return None


def is_receipt_eligible_invoice(invoice: Optional[Invoice], customer_id: UUID) -> bool:
    return receipt_ineligibility_reason(invoice, customer_id) is None


def ensure_invoices_eligible_for_receipt(
    invoice_ids: Sequence[UUID],
    invoices: Iterable[Invoice],
    customer_id: UUID
) -> List[Invoice]:
    if not invoice_ids:
        raise ValidationFailedError("Debe incluir al menos una factura", field="invoice_ids")

    duplicated = sorted({str(i) for i in invoice_ids if list(invoice_ids).count(i) > 1})
    if duplicated:
        raise ValidationFailedError(
            "Facturas repetidas en la solicitud", field="invoice_ids", ids=duplicated
        )

    by_id = {invoice.id: invoice for invoice in invoices}
    offending = []
    reasons = []
    for invoice_id in invoice_ids:
        reason = receipt_ineligibility_reason(by_id.get(invoice_id), customer_id)
        if reason:
            offending.append(invoice_id)
            reasons.append(f"{invoice_id}: {reason}")

    if offending:
        raise ValidationFailedError(
            "Facturas no elegibles para recibo: " + "; ".join(reasons),
            field="invoice_ids",
            ids=offending,
        )
    return [by_id[invoice_id] for invoice_id in invoice_ids]


def is_allocation_within_total(invoice: Invoice, already_allocated: Decimal, amount: Decimal) -> bool:
    return Decimal(already_allocated) + Decimal(amount) <= Decimal(invoice.total)


def ensure_allocation_within_total(invoice: Invoice, already_allocated: Decimal, amount: Decimal) -> None:
    """La suma asignada a una factura en recibos vigentes no supera su total."""
    if not is_allocation_within_total(invoice, already_allocated, amount):
        raise ValidationFailedError(
            f"La factura {invoice.invoice_number} ya está asignada a otro recibo",
            field="invoice_ids",
            ids=[invoice.id],
        )
