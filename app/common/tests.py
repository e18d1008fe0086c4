"""
Tests para los helpers comunes

Cubren:
- Aritmética monetaria (redondeo comercial, rechazo de float)
- Tablas de transición de trabajos y facturas
- Guardas puras sobre estado cargado (sin base de datos)
- Formato de las excepciones de dominio
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import (
    NotFoundError, ValidationFailedError, InvalidStateTransitionError, UnexpectedError
)
from app.common.guards import (
    JOB_STATUS_TRANSITIONS, INVOICE_STATUS_TRANSITIONS, is_job_transition_allowed, is_invoice_transition_allowed,
    job_ineligibility_reason, is_job_eligible_for_invoicing, ensure_jobs_eligible_for_invoicing,
    is_job_edit_allowed, ensure_job_edit_allowed, ensure_job_deletable, is_job_period_valid, ensure_job_period_valid,
    is_invoice_mutable, is_invoice_sendable, is_invoice_payable, is_invoice_cancellable,
    ensure_invoice_payable, ensure_invoice_cancellable, ensure_invoice_deliverable, ensure_invoice_sendable,
    is_receipt_eligible_invoice, ensure_invoices_eligible_for_receipt, ensure_allocation_within_total
)
from app.common.mixins import to_naive_utc
from app.common.money import to_money, to_rate, calculate_vat, calculate_totals
from app.modules.jobs.models import Job, JobType, JobStatus
from app.modules.invoices.models import Invoice, InvoiceStatus


# ===== FIXTURES =====

@pytest.fixture
def customer_id():
    return uuid4()


def build_job(customer_id, status=JobStatus.COMPLETED, invoice_id=None, **kwargs):
    return Job(
        id=uuid4(),
        customer_id=customer_id,
        title=kwargs.pop("title", "Skip hire"),
        address=kwargs.pop("address", "5 Makarios Ave, Nicosia"),
        type=kwargs.pop("type", JobType.SKIP_RENTAL),
        status=status,
        price=Decimal(kwargs.pop("price", "80.00")),
        start_date=datetime(2024, 3, 1, 8, 0),
        invoice_id=invoice_id,
        is_deleted=False,
        **kwargs
    )


def build_invoice(customer_id, status=InvoiceStatus.DRAFT, sent_date=None, due_date=None, total="178.50"):
    return Invoice(
        id=uuid4(),
        customer_id=customer_id,
        invoice_number="INV-2024-0001",
        status=status,
        total=Decimal(total),
        sent_date=sent_date,
        due_date=due_date or date.today() + timedelta(days=30),
        is_deleted=False
    )


# ===== TESTS DE DINERO =====

class TestMoney:
    """Tests para la aritmética monetaria"""

    def test_to_money_rounds_half_up(self):
        """Test redondeo comercial a 2 decimales"""
        assert to_money("2.345") == Decimal("2.35")
        assert to_money("2.344") == Decimal("2.34")
        assert to_money("-2.345") == Decimal("-2.35")
        assert to_money(10) == Decimal("10.00")

    def test_to_money_rejects_float(self):
        """Test que no se aceptan floats"""
        with pytest.raises(TypeError):
            to_money(0.1)

    def test_to_money_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_money("abc")

    def test_to_rate_bounds(self):
        """Test tasa de IVA como fracción 0-1"""
        assert to_rate("0.19") == Decimal("0.1900")
        with pytest.raises(ValueError):
            to_rate("1.5")
        with pytest.raises(ValueError):
            to_rate("-0.01")

    def test_calculate_vat(self):
        assert calculate_vat(Decimal("150.00"), Decimal("0.19")) == Decimal("28.50")
        assert calculate_vat(Decimal("10.05"), Decimal("0.05")) == Decimal("0.50")

    def test_calculate_totals(self):
        """Test subtotal = suma de líneas, total = subtotal + IVA"""
        totals = calculate_totals([Decimal("100.00"), Decimal("50.00")], Decimal("0.19"))
        assert totals.subtotal == Decimal("150.00")
        assert totals.vat_amount == Decimal("28.50")
        assert totals.total == Decimal("178.50")

    def test_calculate_totals_empty(self):
        totals = calculate_totals([], Decimal("0.19"))
        assert totals.total == Decimal("0.00")

    def test_to_naive_utc(self):
        from datetime import timezone
        aware = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_naive_utc(aware) == datetime(2024, 1, 1, 10, 0)
        assert to_naive_utc(None) is None


# ===== TESTS DE TRANSICIONES =====

class TestTransitionTables:
    """Tests para las tablas de transición"""

    @pytest.mark.parametrize("current,requested", [
        (JobStatus.NEW, JobStatus.ACTIVE),
        (JobStatus.NEW, JobStatus.CANCELLED),
        (JobStatus.ACTIVE, JobStatus.COMPLETED),
        (JobStatus.ACTIVE, JobStatus.CANCELLED),
        (JobStatus.COMPLETED, JobStatus.ACTIVE),
        (JobStatus.COMPLETED, JobStatus.CANCELLED),
        (JobStatus.CANCELLED, JobStatus.NEW),
    ])
    def test_job_transitions_allowed(self, current, requested):
        assert is_job_transition_allowed(current, requested)

    @pytest.mark.parametrize("current,requested", [
        (JobStatus.NEW, JobStatus.COMPLETED),
        (JobStatus.ACTIVE, JobStatus.NEW),
        (JobStatus.COMPLETED, JobStatus.NEW),
        (JobStatus.CANCELLED, JobStatus.ACTIVE),
        (JobStatus.CANCELLED, JobStatus.COMPLETED),
    ])
    def test_job_transitions_rejected(self, current, requested):
        assert not is_job_transition_allowed(current, requested)

    def test_same_job_status_is_noop(self):
        for job_status in JobStatus:
            assert is_job_transition_allowed(job_status, job_status)

    def test_job_table_only_uses_known_statuses(self):
        for current, requested in JOB_STATUS_TRANSITIONS:
            assert current in JobStatus and requested in JobStatus

    def test_paid_and_cancelled_invoices_are_closed(self):
        """Test que pagada no transita a nada y anulada solo a sí misma"""
        for target in InvoiceStatus:
            assert not is_invoice_transition_allowed(InvoiceStatus.PAID, target)
            if target != InvoiceStatus.CANCELLED:
                assert not is_invoice_transition_allowed(InvoiceStatus.CANCELLED, target)

    def test_delivered_can_be_paid(self):
        assert is_invoice_transition_allowed(InvoiceStatus.DELIVERED, InvoiceStatus.PAID)
        assert not is_invoice_transition_allowed(InvoiceStatus.DRAFT, InvoiceStatus.PAID)


# ===== TESTS DE GUARDAS DE TRABAJOS =====

class TestJobGuards:
    """Tests para las guardas de trabajos"""

    def test_completed_unlinked_job_is_eligible(self, customer_id):
        job = build_job(customer_id)
        assert is_job_eligible_for_invoicing(job, customer_id)

    def test_ineligibility_reasons(self, customer_id):
        """Test cada motivo de rechazo"""
        assert job_ineligibility_reason(None, customer_id) == "no existe"
        assert "otro cliente" in job_ineligibility_reason(build_job(uuid4()), customer_id)
        assert "no está completado" in job_ineligibility_reason(
            build_job(customer_id, status=JobStatus.ACTIVE), customer_id
        )
        assert "ya está facturado" in job_ineligibility_reason(
            build_job(customer_id, invoice_id=uuid4()), customer_id
        )

    def test_ensure_jobs_eligible_reports_all_offenders(self, customer_id):
        """Test que el error nombra todos los trabajos inválidos"""
        good = build_job(customer_id)
        linked = build_job(customer_id, invoice_id=uuid4())
        missing_id = uuid4()

        with pytest.raises(ValidationFailedError) as exc_info:
            ensure_jobs_eligible_for_invoicing([good.id, linked.id, missing_id], [good, linked], customer_id)

        assert exc_info.value.ids == [str(linked.id), str(missing_id)]
        assert exc_info.value.field == "job_ids"

    def test_ensure_jobs_eligible_keeps_request_order(self, customer_id):
        first = build_job(customer_id)
        second = build_job(customer_id)
        result = ensure_jobs_eligible_for_invoicing([second.id, first.id], [first, second], customer_id)
        assert result == [second, first]

    def test_ensure_jobs_eligible_rejects_duplicates(self, customer_id):
        job = build_job(customer_id)
        with pytest.raises(ValidationFailedError):
            ensure_jobs_eligible_for_invoicing([job.id, job.id], [job], customer_id)

    def test_linked_job_only_status_and_dates(self, customer_id):
        """Test trabajo facturado: solo estado y fechas"""
        job = build_job(customer_id, invoice_id=uuid4())
        assert is_job_edit_allowed(job, {"status": JobStatus.CANCELLED, "end_date": datetime(2024, 3, 2)})
        assert is_job_edit_allowed(job, {"title": "Skip hire"})  # sin cambio real
        assert not is_job_edit_allowed(job, {"price": Decimal("90.00")})

        with pytest.raises(InvalidStateTransitionError):
            ensure_job_edit_allowed(job, {"title": "Other", "price": Decimal("90.00")})

    def test_unlinked_job_edit_allowed(self, customer_id):
        job = build_job(customer_id)
        assert is_job_edit_allowed(job, {"price": Decimal("1.00"), "title": "X"})

    def test_linked_job_not_deletable(self, customer_id):
        with pytest.raises(InvalidStateTransitionError):
            ensure_job_deletable(build_job(customer_id, invoice_id=uuid4()))
        ensure_job_deletable(build_job(customer_id))

    def test_job_period(self, customer_id):
        """Test la fecha de fin no puede ser anterior al inicio"""
        start = datetime(2024, 3, 1, 8, 0)
        assert is_job_period_valid(start, None)
        assert is_job_period_valid(start, start)
        assert not is_job_period_valid(start, start - timedelta(minutes=1))

        job = build_job(customer_id, end_date=start - timedelta(days=30))
        with pytest.raises(ValidationFailedError) as exc_info:
            ensure_job_period_valid(job)
        assert exc_info.value.field == "end_date"
        assert exc_info.value.ids == [str(job.id)]


# ===== TESTS DE GUARDAS DE FACTURAS =====

class TestInvoiceGuards:
    """Tests para las guardas de facturas"""

    def test_draft_only_guards(self, customer_id):
        draft = build_invoice(customer_id)
        sent = build_invoice(customer_id, status=InvoiceStatus.SENT, sent_date=datetime(2024, 3, 1))
        assert is_invoice_mutable(draft) and is_invoice_sendable(draft)
        assert not is_invoice_mutable(sent) and not is_invoice_sendable(sent)

    def test_payment_date_before_sent_date(self, customer_id):
        """Test pago anterior al envío falla con ValidationFailed"""
        invoice = build_invoice(customer_id, status=InvoiceStatus.SENT, sent_date=datetime(2024, 3, 10, 15, 30))

        assert is_invoice_payable(invoice, date(2024, 3, 10))
        assert not is_invoice_payable(invoice, date(2024, 3, 9))
        with pytest.raises(ValidationFailedError) as exc_info:
            ensure_invoice_payable(invoice, date(2024, 3, 9))
        assert exc_info.value.field == "payment_date"

    def test_overdue_is_payable(self, customer_id):
        invoice = build_invoice(
            customer_id, status=InvoiceStatus.SENT,
            sent_date=datetime(2024, 1, 1), due_date=date(2024, 1, 31)
        )
        assert invoice.effective_status(date(2024, 2, 15)) == InvoiceStatus.OVERDUE
        assert is_invoice_payable(invoice, date(2024, 2, 15), today=date(2024, 2, 15))

    def test_draft_not_payable(self, customer_id):
        with pytest.raises(InvalidStateTransitionError):
            ensure_invoice_payable(build_invoice(customer_id), date.today())

    def test_paid_not_cancellable(self, customer_id):
        paid = build_invoice(customer_id, status=InvoiceStatus.PAID)
        assert not is_invoice_cancellable(paid)
        with pytest.raises(InvalidStateTransitionError):
            ensure_invoice_cancellable(paid)
        assert is_invoice_cancellable(build_invoice(customer_id, status=InvoiceStatus.SENT))

    @pytest.mark.parametrize("stored", [s for s in InvoiceStatus if s != InvoiceStatus.OVERDUE])
    def test_send_and_cancel_follow_transition_table(self, customer_id, stored):
        """Test enviar y anular se deciden con la tabla de transiciones"""
        invoice = build_invoice(customer_id, status=stored, sent_date=datetime(2024, 3, 1))

        assert is_invoice_sendable(invoice) == ((stored, InvoiceStatus.SENT) in INVOICE_STATUS_TRANSITIONS)
        assert is_invoice_cancellable(invoice) == ((stored, InvoiceStatus.CANCELLED) in INVOICE_STATUS_TRANSITIONS)

    def test_overdue_cancellable_not_sendable(self, customer_id):
        invoice = build_invoice(
            customer_id, status=InvoiceStatus.SENT,
            sent_date=datetime(2024, 1, 1), due_date=date(2024, 1, 31)
        )
        today = date(2024, 2, 15)

        assert is_invoice_cancellable(invoice, today)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            ensure_invoice_sendable(invoice, today)
        assert exc_info.value.detail["current_status"] == "overdue"

    def test_only_sent_can_be_delivered(self, customer_id):
        ensure_invoice_deliverable(build_invoice(customer_id, status=InvoiceStatus.SENT, sent_date=datetime.now()))
        with pytest.raises(InvalidStateTransitionError):
            ensure_invoice_deliverable(build_invoice(customer_id))


# ===== TESTS DE GUARDAS DE RECIBOS =====

class TestReceiptGuards:
    """Tests para las guardas de recibos"""

    def test_receipt_eligible_invoice(self, customer_id):
        assert is_receipt_eligible_invoice(build_invoice(customer_id, status=InvoiceStatus.PAID), customer_id)
        assert not is_receipt_eligible_invoice(build_invoice(customer_id, status=InvoiceStatus.SENT), customer_id)
        assert not is_receipt_eligible_invoice(build_invoice(uuid4(), status=InvoiceStatus.PAID), customer_id)

    def test_ensure_invoices_eligible_names_offenders(self, customer_id):
        paid = build_invoice(customer_id, status=InvoiceStatus.PAID)
        draft = build_invoice(customer_id)
        with pytest.raises(ValidationFailedError) as exc_info:
            ensure_invoices_eligible_for_receipt([paid.id, draft.id], [paid, draft], customer_id)
        assert exc_info.value.ids == [str(draft.id)]

    def test_allocation_bound(self, customer_id):
        """Test la suma asignada no supera el total de la factura"""
        invoice = build_invoice(customer_id, status=InvoiceStatus.PAID, total="178.50")
        ensure_allocation_within_total(invoice, Decimal("0.00"), Decimal("178.50"))
        with pytest.raises(ValidationFailedError):
            ensure_allocation_within_total(invoice, Decimal("178.50"), Decimal("178.50"))


# ===== TESTS DE EXCEPCIONES =====

class TestExceptions:
    """Tests para el formato de las excepciones de dominio"""

    def test_not_found_detail(self):
        entity_id = uuid4()
        error = NotFoundError("Factura", entity_id)
        assert error.status_code == 404
        assert error.detail["id"] == str(entity_id)
        assert str(entity_id) in str(error)

    def test_validation_detail_carries_ids(self):
        error = ValidationFailedError("bad", field="job_ids", ids=[1, 2])
        assert error.status_code == 422
        assert error.detail == {"message": "bad", "field": "job_ids", "ids": ["1", "2"]}

    def test_state_transition_detail_uses_values(self):
        error = InvalidStateTransitionError("no", current_status=InvoiceStatus.PAID, requested=InvoiceStatus.CANCELLED)
        assert error.status_code == 409
        assert error.detail["current_status"] == "paid"
        assert error.detail["requested"] == "cancelled"

    def test_unexpected_is_generic(self):
        error = UnexpectedError()
        assert error.status_code == 500
        assert list(error.detail) == ["message"]
