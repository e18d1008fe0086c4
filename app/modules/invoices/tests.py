"""
Tests para el módulo de Facturas

Cubren:
- Creación desde trabajos completados: totales, numeración y vencimiento
- Rechazo de trabajos ya facturados, de otro cliente o sin completar
- Ciclo de vida: envío, entrega, pago y anulación
- Actualización en borrador (reemplazo de trabajos y semántica de parche)
- Estado vencido derivado al leer y total pendiente de cobro
- Concurrencia: colisión de número y doble facturación de un trabajo
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from sqlalchemy.orm import Session
from uuid import uuid4

from app.common.exceptions import (
    NotFoundError, ValidationFailedError, InvalidStateTransitionError, ConflictingUniqueKeyError
)
from app.common.mixins import utcnow
from app.core.config import settings
from app.modules.jobs.models import Job, JobType, JobStatus
from app.modules.invoices.models import Invoice, InvoiceLineItem, InvoiceStatus, PaymentMethod
from app.modules.invoices.schemas import InvoiceCreate, InvoiceUpdate, InvoicePaymentRequest
from app.modules.invoices.service import InvoiceService, compute_due_date, default_vat_rate
from app.modules.numbering.models import DocumentSequence
from app.modules.numbering.service import DocumentNumberService


# ===== FIXTURES =====

@pytest.fixture
def service(db_session: Session):
    return InvoiceService(db_session)


@pytest.fixture
def two_jobs(sample_customer, make_job):
    """Trabajos completados sin facturar de 100.00 y 50.00"""
    return [
        make_job(sample_customer, price="100.00", title="Sand, 4 tons"),
        make_job(sample_customer, price="50.00", title="Crushed stone, 1 ton"),
    ]


@pytest.fixture
def draft_invoice(service, sample_customer, two_jobs):
    return service.create_invoice(InvoiceCreate(
        customer_id=sample_customer.id,
        job_ids=[job.id for job in two_jobs],
        vat_rate=Decimal("0.19"),
        payment_terms_days=30
    ))


def payment(payment_date=None, method=PaymentMethod.BANK_TRANSFER):
    return InvoicePaymentRequest(
        payment_date=payment_date or utcnow().date(),
        payment_method=method,
        payment_reference="TRX-0001"
    )


# ===== TESTS DE HELPERS =====

class TestInvoiceHelpers:
    """Tests para los helpers del servicio"""

    def test_default_vat_rate(self, sample_customer):
        skips = [Job(type=JobType.SKIP_RENTAL), Job(type=JobType.SKIP_RENTAL)]
        mixed = [Job(type=JobType.SKIP_RENTAL), Job(type=JobType.FORKLIFT_SERVICE)]

        assert default_vat_rate(skips) == settings.VAT_RATE_REDUCED
        assert default_vat_rate(mixed) == settings.VAT_RATE_STANDARD
        assert default_vat_rate([]) == settings.VAT_RATE_STANDARD

    def test_compute_due_date(self):
        assert compute_due_date(date(2024, 1, 20), 30) == date(2024, 2, 19)
        assert compute_due_date(date(2024, 1, 20), 0) == date(2024, 1, 20)

    def test_overdue_uses_utc_date(self, monkeypatch):
        """Test el vencimiento se evalúa con la fecha UTC, igual que due_date"""
        invoice = Invoice(status=InvoiceStatus.SENT, due_date=date(2024, 3, 31))

        monkeypatch.setattr("app.modules.invoices.models.utcnow", lambda: datetime(2024, 3, 31, 23, 30))
        assert invoice.effective_status() == InvoiceStatus.SENT
        assert invoice.days_until_due == 0

        monkeypatch.setattr("app.modules.invoices.models.utcnow", lambda: datetime(2024, 4, 1, 0, 30))
        assert invoice.effective_status() == InvoiceStatus.OVERDUE
        assert invoice.is_overdue is True
        assert invoice.days_until_due == -1


# ===== TESTS DE CREACIÓN =====

class TestInvoiceCreation:
    """Tests para la creación de facturas"""

    def test_create_invoice_totals_and_number(self, db_session: Session, draft_invoice, two_jobs):
        """Test 100.00 + 50.00 al 19%: 150.00 / 28.50 / 178.50, primer número del año"""
        invoice = draft_invoice

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.subtotal == Decimal("150.00")
        assert invoice.vat_amount == Decimal("28.50")
        assert invoice.total == Decimal("178.50")
        assert invoice.invoice_number == f"INV-{utcnow().year}-0001"
        assert invoice.due_date == invoice.created_at.date() + timedelta(days=30)

        for job in two_jobs:
            db_session.refresh(job)
            assert job.invoice_id == invoice.id
            assert job.invoiced_date is not None

    def test_line_items_snapshot_jobs(self, draft_invoice, two_jobs):
        """Test una línea por trabajo con precio y descripción congelados"""
        items = draft_invoice.active_line_items

        assert [item.job_id for item in items] == [job.id for job in two_jobs]
        assert [item.position for item in items] == [1, 2]
        assert items[0].description == "Sand Delivery - Sand, 4 tons at 12 Harbour Road"
        assert items[0].unit_price == items[0].line_total == Decimal("100.00")
        assert sum(item.line_total for item in items) == draft_invoice.subtotal

    def test_reusing_invoiced_job_fails(self, db_session: Session, service, draft_invoice, sample_customer, two_jobs, make_job):
        """Test un trabajo ya facturado no entra en otra factura; no se crea nada"""
        fresh = make_job(sample_customer, price="10.00")

        with pytest.raises(ValidationFailedError) as exc_info:
            service.create_invoice(InvoiceCreate(
                customer_id=sample_customer.id,
                job_ids=[fresh.id, two_jobs[0].id]
            ))

        assert exc_info.value.ids == [str(two_jobs[0].id)]
        assert "ya está facturado" in exc_info.value.message
        assert db_session.query(Invoice).count() == 1
        assert db_session.query(InvoiceLineItem).count() == 2
        db_session.refresh(fresh)
        assert fresh.invoice_id is None

    def test_job_of_other_customer_fails(self, service, sample_customer, make_customer, make_job):
        foreign = make_job(make_customer())

        with pytest.raises(ValidationFailedError) as exc_info:
            service.create_invoice(InvoiceCreate(customer_id=sample_customer.id, job_ids=[foreign.id]))

        assert "otro cliente" in exc_info.value.message

    def test_unfinished_or_missing_job_fails(self, service, sample_customer, make_job):
        """Test todos los trabajos inválidos se reportan juntos"""
        active = make_job(sample_customer, status=JobStatus.ACTIVE)
        missing = uuid4()

        with pytest.raises(ValidationFailedError) as exc_info:
            service.create_invoice(InvoiceCreate(customer_id=sample_customer.id, job_ids=[active.id, missing]))

        assert exc_info.value.ids == [str(active.id), str(missing)]

    def test_missing_customer(self, service, two_jobs):
        with pytest.raises(NotFoundError):
            service.create_invoice(InvoiceCreate(customer_id=uuid4(), job_ids=[two_jobs[0].id]))

    def test_empty_or_duplicated_job_ids_rejected(self, sample_customer):
        job_id = uuid4()
        with pytest.raises(ValueError):
            InvoiceCreate(customer_id=sample_customer.id, job_ids=[])
        with pytest.raises(ValueError):
            InvoiceCreate(customer_id=sample_customer.id, job_ids=[job_id, job_id])

    def test_too_many_jobs(self, service, sample_customer, make_job, monkeypatch):
        monkeypatch.setattr(settings, "MAX_JOBS_PER_INVOICE", 1)
        jobs = [make_job(sample_customer), make_job(sample_customer)]

        with pytest.raises(ValidationFailedError):
            service.create_invoice(InvoiceCreate(customer_id=sample_customer.id, job_ids=[j.id for j in jobs]))

    def test_reduced_vat_for_skip_rentals(self, service, sample_customer, make_job):
        """Test sin IVA explícito: tasa reducida si todos son alquiler de contenedor"""
        jobs = [make_job(sample_customer, type=JobType.SKIP_RENTAL, price="80.00") for _ in range(2)]

        invoice = service.create_invoice(InvoiceCreate(customer_id=sample_customer.id, job_ids=[j.id for j in jobs]))

        assert invoice.vat_rate == Decimal("0.05")
        assert invoice.vat_amount == Decimal("8.00")
        assert invoice.total == Decimal("168.00")
        assert invoice.payment_terms_days == settings.DEFAULT_PAYMENT_TERMS_DAYS

    def test_explicit_zero_vat_on_create(self, service, sample_customer, make_job):
        job = make_job(sample_customer, price="99.99")

        invoice = service.create_invoice(InvoiceCreate(
            customer_id=sample_customer.id, job_ids=[job.id], vat_rate=Decimal("0")
        ))

        assert invoice.vat_amount == Decimal("0.00")
        assert invoice.total == Decimal("99.99")

    def test_vat_rounding_half_up(self, service, sample_customer, make_job):
        """Test 12.50 × 0.19 = 2.375 se redondea a 2.38"""
        job = make_job(sample_customer, price="12.50")

        invoice = service.create_invoice(InvoiceCreate(
            customer_id=sample_customer.id, job_ids=[job.id], vat_rate=Decimal("0.19")
        ))

        assert invoice.vat_amount == Decimal("2.38")
        assert invoice.total == Decimal("14.88")

    def test_created_by_principal(self, service, sample_customer, two_jobs):
        user_id = uuid4()
        invoice = service.create_invoice(
            InvoiceCreate(customer_id=sample_customer.id, job_ids=[two_jobs[0].id]), user_id
        )
        assert invoice.created_by == user_id


# ===== TESTS DE CICLO DE VIDA =====

class TestInvoiceLifecycle:
    """Tests para las transiciones de estado"""

    def test_payment_before_sent_date_fails(self, db_session: Session, service, draft_invoice):
        """Test pago con fecha anterior al envío: ValidationFailed y sigue enviada"""
        sent = service.mark_as_sent(draft_invoice.id)
        day_before = sent.sent_date.date() - timedelta(days=1)

        with pytest.raises(ValidationFailedError) as exc_info:
            service.mark_as_paid(sent.id, payment(day_before))

        assert exc_info.value.field == "payment_date"
        invoice = service.get_invoice(draft_invoice.id)
        assert invoice.status == InvoiceStatus.SENT
        assert invoice.payment_date is None

    def test_paid_invoice_cannot_be_cancelled(self, service, draft_invoice):
        """Test anular una factura pagada: InvalidStateTransition y sigue pagada"""
        service.mark_as_sent(draft_invoice.id)
        paid = service.mark_as_paid(draft_invoice.id, payment())

        assert paid.status == InvoiceStatus.PAID
        assert paid.payment_method == PaymentMethod.BANK_TRANSFER
        assert paid.payment_reference == "TRX-0001"

        with pytest.raises(InvalidStateTransitionError):
            service.cancel_invoice(draft_invoice.id)
        assert service.get_invoice(draft_invoice.id).status == InvoiceStatus.PAID

    def test_delivered_then_paid(self, service, draft_invoice):
        service.mark_as_sent(draft_invoice.id)
        delivered = service.mark_as_delivered(draft_invoice.id)
        assert delivered.status == InvoiceStatus.DELIVERED
        assert delivered.delivered_date is not None

        assert service.mark_as_paid(draft_invoice.id, payment()).status == InvoiceStatus.PAID

    def test_draft_cannot_be_paid_or_delivered(self, service, draft_invoice):
        with pytest.raises(InvalidStateTransitionError):
            service.mark_as_paid(draft_invoice.id, payment())
        with pytest.raises(InvalidStateTransitionError):
            service.mark_as_delivered(draft_invoice.id)

    def test_send_only_from_draft(self, service, draft_invoice):
        service.mark_as_sent(draft_invoice.id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            service.mark_as_sent(draft_invoice.id)
        assert exc_info.value.detail["current_status"] == "sent"

    def test_cancel_is_idempotent(self, service, draft_invoice):
        """Test anular dos veces no falla y conserva la fecha de anulación"""
        cancelled = service.cancel_invoice(draft_invoice.id)
        first_date = cancelled.cancelled_date

        again = service.cancel_invoice(draft_invoice.id)

        assert again.status == InvoiceStatus.CANCELLED
        assert again.cancelled_date == first_date

    def test_cancelled_invoice_is_closed(self, service, draft_invoice):
        service.cancel_invoice(draft_invoice.id)

        with pytest.raises(InvalidStateTransitionError):
            service.mark_as_sent(draft_invoice.id)
        with pytest.raises(InvalidStateTransitionError):
            service.update_invoice(draft_invoice.id, InvoiceUpdate(notes="late note"))

    def test_overdue_is_derived_and_payable(self, db_session: Session, service, draft_invoice):
        """Test SENT con vencimiento superado se presenta como OVERDUE sin persistirse"""
        service.mark_as_sent(draft_invoice.id)
        invoice = service.get_invoice(draft_invoice.id)
        invoice.due_date = utcnow().date() - timedelta(days=1)
        db_session.commit()

        invoice = service.get_invoice(draft_invoice.id)
        assert invoice.status == InvoiceStatus.SENT
        assert invoice.display_status == InvoiceStatus.OVERDUE
        assert invoice.is_overdue is True

        paid = service.mark_as_paid(invoice.id, payment())
        assert paid.status == InvoiceStatus.PAID
        assert paid.is_overdue is False


# ===== TESTS DE ACTUALIZACIÓN =====

class TestInvoiceUpdate:
    """Tests para la actualización de facturas en borrador"""

    def test_zero_vat_update_is_ignored(self, service, draft_invoice):
        """Test IVA 0 en un parche se ignora: tasa y totales sin cambios"""
        updated = service.update_invoice(draft_invoice.id, InvoiceUpdate(vat_rate=Decimal("0")))

        assert updated.vat_rate == Decimal("0.19")
        assert updated.vat_amount == Decimal("28.50")
        assert updated.total == Decimal("178.50")

    def test_zero_vat_update_when_allowed(self, service, draft_invoice, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_ZERO_VAT_UPDATE", True)

        updated = service.update_invoice(draft_invoice.id, InvoiceUpdate(vat_rate=Decimal("0")))

        assert updated.vat_rate == Decimal("0")
        assert updated.total == Decimal("150.00")

    def test_vat_update_recalculates(self, service, draft_invoice):
        updated = service.update_invoice(draft_invoice.id, InvoiceUpdate(vat_rate=Decimal("0.05")))

        assert updated.vat_amount == Decimal("7.50")
        assert updated.total == Decimal("157.50")

    def test_terms_and_notes_patch(self, service, draft_invoice):
        """Test plazo 0 y notas en blanco se ignoran; valores reales se aplican"""
        updated = service.update_invoice(draft_invoice.id, InvoiceUpdate(payment_terms_days=0, notes="   "))
        assert updated.payment_terms_days == 30
        assert updated.notes is None

        updated = service.update_invoice(draft_invoice.id, InvoiceUpdate(payment_terms_days=14, notes="Gate code 4411"))
        assert updated.payment_terms_days == 14
        assert updated.due_date == updated.created_at.date() + timedelta(days=14)
        assert updated.notes == "Gate code 4411"

    def test_replace_jobs(self, db_session: Session, service, draft_invoice, sample_customer, two_jobs, make_job):
        """Test reemplazar trabajos libera los anteriores y recalcula totales"""
        replacement = make_job(sample_customer, price="40.00")

        updated = service.update_invoice(draft_invoice.id, InvoiceUpdate(job_ids=[replacement.id]))

        assert [item.job_id for item in updated.active_line_items] == [replacement.id]
        assert updated.subtotal == Decimal("40.00")
        assert updated.vat_amount == Decimal("7.60")
        assert updated.total == Decimal("47.60")
        for job in two_jobs:
            db_session.refresh(job)
            assert job.invoice_id is None
        db_session.refresh(replacement)
        assert replacement.invoice_id == updated.id

    def test_replace_jobs_keeping_one(self, db_session: Session, service, draft_invoice, sample_customer, two_jobs, make_job):
        extra = make_job(sample_customer, price="40.00")

        updated = service.update_invoice(
            draft_invoice.id, InvoiceUpdate(job_ids=[two_jobs[0].id, extra.id], vat_rate=Decimal("0"))
        )

        assert updated.subtotal == Decimal("140.00")
        assert updated.vat_rate == Decimal("0")
        assert updated.total == Decimal("140.00")
        db_session.refresh(two_jobs[1])
        assert two_jobs[1].invoice_id is None

    def test_replace_with_invalid_job_rolls_back(self, db_session: Session, service, draft_invoice, sample_customer, two_jobs, make_job):
        """Test si el nuevo conjunto no es válido la factura queda como estaba"""
        active = make_job(sample_customer, status=JobStatus.ACTIVE)

        with pytest.raises(ValidationFailedError):
            service.update_invoice(draft_invoice.id, InvoiceUpdate(job_ids=[active.id]))

        invoice = service.get_invoice(draft_invoice.id)
        assert len(invoice.active_line_items) == 2
        assert invoice.total == Decimal("178.50")
        for job in two_jobs:
            db_session.refresh(job)
            assert job.invoice_id == invoice.id

    def test_update_sent_invoice_fails(self, service, draft_invoice):
        service.mark_as_sent(draft_invoice.id)

        with pytest.raises(InvalidStateTransitionError):
            service.update_invoice(draft_invoice.id, InvoiceUpdate(vat_rate=Decimal("0.05")))


# ===== TESTS DE BORRADO =====

class TestInvoiceDelete:
    """Tests para la baja lógica de facturas"""

    def test_delete_draft_releases_jobs(self, db_session: Session, service, draft_invoice, two_jobs):
        service.delete_invoice(draft_invoice.id)

        with pytest.raises(NotFoundError):
            service.get_invoice(draft_invoice.id)
        assert all(item.is_deleted for item in db_session.query(InvoiceLineItem).all())
        for job in two_jobs:
            db_session.refresh(job)
            assert job.invoice_id is None
            assert job.invoiced_date is None

    def test_released_jobs_can_be_invoiced_again(self, service, draft_invoice, sample_customer, two_jobs):
        """Test tras borrar, los trabajos se refacturan y el número no se reutiliza"""
        service.delete_invoice(draft_invoice.id)

        invoice = service.create_invoice(InvoiceCreate(
            customer_id=sample_customer.id, job_ids=[job.id for job in two_jobs]
        ))

        assert invoice.invoice_number == f"INV-{utcnow().year}-0002"
        assert invoice.total == Decimal("178.50")

    def test_delete_sent_invoice_fails(self, service, draft_invoice):
        service.mark_as_sent(draft_invoice.id)

        with pytest.raises(InvalidStateTransitionError):
            service.delete_invoice(draft_invoice.id)


# ===== TESTS DE CONSULTAS =====

class TestInvoiceQueries:
    """Tests para listados y totales"""

    def test_list_filter_overdue(self, db_session: Session, service, sample_customer, make_invoice):
        late = make_invoice(sample_customer)
        on_time = make_invoice(sample_customer)
        make_invoice(sample_customer)
        for invoice in (late, on_time):
            service.mark_as_sent(invoice.id)
        service.get_invoice(late.id).due_date = utcnow().date() - timedelta(days=3)
        db_session.commit()

        overdue = service.get_invoices(status=InvoiceStatus.OVERDUE)
        sent = service.get_invoices(status=InvoiceStatus.SENT)
        drafts = service.get_invoices(status=InvoiceStatus.DRAFT)

        assert [i.id for i in overdue.invoices] == [late.id]
        assert overdue.invoices[0].status == InvoiceStatus.OVERDUE
        assert [i.id for i in sent.invoices] == [on_time.id]
        assert drafts.total == 1

    def test_list_overdue_filter_uses_utc_date(self, db_session: Session, service, sample_customer, make_invoice, monkeypatch):
        invoice = make_invoice(sample_customer)
        service.mark_as_sent(invoice.id)
        due = service.get_invoice(invoice.id).due_date

        monkeypatch.setattr("app.modules.invoices.service.utcnow", lambda: datetime.combine(due, datetime.min.time()))
        assert service.get_invoices(status=InvoiceStatus.OVERDUE).total == 0

        monkeypatch.setattr(
            "app.modules.invoices.service.utcnow",
            lambda: datetime.combine(due + timedelta(days=1), datetime.min.time())
        )
        assert service.get_invoices(status=InvoiceStatus.OVERDUE).total == 1

    def test_list_by_customer(self, service, sample_customer, make_customer, make_invoice):
        make_invoice(sample_customer)
        make_invoice(make_customer())

        result = service.get_invoices(customer_id=sample_customer.id)

        assert result.total == 1
        assert result.invoices[0].customer_name == "Acme Builders Ltd"

    def test_total_outstanding(self, service, sample_customer, make_invoice):
        """Test suma enviadas y entregadas; excluye borradores, pagadas y anuladas"""
        sent = make_invoice(sample_customer, prices=("100.00",), vat_rate=Decimal("0.19"))
        delivered = make_invoice(sample_customer, prices=("50.00",), vat_rate=Decimal("0.19"))
        cancelled = make_invoice(sample_customer, prices=("500.00",))
        make_invoice(sample_customer, prices=("70.00",))
        make_invoice(sample_customer, prices=("80.00",), paid=True)

        service.mark_as_sent(sent.id)
        service.mark_as_sent(delivered.id)
        service.mark_as_delivered(delivered.id)
        service.cancel_invoice(cancelled.id)

        outstanding = service.get_total_outstanding()

        assert outstanding.total_outstanding == Decimal("178.50")
        assert outstanding.invoice_count == 2
        assert service.get_total_outstanding(uuid4()).total_outstanding == Decimal("0.00")


# ===== TESTS DE CONCURRENCIA =====

class TestInvoiceConcurrency:
    """Tests para colisiones de número y doble facturación"""

    def test_number_collision_retries_whole_operation(self, db_session: Session, service, sample_customer, make_job, make_invoice, monkeypatch):
        """Test un número ya usado por otra transacción se reintenta con el siguiente"""
        make_invoice(sample_customer)
        db_session.query(DocumentSequence).delete()
        db_session.commit()

        original = DocumentNumberService.peek_next_sequence
        calls = []

        def stale_peek(self, kind, year=None):
            calls.append(kind)
            return 1 if len(calls) == 1 else original(self, kind, year)

        monkeypatch.setattr(DocumentNumberService, "peek_next_sequence", stale_peek)
        job = make_job(sample_customer)

        invoice = service.create_invoice(InvoiceCreate(customer_id=sample_customer.id, job_ids=[job.id]))

        assert invoice.invoice_number == f"INV-{utcnow().year}-0002"
        assert len(calls) == 2
        assert db_session.query(Invoice).count() == 2

    def test_number_collision_exhausts_attempts(self, db_session: Session, service, sample_customer, make_job, make_invoice, monkeypatch):
        make_invoice(sample_customer)
        db_session.query(DocumentSequence).delete()
        db_session.commit()
        monkeypatch.setattr(DocumentNumberService, "peek_next_sequence", lambda self, kind, year=None: 1)
        job = make_job(sample_customer)

        with pytest.raises(ConflictingUniqueKeyError) as exc_info:
            service.create_invoice(InvoiceCreate(customer_id=sample_customer.id, job_ids=[job.id]))

        assert exc_info.value.key == "invoice_number"
        assert db_session.query(Invoice).count() == 1
        db_session.refresh(job)
        assert job.invoice_id is None

    def test_concurrent_invoicing_of_same_job(self, db_session: Session, service, draft_invoice, sample_customer, two_jobs, monkeypatch):
        """Test si la validación ve un estado viejo, el índice único impide la doble facturación"""
        monkeypatch.setattr(
            "app.modules.invoices.service.ensure_jobs_eligible_for_invoicing",
            lambda job_ids, jobs, customer_id: sorted(jobs, key=lambda j: list(job_ids).index(j.id))
        )

        with pytest.raises(ConflictingUniqueKeyError) as exc_info:
            service.create_invoice(InvoiceCreate(customer_id=sample_customer.id, job_ids=[two_jobs[0].id]))

        assert exc_info.value.key == "job_id"
        assert db_session.query(Invoice).count() == 1
        assert db_session.query(InvoiceLineItem).count() == 2
        db_session.refresh(two_jobs[0])
        assert two_jobs[0].invoice_id == draft_invoice.id


# ===== TESTS DE API ENDPOINTS =====

class TestInvoiceAPI:
    """Tests para endpoints de la API de facturas"""

    def test_create_invoice_endpoint(self, client, sample_customer, two_jobs):
        user_id = uuid4()
        response = client.post(
            "/invoices/",
            json={
                "customer_id": str(sample_customer.id),
                "job_ids": [str(job.id) for job in two_jobs],
                "vat_rate": "0.19",
                "payment_terms_days": 30
            },
            headers={"X-User-ID": str(user_id)}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "draft"
        assert Decimal(data["total"]) == Decimal("178.50")
        assert data["invoice_number"] == f"INV-{utcnow().year}-0001"
        assert data["created_by"] == str(user_id)
        assert len(data["line_items"]) == 2

    def test_invalid_principal_header(self, client):
        response = client.get("/invoices/", headers={"X-User-ID": "not-a-uuid"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    def test_reused_job_endpoint(self, client, draft_invoice, sample_customer, two_jobs):
        response = client.post("/invoices/", json={
            "customer_id": str(sample_customer.id),
            "job_ids": [str(two_jobs[1].id)]
        })

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_failed"
        assert body["detail"]["ids"] == [str(two_jobs[1].id)]

    def test_full_lifecycle_endpoint(self, client, draft_invoice):
        invoice_id = str(draft_invoice.id)

        response = client.post(f"/invoices/{invoice_id}/send")
        assert response.status_code == 200
        assert response.json()["status"] == "sent"

        response = client.post(f"/invoices/{invoice_id}/pay", json={
            "payment_date": utcnow().date().isoformat(),
            "payment_method": "cash"
        })
        assert response.status_code == 200
        assert response.json()["status"] == "paid"

        response = client.post(f"/invoices/{invoice_id}/cancel")
        assert response.status_code == 409
        assert response.json()["detail"]["current_status"] == "paid"

    def test_get_invoice_detail_endpoint(self, client, draft_invoice):
        response = client.get(f"/invoices/{draft_invoice.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["customer_name"] == "Acme Builders Ltd"
        assert [item["position"] for item in data["line_items"]] == [1, 2]

    def test_outstanding_endpoint(self, client, draft_invoice):
        client.post(f"/invoices/{draft_invoice.id}/send")

        response = client.get("/invoices/outstanding")

        assert response.status_code == 200
        assert Decimal(response.json()["total_outstanding"]) == Decimal("178.50")

    def test_delete_invoice_endpoint(self, client, draft_invoice):
        assert client.delete(f"/invoices/{draft_invoice.id}").status_code == 204
        assert client.get(f"/invoices/{draft_invoice.id}").status_code == 404
