"""
Tests para el módulo de Trabajos

Cubren:
- Alta con fecha de finalización automática en estado COMPLETED
- Transiciones de estado permitidas y rechazadas
- Restricciones de edición y borrado de trabajos facturados
- Vínculo condicional con la factura (todo o nada)
- Consultas: sin facturar, por factura, agrupados por dirección
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.orm import Session
from uuid import uuid4

from app.common.exceptions import NotFoundError, ValidationFailedError, InvalidStateTransitionError
from app.common.mixins import utcnow
from app.modules.jobs.models import Job, JobType, JobStatus, SkipType
from app.modules.jobs.schemas import JobCreate, JobUpdate
from app.modules.jobs.service import JobService, resolve_end_date


# ===== FIXTURES =====

@pytest.fixture
def job_payload(sample_customer):
    """Datos de ejemplo para crear trabajos"""
    return {
        "customer_id": sample_customer.id,
        "title": "Large skip, building rubble",
        "address": "7 Anexartisias St, Limassol, 3036",
        "type": JobType.SKIP_RENTAL,
        "skip_type": SkipType.LARGE_SKIP,
        "skip_number": "SK-114",
        "price": Decimal("120.00"),
        "start_date": datetime(2024, 5, 2, 9, 0),
    }


# ===== TESTS DE MODELOS =====

class TestJobModel:
    """Tests para el modelo Job"""

    def test_invoice_description(self, sample_customer):
        job = Job(
            customer_id=sample_customer.id,
            title="Sand, 2 tons",
            address="12 Harbour Road, Limassol",
            type=JobType.SAND_DELIVERY,
            price=Decimal("90.00"),
            start_date=datetime(2024, 1, 1)
        )
        assert job.short_address == "12 Harbour Road"
        assert job.invoice_description() == "Sand Delivery - Sand, 2 tons at 12 Harbour Road"
        assert job.is_invoiced is False

    def test_resolve_end_date(self):
        """Test COMPLETED exige fecha; otro estado la limpia"""
        end = datetime(2024, 5, 3, 17, 0)
        assert resolve_end_date(JobStatus.COMPLETED, end, None) == end
        assert resolve_end_date(JobStatus.COMPLETED, None, end) == end
        assert resolve_end_date(JobStatus.COMPLETED, None, None) is not None
        assert resolve_end_date(JobStatus.ACTIVE, end, end) is None


# ===== TESTS DE SERVICIOS =====

class TestJobService:
    """Tests para JobService"""

    def test_create_job_defaults_to_new(self, db_session: Session, job_payload):
        job = JobService(db_session).create_job(JobCreate(**job_payload))

        assert job.status == JobStatus.NEW
        assert job.end_date is None
        assert job.invoice_id is None
        assert job.skip_type == "large_skip"

    def test_create_completed_job_sets_end_date(self, db_session: Session, job_payload):
        """Test completado sin fecha de fin recibe la fecha actual"""
        before = utcnow()
        job = JobService(db_session).create_job(JobCreate(**job_payload, status=JobStatus.COMPLETED))

        assert job.end_date is not None
        assert job.end_date >= before

    def test_create_job_for_missing_customer(self, db_session: Session, job_payload):
        with pytest.raises(NotFoundError):
            JobService(db_session).create_job(JobCreate(**dict(job_payload, customer_id=uuid4())))

    def test_create_job_end_before_start(self, job_payload):
        with pytest.raises(ValueError):
            JobCreate(**job_payload, end_date=datetime(2024, 5, 1))

    def test_negative_price_rejected(self, job_payload):
        with pytest.raises(ValueError):
            JobCreate(**dict(job_payload, price=Decimal("-1.00")))

    def test_lifecycle_transitions(self, db_session: Session, sample_customer, make_job):
        """Test NEW -> ACTIVE -> COMPLETED -> ACTIVE limpia la fecha de fin"""
        service = JobService(db_session)
        job = make_job(sample_customer, status=JobStatus.NEW)

        job = service.update_status(job.id, JobStatus.ACTIVE)
        assert job.end_date is None

        end = job.start_date + timedelta(hours=8)
        job = service.update_status(job.id, JobStatus.COMPLETED, end)
        assert job.end_date == end

        job = service.update_status(job.id, JobStatus.ACTIVE)
        assert job.status == JobStatus.ACTIVE
        assert job.end_date is None

    def test_invalid_transition(self, db_session: Session, sample_customer, make_job):
        """Test NEW -> COMPLETED no está permitido"""
        job = make_job(sample_customer, status=JobStatus.NEW)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            JobService(db_session).update_status(job.id, JobStatus.COMPLETED)

        assert exc_info.value.detail["current_status"] == "new"
        assert exc_info.value.detail["requested"] == "completed"

    def test_cancelled_job_can_be_reopened_as_new(self, db_session: Session, sample_customer, make_job):
        service = JobService(db_session)
        job = make_job(sample_customer, status=JobStatus.CANCELLED)

        assert service.update_status(job.id, JobStatus.NEW).status == JobStatus.NEW

    def test_update_job_partial(self, db_session: Session, sample_customer, make_job):
        """Test solo se aplican los campos enviados"""
        job = make_job(sample_customer, status=JobStatus.ACTIVE, title="Forklift, half day")

        updated = JobService(db_session).update_job(job.id, JobUpdate(price=Decimal("250.00")))

        assert updated.price == Decimal("250.00")
        assert updated.title == "Forklift, half day"
        assert updated.status == JobStatus.ACTIVE

    def test_update_job_null_title_rejected(self):
        with pytest.raises(ValueError):
            JobUpdate(title=None)

    def test_invoiced_job_only_status_and_dates(self, db_session: Session, sample_customer, make_invoice):
        """Test trabajo facturado: precio bloqueado, fechas permitidas"""
        service = JobService(db_session)
        invoice = make_invoice(sample_customer)
        job = service.get_jobs_by_invoice(invoice.id)[0]

        with pytest.raises(InvalidStateTransitionError):
            service.update_job(job.id, JobUpdate(price=Decimal("1.00")))

        new_start = job.start_date - timedelta(days=1)
        updated = service.update_job(job.id, JobUpdate(start_date=new_start))
        assert updated.start_date == new_start
        assert updated.price == Decimal("100.00")
        assert updated.invoice_id == invoice.id

    def test_update_status_end_before_start_rejected(self, db_session: Session, sample_customer, make_job):
        """Test completar con fecha de fin anterior al inicio no cambia el trabajo"""
        service = JobService(db_session)
        job = make_job(sample_customer, status=JobStatus.ACTIVE)

        with pytest.raises(ValidationFailedError) as exc_info:
            service.update_status(job.id, JobStatus.COMPLETED, job.start_date - timedelta(days=30))

        assert exc_info.value.field == "end_date"
        assert exc_info.value.ids == [str(job.id)]
        db_session.refresh(job)
        assert job.status == JobStatus.ACTIVE
        assert job.end_date is None

    def test_update_job_end_before_start_rejected(self, db_session: Session, sample_customer, make_job):
        service = JobService(db_session)
        job = make_job(sample_customer)
        original_end = job.end_date

        with pytest.raises(ValidationFailedError) as exc_info:
            service.update_job(job.id, JobUpdate(end_date=job.start_date - timedelta(days=30)))

        assert exc_info.value.field == "end_date"
        db_session.refresh(job)
        assert job.end_date == original_end

    def test_update_job_start_after_stored_end_rejected(self, db_session: Session, sample_customer, make_job):
        """Test se compara con la fecha de inicio que tendrá el trabajo"""
        service = JobService(db_session)
        job = make_job(sample_customer)

        with pytest.raises(ValidationFailedError):
            service.update_job(job.id, JobUpdate(start_date=job.end_date + timedelta(days=2)))

        moved = service.update_job(job.id, JobUpdate(
            start_date=job.end_date + timedelta(days=2),
            end_date=job.end_date + timedelta(days=3)
        ))
        assert moved.end_date > moved.start_date

    def test_invoiced_job_not_deletable(self, db_session: Session, sample_customer, make_invoice):
        service = JobService(db_session)
        invoice = make_invoice(sample_customer)
        job = service.get_jobs_by_invoice(invoice.id)[0]

        with pytest.raises(InvalidStateTransitionError):
            service.delete_job(job.id)

    def test_delete_job(self, db_session: Session, sample_customer, make_job):
        service = JobService(db_session)
        job = make_job(sample_customer, status=JobStatus.NEW)

        service.delete_job(job.id)

        with pytest.raises(NotFoundError):
            service.get_job(job.id)
        assert db_session.query(Job).filter(Job.id == job.id).one().is_deleted is True


# ===== TESTS DE VÍNCULO CON FACTURAS =====

class TestJobInvoiceLink:
    """Tests para mark_invoiced / remove_from_invoice"""

    def test_mark_invoiced_all_or_nothing(self, db_session: Session, sample_customer, make_job, make_invoice):
        """Test si un trabajo ya está facturado no se vincula ninguno"""
        service = JobService(db_session)
        invoice = make_invoice(sample_customer)
        taken = service.get_jobs_by_invoice(invoice.id)[0]
        free = make_job(sample_customer)
        other_invoice_id = invoice.id

        with pytest.raises(ValidationFailedError) as exc_info:
            service.mark_invoiced([free.id, taken.id], uuid4(), sample_customer.id)

        assert exc_info.value.ids == [str(taken.id)]
        db_session.refresh(free)
        db_session.refresh(taken)
        assert free.invoice_id is None
        assert taken.invoice_id == other_invoice_id

    def test_mark_invoiced_rejects_unfinished(self, db_session: Session, sample_customer, make_job, make_invoice):
        service = JobService(db_session)
        invoice = make_invoice(sample_customer)
        active = make_job(sample_customer, status=JobStatus.ACTIVE)

        with pytest.raises(ValidationFailedError):
            service.mark_invoiced([active.id], invoice.id)

        db_session.refresh(active)
        assert active.invoice_id is None

    def test_remove_from_invoice(self, db_session: Session, sample_customer, make_invoice):
        service = JobService(db_session)
        invoice = make_invoice(sample_customer, prices=("10.00", "20.00"))
        job_ids = [job.id for job in service.get_jobs_by_invoice(invoice.id)]

        assert service.remove_from_invoice(job_ids) == 2
        assert service.get_jobs_by_invoice(invoice.id) == []
        assert service.remove_from_invoice([]) == 0


# ===== TESTS DE CONSULTAS =====

class TestJobQueries:
    """Tests para las consultas de trabajos"""

    def test_completed_uninvoiced(self, db_session: Session, sample_customer, make_job, make_invoice):
        make_invoice(sample_customer)
        ready = make_job(sample_customer)
        make_job(sample_customer, status=JobStatus.ACTIVE)

        result = JobService(db_session).get_completed_uninvoiced(sample_customer.id)

        assert [job.id for job in result] == [ready.id]

    def test_list_filters(self, db_session: Session, sample_customer, make_customer, make_job, make_invoice):
        service = JobService(db_session)
        make_invoice(sample_customer)
        make_job(sample_customer, status=JobStatus.NEW)
        make_job(make_customer())

        assert service.get_jobs(customer_id=sample_customer.id).total == 2
        assert service.get_jobs(customer_id=sample_customer.id, invoiced=True).total == 1
        assert service.get_jobs(status=JobStatus.NEW).total == 1
        assert service.get_jobs().total == 3

    def test_grouped_by_address(self, db_session: Session, sample_customer, make_job):
        """Test agrupa direcciones ignorando mayúsculas y espacios"""
        make_job(sample_customer, price="10.00", address="1 Port St, Larnaca")
        make_job(sample_customer, price="15.50", address=" 1 port st, larnaca ")
        make_job(sample_customer, price="99.00", address="9 Hill Rd, Paphos")

        groups = JobService(db_session).get_jobs_grouped_by_address(sample_customer.id)

        assert len(groups) == 2
        larnaca = groups[0]
        assert larnaca.job_count == 2
        assert larnaca.total_value == Decimal("25.50")


# ===== TESTS DE API ENDPOINTS =====

class TestJobAPI:
    """Tests para endpoints de la API de trabajos"""

    def test_create_job_endpoint(self, client, sample_customer):
        response = client.post("/jobs/", json={
            "customer_id": str(sample_customer.id),
            "title": "Forklift 25m",
            "address": "3 Dock Rd, Larnaca",
            "type": "forklift_service",
            "forklift_size": "25m",
            "price": "300.00",
            "start_date": "2024-06-01T08:00:00",
            "status": "completed"
        })

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "completed"
        assert data["end_date"] is not None
        assert data["type_display"] == "Fork Lift Service"
        assert data["is_invoiced"] is False

    def test_invalid_status_transition_endpoint(self, client, sample_customer, make_job):
        job = make_job(sample_customer, status=JobStatus.NEW)

        response = client.patch(f"/jobs/{job.id}/status", json={"status": "completed"})

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state_transition"

    def test_status_end_before_start_endpoint(self, client, sample_customer, make_job):
        job = make_job(sample_customer, status=JobStatus.ACTIVE)

        response = client.patch(f"/jobs/{job.id}/status", json={
            "status": "completed",
            "end_date": (job.start_date - timedelta(days=1)).isoformat()
        })

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "end_date"

    def test_uninvoiced_endpoint(self, client, sample_customer, make_job):
        job = make_job(sample_customer)

        response = client.get("/jobs/uninvoiced", params={"customer_id": str(sample_customer.id)})

        assert response.status_code == 200
        assert [j["id"] for j in response.json()] == [str(job.id)]

    def test_delete_job_endpoint(self, client, sample_customer, make_job):
        job = make_job(sample_customer, status=JobStatus.NEW)

        assert client.delete(f"/jobs/{job.id}").status_code == 204
        assert client.get(f"/jobs/{job.id}").status_code == 404
