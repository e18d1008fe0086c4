"""
Tests para el módulo de Clientes

Cubren:
- Alta con email único entre clientes activos (sin distinguir mayúsculas)
- Reutilización del email tras la baja lógica
- Bloqueo de la baja con trabajos activos o facturas en borrador
- Endpoints y formato de error de la API
"""

import pytest
from sqlalchemy.orm import Session
from uuid import uuid4

from app.common.exceptions import NotFoundError, ConflictingUniqueKeyError, InvalidStateTransitionError
from app.modules.customers.models import Customer
from app.modules.customers.schemas import CustomerCreate, CustomerUpdate
from app.modules.customers.service import CustomerService
from app.modules.jobs.models import JobStatus


# ===== FIXTURES =====

@pytest.fixture
def sample_customer_data():
    """Datos de ejemplo para crear clientes"""
    return {
        "name": "Harbour Construction",
        "email": "Office@Harbour.example.com",
        "phone": "+357 25 000000",
        "vat_number": "CY10000000X",
    }


# ===== TESTS DE SERVICIOS =====

class TestCustomerService:
    """Tests para CustomerService"""

    def test_create_customer_normalizes_email(self, db_session: Session, sample_customer_data):
        """Test el email se guarda en minúsculas"""
        customer = CustomerService(db_session).create_customer(CustomerCreate(**sample_customer_data))

        assert customer.id is not None
        assert customer.email == "office@harbour.example.com"
        assert customer.is_deleted is False

    def test_create_duplicate_email(self, db_session: Session, sample_customer_data):
        """Test email duplicado entre clientes activos"""
        service = CustomerService(db_session)
        service.create_customer(CustomerCreate(**sample_customer_data))

        duplicated = dict(sample_customer_data, name="Other", email="OFFICE@harbour.example.com")
        with pytest.raises(ConflictingUniqueKeyError) as exc_info:
            service.create_customer(CustomerCreate(**duplicated))

        assert exc_info.value.key == "email"
        assert db_session.query(Customer).count() == 1

    def test_email_reusable_after_delete(self, db_session: Session, sample_customer_data):
        """Test el email de un cliente dado de baja puede volver a usarse"""
        service = CustomerService(db_session)
        first = service.create_customer(CustomerCreate(**sample_customer_data))
        service.delete_customer(first.id)

        second = service.create_customer(CustomerCreate(**sample_customer_data))

        assert second.id != first.id
        with pytest.raises(NotFoundError):
            service.get_customer(first.id)

    def test_update_to_taken_email(self, db_session: Session, make_customer):
        service = CustomerService(db_session)
        first = make_customer(email="first@example.com")
        second = make_customer(email="second@example.com")

        with pytest.raises(ConflictingUniqueKeyError):
            service.update_customer(second.id, CustomerUpdate(email="First@example.com"))

        db_session.refresh(second)
        assert second.email == "second@example.com"

    def test_update_keeps_unsent_fields(self, db_session: Session, sample_customer):
        updated = CustomerService(db_session).update_customer(sample_customer.id, CustomerUpdate(phone="123"))

        assert updated.phone == "123"
        assert updated.name == "Acme Builders Ltd"
        assert updated.email == "accounts@acme.example.com"

    def test_delete_with_active_job_refused(self, db_session: Session, sample_customer, make_job):
        """Test no se elimina un cliente con trabajos activos"""
        make_job(sample_customer, status=JobStatus.ACTIVE)

        with pytest.raises(InvalidStateTransitionError):
            CustomerService(db_session).delete_customer(sample_customer.id)

        db_session.refresh(sample_customer)
        assert sample_customer.is_deleted is False

    def test_delete_with_draft_invoice_refused(self, db_session: Session, sample_customer, make_invoice):
        make_invoice(sample_customer)

        with pytest.raises(InvalidStateTransitionError):
            CustomerService(db_session).delete_customer(sample_customer.id)

    def test_delete_with_completed_jobs_allowed(self, db_session: Session, sample_customer, make_job):
        make_job(sample_customer, status=JobStatus.COMPLETED)

        CustomerService(db_session).delete_customer(sample_customer.id)

        db_session.refresh(sample_customer)
        assert sample_customer.is_deleted is True
        assert sample_customer.deleted_at is not None

    def test_search_customers(self, db_session: Session, make_customer):
        make_customer(name="Limassol Skips", email="skips@example.com")
        make_customer(name="Nicosia Sand", email="sand@example.com")

        result = CustomerService(db_session).get_customers(search="sand")

        assert result.total == 1
        assert result.customers[0].name == "Nicosia Sand"

    def test_get_missing_customer(self, db_session: Session):
        with pytest.raises(NotFoundError):
            CustomerService(db_session).get_customer(uuid4())


# ===== TESTS DE API ENDPOINTS =====

class TestCustomerAPI:
    """Tests para endpoints de la API de clientes"""

    def test_create_customer_endpoint(self, client, sample_customer_data):
        response = client.post("/customers/", json=sample_customer_data)

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "office@harbour.example.com"
        assert data["name"] == "Harbour Construction"

    def test_duplicate_email_endpoint(self, client, sample_customer_data):
        """Test formato de error {"error", "detail"} para clave duplicada"""
        client.post("/customers/", json=sample_customer_data)
        response = client.post("/customers/", json=sample_customer_data)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "conflicting_unique_key"
        assert body["detail"]["key"] == "email"

    def test_invalid_email_endpoint(self, client, sample_customer_data):
        response = client.post("/customers/", json=dict(sample_customer_data, email="not-an-email"))
        assert response.status_code == 422

    def test_get_missing_customer_endpoint(self, client):
        response = client.get(f"/customers/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_update_and_delete_endpoint(self, client, sample_customer_data):
        customer_id = client.post("/customers/", json=sample_customer_data).json()["id"]

        response = client.patch(f"/customers/{customer_id}", json={"notes": "Pays by transfer"})
        assert response.status_code == 200
        assert response.json()["notes"] == "Pays by transfer"

        assert client.delete(f"/customers/{customer_id}").status_code == 204
        assert client.get(f"/customers/{customer_id}").status_code == 404

    def test_list_customers_endpoint(self, client, sample_customer):
        response = client.get("/customers/", params={"limit": 10})

        assert response.status_code == 200
        assert response.json()["total"] == 1
