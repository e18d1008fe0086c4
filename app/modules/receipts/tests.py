"""
Tests para el módulo de Recibos

Cubren:
- Creación desde facturas pagadas y numeración sin reutilizar números borrados
- Límite de asignación: una factura no se cobra en dos recibos vigentes
- Envío por email: solo se marca enviado tras confirmación
- Fallos del renderizador y del correo sin efectos sobre el recibo
"""

import pytest
from decimal import Decimal
from sqlalchemy.orm import Session
from uuid import uuid4

from app.common.exceptions import NotFoundError, ValidationFailedError, ExternalServiceError
from app.common.mixins import utcnow
from app.dependencies.dbDependecies import db_dependency
from app.main import app
from app.modules.invoices.models import Invoice, InvoiceStatus
from app.modules.receipts.models import Receipt, ReceiptInvoice
from app.modules.receipts.router import get_receipt_service
from app.modules.receipts.schemas import ReceiptCreate
from app.modules.receipts.service import ReceiptService


# ===== FIXTURES =====

@pytest.fixture
def service(db_session: Session, fake_renderer, fake_email):
    return ReceiptService(db_session, renderer=fake_renderer, email_service=fake_email)


@pytest.fixture
def paid_invoice(sample_customer, make_invoice):
    """Factura pagada de 178.50 (100.00 + 50.00 al 19%)"""
    return make_invoice(sample_customer, prices=("100.00", "50.00"), vat_rate=Decimal("0.19"), paid=True)


@pytest.fixture
def receipt(service, sample_customer, paid_invoice):
    return service.create_receipt(ReceiptCreate(customer_id=sample_customer.id, invoice_ids=[paid_invoice.id]))


@pytest.fixture
def api_services(fake_renderer, fake_email):
    """Sustituye renderizador y correo en la API"""
    def override(db: db_dependency):
        return ReceiptService(db, renderer=fake_renderer, email_service=fake_email)

    app.dependency_overrides[get_receipt_service] = override
    yield fake_renderer, fake_email
    app.dependency_overrides.pop(get_receipt_service, None)


# ===== TESTS DE CREACIÓN =====

class TestReceiptCreation:
    """Tests para la creación de recibos"""

    def test_create_receipt_from_paid_invoice(self, receipt, paid_invoice):
        """Test total = total de la factura, primer número del año"""
        assert receipt.total_amount == Decimal("178.50")
        assert receipt.receipt_number == f"REC-{utcnow().year}-0001"
        assert receipt.is_sent is False
        assert receipt.sent_date is None

        [allocation] = receipt.allocations
        assert allocation.invoice_id == paid_invoice.id
        assert allocation.allocated_amount == Decimal("178.50")
        assert allocation.invoice_number == paid_invoice.invoice_number

    def test_number_not_reused_after_delete(self, service, receipt, sample_customer, make_invoice):
        """Test tras borrar REC-0001 el siguiente recibo es REC-0002"""
        service.delete_receipt(receipt.id)
        other = make_invoice(sample_customer, prices=("30.00",), paid=True)

        second = service.create_receipt(ReceiptCreate(customer_id=sample_customer.id, invoice_ids=[other.id]))

        assert second.receipt_number == f"REC-{utcnow().year}-0002"

    def test_several_invoices_sum(self, service, sample_customer, make_invoice):
        first = make_invoice(sample_customer, prices=("100.00",), vat_rate=Decimal("0.19"), paid=True)
        second = make_invoice(sample_customer, prices=("20.00",), vat_rate=Decimal("0.05"), paid=True)

        receipt = service.create_receipt(ReceiptCreate(
            customer_id=sample_customer.id, invoice_ids=[first.id, second.id]
        ))

        assert receipt.total_amount == Decimal("140.00")
        assert len(receipt.allocations) == 2

    def test_unpaid_invoice_rejected(self, db_session: Session, service, sample_customer, make_invoice):
        """Test una factura sin pagar no entra en un recibo"""
        draft = make_invoice(sample_customer)

        with pytest.raises(ValidationFailedError) as exc_info:
            service.create_receipt(ReceiptCreate(customer_id=sample_customer.id, invoice_ids=[draft.id]))

        assert exc_info.value.ids == [str(draft.id)]
        assert db_session.query(Receipt).count() == 0

    def test_invoice_of_other_customer_rejected(self, service, sample_customer, make_customer, make_invoice):
        foreign = make_invoice(make_customer(), paid=True)

        with pytest.raises(ValidationFailedError):
            service.create_receipt(ReceiptCreate(customer_id=sample_customer.id, invoice_ids=[foreign.id]))

    def test_missing_customer(self, service, paid_invoice):
        with pytest.raises(NotFoundError):
            service.create_receipt(ReceiptCreate(customer_id=uuid4(), invoice_ids=[paid_invoice.id]))

    def test_duplicated_invoice_ids_rejected(self, sample_customer):
        invoice_id = uuid4()
        with pytest.raises(ValueError):
            ReceiptCreate(customer_id=sample_customer.id, invoice_ids=[invoice_id, invoice_id])


# ===== TESTS DE ASIGNACIÓN =====

class TestReceiptAllocation:
    """Tests para el límite de asignación por factura"""

    def test_invoice_cannot_be_allocated_twice(self, db_session: Session, service, receipt, sample_customer, paid_invoice):
        """Test la suma asignada no supera el total de la factura"""
        with pytest.raises(ValidationFailedError) as exc_info:
            service.create_receipt(ReceiptCreate(customer_id=sample_customer.id, invoice_ids=[paid_invoice.id]))

        assert exc_info.value.ids == [str(paid_invoice.id)]
        assert db_session.query(ReceiptInvoice).count() == 1

    def test_allocation_freed_by_delete(self, service, receipt, sample_customer, paid_invoice):
        """Test un recibo eliminado no cuenta para el límite"""
        service.delete_receipt(receipt.id)

        again = service.create_receipt(ReceiptCreate(customer_id=sample_customer.id, invoice_ids=[paid_invoice.id]))

        assert again.total_amount == Decimal("178.50")
        assert service.get_allocated_amounts([paid_invoice.id]) == {paid_invoice.id: Decimal("178.50")}

    def test_delete_keeps_invoices(self, db_session: Session, service, receipt, paid_invoice):
        service.delete_receipt(receipt.id)

        with pytest.raises(NotFoundError):
            service.get_receipt(receipt.id)
        invoice = db_session.query(Invoice).filter(Invoice.id == paid_invoice.id).one()
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.is_deleted is False

    def test_list_receipts(self, service, receipt, sample_customer):
        assert service.get_receipts(customer_id=sample_customer.id).total == 1
        assert service.get_receipts(customer_id=uuid4()).total == 0


# ===== TESTS DE ENVÍO =====

class TestReceiptSending:
    """Tests para el envío del recibo por email"""

    def test_send_marks_sent(self, service, receipt, fake_email, fake_renderer):
        """Test envío confirmado: marca enviado y adjunta el PDF"""
        result = service.send_receipt(receipt.id)

        assert result.is_sent is True
        assert result.sent_date is not None
        assert result.message_id == "<msg-1@test>"

        [message] = fake_email.sent
        assert message.to_address == "accounts@acme.example.com"
        assert receipt.receipt_number in message.subject
        assert message.attachment.startswith(b"%PDF")
        assert message.attachment_filename == f"{receipt.receipt_number}.pdf"
        assert "178.50" in message.html_body
        assert fake_renderer.rendered == ["receipt.html"]

    def test_send_retries_transient_failures(self, service, receipt, fake_email):
        fake_email.failures = 2

        result = service.send_receipt(receipt.id)

        assert result.is_sent is True
        assert fake_email.attempts == 3

    def test_send_failure_leaves_receipt_unsent(self, db_session: Session, service, receipt, fake_email):
        """Test si el correo falla tras los reintentos el recibo no cambia"""
        fake_email.failures = 10

        with pytest.raises(ExternalServiceError) as exc_info:
            service.send_receipt(receipt.id)

        assert exc_info.value.service == "email"
        assert fake_email.attempts == 3
        db_session.refresh(receipt)
        assert receipt.is_sent is False
        assert receipt.sent_date is None

    def test_render_failure_skips_email(self, db_session: Session, service, receipt, fake_email, fake_renderer):
        fake_renderer.fail = True

        with pytest.raises(ExternalServiceError) as exc_info:
            service.send_receipt(receipt.id)

        assert exc_info.value.service == "renderer"
        assert fake_email.attempts == 0
        db_session.refresh(receipt)
        assert receipt.is_sent is False

    def test_send_missing_receipt(self, service):
        with pytest.raises(NotFoundError):
            service.send_receipt(uuid4())

    def test_document_filename(self, service, receipt):
        assert service.document_filename(receipt) == f"REC-{utcnow().year}-0001.pdf"


# ===== TESTS DE API ENDPOINTS =====

class TestReceiptAPI:
    """Tests para endpoints de la API de recibos"""

    def test_create_and_get_receipt_endpoint(self, client, api_services, sample_customer, paid_invoice):
        response = client.post("/receipts/", json={
            "customer_id": str(sample_customer.id),
            "invoice_ids": [str(paid_invoice.id)]
        })

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["total_amount"]) == Decimal("178.50")
        assert data["allocations"][0]["invoice_number"] == paid_invoice.invoice_number

        response = client.get(f"/receipts/{data['id']}")
        assert response.status_code == 200
        assert response.json()["receipt_number"] == data["receipt_number"]

    def test_download_document_endpoint(self, client, api_services, receipt):
        response = client.get(f"/receipts/{receipt.id}/document")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert receipt.receipt_number in response.headers["content-disposition"]
        assert response.content.startswith(b"%PDF")

    def test_send_endpoint(self, client, api_services, receipt):
        response = client.post(f"/receipts/{receipt.id}/send")

        assert response.status_code == 200
        assert response.json()["is_sent"] is True

    def test_send_failure_endpoint(self, client, api_services, receipt):
        """Test fallo del correo: 502 con el servicio afectado"""
        _, fake_email = api_services
        fake_email.failures = 10

        response = client.post(f"/receipts/{receipt.id}/send")

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "external_service_failure"
        assert body["detail"]["service"] == "email"

    def test_unpaid_invoice_endpoint(self, client, api_services, sample_customer, make_invoice):
        draft = make_invoice(sample_customer)

        response = client.post("/receipts/", json={
            "customer_id": str(sample_customer.id),
            "invoice_ids": [str(draft.id)]
        })

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "invoice_ids"

    def test_delete_receipt_endpoint(self, client, api_services, receipt):
        assert client.delete(f"/receipts/{receipt.id}").status_code == 204
        assert client.get(f"/receipts/{receipt.id}").status_code == 404
