"""
Fixtures compartidos para los tests de la API de facturación.

Base de datos SQLite en memoria (StaticPool: una sola conexión compartida) con
el esquema creado desde los modelos; la API usa la misma base vía override de
``get_db``.
"""
import os

# Antes de importar la aplicación: la configuración se lee al importar
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DEBUG"] = "false"

import pytest
from datetime import timedelta
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database.database import Base, get_db
from app.common.mixins import utcnow
from app.modules.customers.models import Customer
from app.modules.jobs.models import Job, JobType, JobStatus
from app.modules.invoices.models import PaymentMethod
from app.modules.invoices.schemas import InvoiceCreate, InvoicePaymentRequest
from app.modules.invoices.service import InvoiceService
from app.modules.documents.renderer import DocumentRenderer, DocumentRenderError
from app.modules.email.service import EmailService, EmailResult


# ===== BASE DE DATOS =====

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    """Cliente HTTP con la base de datos de test"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ===== FACTORIES =====

@pytest.fixture
def make_customer(db_session):
    counter = {"n": 0}

    def _make(name=None, email=None, **kwargs):
        counter["n"] += 1
        customer = Customer(
            name=name or f"Customer {counter['n']}",
            email=email or f"customer{counter['n']}@example.com",
            **kwargs
        )
        db_session.add(customer)
        db_session.commit()
        db_session.refresh(customer)
        return customer

    return _make


@pytest.fixture
def make_job(db_session):
    def _make(
        customer,
        price="100.00",
        status=JobStatus.COMPLETED,
        type=JobType.SAND_DELIVERY,
        title="Delivery",
        address="12 Harbour Road, Limassol",
        **kwargs
    ):
        start = utcnow() - timedelta(days=3)
        job = Job(
            customer_id=customer.id,
            title=title,
            address=address,
            type=type,
            status=status,
            price=Decimal(price),
            start_date=start,
            end_date=start + timedelta(days=1) if status == JobStatus.COMPLETED else None,
            **kwargs
        )
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job

    return _make


@pytest.fixture
def make_invoice(db_session, make_job):
    """Factura en borrador con un trabajo completado por precio; ``paid=True`` la envía y la cobra"""
    def _make(customer, prices=("100.00",), vat_rate=None, paid=False, **kwargs):
        jobs = [make_job(customer, price=price) for price in prices]
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(
            customer_id=customer.id,
            job_ids=[job.id for job in jobs],
            vat_rate=vat_rate,
            **kwargs
        ))
        if paid:
            service.mark_as_sent(invoice.id)
            invoice = service.mark_as_paid(invoice.id, InvoicePaymentRequest(
                payment_date=utcnow().date(),
                payment_method=PaymentMethod.BANK_TRANSFER
            ))
        return invoice

    return _make


@pytest.fixture
def sample_customer(make_customer):
    return make_customer(name="Acme Builders Ltd", email="accounts@acme.example.com")


# ===== COLABORADORES EXTERNOS =====

class FakeRenderer(DocumentRenderer):
    """Renderiza el HTML real pero devuelve bytes sin pasar por WeasyPrint"""

    def __init__(self, fail=False):
        super().__init__()
        self.fail = fail
        self.rendered = []

    def render_pdf(self, template_name, context):
        html = self.render_html(template_name, context)
        if self.fail:
            raise DocumentRenderError("renderer unavailable")
        self.rendered.append(template_name)
        return b"%PDF-1.4 " + html.encode("utf-8")[:64]


class FakeEmailService(EmailService):
    """Sustituye el envío SMTP; ``failures`` intentos fallan antes de tener éxito"""

    def __init__(self, failures=0):
        super().__init__(max_attempts=3, backoff_seconds=0)
        self.failures = failures
        self.attempts = 0
        self.sent = []

    def send_email(self, message):
        self.attempts += 1
        if self.attempts <= self.failures:
            return EmailResult(success=False, error="SMTP unavailable")
        self.sent.append(message)
        return EmailResult(success=True, message_id=f"<msg-{self.attempts}@test>")


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def fake_email():
    return FakeEmailService()
