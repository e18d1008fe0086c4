"""
Tests para la numeración de documentos

Cubren:
- Formato y lectura de números {PREFIJO}-{año}-{secuencia}
- Reserva de números por tipo y año, incluidos documentos eliminados
- Reintento de la operación completa ante colisión de número
"""

import pytest
from datetime import timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.common.exceptions import ConflictingUniqueKeyError
from app.common.mixins import utcnow
from app.modules.invoices.models import Invoice, InvoiceStatus
from app.modules.numbering.models import DocumentKind, DocumentSequence
from app.modules.numbering.service import (
    DocumentNumberService, DocumentNumberCollision, format_document_number, parse_sequence,
    next_sequence_from_numbers, is_number_collision, is_unique_violation, run_with_number_retry
)


def integrity_error(message):
    return IntegrityError("INSERT ...", {}, Exception(message))


# ===== TESTS DE FORMATO =====

class TestNumberFormat:
    """Tests para el formato de número"""

    def test_format_pads_to_four_digits(self):
        assert format_document_number("INV", 2024, 7) == "INV-2024-0007"
        assert format_document_number("REC", 2025, 1234) == "REC-2025-1234"

    def test_format_beyond_four_digits(self):
        """Test la secuencia no se trunca al superar 9999"""
        assert format_document_number("INV", 2024, 10000) == "INV-2024-10000"

    def test_parse_sequence(self):
        assert parse_sequence("INV-2024-0042", "INV", 2024) == 42
        assert parse_sequence("INV-2023-0042", "INV", 2024) is None
        assert parse_sequence("REC-2024-0042", "INV", 2024) is None
        assert parse_sequence("INV-2024-draft", "INV", 2024) is None
        assert parse_sequence(None, "INV", 2024) is None

    def test_next_sequence_from_numbers(self):
        """Test máximo sufijo del año + 1, ignorando otros años y prefijos"""
        numbers = ["INV-2024-0003", "INV-2023-0009", "REC-2024-0010", None, "INV-2024-0001"]
        assert next_sequence_from_numbers(numbers, "INV", 2024) == 4
        assert next_sequence_from_numbers([], "INV", 2024) == 1

    def test_collision_detection_by_constraint(self):
        assert is_number_collision(
            integrity_error("UNIQUE constraint failed: invoices.invoice_number"), DocumentKind.INVOICE
        )
        assert is_number_collision(
            integrity_error('duplicate key value violates unique constraint "uq_receipts_receipt_number"'),
            DocumentKind.RECEIPT
        )
        assert not is_number_collision(
            integrity_error("UNIQUE constraint failed: invoices.invoice_number"), DocumentKind.RECEIPT
        )
        assert not is_unique_violation(integrity_error("NOT NULL constraint failed"), ("customers.email",))


# ===== TESTS DE RESERVA =====

class TestDocumentNumberService:
    """Tests para la reserva de números"""

    def test_first_number_of_year(self, db_session: Session):
        """Test primer número del año y siguiente en la misma transacción"""
        service = DocumentNumberService(db_session)
        year = utcnow().year

        assert service.next_number(DocumentKind.INVOICE) == f"INV-{year}-0001"
        assert service.next_number(DocumentKind.INVOICE) == f"INV-{year}-0002"
        db_session.commit()

        sequence = db_session.query(DocumentSequence).filter(
            DocumentSequence.kind == DocumentKind.INVOICE,
            DocumentSequence.year == year
        ).one()
        assert sequence.last_value == 2

    def test_sequences_per_kind_and_year(self, db_session: Session):
        """Test cada tipo y año tiene su propia secuencia"""
        service = DocumentNumberService(db_session)

        assert service.next_number(DocumentKind.INVOICE, 2023) == "INV-2023-0001"
        assert service.next_number(DocumentKind.INVOICE, 2024) == "INV-2024-0001"
        assert service.next_number(DocumentKind.RECEIPT, 2024) == "REC-2024-0001"
        assert service.next_number(DocumentKind.INVOICE, 2023) == "INV-2023-0002"

    def test_rollback_releases_number(self, db_session: Session):
        service = DocumentNumberService(db_session)
        year = utcnow().year

        service.next_number(DocumentKind.RECEIPT)
        db_session.rollback()

        assert service.next_number(DocumentKind.RECEIPT) == f"REC-{year}-0001"

    def test_scan_includes_soft_deleted_documents(self, db_session: Session, sample_customer):
        """Test un número de documento eliminado no se reutiliza aunque el contador no lo refleje"""
        year = utcnow().year
        invoice = Invoice(
            customer_id=sample_customer.id,
            invoice_number=f"INV-{year}-0007",
            status=InvoiceStatus.DRAFT,
            due_date=utcnow().date() + timedelta(days=30)
        )
        invoice.soft_delete()
        db_session.add(invoice)
        db_session.commit()

        service = DocumentNumberService(db_session)
        assert service.peek_next_sequence(DocumentKind.INVOICE) == 8
        assert service.next_number(DocumentKind.INVOICE) == f"INV-{year}-0008"

    def test_counter_ahead_of_documents_wins(self, db_session: Session):
        """Test el contador manda cuando va por delante del escaneo"""
        db_session.add(DocumentSequence(kind=DocumentKind.INVOICE, year=2024, last_value=41))
        db_session.commit()

        assert DocumentNumberService(db_session).next_number(DocumentKind.INVOICE, 2024) == "INV-2024-0042"


# ===== TESTS DE REINTENTO =====

class TestNumberRetry:
    """Tests para el reintento ante colisión"""

    def test_retries_until_success(self):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) < 3:
                raise DocumentNumberCollision(DocumentKind.INVOICE)
            return "ok"

        assert run_with_number_retry(operation, DocumentKind.INVOICE, attempts=3) == "ok"
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self):
        """Test se propaga la colisión como ConflictingUniqueKey tras agotar intentos"""
        calls = []

        def operation():
            calls.append(1)
            raise DocumentNumberCollision(DocumentKind.RECEIPT)

        with pytest.raises(ConflictingUniqueKeyError) as exc_info:
            run_with_number_retry(operation, DocumentKind.RECEIPT, attempts=2)

        assert len(calls) == 2
        assert exc_info.value.status_code == 409
        assert exc_info.value.key == "receipt_number"

    def test_other_errors_not_retried(self):
        calls = []

        def operation():
            calls.append(1)
            raise ValueError("boom")

        with pytest.raises(ValueError):
            run_with_number_retry(operation, DocumentKind.INVOICE, attempts=3)
        assert len(calls) == 1
