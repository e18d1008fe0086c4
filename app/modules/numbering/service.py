"""
Numeración secuencial de documentos (facturas y recibos).

Formato: ``{PREFIJO}-{año}-{secuencia:4}``; la secuencia reinicia en 1 cada año.
El siguiente número es max(contador, máximo escaneado) + 1, donde el escaneo
incluye documentos eliminados lógicamente para no reutilizar números. El
contador se incrementa con compare-and-set y la restricción UNIQUE del número
detecta colisiones residuales, que se reintentan con ``run_with_number_retry``.
"""
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from tenacity import Retrying, stop_after_attempt, retry_if_exception_type
from typing import Callable, Iterable, Optional, TypeVar
import logging

from app.common.exceptions import ConflictingUniqueKeyError
from app.common.mixins import utcnow
from app.core.config import settings
from app.modules.numbering.models import DocumentSequence, DocumentKind, DOCUMENT_PREFIXES
from app.modules.invoices.models import Invoice
from app.modules.receipts.models import Receipt

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Marcadores con los que PostgreSQL / SQLite reportan la violación del número
NUMBER_CONSTRAINT_MARKERS = {
    DocumentKind.INVOICE: ("uq_invoices_invoice_number", "invoices.invoice_number"),
    DocumentKind.RECEIPT: ("uq_receipts_receipt_number", "receipts.receipt_number"),
}
SEQUENCE_CONSTRAINT_MARKERS = ("uq_document_sequences_kind_year", "document_sequences.kind")


class DocumentNumberCollision(ConflictingUniqueKeyError):
    """Otro proceso confirmó el mismo número antes que nosotros."""

    def __init__(self, kind: DocumentKind):
        self.kind = kind
        super().__init__(
            f"Número de {kind.value} duplicado, no se pudo asignar un número único",
            key=f"{kind.value}_number",
        )


def format_document_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:04d}"


def parse_sequence(number: Optional[str], prefix: str, year: int) -> Optional[int]:
    """Extrae el sufijo numérico si el número pertenece al prefijo y año; si no, None."""
    if not number:
        return None
    head = f"{prefix}-{year}-"
    if not number.startswith(head):
        return None
    suffix = number[len(head):]
    return int(suffix) if suffix.isdigit() else None


def next_sequence_from_numbers(numbers: Iterable[Optional[str]], prefix: str, year: int) -> int:
    """max(sufijo) + 1 entre los números del año; 1 si no hay ninguno."""
    sequences = [s for s in (parse_sequence(n, prefix, year) for n in numbers) if s is not None]
    return max(sequences, default=0) + 1


def is_unique_violation(exc: IntegrityError, markers: Iterable[str]) -> bool:
    message = str(getattr(exc, "orig", exc))
    return any(marker in message for marker in markers)


def is_number_collision(exc: IntegrityError, kind: DocumentKind) -> bool:
    return is_unique_violation(exc, NUMBER_CONSTRAINT_MARKERS[kind])


def run_with_number_retry(operation: Callable[[], T], kind: DocumentKind, attempts: Optional[int] = None) -> T:
    """
    Ejecuta una operación transaccional completa reintentándola ante colisión de número.

    La operación debe hacer rollback y lanzar ``DocumentNumberCollision`` cuando el
    commit falla por el número; cualquier otro error se propaga sin reintentar.
    """
    max_attempts = attempts or settings.DOCUMENT_NUMBER_MAX_ATTEMPTS

    def _log_retry(retry_state):
        logger.warning(
            f"{kind.value} number collision, retrying "
            f"(attempt {retry_state.attempt_number}/{max_attempts})"
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception_type(DocumentNumberCollision),
        before_sleep=_log_retry,
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            result = operation()
    return result


class DocumentNumberService:
    def __init__(self, db: Session):
        self.db = db

    def _scan_numbers(self, kind: DocumentKind, year: int):
        """Todos los números del año, incluidos los eliminados lógicamente."""
        prefix = DOCUMENT_PREFIXES[kind]
        column = Invoice.invoice_number if kind == DocumentKind.INVOICE else Receipt.receipt_number
        rows = self.db.query(column).filter(column.like(f"{prefix}-{year}-%")).all()
        return [row[0] for row in rows]

    def peek_next_sequence(self, kind: DocumentKind, year: Optional[int] = None) -> int:
        """Siguiente secuencia según el escaneo, sin reservarla."""
        year = year or utcnow().year
        return next_sequence_from_numbers(self._scan_numbers(kind, year), DOCUMENT_PREFIXES[kind], year)

    def next_number(self, kind: DocumentKind, year: Optional[int] = None) -> str:
        """
        Reserva el siguiente número dentro de la transacción actual.

        No hace commit: el número queda confirmado junto con el documento que lo usa,
        y un rollback libera también el incremento del contador.
        """
        year = year or utcnow().year
        prefix = DOCUMENT_PREFIXES[kind]
        scanned_next = self.peek_next_sequence(kind, year)

        sequence = self.db.query(DocumentSequence).filter(
            DocumentSequence.kind == kind,
            DocumentSequence.year == year
        ).with_for_update().first()

        if not sequence:
            sequence = DocumentSequence(kind=kind, year=year, last_value=0)
            self.db.add(sequence)
            try:
                self.db.flush()
            except IntegrityError as e:
                # Otro proceso creó el contador del año en paralelo
                if is_unique_violation(e, SEQUENCE_CONSTRAINT_MARKERS):
                    raise DocumentNumberCollision(kind) from e
                raise

        observed = sequence.last_value or 0
        next_value = max(observed + 1, scanned_next)

        # Compare-and-set: solo avanza si nadie tocó el contador desde que lo leímos
        result = self.db.execute(
            update(DocumentSequence)
            .where(
                DocumentSequence.id == sequence.id,
                DocumentSequence.last_value == observed
            )
            .values(last_value=next_value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Sequence {kind.value}/{year} changed concurrently (observed {observed})")
            raise DocumentNumberCollision(kind)

        self.db.expire(sequence)
        number = format_document_number(prefix, year, next_value)
        logger.debug(f"Reserved document number {number}")
        return number
