from app.database.database import Base
from sqlalchemy import Column, Integer, Enum, UniqueConstraint
from app.common.mixins import IdMixin, TimestampMixin
import enum


class DocumentKind(enum.Enum):
    INVOICE = "invoice"
    RECEIPT = "receipt"


DOCUMENT_PREFIXES = {
    DocumentKind.INVOICE: "INV",
    DocumentKind.RECEIPT: "REC",
}


class DocumentSequence(Base, IdMixin, TimestampMixin):
    """Contador atómico por (tipo de documento, año)"""
    __tablename__ = "document_sequences"

    kind = Column(Enum(DocumentKind), nullable=False)
    year = Column(Integer, nullable=False)
    last_value = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("kind", "year", name="uq_document_sequences_kind_year"),
    )
