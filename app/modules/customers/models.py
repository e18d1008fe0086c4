"""
Modelos SQLAlchemy para el módulo de Clientes

El cliente es el ancla de identidad de trabajos, facturas y recibos.
El email es único solo entre clientes no eliminados (índice parcial), de modo
que un email de un cliente dado de baja puede volver a registrarse.
"""

from app.database.database import Base
from sqlalchemy import Column, String, Text, Index, text
from sqlalchemy.orm import relationship
from app.common.mixins import IdMixin, TimestampMixin, SoftDeleteMixin


class Customer(Base, IdMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "customers"

    name = Column(String(200), nullable=False, index=True)
    email = Column(String(100), nullable=False, index=True)  # Normalizado a minúsculas
    phone = Column(String(50), nullable=True)
    company_registration_number = Column(String(50), nullable=True)
    vat_number = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    jobs = relationship("Job", back_populates="customer")
    invoices = relationship("Invoice", back_populates="customer")
    receipts = relationship("Receipt", back_populates="customer")

    __table_args__ = (
        Index(
            "uq_customers_email_active",
            "email",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )
