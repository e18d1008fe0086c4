from app.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Enum, Date, Text, Uuid, UniqueConstraint, Index, text
from sqlalchemy.orm import relationship
from datetime import date
from typing import Optional
from app.common.mixins import IdMixin, TimestampMixin, SoftDeleteMixin, utcnow
import enum


class InvoiceStatus(enum.Enum):
    DRAFT = "draft"          # Borrador, único estado editable
    SENT = "sent"            # Enviada al cliente, pendiente de pago
    DELIVERED = "delivered"  # Entrega confirmada, pendiente de pago
    PAID = "paid"            # Pagada completamente
    OVERDUE = "overdue"      # Derivado: SENT con fecha de vencimiento superada (nunca se persiste)
    CANCELLED = "cancelled"  # Anulada


class PaymentMethod(enum.Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CHEQUE = "cheque"
    OTHER = "other"


class Invoice(Base, IdMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "invoices"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    created_by = Column(Uuid(as_uuid=True), nullable=True)  # Principal que creó la factura

    invoice_number = Column(String(50), nullable=False)  # INV-{año}-{secuencia:4}
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT)

    # Totals (calculated)
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    vat_rate = Column(Numeric(5, 4), nullable=False, default=0)  # Fracción 0-1
    vat_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)

    # Terms and dates
    payment_terms_days = Column(Integer, nullable=False, default=30)
    due_date = Column(Date, nullable=False)
    sent_date = Column(DateTime, nullable=True)
    delivered_date = Column(DateTime, nullable=True)
    cancelled_date = Column(DateTime, nullable=True)

    # Payment
    payment_date = Column(Date, nullable=True)
    payment_method = Column(Enum(PaymentMethod), nullable=True)
    payment_reference = Column(String(200), nullable=True)

    notes = Column(Text, nullable=True)

    # Relationships
    customer = relationship("Customer", back_populates="invoices")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position"
    )
    allocations = relationship("ReceiptInvoice", back_populates="invoice")

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
    )

    @property
    def active_line_items(self):
        return [li for li in self.line_items if not li.is_deleted]

    def effective_status(self, today: Optional[date] = None) -> InvoiceStatus:
        """Estado presentado: SENT con vencimiento superado se muestra como OVERDUE."""
        today = today or utcnow().date()
        if self.status == InvoiceStatus.SENT and self.due_date and today > self.due_date:
            return InvoiceStatus.OVERDUE
        return self.status

    @property
    def display_status(self) -> InvoiceStatus:
        return self.effective_status()

    @property
    def is_overdue(self) -> bool:
        return self.effective_status() == InvoiceStatus.OVERDUE

    @property
    def days_until_due(self) -> Optional[int]:
        if self.status != InvoiceStatus.SENT or not self.due_date:
            return None
        return (self.due_date - utcnow().date()).days

    @property
    def customer_name(self) -> Optional[str]:
        return self.customer.name if self.customer else None

    @property
    def customer_email(self) -> Optional[str]:
        return self.customer.email if self.customer else None


class InvoiceLineItem(Base, IdMixin, SoftDeleteMixin):
    __tablename__ = "invoice_line_items"

    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("jobs.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    # Snapshot data (para preservar información si el trabajo cambia)
    description = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)

    # Relationships
    invoice = relationship("Invoice", back_populates="line_items")
    job = relationship("Job")

    __table_args__ = (
        # Un trabajo solo puede estar en una factura activa a la vez
        Index(
            "uq_invoice_line_items_job_active",
            "job_id",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )
