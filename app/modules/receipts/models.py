from app.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from app.common.mixins import IdMixin, TimestampMixin, SoftDeleteMixin


class Receipt(Base, IdMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "receipts"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    created_by = Column(Uuid(as_uuid=True), nullable=True)

    receipt_number = Column(String(50), nullable=False)  # REC-{año}-{secuencia:4}
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)

    is_sent = Column(Boolean, nullable=False, default=False)
    sent_date = Column(DateTime, nullable=True)

    # Relationships
    customer = relationship("Customer", back_populates="receipts")
    allocations = relationship("ReceiptInvoice", back_populates="receipt", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("receipt_number", name="uq_receipts_receipt_number"),
    )

    @property
    def customer_name(self):
        return self.customer.name if self.customer else None

    @property
    def customer_email(self):
        return self.customer.email if self.customer else None


class ReceiptInvoice(Base, IdMixin, TimestampMixin):
    """Asignación de un recibo a una factura pagada"""
    __tablename__ = "receipt_invoices"

    receipt_id = Column(Uuid(as_uuid=True), ForeignKey("receipts.id"), nullable=False, index=True)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)
    allocated_amount = Column(Numeric(10, 2), nullable=False)

    # Relationships
    receipt = relationship("Receipt", back_populates="allocations")
    invoice = relationship("Invoice", back_populates="allocations")

    __table_args__ = (
        UniqueConstraint("receipt_id", "invoice_id", name="uq_receipt_invoices_receipt_invoice"),
    )

    @property
    def invoice_number(self):
        return self.invoice.invoice_number if self.invoice else None

    @property
    def invoice_date(self):
        return self.invoice.created_at if self.invoice else None

    @property
    def payment_date(self):
        return self.invoice.payment_date if self.invoice else None

    @property
    def payment_method(self):
        return self.invoice.payment_method if self.invoice else None
