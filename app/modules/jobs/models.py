from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Enum, Text, Uuid
from sqlalchemy.orm import relationship
from app.common.mixins import IdMixin, TimestampMixin, SoftDeleteMixin
import enum


class JobType(enum.Enum):
    SKIP_RENTAL = "skip_rental"            # Alquiler de contenedor
    SAND_DELIVERY = "sand_delivery"        # Entrega de arena/áridos
    FORKLIFT_SERVICE = "forklift_service"  # Servicio de montacargas

    @property
    def display_name(self) -> str:
        return JOB_TYPE_DISPLAY_NAMES[self]


JOB_TYPE_DISPLAY_NAMES = {
    JobType.SKIP_RENTAL: "Skip Rental",
    JobType.SAND_DELIVERY: "Sand Delivery",
    JobType.FORKLIFT_SERVICE: "Fork Lift Service",
}


class JobStatus(enum.Enum):
    NEW = "new"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SkipType(enum.Enum):
    SMALL_SKIP = "small_skip"
    LARGE_SKIP = "large_skip"
    HOOK = "hook"


class SandMaterialType(enum.Enum):
    SAND = "sand"
    CRUSHED_STONE = "crushed_stone"
    SAND_MIXED_WITH_CRUSHED_STONE = "sand_mixed_with_crushed_stone"
    SOIL = "soil"


class SandDeliveryMethod(enum.Enum):
    IN_BAGS = "in_bags"
    BY_TRUCK = "by_truck"


class ForkliftSize(enum.Enum):
    SIZE_17M = "17m"
    SIZE_25M = "25m"


class Job(Base, IdMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "jobs"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    address = Column(String(500), nullable=False)
    type = Column(Enum(JobType), nullable=False)
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.NEW)
    price = Column(Numeric(10, 2), nullable=False)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)  # Obligatoria en estado COMPLETED

    # Vínculo con factura: no nulo sii una factura no eliminada referencia el trabajo
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id"), nullable=True, index=True)
    invoiced_date = Column(DateTime, nullable=True)

    # Campos específicos por tipo de trabajo
    skip_type = Column(String(50), nullable=True)
    skip_number = Column(String(50), nullable=True)
    sand_material_type = Column(String(100), nullable=True)
    sand_delivery_method = Column(String(50), nullable=True)
    forklift_size = Column(String(10), nullable=True)

    # Relationships
    customer = relationship("Customer", back_populates="jobs")
    invoice = relationship("Invoice", foreign_keys=[invoice_id])

    @property
    def is_invoiced(self) -> bool:
        return self.invoice_id is not None

    @property
    def type_display(self) -> str:
        return self.type.display_name if self.type else ""

    @property
    def customer_name(self):
        return self.customer.name if self.customer else None

    @property
    def short_address(self) -> str:
        if not self.address:
            return ""
        return self.address.split(",")[0].strip()

    def invoice_description(self) -> str:
        """Descripción de la línea de factura: tipo - título at dirección corta"""
        return f"{self.type.display_name} - {self.title} at {self.short_address}"
