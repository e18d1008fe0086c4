from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from app.modules.jobs.models import (
    JobType, JobStatus, SkipType, SandMaterialType, SandDeliveryMethod, ForkliftSize
)


class JobTypeFields(BaseModel):
    """Campos opcionales según el tipo de trabajo"""
    skip_type: Optional[SkipType] = None
    skip_number: Optional[str] = Field(None, max_length=50)
    sand_material_type: Optional[SandMaterialType] = None
    sand_delivery_method: Optional[SandDeliveryMethod] = None
    forklift_size: Optional[ForkliftSize] = None


class JobCreate(JobTypeFields):
    customer_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    address: str = Field(..., min_length=1, max_length=500)
    type: JobType
    status: JobStatus = JobStatus.NEW
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, description="Precio sin IVA")
    start_date: datetime
    end_date: Optional[datetime] = None

    @field_validator('title', 'address')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('El campo no puede estar vacío')
        return v.strip()

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date and self.start_date and self.end_date < self.start_date:
            raise ValueError('La fecha de finalización no puede ser anterior a la fecha de inicio')
        return self


class JobUpdate(JobTypeFields):
    """Solo se aplican los campos enviados explícitamente (``model_fields_set``)"""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    type: Optional[JobType] = None
    status: Optional[JobStatus] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_required_values(self):
        for name in ('title', 'address', 'type', 'price', 'start_date'):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f'El campo {name} no puede ser nulo')
        return self


class JobStatusUpdate(BaseModel):
    status: JobStatus
    end_date: Optional[datetime] = None


class JobOut(JobTypeFields):
    id: UUID
    customer_id: UUID
    customer_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    address: str
    short_address: str
    type: JobType
    type_display: str
    status: JobStatus
    price: Decimal
    start_date: datetime
    end_date: Optional[datetime] = None
    invoice_id: Optional[UUID] = None
    invoiced_date: Optional[datetime] = None
    is_invoiced: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class JobList(BaseModel):
    jobs: List[JobOut]
    total: int
    limit: int
    offset: int


class JobsByAddress(BaseModel):
    address: str
    job_count: int
    total_value: Decimal
    jobs: List[JobOut]
