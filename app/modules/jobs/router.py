from fastapi import APIRouter, Query, status
from typing import List, Optional
from uuid import UUID

from app.dependencies.dbDependecies import db_dependency
from app.modules.jobs.models import JobStatus
from app.modules.jobs.service import JobService
from app.modules.jobs.schemas import (
    JobCreate, JobUpdate, JobStatusUpdate, JobOut, JobList, JobsByAddress
)

jobs_router = APIRouter(prefix="/jobs", tags=["Jobs"])


@jobs_router.post("/", response_model=JobOut, status_code=status.HTTP_201_CREATED)
def create_job(job_data: JobCreate, db: db_dependency):
    """
    Crear un trabajo para un cliente

    Si se crea como completado sin fecha de finalización se asigna la fecha actual.
    """
    service = JobService(db)
    return service.create_job(job_data)


@jobs_router.get("/", response_model=JobList)
def list_jobs(
    db: db_dependency,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    customer_id: Optional[UUID] = Query(None, description="Filtrar por cliente"),
    status: Optional[JobStatus] = Query(None, description="new, active, completed, cancelled"),
    invoiced: Optional[bool] = Query(None, description="Filtrar por facturados / sin facturar")
):
    service = JobService(db)
    return service.get_jobs(limit=limit, offset=offset, customer_id=customer_id, status=status, invoiced=invoiced)


@jobs_router.get("/uninvoiced", response_model=List[JobOut])
def list_uninvoiced_jobs(customer_id: UUID, db: db_dependency):
    """Trabajos completados y sin facturar de un cliente"""
    service = JobService(db)
    return service.get_completed_uninvoiced(customer_id)


@jobs_router.get("/by-address", response_model=List[JobsByAddress])
def list_jobs_by_address(db: db_dependency, customer_id: Optional[UUID] = None):
    service = JobService(db)
    return service.get_jobs_grouped_by_address(customer_id)


@jobs_router.get("/by-invoice/{invoice_id}", response_model=List[JobOut])
def list_jobs_by_invoice(invoice_id: UUID, db: db_dependency):
    service = JobService(db)
    return service.get_jobs_by_invoice(invoice_id)


@jobs_router.get("/{job_id}", response_model=JobOut)
def get_job(job_id: UUID, db: db_dependency):
    service = JobService(db)
    return service.get_job(job_id)


@jobs_router.patch("/{job_id}", response_model=JobOut)
def update_job(job_id: UUID, job_update: JobUpdate, db: db_dependency):
    """
    Actualizar un trabajo

    Un trabajo facturado solo admite cambios de estado y fechas.
    """
    service = JobService(db)
    return service.update_job(job_id, job_update)


@jobs_router.patch("/{job_id}/status", response_model=JobOut)
def update_job_status(job_id: UUID, status_update: JobStatusUpdate, db: db_dependency):
    service = JobService(db)
    return service.update_status(job_id, status_update.status, status_update.end_date)


@jobs_router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_job(job_id: UUID, db: db_dependency):
    service = JobService(db)
    service.delete_job(job_id)
