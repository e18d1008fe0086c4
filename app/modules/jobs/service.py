from fastapi import HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import update, func
from typing import List, Optional, Sequence
from uuid import UUID
from datetime import datetime
from decimal import Decimal
import enum
import logging

from app.common.exceptions import NotFoundError, ValidationFailedError, UnexpectedError
from app.common.guards import (
    ensure_job_transition, ensure_job_edit_allowed, ensure_job_deletable, ensure_job_period_valid
)
from app.common.mixins import utcnow, to_naive_utc
from app.modules.customers.models import Customer
from app.modules.jobs.models import Job, JobStatus
from app.modules.jobs.schemas import JobCreate, JobUpdate, JobList, JobOut, JobsByAddress

logger = logging.getLogger(__name__)

SUBTYPE_FIELDS = ("skip_type", "sand_material_type", "sand_delivery_method", "forklift_size")


def resolve_end_date(status: JobStatus, requested: Optional[datetime], current: Optional[datetime]) -> Optional[datetime]:
    """COMPLETED exige fecha de finalización (ahora si falta); cualquier otro estado la limpia."""
    if status != JobStatus.COMPLETED:
        return None
    return to_naive_utc(requested) or current or utcnow()


def _column_values(data: dict) -> dict:
    """Convierte enums de subtipo a su valor de columna y normaliza fechas."""
    values = {}
    for name, value in data.items():
        if name in SUBTYPE_FIELDS and isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = to_naive_utc(value)
        values[name] = value
    return values


class JobService:
    def __init__(self, db: Session):
        self.db = db

    def _active_query(self):
        return self.db.query(Job).filter(Job.is_deleted == False)

    def _get_for_update(self, job_id: UUID) -> Job:
        job = self._active_query().filter(Job.id == job_id).with_for_update().first()
        if not job:
            raise NotFoundError("Trabajo", job_id)
        return job

    def get_job(self, job_id: UUID) -> Job:
        job = self._active_query().filter(Job.id == job_id).first()
        if not job:
            raise NotFoundError("Trabajo", job_id)
        return job

    def get_jobs(
        self,
        limit: int = 100,
        offset: int = 0,
        customer_id: Optional[UUID] = None,
        status: Optional[JobStatus] = None,
        invoiced: Optional[bool] = None
    ) -> JobList:
        query = self._active_query()
        if customer_id:
            query = query.filter(Job.customer_id == customer_id)
        if status:
            query = query.filter(Job.status == status)
        if invoiced is not None:
            query = query.filter(Job.invoice_id.isnot(None) if invoiced else Job.invoice_id.is_(None))

        total = query.count()
        jobs = query.order_by(Job.start_date.desc()).offset(offset).limit(limit).all()
        return JobList(
            jobs=[JobOut.model_validate(j) for j in jobs],
            total=total,
            limit=limit,
            offset=offset
        )

    def get_completed_uninvoiced(self, customer_id: UUID) -> List[Job]:
        """Trabajos listos para facturar de un cliente"""
        return self._active_query().filter(
            Job.customer_id == customer_id,
            Job.status == JobStatus.COMPLETED,
            Job.invoice_id.is_(None)
        ).order_by(func.coalesce(Job.end_date, Job.start_date)).all()

    def get_jobs_by_invoice(self, invoice_id: UUID) -> List[Job]:
        return self._active_query().filter(Job.invoice_id == invoice_id).order_by(Job.start_date).all()

    def get_jobs_grouped_by_address(self, customer_id: Optional[UUID] = None) -> List[JobsByAddress]:
        """Agrupa por dirección ignorando mayúsculas y espacios extremos"""
        query = self._active_query()
        if customer_id:
            query = query.filter(Job.customer_id == customer_id)

        groups = {}
        for job in query.order_by(Job.start_date.desc()).all():
            key = (job.address or "").strip().lower()
            groups.setdefault(key, []).append(job)

        result = []
        for jobs in groups.values():
            result.append(JobsByAddress(
                address=jobs[0].address.strip(),
                job_count=len(jobs),
                total_value=sum((Decimal(j.price) for j in jobs), Decimal("0.00")),
                jobs=[JobOut.model_validate(j) for j in jobs]
            ))
        return sorted(result, key=lambda g: g.address.lower())

    def create_job(self, job_data: JobCreate) -> Job:
        """Crear trabajo sin vínculo de factura"""
        try:
            customer = self.db.query(Customer).filter(
                Customer.id == job_data.customer_id,
                Customer.is_deleted == False
            ).first()
            if not customer:
                raise NotFoundError("Cliente", job_data.customer_id)

            values = _column_values(job_data.model_dump())
            values["end_date"] = resolve_end_date(job_data.status, values.get("end_date"), None)

            job = Job(**values)
            self.db.add(job)
            self.db.commit()
            self.db.refresh(job)

            logger.info(f"Job {job.id} created for customer {customer.id} with status {job.status.value}")
            return job

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating job: {e}", exc_info=True)
            raise UnexpectedError() from e

    def update_job(self, job_id: UUID, job_update: JobUpdate) -> Job:
        """
        Actualización parcial de un trabajo.

        Si el trabajo está facturado solo puede cambiar estado y fechas; los
        cambios de estado se validan contra la tabla de transiciones.
        """
        try:
            job = self._get_for_update(job_id)
            updates = _column_values({name: getattr(job_update, name) for name in job_update.model_fields_set})

            ensure_job_edit_allowed(job, updates)

            new_status = updates.pop("status", None) or job.status
            ensure_job_transition(job, new_status)
            requested_end = updates.pop("end_date", None)

            for field, value in updates.items():
                setattr(job, field, value)
            job.status = new_status
            job.end_date = resolve_end_date(new_status, requested_end, job.end_date)
            ensure_job_period_valid(job)

            self.db.commit()
            self.db.refresh(job)

            logger.info(f"Job {job.id} updated ({', '.join(sorted(job_update.model_fields_set)) or 'no changes'})")
            return job

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating job {job_id}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def update_status(self, job_id: UUID, new_status: JobStatus, end_date: Optional[datetime] = None) -> Job:
        try:
            job = self._get_for_update(job_id)
            ensure_job_transition(job, new_status)

            previous = job.status
            job.status = new_status
            job.end_date = resolve_end_date(new_status, end_date, job.end_date)
            ensure_job_period_valid(job)

            self.db.commit()
            self.db.refresh(job)

            logger.info(f"Job {job.id} status {previous.value} -> {new_status.value}")
            return job

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating status of job {job_id}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def mark_invoiced(
        self,
        job_ids: Sequence[UUID],
        invoice_id: UUID,
        customer_id: Optional[UUID] = None,
        commit: bool = True
    ) -> List[Job]:
        """
        Vincula los trabajos a la factura en un solo UPDATE condicional.

        Solo afecta trabajos COMPLETED y sin factura; si alguno no cumple (por
        ejemplo otra transacción lo facturó entre la validación y el UPDATE) no
        se vincula ninguno. Con ``commit=False`` participa en la transacción del
        llamador, que debe hacer rollback ante el error.
        """
        ids = list(job_ids)
        conditions = [
            Job.id.in_(ids),
            Job.is_deleted == False,
            Job.status == JobStatus.COMPLETED,
            Job.invoice_id.is_(None),
        ]
        if customer_id:
            conditions.append(Job.customer_id == customer_id)

        try:
            result = self.db.execute(
                update(Job)
                .where(*conditions)
                .values(invoice_id=invoice_id, invoiced_date=utcnow(), updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != len(ids):
                jobs = self.db.query(Job).filter(Job.id.in_(ids)).populate_existing().all()
                by_id = {job.id: job for job in jobs}
                offending = [
                    job_id for job_id in ids
                    if by_id.get(job_id) is None or by_id[job_id].invoice_id != invoice_id
                ]
                logger.warning(f"Could not link jobs {offending} to invoice {invoice_id}")
                raise ValidationFailedError(
                    "Trabajos no facturables: ya facturados o no completados",
                    field="job_ids",
                    ids=offending or ids,
                )

            jobs = self.db.query(Job).filter(Job.id.in_(ids)).populate_existing().all()

            if commit:
                self.db.commit()
            logger.info(f"Linked {len(ids)} jobs to invoice {invoice_id}")
            return jobs

        except HTTPException:
            if commit:
                self.db.rollback()
            raise
        except Exception as e:
            if not commit:
                raise
            self.db.rollback()
            logger.error(f"Error linking jobs to invoice {invoice_id}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def remove_from_invoice(self, job_ids: Sequence[UUID], commit: bool = True) -> int:
        """Desvincula los trabajos sin condiciones (cambio de trabajos o borrado de la factura)"""
        ids = list(job_ids)
        if not ids:
            return 0
        try:
            result = self.db.execute(
                update(Job)
                .where(Job.id.in_(ids))
                .values(invoice_id=None, invoiced_date=None, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.query(Job).filter(Job.id.in_(ids)).populate_existing().all()

            if commit:
                self.db.commit()
            logger.info(f"Unlinked {result.rowcount} jobs from their invoice")
            return result.rowcount

        except Exception as e:
            if not commit:
                raise
            self.db.rollback()
            logger.error(f"Error unlinking jobs {ids}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def delete_job(self, job_id: UUID) -> None:
        """Baja lógica; no se permite si el trabajo está facturado"""
        try:
            job = self._get_for_update(job_id)
            ensure_job_deletable(job)

            job.soft_delete()
            self.db.commit()
            logger.info(f"Job {job.id} deleted")

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error deleting job {job_id}: {e}", exc_info=True)
            raise UnexpectedError() from e
