from fastapi import HTTPException
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func, or_
from typing import Optional
from uuid import UUID
import logging

from app.common.exceptions import (
    NotFoundError, ConflictingUniqueKeyError, InvalidStateTransitionError, UnexpectedError
)
from app.modules.customers.models import Customer
from app.modules.customers.schemas import CustomerCreate, CustomerUpdate, CustomerList, CustomerOut
from app.modules.jobs.models import Job, JobStatus
from app.modules.invoices.models import Invoice, InvoiceStatus
from app.modules.numbering.service import is_unique_violation

logger = logging.getLogger(__name__)

EMAIL_CONSTRAINT_MARKERS = ("uq_customers_email_active", "customers.email")


class CustomerService:
    def __init__(self, db: Session):
        self.db = db

    def _active_query(self):
        return self.db.query(Customer).filter(Customer.is_deleted == False)

    def _email_taken(self, email: str, exclude_id: Optional[UUID] = None) -> bool:
        query = self._active_query().filter(func.lower(Customer.email) == email.lower())
        if exclude_id:
            query = query.filter(Customer.id != exclude_id)
        return query.first() is not None

    def _duplicate_email(self, email: str) -> ConflictingUniqueKeyError:
        return ConflictingUniqueKeyError(f"Ya existe un cliente con el email {email}", key="email")

    def get_customer(self, customer_id: UUID) -> Customer:
        customer = self._active_query().filter(Customer.id == customer_id).first()
        if not customer:
            raise NotFoundError("Cliente", customer_id)
        return customer

    def get_customers(self, limit: int = 100, offset: int = 0, search: Optional[str] = None) -> CustomerList:
        """Listar clientes activos, opcionalmente filtrando por nombre, email o teléfono"""
        query = self._active_query()
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Customer.name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.phone.ilike(pattern)
            ))

        total = query.count()
        customers = query.order_by(Customer.name).offset(offset).limit(limit).all()
        return CustomerList(
            customers=[CustomerOut.model_validate(c) for c in customers],
            total=total,
            limit=limit,
            offset=offset
        )

    def create_customer(self, customer_data: CustomerCreate) -> Customer:
        """Crear cliente; el email debe ser único entre clientes activos"""
        try:
            if self._email_taken(customer_data.email):
                raise self._duplicate_email(customer_data.email)

            customer = Customer(**customer_data.model_dump())
            self.db.add(customer)
            self.db.commit()
            self.db.refresh(customer)

            logger.info(f"Customer {customer.id} created ({customer.email})")
            return customer

        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if is_unique_violation(e, EMAIL_CONSTRAINT_MARKERS):
                raise self._duplicate_email(customer_data.email) from e
            logger.error(f"Integrity error creating customer: {e}", exc_info=True)
            raise UnexpectedError() from e
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating customer: {e}", exc_info=True)
            raise UnexpectedError() from e

    def update_customer(self, customer_id: UUID, customer_update: CustomerUpdate) -> Customer:
        try:
            customer = self.get_customer(customer_id)
            update_data = customer_update.model_dump(exclude_unset=True)

            new_email = update_data.get("email")
            if new_email and self._email_taken(new_email, exclude_id=customer.id):
                raise self._duplicate_email(new_email)

            for field, value in update_data.items():
                if field in ("name", "email") and value is None:
                    continue
                setattr(customer, field, value)

            self.db.commit()
            self.db.refresh(customer)

            logger.info(f"Customer {customer.id} updated ({', '.join(update_data) or 'no changes'})")
            return customer

        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if is_unique_violation(e, EMAIL_CONSTRAINT_MARKERS):
                raise self._duplicate_email(customer_update.email) from e
            logger.error(f"Integrity error updating customer {customer_id}: {e}", exc_info=True)
            raise UnexpectedError() from e
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating customer {customer_id}: {e}", exc_info=True)
            raise UnexpectedError() from e

    def delete_customer(self, customer_id: UUID) -> None:
        """Baja lógica; no se permite con trabajos activos o facturas en borrador"""
        try:
            customer = self.get_customer(customer_id)

            active_jobs = self.db.query(Job.id).filter(
                Job.customer_id == customer.id,
                Job.status == JobStatus.ACTIVE,
                Job.is_deleted == False
            ).count()
            draft_invoices = self.db.query(Invoice.id).filter(
                Invoice.customer_id == customer.id,
                Invoice.status == InvoiceStatus.DRAFT,
                Invoice.is_deleted == False
            ).count()

            if active_jobs or draft_invoices:
                logger.warning(
                    f"Refused to delete customer {customer.id}: "
                    f"{active_jobs} active jobs, {draft_invoices} draft invoices"
                )
                raise InvalidStateTransitionError(
                    "No se puede eliminar un cliente con trabajos activos o facturas en borrador"
                )

            customer.soft_delete()
            self.db.commit()
            logger.info(f"Customer {customer.id} deleted")

        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error deleting customer {customer_id}: {e}", exc_info=True)
            raise UnexpectedError() from e
