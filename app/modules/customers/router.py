from fastapi import APIRouter, Query, status
from typing import Optional
from uuid import UUID

from app.dependencies.dbDependecies import db_dependency
from app.modules.customers.service import CustomerService
from app.modules.customers.schemas import CustomerCreate, CustomerUpdate, CustomerOut, CustomerList

customers_router = APIRouter(prefix="/customers", tags=["Customers"])


@customers_router.post("/", response_model=CustomerOut, status_code=status.HTTP_201_CREATED)
def create_customer(customer_data: CustomerCreate, db: db_dependency):
    """
    Crear un nuevo cliente

    El email debe ser único entre los clientes activos.
    """
    service = CustomerService(db)
    return service.create_customer(customer_data)


@customers_router.get("/", response_model=CustomerList)
def list_customers(
    db: db_dependency,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None, description="Buscar por nombre, email o teléfono")
):
    service = CustomerService(db)
    return service.get_customers(limit=limit, offset=offset, search=search)


@customers_router.get("/{customer_id}", response_model=CustomerOut)
def get_customer(customer_id: UUID, db: db_dependency):
    service = CustomerService(db)
    return service.get_customer(customer_id)


@customers_router.patch("/{customer_id}", response_model=CustomerOut)
def update_customer(customer_id: UUID, customer_update: CustomerUpdate, db: db_dependency):
    service = CustomerService(db)
    return service.update_customer(customer_id, customer_update)


@customers_router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(customer_id: UUID, db: db_dependency):
    """
    Eliminar (baja lógica) un cliente

    No se permite si tiene trabajos activos o facturas en borrador.
    """
    service = CustomerService(db)
    service.delete_customer(customer_id)
