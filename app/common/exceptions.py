"""
Excepciones de dominio del motor de facturación.

Todas heredan de HTTPException para que los servicios mantengan el patrón
``except HTTPException: raise`` y los routers no necesiten traducirlas.
"""
from typing import Any, Dict, Iterable, Optional

from fastapi import HTTPException, status


class BillingError(HTTPException):
    """Base de los errores de negocio"""

    code = "billing_error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any):
        self.message = message
        detail: Dict[str, Any] = {"message": message}
        detail.update({k: v for k, v in extra.items() if v is not None})
        super().__init__(status_code=self.status_code_default, detail=detail)

    def __str__(self) -> str:
        return self.message


class NotFoundError(BillingError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} no encontrado" if entity_id is None else f"{entity} {entity_id} no encontrado",
            entity=entity,
            id=str(entity_id) if entity_id is not None else None,
        )


class ValidationFailedError(BillingError):
    """Regla de negocio violada; lleva el campo y/o los ids afectados."""

    code = "validation_failed"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, field: Optional[str] = None, ids: Optional[Iterable[Any]] = None):
        self.field = field
        self.ids = [str(i) for i in ids] if ids else []
        super().__init__(message, field=field, ids=self.ids or None)


class InvalidStateTransitionError(BillingError):
    code = "invalid_state_transition"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: Any = None, requested: Any = None):
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            message,
            current_status=getattr(current_status, "value", current_status),
            requested=getattr(requested, "value", requested),
        )


class ConflictingUniqueKeyError(BillingError):
    code = "conflicting_unique_key"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message, key=key)


class ExternalServiceError(BillingError):
    code = "external_service_failure"
    status_code_default = status.HTTP_502_BAD_GATEWAY

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(message, service=service)


class UnexpectedError(BillingError):
    """Fallo de infraestructura; el detalle interno solo va al log."""

    code = "unexpected"
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Error interno. Intente de nuevo más tarde."):
        super().__init__(message)
