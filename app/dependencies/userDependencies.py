from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, Request


def get_principal_id(request: Request) -> Optional[UUID]:
    """Principal autenticado aguas arriba (PrincipalMiddleware), o None"""
    return getattr(request.state, "user_id", None)


principal_dependency = Annotated[Optional[UUID], Depends(get_principal_id)]
