from dataclasses import dataclass
from typing import Annotated, Optional
from fastapi import Depends, Request, HTTPException, status
from uuid import UUID


@dataclass(frozen=True)
class ActingContext:
    """
    Who is acting and on behalf of which tenant.

    Passed explicitly to every service call that mutates data; services never
    look the current user up on their own.
    """
    tenant_id: UUID
    user_id: Optional[UUID] = None


def get_acting_context(request: Request) -> ActingContext:
    """Acting principal resolved by TenantMiddleware from X-Company-ID / X-User-ID"""
    tenant_id = getattr(request.state, "tenant_id", None)
    if tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant context not found. Ensure X-Company-ID header is provided."
        )
    return ActingContext(tenant_id=tenant_id, user_id=getattr(request.state, "user_id", None))


TenantContext = Annotated[ActingContext, Depends(get_acting_context)]
