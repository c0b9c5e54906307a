"""Administrative endpoints. Every route requires the X-Admin-Token header."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.dependencies import get_db, get_declaration_service, require_admin
from customs_edi.lifecycle.service import DeclarationService
from customs_edi.schemas.declaration import DeclarationResponse, UnlockRequest

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/declarations/{declaration_id}/unlock", response_model=DeclarationResponse)
async def unlock_declaration(
    declaration_id: uuid.UUID,
    request: UnlockRequest,
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    """Clear the lock flag on a declaration. The reason is kept in history and audit."""
    declaration = await service.unlock(db, declaration_id, reason=request.reason, actor=request.actor)
    return DeclarationResponse.model_validate(declaration)
