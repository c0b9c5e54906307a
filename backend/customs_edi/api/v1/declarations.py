"""Declaration endpoints: drafts, validation, XML generation, submit/lock and send."""

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.dependencies import get_db, get_declaration_service, get_exchange_engine
from customs_edi.edi.connector import ExchangeEngine
from customs_edi.lifecycle.service import DeclarationService
from customs_edi.models.declaration import DeclarationStatus, DocumentType
from customs_edi.schemas.declaration import (
    DeclarationCreate,
    DeclarationListResponse,
    DeclarationResponse,
    DeclarationUpdate,
    ItemsReplaceRequest,
    StatusHistoryResponse,
    SubmissionResult,
    SupportingDocumentIn,
    ValidationReport,
    XmlGenerationResponse,
    XmlIntegrityReport,
    XmlPreviewResponse,
)
from customs_edi.schemas.exchange import SendResult

router = APIRouter()


@router.post("", response_model=DeclarationResponse, status_code=status.HTTP_201_CREATED)
async def create_declaration(
    request: DeclarationCreate,
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    declaration = await service.create(db, request, actor=request.created_by or "system")
    return DeclarationResponse.model_validate(declaration)


@router.get("", response_model=DeclarationListResponse)
async def list_declarations(
    document_type: DocumentType | None = None,
    status: DeclarationStatus | None = None,
    page: int = 1,
    per_page: int = 50,
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationListResponse:
    declarations, total = await service.list_declarations(
        db, document_type=document_type, status=status, page=page, per_page=per_page,
    )
    return DeclarationListResponse(
        declarations=[DeclarationResponse.model_validate(d) for d in declarations],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/{declaration_id}", response_model=DeclarationResponse)
async def get_declaration(
    declaration_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    return DeclarationResponse.model_validate(await service.get(db, declaration_id))


@router.patch("/{declaration_id}", response_model=DeclarationResponse)
async def update_declaration(
    declaration_id: uuid.UUID,
    request: DeclarationUpdate,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    """Update header fields. Refused with 409 once the declaration is locked."""
    declaration = await service.update(db, declaration_id, request, actor=actor)
    return DeclarationResponse.model_validate(declaration)


@router.put("/{declaration_id}/items", response_model=DeclarationResponse)
async def replace_items(
    declaration_id: uuid.UUID,
    request: ItemsReplaceRequest,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    declaration = await service.replace_items(db, declaration_id, request.items, actor=actor)
    return DeclarationResponse.model_validate(declaration)


@router.put("/{declaration_id}/documents", response_model=DeclarationResponse)
async def replace_documents(
    declaration_id: uuid.UUID,
    request: list[SupportingDocumentIn],
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    declaration = await service.replace_documents(db, declaration_id, request, actor=actor)
    return DeclarationResponse.model_validate(declaration)


@router.delete("/{declaration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_declaration(
    declaration_id: uuid.UUID,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> Response:
    await service.delete(db, declaration_id, actor=actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{declaration_id}/validation", response_model=ValidationReport)
async def validate_declaration(
    declaration_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> ValidationReport:
    return await service.validate(db, declaration_id)


@router.post("/{declaration_id}/xml", response_model=XmlPreviewResponse)
async def generate_xml(
    declaration_id: uuid.UUID,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> XmlPreviewResponse:
    """Generate a new XML version for preview. Earlier versions are kept."""
    generation, xml = await service.generate_xml(db, declaration_id, actor=actor)
    return XmlPreviewResponse(
        generation=XmlGenerationResponse.model_validate(generation),
        xml_content=xml,
    )


@router.get("/{declaration_id}/xml/verify", response_model=XmlIntegrityReport)
async def verify_xml(
    declaration_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> XmlIntegrityReport:
    """Check the stored signed XML against the hash recorded at submission."""
    return await service.verify_xml(db, declaration_id)


@router.post("/{declaration_id}/submit", response_model=SubmissionResult)
async def submit_declaration(
    declaration_id: uuid.UUID,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> SubmissionResult:
    """Validate, sign and lock. Validation failures come back with success=false."""
    return await service.submit(db, declaration_id, actor=actor)


@router.post("/{declaration_id}/send", response_model=SendResult)
async def send_declaration(
    declaration_id: uuid.UUID,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    engine: ExchangeEngine = Depends(get_exchange_engine),
) -> SendResult:
    """Queue, archive and transmit a submitted declaration to CEISA."""
    return await engine.send(db, declaration_id, actor=actor)


@router.post("/{declaration_id}/lock", response_model=DeclarationResponse)
async def lock_declaration(
    declaration_id: uuid.UUID,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    return DeclarationResponse.model_validate(await service.lock(db, declaration_id, actor=actor))


@router.post("/{declaration_id}/complete", response_model=DeclarationResponse)
async def complete_declaration(
    declaration_id: uuid.UUID,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    return DeclarationResponse.model_validate(await service.complete(db, declaration_id, actor=actor))


@router.post("/{declaration_id}/revise", response_model=DeclarationResponse, status_code=status.HTTP_201_CREATED)
async def revise_declaration(
    declaration_id: uuid.UUID,
    actor: str = "system",
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> DeclarationResponse:
    """Start a new DRAFT from a rejected declaration."""
    return DeclarationResponse.model_validate(await service.revise(db, declaration_id, actor=actor))


@router.get("/{declaration_id}/history", response_model=list[StatusHistoryResponse])
async def get_history(
    declaration_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: DeclarationService = Depends(get_declaration_service),
) -> list[StatusHistoryResponse]:
    history = await service.history(db, declaration_id)
    return [StatusHistoryResponse.model_validate(h) for h in history]
