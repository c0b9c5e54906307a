"""Archive endpoints: search, verify, export and purge archived EDI messages."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.config import Settings
from customs_edi.dependencies import get_archive_store, get_db, get_settings, require_admin
from customs_edi.edi.archive import ArchiveStore
from customs_edi.models.archive import ArchiveDirection
from customs_edi.models.declaration import DocumentType
from customs_edi.schemas.archive import (
    ArchiveEntryDetail,
    ArchiveEntryListResponse,
    ArchiveEntryResponse,
    ArchiveMessageRequest,
    ArchiveStats,
    ArchiveVerification,
    PurgeRequest,
    PurgeResponse,
)

router = APIRouter()


@router.get("", response_model=ArchiveEntryListResponse)
async def search_archive(
    message_id: str | None = None,
    document_number: str | None = None,
    document_type: DocumentType | None = None,
    direction: ArchiveDirection | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
) -> ArchiveEntryListResponse:
    """Search archived messages, newest first. document_number matches as a substring."""
    entries = await store.search(
        db,
        message_id=message_id,
        document_number=document_number,
        document_type=document_type,
        direction=direction,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return ArchiveEntryListResponse(
        entries=[ArchiveEntryResponse.model_validate(e) for e in entries],
        total=len(entries),
    )


@router.get("/recent", response_model=list[ArchiveEntryResponse])
async def recent_entries(
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
) -> list[ArchiveEntryResponse]:
    return [ArchiveEntryResponse.model_validate(e) for e in await store.recent(db, limit=limit)]


@router.get("/stats", response_model=ArchiveStats)
async def archive_stats(
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
) -> ArchiveStats:
    return await store.get_stats(db)


@router.post("/bulk", response_model=list[ArchiveEntryResponse])
async def bulk_archive(
    request: list[ArchiveMessageRequest],
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
) -> list[ArchiveEntryResponse]:
    """Archive messages exchanged outside the engine, e.g. during a migration."""
    entries = await store.bulk_archive(db, request)
    return [ArchiveEntryResponse.model_validate(e) for e in entries]


@router.post("/purge", response_model=PurgeResponse, dependencies=[Depends(require_admin)])
async def purge_archive(
    request: PurgeRequest | None = None,
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
    app_settings: Settings = Depends(get_settings),
) -> PurgeResponse:
    """Retention purge. Defaults to the configured archive retention period."""
    days = request.older_than_days if request else app_settings.archive_retention_days
    cutoff = store.purge_cutoff(days)
    deleted = await store.purge(db, days)
    return PurgeResponse(deleted=deleted, cutoff=cutoff)


@router.get("/{entry_id}", response_model=ArchiveEntryDetail)
async def get_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
) -> ArchiveEntryDetail:
    return ArchiveEntryDetail.model_validate(await store.get_entry(db, entry_id))


@router.get("/{entry_id}/verify", response_model=ArchiveVerification)
async def verify_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
) -> ArchiveVerification:
    return await store.verify(db, entry_id)


@router.get("/{entry_id}/download")
async def download_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    store: ArchiveStore = Depends(get_archive_store),
) -> Response:
    export = await store.export_entry(db, entry_id)
    return Response(
        content=export.content,
        media_type=export.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )
