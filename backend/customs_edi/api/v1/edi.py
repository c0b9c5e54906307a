"""EDI exchange endpoints: authority responses, transmission queue, incoming messages."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.config import Settings
from customs_edi.dependencies import (
    get_db,
    get_exchange_engine,
    get_response_correlator,
    get_settings,
    get_transmission_queue,
)
from customs_edi.edi.connector import ExchangeEngine
from customs_edi.edi.incoming import ResponseCorrelator
from customs_edi.edi.outgoing import TransmissionQueue
from customs_edi.models.transmission import TransmissionStatus
from customs_edi.schemas.exchange import (
    DeletedCount,
    ErrorCounts,
    IncomingMessageResponse,
    IncomingResponseRequest,
    IncomingStats,
    QueueStats,
    RegistrationData,
    ResponseHandlingResult,
    SimulateResponseRequest,
    TransmissionResult,
    TransmissionUnitListResponse,
    TransmissionUnitResponse,
)

router = APIRouter()


# ── Authority responses ──


@router.post("/responses", response_model=ResponseHandlingResult)
async def receive_response(
    request: IncomingResponseRequest,
    db: AsyncSession = Depends(get_db),
    engine: ExchangeEngine = Depends(get_exchange_engine),
) -> ResponseHandlingResult:
    """Accept a raw CEISA response, archive it and update the declaration."""
    return await engine.handle_response(
        db,
        document_type=request.document_type,
        document_id=request.document_id,
        document_number=request.document_number,
        response_xml=request.response_xml,
    )


@router.post("/declarations/{declaration_id}/simulate-response", response_model=ResponseHandlingResult)
async def simulate_response(
    declaration_id: uuid.UUID,
    request: SimulateResponseRequest,
    db: AsyncSession = Depends(get_db),
    engine: ExchangeEngine = Depends(get_exchange_engine),
    app_settings: Settings = Depends(get_settings),
) -> ResponseHandlingResult:
    if not app_settings.ceisa_simulation_mode:
        raise HTTPException(status_code=403, detail="Response simulation is disabled in live mode")
    return await engine.simulate_response(db, declaration_id, request)


# ── Transmission queue ──


@router.get("/queue", response_model=TransmissionUnitListResponse)
async def list_queue(
    status: TransmissionStatus | None = None,
    page: int = 1,
    per_page: int = 50,
    db: AsyncSession = Depends(get_db),
    queue: TransmissionQueue = Depends(get_transmission_queue),
) -> TransmissionUnitListResponse:
    units, total = await queue.list_units(db, status=status, page=page, per_page=per_page)
    return TransmissionUnitListResponse(
        units=[TransmissionUnitResponse.model_validate(u) for u in units],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(
    db: AsyncSession = Depends(get_db),
    queue: TransmissionQueue = Depends(get_transmission_queue),
) -> QueueStats:
    return await queue.get_stats(db)


@router.get("/queue/retry-items", response_model=list[TransmissionUnitResponse])
async def retry_items(
    db: AsyncSession = Depends(get_db),
    queue: TransmissionQueue = Depends(get_transmission_queue),
) -> list[TransmissionUnitResponse]:
    return [TransmissionUnitResponse.model_validate(u) for u in await queue.get_retry_items(db)]


@router.post("/queue/process", response_model=list[TransmissionResult])
async def process_queue(
    db: AsyncSession = Depends(get_db),
    engine: ExchangeEngine = Depends(get_exchange_engine),
) -> list[TransmissionResult]:
    """Transmit every PENDING unit, oldest first."""
    return await engine.process_queue(db)


@router.post("/queue/retry", response_model=list[TransmissionResult])
async def retry_due(
    db: AsyncSession = Depends(get_db),
    engine: ExchangeEngine = Depends(get_exchange_engine),
) -> list[TransmissionResult]:
    """Called by the external scheduler to re-attempt units whose backoff has elapsed."""
    return await engine.retry_due(db)


@router.post("/queue/clear-completed", response_model=DeletedCount)
async def clear_completed(
    db: AsyncSession = Depends(get_db),
    queue: TransmissionQueue = Depends(get_transmission_queue),
) -> DeletedCount:
    return DeletedCount(deleted=await queue.clear_completed(db))


@router.get("/queue/document/{document_id}", response_model=list[TransmissionUnitResponse])
async def units_for_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    queue: TransmissionQueue = Depends(get_transmission_queue),
) -> list[TransmissionUnitResponse]:
    units = await queue.get_units_for_document(db, document_id)
    return [TransmissionUnitResponse.model_validate(u) for u in units]


@router.get("/queue/{unit_id}", response_model=TransmissionUnitResponse)
async def get_unit(
    unit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    queue: TransmissionQueue = Depends(get_transmission_queue),
) -> TransmissionUnitResponse:
    return TransmissionUnitResponse.model_validate(await queue.get_unit(db, unit_id))


@router.post("/queue/{unit_id}/transmit", response_model=TransmissionResult)
async def transmit_unit(
    unit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    engine: ExchangeEngine = Depends(get_exchange_engine),
) -> TransmissionResult:
    return await engine.transmit(db, unit_id)


@router.delete("/queue/{unit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_unit(
    unit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    queue: TransmissionQueue = Depends(get_transmission_queue),
) -> Response:
    await queue.remove(db, unit_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Incoming messages ──


@router.get("/incoming", response_model=list[IncomingMessageResponse])
async def list_incoming(
    document_id: uuid.UUID | None = None,
    status: TransmissionStatus | None = None,
    unprocessed: bool = False,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: AsyncSession = Depends(get_db),
    correlator: ResponseCorrelator = Depends(get_response_correlator),
) -> list[IncomingMessageResponse]:
    if document_id:
        messages = await correlator.get_by_document(db, document_id)
    elif status:
        messages = await correlator.get_by_status(db, status)
    elif unprocessed:
        messages = await correlator.get_unprocessed(db)
    elif start_date and end_date:
        messages = await correlator.get_by_date_range(db, start_date, end_date)
    else:
        raise HTTPException(status_code=400, detail="Filter by document_id, status, unprocessed=true or start_date and end_date")
    return [IncomingMessageResponse.model_validate(m) for m in messages]


@router.get("/incoming/stats", response_model=IncomingStats)
async def incoming_stats(
    db: AsyncSession = Depends(get_db),
    correlator: ResponseCorrelator = Depends(get_response_correlator),
) -> IncomingStats:
    return await correlator.get_stats(db)


@router.post("/incoming/cleanup", response_model=DeletedCount)
async def cleanup_incoming(
    older_than_days: int | None = None,
    db: AsyncSession = Depends(get_db),
    correlator: ResponseCorrelator = Depends(get_response_correlator),
    app_settings: Settings = Depends(get_settings),
) -> DeletedCount:
    days = older_than_days if older_than_days is not None else app_settings.incoming_retention_days
    return DeletedCount(deleted=await correlator.clear_old_messages(db, days))


@router.get("/incoming/{message_id}", response_model=IncomingMessageResponse)
async def get_incoming(
    message_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    correlator: ResponseCorrelator = Depends(get_response_correlator),
) -> IncomingMessageResponse:
    return IncomingMessageResponse.model_validate(await correlator.get_message(db, message_id))


@router.get("/incoming/{message_id}/registration", response_model=RegistrationData)
async def incoming_registration(
    message_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    correlator: ResponseCorrelator = Depends(get_response_correlator),
) -> RegistrationData:
    return correlator.extract_registration_data(await correlator.get_message(db, message_id))


@router.get("/incoming/{message_id}/error-counts", response_model=ErrorCounts)
async def incoming_error_counts(
    message_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    correlator: ResponseCorrelator = Depends(get_response_correlator),
) -> ErrorCounts:
    return correlator.get_error_counts(await correlator.get_message(db, message_id))

