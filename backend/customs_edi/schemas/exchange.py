"""Pydantic schemas for EDI exchange: field errors, parsed authority responses,
transmission results and incoming messages."""

import uuid
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from customs_edi.models.declaration import DeclarationStatus, Lane
from customs_edi.models.transmission import IntegrityStatus, TransmissionStatus
from customs_edi.schemas.archive import ArchiveStats


class FieldError(BaseModel):
    code: str
    field: str
    message: str
    value: str | None = None


class ParsedError(FieldError):
    field_label: str
    severity: Literal["error", "warning", "info"] = "error"
    suggestion: str | None = None
    item_number: int | None = None


class ErrorGroup(BaseModel):
    section: str
    errors: list[ParsedError]


class _ResponseBase(BaseModel):
    success: bool
    response_code: str | None = None
    response_message: str | None = None
    reference_number: str | None = None
    registration_number: str | None = None
    registration_date: str | None = None
    errors: list[FieldError] = Field(default_factory=list)
    raw_xml: str = ""


class ExportResponse(_ResponseBase):
    """Authority reply to a PEB; issuance number is the NPE."""

    document_type: Literal["PEB"] = "PEB"
    npe_number: str | None = None
    npe_date: str | None = None

    @property
    def issuance_number(self) -> str | None:
        return self.npe_number

    @property
    def issuance_date(self) -> str | None:
        return self.npe_date


class ImportResponse(_ResponseBase):
    """Authority reply to a PIB; issuance number is the SPPB, plus a routing lane."""

    document_type: Literal["PIB"] = "PIB"
    sppb_number: str | None = None
    sppb_date: str | None = None
    lane: Lane | None = None
    lane_reason: str | None = None

    @property
    def issuance_number(self) -> str | None:
        return self.sppb_number

    @property
    def issuance_date(self) -> str | None:
        return self.sppb_date


ParsedResponse = Annotated[Union[ExportResponse, ImportResponse], Field(discriminator="document_type")]


class TransmissionResult(BaseModel):
    success: bool
    unit_id: uuid.UUID | None = None
    message_id: str
    ceisa_reference: str | None = None
    status: TransmissionStatus
    errors: list[FieldError] = Field(default_factory=list)
    timestamp: datetime
    error_class: str | None = None
    retry_allowed: bool = False
    next_retry_at: datetime | None = None
    response_xml: str | None = None


class TransmissionUnitResponse(BaseModel):
    id: uuid.UUID
    message_id: str
    document_type: str
    document_id: uuid.UUID
    document_number: str
    xml_hash: str
    status: TransmissionStatus
    retry_count: int
    max_retries: int
    created_at: datetime | None = None
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    errors: list[FieldError] = Field(default_factory=list)
    error_class: str | None = None
    ceisa_reference: str | None = None

    model_config = {"from_attributes": True}


class QueueStats(BaseModel):
    total: int = 0
    pending: int = 0
    sent: int = 0
    received: int = 0
    accepted: int = 0
    rejected: int = 0
    error: int = 0


class IncomingMessageResponse(BaseModel):
    id: uuid.UUID
    document_type: str
    document_id: uuid.UUID
    document_number: str
    ceisa_reference: str | None = None
    status: TransmissionStatus
    parsed_response: dict
    error_groups: list[ErrorGroup] = Field(default_factory=list)
    integrity_verified: bool
    integrity_status: IntegrityStatus
    received_at: datetime | None = None
    processed_at: datetime | None = None

    model_config = {"from_attributes": True}


class IncomingResponseRequest(BaseModel):
    document_type: Literal["PEB", "PIB"]
    document_id: uuid.UUID
    document_number: str
    response_xml: str


class SimulateResponseRequest(BaseModel):
    success: bool = True
    lane: Lane | None = None
    errors: list[FieldError] | None = None


class IncomingStats(BaseModel):
    total: int = 0
    unprocessed: int = 0
    accepted: int = 0
    rejected: int = 0
    pending: int = 0
    with_errors: int = 0


class RegistrationData(BaseModel):
    registration_number: str | None = None
    registration_date: str | None = None
    issuance_number: str | None = None
    issuance_date: str | None = None
    lane: Lane | None = None
    lane_reason: str | None = None


class ErrorCounts(BaseModel):
    error: int = 0
    warning: int = 0
    info: int = 0


class ResponseHandlingResult(BaseModel):
    incoming: IncomingMessageResponse
    declaration_id: uuid.UUID
    declaration_status: DeclarationStatus
    archive_entry_id: uuid.UUID
    registration: RegistrationData
    has_critical_errors: bool = False


class SendResult(BaseModel):
    declaration_id: uuid.UUID
    declaration_status: DeclarationStatus
    archive_entry_id: uuid.UUID
    transmission: TransmissionResult
    response: ResponseHandlingResult | None = None


class EngineStatistics(BaseModel):
    queue: QueueStats
    incoming: IncomingStats
    archive: ArchiveStats


class TransmissionUnitListResponse(BaseModel):
    units: list[TransmissionUnitResponse]
    total: int
    page: int
    per_page: int


class DeletedCount(BaseModel):
    deleted: int
