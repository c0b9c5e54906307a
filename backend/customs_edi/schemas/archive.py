"""Pydantic schemas for the EDI message archive."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from customs_edi.models.archive import ArchiveDirection


class ArchiveEntryResponse(BaseModel):
    id: uuid.UUID
    message_id: str
    document_type: str
    document_number: str
    direction: ArchiveDirection
    xml_hash: str
    archive_path: str
    archived_at: datetime

    model_config = {"from_attributes": True}


class ArchiveEntryDetail(ArchiveEntryResponse):
    xml_content: str


class ArchiveEntryListResponse(BaseModel):
    entries: list[ArchiveEntryResponse]
    total: int


class ArchiveVerification(BaseModel):
    entry_id: uuid.UUID
    is_valid: bool
    original_hash: str
    computed_hash: str


class ArchiveStats(BaseModel):
    total: int = 0
    outgoing: int = 0
    incoming: int = 0
    peb: int = 0
    pib: int = 0
    by_month: dict[str, int] = Field(default_factory=dict)


class ArchiveExport(BaseModel):
    filename: str
    content: str
    mime_type: str = "application/xml"


class ArchiveMessageRequest(BaseModel):
    message_id: str
    document_type: str
    document_number: str
    direction: ArchiveDirection
    xml_content: str


class PurgeRequest(BaseModel):
    older_than_days: int = Field(ge=0)


class PurgeResponse(BaseModel):
    deleted: int
    cutoff: datetime
