"""Pydantic schemas for declarations, line items and the submission workflow."""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field

from customs_edi.models.declaration import DeclarationStatus, DocumentType, Lane, TransportMode


class LineItemIn(BaseModel):
    item_number: int = Field(ge=1)
    hs_code: str | None = None
    description: str | None = None
    quantity: float | None = None
    unit: str | None = None
    net_weight: float | None = None
    gross_weight: float | None = None
    unit_price: float | None = None
    total_price: float | None = None
    value: float | None = None
    value_idr: float | None = None
    country_of_origin: str | None = None
    package_type: str | None = None
    package_count: int | None = None
    bm_rate: float | None = None
    ppn_rate: float | None = None
    pph_rate: float | None = None
    bm_amount: float | None = None
    ppn_amount: float | None = None
    pph_amount: float | None = None


class LineItemResponse(LineItemIn):
    model_config = {"from_attributes": True}

    id: uuid.UUID


class SupportingDocumentIn(BaseModel):
    document_kind: str  # INVOICE, PACKING_LIST, BL, AWB, ...
    reference_number: str | None = None
    issued_date: date | None = None


class SupportingDocumentResponse(SupportingDocumentIn):
    model_config = {"from_attributes": True}

    id: uuid.UUID


class DeclarationHeader(BaseModel):
    """Editable header fields; every field optional so it doubles as a PATCH body."""

    document_date: date | None = None
    customs_office_code: str | None = None

    declarant_npwp: str | None = None
    declarant_name: str | None = None
    declarant_address: str | None = None
    counterparty_name: str | None = None
    counterparty_address: str | None = None
    counterparty_country: str | None = None
    ppjk_npwp: str | None = None
    ppjk_name: str | None = None

    transport_mode: TransportMode | None = None
    vessel_name: str | None = None
    voyage_number: str | None = None
    loading_port: str | None = None
    discharge_port: str | None = None
    destination_country: str | None = None
    origin_country: str | None = None
    bl_awb_number: str | None = None
    bl_awb_date: date | None = None

    incoterm: str | None = None
    currency: str | None = None
    exchange_rate: float | None = None

    total_packages: int | None = None
    package_unit: str | None = None
    gross_weight: float | None = None
    net_weight: float | None = None
    total_value: float | None = None
    freight_value: float | None = None
    insurance_value: float | None = None
    total_value_idr: float | None = None

    total_bm: float | None = None
    total_ppn: float | None = None
    total_pph: float | None = None
    total_tax: float | None = None

    notes: str | None = None


class DeclarationCreate(DeclarationHeader):
    document_type: DocumentType
    document_number: str
    created_by: str | None = None
    items: list[LineItemIn] = Field(default_factory=list)
    supporting_documents: list[SupportingDocumentIn] = Field(default_factory=list)


class DeclarationUpdate(DeclarationHeader):
    document_number: str | None = None


class DeclarationResponse(DeclarationHeader):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    document_type: DocumentType
    document_number: str
    status: DeclarationStatus
    locked: bool
    locked_at: datetime | None = None
    locked_by: str | None = None
    submitted_at: datetime | None = None
    xml_hash: str | None = None
    message_id: str | None = None
    ceisa_reference: str | None = None
    registration_number: str | None = None
    registration_date: date | None = None
    clearance_number: str | None = None
    clearance_date: date | None = None
    lane: Lane | None = None
    lane_reason: str | None = None
    response_errors: list | None = None
    revision_of_id: uuid.UUID | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime
    items: list[LineItemResponse] = Field(default_factory=list)
    supporting_documents: list[SupportingDocumentResponse] = Field(default_factory=list)


class DeclarationListResponse(BaseModel):
    declarations: list[DeclarationResponse]
    total: int
    page: int
    per_page: int


class ItemsReplaceRequest(BaseModel):
    items: list[LineItemIn]


class ValidationReport(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    success: bool
    declaration_id: uuid.UUID
    status: DeclarationStatus
    xml_hash: str | None = None
    xml_path: str | None = None
    message_id: str | None = None
    locked: bool = False
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class XmlIntegrityReport(BaseModel):
    declaration_id: uuid.UUID
    is_valid: bool
    stored_hash: str | None = None
    computed_hash: str | None = None
    embedded_hash: str | None = None
    message: str
    checked_at: datetime


class XmlGenerationResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    declaration_id: uuid.UUID
    document_type: DocumentType
    document_number: str
    version: int
    message_id: str
    xml_hash: str
    file_path: str | None = None
    file_size: int
    generated_by: str | None = None
    created_at: datetime


class XmlPreviewResponse(BaseModel):
    generation: XmlGenerationResponse
    xml_content: str


class UnlockRequest(BaseModel):
    reason: str = Field(min_length=1)
    actor: str


class StatusHistoryResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    from_status: str | None = None
    to_status: str
    actor: str | None = None
    reason: str | None = None
    created_at: datetime
