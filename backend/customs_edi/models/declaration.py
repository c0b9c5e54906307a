"""ORM models for customs declarations (PEB export / PIB import) and their line items."""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from customs_edi.clock import utcnow
from customs_edi.models.base import Base, TimestampMixin, enum_values


class DocumentType(str, enum.Enum):
    PEB = "PEB"
    PIB = "PIB"


class DeclarationStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    SENT_TO_BROKER = "SENT_TO_BROKER"
    AUTHORITY_ACCEPTED = "AUTHORITY_ACCEPTED"
    AUTHORITY_REJECTED = "AUTHORITY_REJECTED"
    CLEARANCE_ISSUED = "CLEARANCE_ISSUED"
    COMPLETED = "COMPLETED"


class TransportMode(str, enum.Enum):
    SEA = "SEA"
    AIR = "AIR"
    LAND = "LAND"
    RAIL = "RAIL"
    MULTI = "MULTI"


class Lane(str, enum.Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


document_type_enum = SAEnum(
    DocumentType, name="document_type", values_callable=enum_values, metadata=Base.metadata
)


class Declaration(TimestampMixin, Base):
    __tablename__ = "declarations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_type: Mapped[DocumentType] = mapped_column(document_type_enum)
    document_number: Mapped[str] = mapped_column(String(64), index=True)
    document_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[DeclarationStatus] = mapped_column(
        SAEnum(DeclarationStatus, name="declaration_status", values_callable=enum_values),
        default=DeclarationStatus.DRAFT,
    )
    customs_office_code: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Declarant: exporter on a PEB, importer on a PIB
    declarant_npwp: Mapped[str | None] = mapped_column(String(32), nullable=True)
    declarant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    declarant_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Counterparty: buyer on a PEB, supplier on a PIB
    counterparty_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    counterparty_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    counterparty_country: Mapped[str | None] = mapped_column(String(2), nullable=True)

    # Customs broker (PPJK)
    ppjk_npwp: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ppjk_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Transport
    transport_mode: Mapped[TransportMode | None] = mapped_column(
        SAEnum(TransportMode, name="transport_mode", values_callable=enum_values),
        nullable=True,
    )
    vessel_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    voyage_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    loading_port: Mapped[str | None] = mapped_column(String(16), nullable=True)
    discharge_port: Mapped[str | None] = mapped_column(String(16), nullable=True)
    destination_country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    origin_country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    bl_awb_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bl_awb_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Trade terms
    incoterm: Mapped[str | None] = mapped_column(String(8), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Totals (total_value is FOB on a PEB, CIF on a PIB)
    total_packages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    package_unit: Mapped[str | None] = mapped_column(String(8), nullable=True)
    gross_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    net_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    freight_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    insurance_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_value_idr: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Import duties (PIB only)
    total_bm: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_ppn: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_pph: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_tax: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Lock / exchange state
    locked: Mapped[bool] = mapped_column(Boolean, default=False)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    xml_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    xml_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Authority response
    ceisa_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    registration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    clearance_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    clearance_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    lane: Mapped[Lane | None] = mapped_column(
        SAEnum(Lane, name="lane", values_callable=enum_values), nullable=True
    )
    lane_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_errors: Mapped[list | None] = mapped_column(JSON, nullable=True)

    revision_of_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("declarations.id"), nullable=True
    )
    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["LineItem"]] = relationship(
        back_populates="declaration",
        cascade="all, delete-orphan",
        order_by="LineItem.item_number",
        lazy="selectin",
    )
    supporting_documents: Mapped[list["SupportingDocument"]] = relationship(
        back_populates="declaration",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class LineItem(Base):
    __tablename__ = "declaration_items"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    declaration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("declarations.id", ondelete="CASCADE"), index=True
    )
    item_number: Mapped[int] = mapped_column(Integer)
    hs_code: Mapped[str | None] = mapped_column(String(12), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit: Mapped[str | None] = mapped_column(String(8), nullable=True)
    net_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    gross_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    value: Mapped[float | None] = mapped_column(Float, nullable=True)
    value_idr: Mapped[float | None] = mapped_column(Float, nullable=True)
    country_of_origin: Mapped[str | None] = mapped_column(String(2), nullable=True)
    package_type: Mapped[str | None] = mapped_column(String(8), nullable=True)
    package_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bm_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    ppn_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    pph_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    bm_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    ppn_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    pph_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    declaration: Mapped[Declaration] = relationship(back_populates="items")


class SupportingDocument(Base):
    __tablename__ = "declaration_documents"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    declaration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("declarations.id", ondelete="CASCADE"), index=True
    )
    document_kind: Mapped[str] = mapped_column(String(32))
    reference_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issued_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    declaration: Mapped[Declaration] = relationship(back_populates="supporting_documents")


class DeclarationStatusHistory(Base):
    __tablename__ = "declaration_status_history"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    declaration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("declarations.id", ondelete="CASCADE"), index=True
    )
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32))
    actor: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
