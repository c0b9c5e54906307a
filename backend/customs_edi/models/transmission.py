"""ORM models for the outgoing transmission queue and incoming authority messages."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from customs_edi.clock import utcnow
from customs_edi.models.base import Base, TimestampMixin, enum_values
from customs_edi.models.declaration import DocumentType, document_type_enum


class TransmissionStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    RECEIVED = "RECEIVED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ERROR = "ERROR"


TERMINAL_TRANSMISSION_STATUSES = frozenset({TransmissionStatus.ACCEPTED, TransmissionStatus.REJECTED})


class IntegrityStatus(str, enum.Enum):
    VERIFIED = "VERIFIED"
    UNVERIFIABLE = "UNVERIFIABLE"
    FAILED = "FAILED"


transmission_status_enum = SAEnum(
    TransmissionStatus, name="transmission_status", values_callable=enum_values, metadata=Base.metadata
)


class TransmissionUnit(TimestampMixin, Base):
    __tablename__ = "transmission_units"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id: Mapped[str] = mapped_column(String(64), index=True)
    document_type: Mapped[DocumentType] = mapped_column(document_type_enum)
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("declarations.id"), index=True
    )
    document_number: Mapped[str] = mapped_column(String(64), index=True)
    xml_content: Mapped[str] = mapped_column(Text)
    xml_hash: Mapped[str] = mapped_column(String(64))
    status: Mapped[TransmissionStatus] = mapped_column(
        transmission_status_enum,
        default=TransmissionStatus.PENDING,
        index=True,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    errors: Mapped[list] = mapped_column(JSON, default=list)
    error_class: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ceisa_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    response_xml: Mapped[str | None] = mapped_column(Text, nullable=True)
    in_flight: Mapped[bool] = mapped_column(Boolean, default=False)


class IncomingMessage(Base):
    __tablename__ = "incoming_messages"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_type: Mapped[DocumentType] = mapped_column(document_type_enum)
    document_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    document_number: Mapped[str] = mapped_column(String(64), index=True)
    ceisa_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    response_xml: Mapped[str] = mapped_column(Text)
    parsed_response: Mapped[dict] = mapped_column(JSON)
    status: Mapped[TransmissionStatus] = mapped_column(
        transmission_status_enum,
        index=True,
    )
    error_groups: Mapped[list] = mapped_column(JSON, default=list)
    integrity_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    integrity_status: Mapped[IntegrityStatus] = mapped_column(
        SAEnum(IntegrityStatus, name="integrity_status", values_callable=enum_values),
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
