"""ORM model for the append-only EDI message archive."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from customs_edi.clock import utcnow
from customs_edi.models.base import Base, enum_values
from customs_edi.models.declaration import DocumentType, document_type_enum


class ArchiveDirection(str, enum.Enum):
    OUTGOING = "OUTGOING"
    INCOMING = "INCOMING"


class ArchiveEntry(Base):
    __tablename__ = "archive_entries"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id: Mapped[str] = mapped_column(String(64), index=True)
    document_type: Mapped[DocumentType] = mapped_column(document_type_enum)
    document_number: Mapped[str] = mapped_column(String(64), index=True)
    direction: Mapped[ArchiveDirection] = mapped_column(
        SAEnum(ArchiveDirection, name="archive_direction", values_callable=enum_values),
    )
    xml_content: Mapped[str] = mapped_column(Text)
    xml_hash: Mapped[str] = mapped_column(String(64))
    archive_path: Mapped[str] = mapped_column(String(512))
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
