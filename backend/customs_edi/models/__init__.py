from customs_edi.models.base import Base, TimestampMixin
from customs_edi.models.declaration import (
    Declaration,
    DeclarationStatus,
    DeclarationStatusHistory,
    DocumentType,
    Lane,
    LineItem,
    SupportingDocument,
    TransportMode,
)
from customs_edi.models.transmission import (
    IncomingMessage,
    IntegrityStatus,
    TransmissionStatus,
    TransmissionUnit,
)
from customs_edi.models.archive import ArchiveDirection, ArchiveEntry
from customs_edi.models.xml_record import DocumentHash, XmlGeneration
from customs_edi.models.audit import AuditEvent
from customs_edi.models.immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    "Base",
    "TimestampMixin",
    "Declaration",
    "DeclarationStatus",
    "DeclarationStatusHistory",
    "DocumentType",
    "Lane",
    "LineItem",
    "SupportingDocument",
    "TransportMode",
    "IncomingMessage",
    "IntegrityStatus",
    "TransmissionStatus",
    "TransmissionUnit",
    "ArchiveDirection",
    "ArchiveEntry",
    "DocumentHash",
    "XmlGeneration",
    "AuditEvent",
]
