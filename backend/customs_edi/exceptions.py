"""Typed exceptions for the customs EDI gateway.

Every exception carries a machine-readable ``code`` so the API layer can map
it to a status code without matching on message text.
"""

import enum


class TransmissionErrorClass(str, enum.Enum):
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    VALIDATION = "VALIDATION"
    SERVER = "SERVER"
    UNKNOWN = "UNKNOWN"
    MAX_RETRY_EXCEEDED = "MAX_RETRY_EXCEEDED"

    @property
    def retryable(self) -> bool:
        return self in (TransmissionErrorClass.NETWORK, TransmissionErrorClass.TIMEOUT)


class CustomsEdiError(Exception):
    code: str = "CUSTOMS_EDI_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# Declaration lifecycle


class DeclarationNotFoundError(CustomsEdiError):
    code = "DECLARATION_NOT_FOUND"

    def __init__(self, declaration_id):
        self.declaration_id = declaration_id
        super().__init__(f"Declaration {declaration_id} not found")


class DocumentLockedError(CustomsEdiError):
    code = "DOCUMENT_LOCKED"

    def __init__(self, declaration_id=None, action: str | None = None):
        self.declaration_id = declaration_id
        self.action = action
        super().__init__("Document is locked and read-only")


class AlreadyLockedError(CustomsEdiError):
    code = "ALREADY_LOCKED"

    def __init__(self, declaration_id):
        self.declaration_id = declaration_id
        super().__init__(f"Declaration {declaration_id} is already locked")


class InvalidTransitionError(CustomsEdiError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str | None = None, reason: str | None = None):
        self.current = current
        self.target = target
        if reason is None:
            reason = f"Cannot move declaration from {current} to {target}"
        super().__init__(reason)


class UnlockNotPermittedError(CustomsEdiError):
    code = "UNLOCK_NOT_PERMITTED"


# Exchange


class TransmissionUnitNotFoundError(CustomsEdiError):
    code = "TRANSMISSION_UNIT_NOT_FOUND"

    def __init__(self, unit_id):
        self.unit_id = unit_id
        super().__init__(f"Transmission unit {unit_id} not found")


class TransmissionFailure(CustomsEdiError):
    """Raised by transports; converted into a TransmissionResult by the queue."""

    code = "TRANSMISSION_FAILED"

    def __init__(self, error_class: TransmissionErrorClass, message: str):
        self.error_class = error_class
        super().__init__(message)


class ResponseParseError(CustomsEdiError):
    code = "RESPONSE_PARSE_ERROR"


class XmlSchemaError(CustomsEdiError):
    code = "XML_SCHEMA_INVALID"

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        super().__init__(message)


class ArchiveEntryNotFoundError(CustomsEdiError):
    code = "ARCHIVE_ENTRY_NOT_FOUND"

    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Archive entry {entry_id} not found")


class ImmutableRecordError(CustomsEdiError):
    code = "IMMUTABLE_RECORD"

    def __init__(self, entity_type: str, entity_id, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id}: {reason}")


class QueueOperationError(CustomsEdiError):
    code = "QUEUE_OPERATION_REFUSED"


class IncomingMessageNotFoundError(CustomsEdiError):
    code = "INCOMING_MESSAGE_NOT_FOUND"

    def __init__(self, message_id):
        self.message_id = message_id
        super().__init__(f"Incoming message {message_id} not found")


class MessageAlreadyProcessedError(CustomsEdiError):
    code = "MESSAGE_ALREADY_PROCESSED"

    def __init__(self, message_id):
        self.message_id = message_id
        super().__init__(f"Incoming message {message_id} is already processed")
