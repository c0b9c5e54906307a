"""ORM listeners that keep append-only records append-only.

Archive entries, document hashes and audit events can never be modified or
deleted through the ORM. Retention purges go through bulk DELETE statements,
which do not fire mapper events. Incoming messages accept exactly one change:
the first processed_at stamp.
"""

import logging

from sqlalchemy import event, inspect
from sqlalchemy.orm import object_session

from customs_edi.exceptions import ImmutableRecordError
from customs_edi.models.archive import ArchiveEntry
from customs_edi.models.audit import AuditEvent
from customs_edi.models.transmission import IncomingMessage
from customs_edi.models.xml_record import DocumentHash

logger = logging.getLogger("edi.immutability")

_APPEND_ONLY = (ArchiveEntry, DocumentHash, AuditEvent)


def _has_changes(target) -> bool:
    session = object_session(target)
    return session is None or session.is_modified(target, include_collections=False)


def _block_update(mapper, connection, target):
    if not _has_changes(target):
        return
    entity = type(target).__name__
    logger.error("Blocked update of immutable %s %s", entity, target.id)
    raise ImmutableRecordError(entity, target.id, "record is append-only and cannot be modified")


def _block_delete(mapper, connection, target):
    entity = type(target).__name__
    logger.error("Blocked delete of immutable %s %s", entity, target.id)
    raise ImmutableRecordError(entity, target.id, "record is append-only and cannot be deleted")


def _check_incoming_update(mapper, connection, target):
    state = inspect(target)
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        if attr.key != "processed_at":
            raise ImmutableRecordError(
                "IncomingMessage", target.id, f"field '{attr.key}' cannot be modified"
            )
        if history.deleted and history.deleted[0] is not None:
            raise ImmutableRecordError("IncomingMessage", target.id, "message is already processed")


def register_immutability_listeners() -> None:
    for model in _APPEND_ONLY:
        if not event.contains(model, "before_update", _block_update):
            event.listen(model, "before_update", _block_update)
            event.listen(model, "before_delete", _block_delete)
    if not event.contains(IncomingMessage, "before_update", _check_incoming_update):
        event.listen(IncomingMessage, "before_update", _check_incoming_update)
        event.listen(IncomingMessage, "before_delete", _block_delete)
