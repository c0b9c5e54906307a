"""ResponseCorrelator: stores authority responses as incoming messages.

Each response is parsed, classified, integrity-checked and error-grouped
once, on arrival. The stored row is immutable afterwards except for a single
``processed_at`` stamp.
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.clock import Clock, SystemClock
from customs_edi.config import Settings
from customs_edi.edi.error_codes import count_errors_by_severity, group_errors
from customs_edi.edi.responses import (
    build_mock_response,
    check_integrity,
    classify_response,
    parse_response,
    parsed_response_adapter,
)
from customs_edi.exceptions import IncomingMessageNotFoundError, MessageAlreadyProcessedError
from customs_edi.models.declaration import Declaration, DocumentType
from customs_edi.models.transmission import IncomingMessage, IntegrityStatus, TransmissionStatus
from customs_edi.schemas.exchange import (
    ErrorCounts,
    ErrorGroup,
    IncomingStats,
    RegistrationData,
    SimulateResponseRequest,
)

logger = logging.getLogger("edi.correlator")


class ResponseCorrelator:
    def __init__(self, settings: Settings, *, clock: Clock | None = None):
        self.clock = clock or SystemClock()
        self.require_signed = settings.require_signed_responses

    async def process_incoming(
        self,
        db: AsyncSession,
        *,
        document_type: DocumentType | str,
        document_id: uuid.UUID,
        document_number: str,
        response_xml: str,
    ) -> IncomingMessage:
        """Parse, classify and store one authority response.

        Raises ResponseParseError for malformed or unattributable XML; nothing
        is stored in that case. An integrity mismatch is recorded on the
        message, not raised.
        """
        document_type = DocumentType(document_type)
        parsed = parse_response(response_xml, document_type)
        status = classify_response(parsed)

        integrity = check_integrity(response_xml)
        if integrity == IntegrityStatus.UNVERIFIABLE:
            integrity_verified = not self.require_signed
        else:
            integrity_verified = integrity == IntegrityStatus.VERIFIED

        groups = group_errors(parsed.errors)
        message = IncomingMessage(
            id=uuid.uuid4(),
            document_type=document_type,
            document_id=document_id,
            document_number=document_number,
            ceisa_reference=parsed.reference_number,
            response_xml=response_xml,
            parsed_response=parsed.model_dump(mode="json", exclude={"raw_xml"}),
            status=status,
            error_groups=[g.model_dump(mode="json") for g in groups],
            integrity_verified=integrity_verified,
            integrity_status=integrity,
            received_at=self.clock.now(),
        )
        db.add(message)
        await db.flush()

        log = logger.info if integrity_verified else logger.warning
        log(
            "Incoming %s response for %s: status=%s reference=%s integrity=%s errors=%d",
            document_type.value, document_number, status.value, parsed.reference_number,
            integrity.value, len(parsed.errors),
        )
        return message

    def parsed(self, message: IncomingMessage):
        return parsed_response_adapter.validate_python(message.parsed_response)

    async def get_message(self, db: AsyncSession, message_id: uuid.UUID) -> IncomingMessage:
        message = await db.get(IncomingMessage, message_id)
        if message is None:
            raise IncomingMessageNotFoundError(message_id)
        return message

    async def mark_processed(self, db: AsyncSession, message_id: uuid.UUID) -> IncomingMessage:
        message = await self.get_message(db, message_id)
        if message.processed_at is not None:
            raise MessageAlreadyProcessedError(message_id)
        message.processed_at = self.clock.now()
        await db.flush()
        return message

    # ── Queries ──

    async def _select(self, db: AsyncSession, *criteria) -> list[IncomingMessage]:
        result = await db.execute(
            select(IncomingMessage)
            .where(*criteria)
            .order_by(IncomingMessage.received_at.desc(), IncomingMessage.id)
        )
        return list(result.scalars().all())

    async def get_unprocessed(self, db: AsyncSession) -> list[IncomingMessage]:
        return await self._select(db, IncomingMessage.processed_at.is_(None))

    async def get_by_document(self, db: AsyncSession, document_id: uuid.UUID) -> list[IncomingMessage]:
        return await self._select(db, IncomingMessage.document_id == document_id)

    async def get_latest_for_document(self, db: AsyncSession, document_id: uuid.UUID) -> IncomingMessage | None:
        messages = await self.get_by_document(db, document_id)
        return messages[0] if messages else None

    async def get_by_status(self, db: AsyncSession, status: TransmissionStatus) -> list[IncomingMessage]:
        return await self._select(db, IncomingMessage.status == TransmissionStatus(status))

    async def get_by_date_range(self, db: AsyncSession, start: datetime, end: datetime) -> list[IncomingMessage]:
        return await self._select(
            db, IncomingMessage.received_at >= start, IncomingMessage.received_at <= end
        )

    # ── Derived data ──

    def extract_registration_data(self, message: IncomingMessage) -> RegistrationData:
        parsed = self.parsed(message)
        return RegistrationData(
            registration_number=parsed.registration_number,
            registration_date=parsed.registration_date,
            issuance_number=parsed.issuance_number,
            issuance_date=parsed.issuance_date,
            lane=getattr(parsed, "lane", None),
            lane_reason=getattr(parsed, "lane_reason", None),
        )

    def error_groups(self, message: IncomingMessage) -> list[ErrorGroup]:
        return [ErrorGroup.model_validate(g) for g in message.error_groups or []]

    def has_critical_errors(self, message: IncomingMessage) -> bool:
        return any(
            error.severity == "error"
            for group in self.error_groups(message)
            for error in group.errors
        )

    def get_error_counts(self, message: IncomingMessage) -> ErrorCounts:
        return ErrorCounts(**count_errors_by_severity(self.parsed(message).errors))

    async def get_stats(self, db: AsyncSession) -> IncomingStats:
        rows = (await db.execute(
            select(IncomingMessage.status, IncomingMessage.processed_at, IncomingMessage.error_groups)
        )).all()
        stats = IncomingStats(total=len(rows))
        for status, processed_at, groups in rows:
            if processed_at is None:
                stats.unprocessed += 1
            if status == TransmissionStatus.ACCEPTED:
                stats.accepted += 1
            elif status == TransmissionStatus.REJECTED:
                stats.rejected += 1
            elif status == TransmissionStatus.PENDING:
                stats.pending += 1
            if groups:
                stats.with_errors += 1
        return stats

    async def clear_old_messages(self, db: AsyncSession, older_than_days: int) -> int:
        """Delete processed messages received before now - older_than_days."""
        cutoff = self.clock.now() - timedelta(days=older_than_days)
        result = await db.execute(
            delete(IncomingMessage)
            .where(
                IncomingMessage.processed_at.is_not(None),
                IncomingMessage.received_at < cutoff,
            )
            .execution_options(synchronize_session="fetch")
        )
        logger.info("Cleared %d processed incoming message(s) older than %s", result.rowcount, cutoff.isoformat())
        return result.rowcount

    # ── Simulation ──

    def simulated_xml(self, declaration: Declaration, request: SimulateResponseRequest) -> str:
        return build_mock_response(
            declaration.document_type,
            request.success,
            lane=request.lane,
            errors=request.errors,
            now=self.clock.now(),
        )
