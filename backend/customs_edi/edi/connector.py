"""ExchangeEngine: composes queue, archive, correlator and lifecycle.

send:             SUBMITTED -> enqueue -> archive OUTGOING -> SENT_TO_BROKER
                  -> transmit -> (reply) handle_response
handle_response:  incoming message -> archive INCOMING -> lifecycle update
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.edi.archive import ArchiveStore
from customs_edi.edi.incoming import ResponseCorrelator
from customs_edi.edi.outgoing import TransmissionQueue
from customs_edi.exceptions import InvalidTransitionError
from customs_edi.lifecycle.service import DeclarationService
from customs_edi.models.archive import ArchiveDirection
from customs_edi.models.declaration import DeclarationStatus, DocumentType
from customs_edi.schemas.exchange import (
    EngineStatistics,
    IncomingMessageResponse,
    ResponseHandlingResult,
    SendResult,
    SimulateResponseRequest,
    TransmissionResult,
)

logger = logging.getLogger("edi.engine")


class ExchangeEngine:
    def __init__(
        self,
        queue: TransmissionQueue,
        archive: ArchiveStore,
        correlator: ResponseCorrelator,
        declarations: DeclarationService,
    ):
        self.queue = queue
        self.archive = archive
        self.correlator = correlator
        self.declarations = declarations

    async def send(self, db: AsyncSession, declaration_id: uuid.UUID, actor: str = "system") -> SendResult:
        declaration = await self.declarations.get(db, declaration_id, for_update=True)
        if declaration.status != DeclarationStatus.SUBMITTED:
            raise InvalidTransitionError(
                declaration.status.value,
                DeclarationStatus.SENT_TO_BROKER.value,
                reason=f"Only SUBMITTED declarations can be sent (current status: {declaration.status.value})",
            )

        unit = await self.queue.enqueue(db, declaration)
        entry = await self.archive.archive(
            db,
            message_id=unit.message_id,
            document_type=unit.document_type,
            document_number=unit.document_number,
            direction=ArchiveDirection.OUTGOING,
            xml_content=unit.xml_content,
        )
        await self.declarations.mark_sent_to_broker(db, declaration, actor)

        transmission = await self.queue.transmit(db, unit)
        response = None
        if transmission.response_xml:
            response = await self.handle_response(
                db,
                document_type=declaration.document_type,
                document_id=declaration.id,
                document_number=declaration.document_number,
                response_xml=transmission.response_xml,
            )
        elif not transmission.success:
            logger.warning(
                "Send of %s did not complete: %s (retry_allowed=%s)",
                declaration.document_number, transmission.error_class, transmission.retry_allowed,
            )

        return SendResult(
            declaration_id=declaration.id,
            declaration_status=declaration.status,
            archive_entry_id=entry.id,
            transmission=transmission,
            response=response,
        )

    async def handle_response(
        self,
        db: AsyncSession,
        *,
        document_type: DocumentType | str,
        document_id: uuid.UUID,
        document_number: str,
        response_xml: str,
    ) -> ResponseHandlingResult:
        declaration = await self.declarations.get(db, document_id, for_update=True)
        message = await self.correlator.process_incoming(
            db,
            document_type=document_type,
            document_id=document_id,
            document_number=document_number,
            response_xml=response_xml,
        )
        entry = await self.archive.archive(
            db,
            message_id=message.ceisa_reference or f"IN-{message.id}",
            document_type=document_type,
            document_number=document_number,
            direction=ArchiveDirection.INCOMING,
            xml_content=response_xml,
        )

        await self.queue.record_response(db, document_id, message.status, message.ceisa_reference)
        registration = self.correlator.extract_registration_data(message)
        await self.declarations.apply_response(db, declaration, message, registration)
        message = await self.correlator.mark_processed(db, message.id)

        return ResponseHandlingResult(
            incoming=IncomingMessageResponse.model_validate(message),
            declaration_id=declaration.id,
            declaration_status=declaration.status,
            archive_entry_id=entry.id,
            registration=registration,
            has_critical_errors=self.correlator.has_critical_errors(message),
        )

    async def _handle_replies(self, db: AsyncSession, results: list[TransmissionResult]) -> list[TransmissionResult]:
        for result in results:
            if not result.response_xml or result.unit_id is None:
                continue
            unit = await self.queue.get_unit(db, result.unit_id)
            await self.handle_response(
                db,
                document_type=unit.document_type,
                document_id=unit.document_id,
                document_number=unit.document_number,
                response_xml=result.response_xml,
            )
        return results

    async def transmit(self, db: AsyncSession, unit_id: uuid.UUID) -> TransmissionResult:
        unit = await self.queue.get_unit(db, unit_id)
        return (await self._handle_replies(db, [await self.queue.transmit(db, unit)]))[0]

    async def process_queue(self, db: AsyncSession) -> list[TransmissionResult]:
        return await self._handle_replies(db, await self.queue.process_queue(db))

    async def retry_due(self, db: AsyncSession) -> list[TransmissionResult]:
        """Entry point for the external retry scheduler."""
        return await self._handle_replies(db, await self.queue.retry_due(db))

    async def simulate_response(
        self, db: AsyncSession, declaration_id: uuid.UUID, request: SimulateResponseRequest
    ) -> ResponseHandlingResult:
        declaration = await self.declarations.get(db, declaration_id)
        return await self.handle_response(
            db,
            document_type=declaration.document_type,
            document_id=declaration.id,
            document_number=declaration.document_number,
            response_xml=self.correlator.simulated_xml(declaration, request),
        )

    async def get_statistics(self, db: AsyncSession) -> EngineStatistics:
        return EngineStatistics(
            queue=await self.queue.get_stats(db),
            incoming=await self.correlator.get_stats(db),
            archive=await self.archive.get_stats(db),
        )
