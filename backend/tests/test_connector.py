"""End-to-end tests for the exchange engine: send, responses, retries and simulation."""

from unittest.mock import AsyncMock

import pytest

from customs_edi.edi.connector import ExchangeEngine
from customs_edi.edi.outgoing import TransmissionQueue
from customs_edi.edi.transport import SimulatedTransport
from customs_edi.exceptions import InvalidTransitionError, ResponseParseError, TransmissionErrorClass
from customs_edi.models.declaration import DeclarationStatus, Lane
from customs_edi.models.transmission import TransmissionStatus
from customs_edi.schemas.exchange import SimulateResponseRequest


@pytest.fixture
def engine_with(test_settings, clock, archive_store, correlator, declaration_service):
    """Build an engine around a specific transport."""

    def _build(transport):
        queue = TransmissionQueue(test_settings, transport, clock=clock)
        return ExchangeEngine(queue, archive_store, correlator, declaration_service)

    return _build


class TestSend:
    @pytest.mark.asyncio
    async def test_accepted_send(self, db_session, exchange_engine, archive_store, make_submitted):
        """A successful send ends with clearance and one OUTGOING archive entry matching the unit hash."""
        declaration = await make_submitted()

        result = await exchange_engine.send(db_session, declaration.id, actor="operator")

        assert result.transmission.success
        assert result.transmission.status == TransmissionStatus.ACCEPTED
        assert result.declaration_status == DeclarationStatus.CLEARANCE_ISSUED
        assert result.response.registration.issuance_number.startswith("NPE-")
        assert result.response.incoming.processed_at is not None

        unit = await exchange_engine.queue.get_unit(db_session, result.transmission.unit_id)
        outgoing = await archive_store.search(db_session, direction="OUTGOING")
        assert len(outgoing) == 1
        assert outgoing[0].id == result.archive_entry_id
        assert outgoing[0].xml_hash == unit.xml_hash
        assert outgoing[0].xml_hash == declaration.xml_hash

        incoming = await archive_store.search(db_session, direction="INCOMING")
        assert [e.id for e in incoming] == [result.response.archive_entry_id]
        assert incoming[0].message_id == result.response.incoming.ceisa_reference

    @pytest.mark.asyncio
    async def test_import_send_records_lane(self, db_session, engine_with, make_submitted):
        engine = engine_with(SimulatedTransport(lane="RED"))
        declaration = await make_submitted("PIB")

        result = await engine.send(db_session, declaration.id)

        assert result.response.registration.lane == Lane.RED
        assert declaration.lane == Lane.RED
        assert declaration.clearance_number.startswith("SPPB-")

    @pytest.mark.asyncio
    async def test_rejected_send(self, db_session, engine_with, make_submitted):
        engine = engine_with(SimulatedTransport(success=False))
        declaration = await make_submitted()

        result = await engine.send(db_session, declaration.id)

        assert not result.transmission.success
        assert result.transmission.status == TransmissionStatus.REJECTED
        assert not result.transmission.retry_allowed
        assert result.declaration_status == DeclarationStatus.AUTHORITY_REJECTED
        assert result.response.has_critical_errors
        assert declaration.response_errors[0]["errors"][0]["code"] == "E003"

    @pytest.mark.asyncio
    async def test_registration_without_clearance(self, db_session, engine_with, make_submitted):
        engine = engine_with(SimulatedTransport(issue_clearance=False))
        declaration = await make_submitted()

        result = await engine.send(db_session, declaration.id)

        assert result.transmission.status == TransmissionStatus.RECEIVED
        assert result.declaration_status == DeclarationStatus.SENT_TO_BROKER
        assert declaration.registration_number is not None

    @pytest.mark.asyncio
    async def test_only_submitted_declarations_are_sent(self, db_session, exchange_engine, make_draft, make_submitted):
        draft = await make_draft()
        with pytest.raises(InvalidTransitionError):
            await exchange_engine.send(db_session, draft.id)

        submitted = await make_submitted(document_number="PEB-2026-0002")
        await exchange_engine.send(db_session, submitted.id)
        with pytest.raises(InvalidTransitionError):
            await exchange_engine.send(db_session, submitted.id)


class TestTransmissionFailures:
    @pytest.mark.asyncio
    async def test_network_failure_keeps_sent_to_broker(self, db_session, engine_with, archive_store, make_submitted, clock):
        transport = SimulatedTransport(failure_class="NETWORK")
        engine = engine_with(transport)
        declaration = await make_submitted()

        result = await engine.send(db_session, declaration.id)

        assert not result.transmission.success
        assert result.transmission.error_class == TransmissionErrorClass.NETWORK.value
        assert result.transmission.retry_allowed
        assert result.response is None
        assert result.declaration_status == DeclarationStatus.SENT_TO_BROKER
        assert await archive_store.search(db_session, direction="INCOMING") == []

        # the scheduler picks the unit up once the backoff has elapsed
        transport.failure_class = None
        clock.advance(minutes=2)
        retried = await engine.retry_due(db_session)

        assert [r.status for r in retried] == [TransmissionStatus.ACCEPTED]
        assert declaration.status == DeclarationStatus.CLEARANCE_ISSUED

    @pytest.mark.asyncio
    async def test_retry_not_due_yet(self, db_session, engine_with, make_submitted, clock):
        transport = SimulatedTransport(failure_class="TIMEOUT")
        engine = engine_with(transport)
        declaration = await make_submitted()
        await engine.send(db_session, declaration.id)

        transport.failure_class = None
        clock.advance(minutes=1)
        assert await engine.retry_due(db_session) == []
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_manual_transmit(self, db_session, engine_with, make_submitted):
        """A manual transmit does not wait for the backoff."""
        transport = SimulatedTransport(failure_class="TIMEOUT")
        engine = engine_with(transport)
        declaration = await make_submitted()
        sent = await engine.send(db_session, declaration.id)

        transport.failure_class = None
        result = await engine.transmit(db_session, sent.transmission.unit_id)

        assert result.success
        assert declaration.status == DeclarationStatus.CLEARANCE_ISSUED

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_is_not_retried(self, db_session, engine_with, make_submitted):
        transport = SimulatedTransport()
        transport.send = AsyncMock(side_effect=RuntimeError("socket closed"))
        engine = engine_with(transport)
        declaration = await make_submitted()

        result = await engine.send(db_session, declaration.id)

        assert result.transmission.error_class == TransmissionErrorClass.UNKNOWN.value
        assert not result.transmission.retry_allowed
        assert "socket closed" in result.transmission.errors[0].message
        transport.send.assert_awaited_once()


class TestQueueProcessing:
    @pytest.mark.asyncio
    async def test_process_queue_applies_replies(
        self, db_session, exchange_engine, declaration_service, make_submitted
    ):
        declaration = await make_submitted()
        await exchange_engine.queue.enqueue(db_session, declaration)
        await declaration_service.mark_sent_to_broker(db_session, declaration)

        results = await exchange_engine.process_queue(db_session)

        assert [r.status for r in results] == [TransmissionStatus.ACCEPTED]
        assert declaration.status == DeclarationStatus.CLEARANCE_ISSUED


class TestResponses:
    @pytest.mark.asyncio
    async def test_simulated_response(self, db_session, engine_with, make_submitted):
        engine = engine_with(SimulatedTransport(failure_class="NETWORK"))
        declaration = await make_submitted("PIB")
        await engine.send(db_session, declaration.id)

        handled = await engine.simulate_response(
            db_session, declaration.id, SimulateResponseRequest(success=True, lane=Lane.YELLOW)
        )

        assert handled.declaration_status == DeclarationStatus.CLEARANCE_ISSUED
        assert handled.registration.lane == Lane.YELLOW
        assert not handled.has_critical_errors

    @pytest.mark.asyncio
    async def test_malformed_response_rejected(self, db_session, engine_with, archive_store, make_submitted):
        engine = engine_with(SimulatedTransport(failure_class="NETWORK"))
        declaration = await make_submitted()
        await engine.send(db_session, declaration.id)

        with pytest.raises(ResponseParseError):
            await engine.handle_response(
                db_session,
                document_type="PEB",
                document_id=declaration.id,
                document_number=declaration.document_number,
                response_xml="<CEISA_RESPONSE>",
            )

        assert declaration.status == DeclarationStatus.SENT_TO_BROKER
        assert await archive_store.search(db_session, direction="INCOMING") == []

    @pytest.mark.asyncio
    async def test_statistics(self, db_session, exchange_engine, make_submitted):
        declaration = await make_submitted()
        await exchange_engine.send(db_session, declaration.id)

        stats = await exchange_engine.get_statistics(db_session)

        assert stats.queue.total == 1
        assert stats.queue.accepted == 1
        assert stats.incoming.total == 1
        assert stats.incoming.unprocessed == 0
        assert stats.archive.outgoing == 1
        assert stats.archive.incoming == 1
