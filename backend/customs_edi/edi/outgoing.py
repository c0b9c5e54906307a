"""TransmissionQueue: outgoing message delivery with bounded retries.

A transmission unit is created PENDING by ``enqueue`` and moved by
``transmit``. Only NETWORK and TIMEOUT failures are retried, with a
``2^retry_count`` minute backoff; every other failure class is terminal.
The queue never schedules timers itself. An external scheduler polls
``get_retry_items`` (or calls ``retry_due``).

Failures are recorded on the unit and returned in the TransmissionResult;
they are not raised to the caller.
"""

import asyncio
import logging
import uuid
import weakref
from datetime import timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.clock import Clock, SystemClock
from customs_edi.config import Settings
from customs_edi.edi import hashing
from customs_edi.edi.responses import classify_response, parse_response
from customs_edi.edi.transport import Transport
from customs_edi.edi.xml_mapper import MessageEnvelope, canonicalize, read_message_id
from customs_edi.exceptions import (
    DocumentLockedError,
    QueueOperationError,
    ResponseParseError,
    TransmissionErrorClass,
    TransmissionFailure,
    TransmissionUnitNotFoundError,
)
from customs_edi.lifecycle.state_machine import is_locked
from customs_edi.models.declaration import Declaration
from customs_edi.models.transmission import (
    TERMINAL_TRANSMISSION_STATUSES,
    TransmissionStatus,
    TransmissionUnit,
)
from customs_edi.schemas.exchange import FieldError, QueueStats, TransmissionResult

logger = logging.getLogger("edi.queue")

ATTEMPTABLE_STATUSES = frozenset({TransmissionStatus.PENDING, TransmissionStatus.ERROR})


class KeyedLocks:
    """asyncio locks keyed by document id; a lock lives as long as someone holds it."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, key) -> asyncio.Lock:
        key = str(key)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def _transmission_error(error_class: TransmissionErrorClass, message: str) -> FieldError:
    return FieldError(code=error_class.value, field="transmission", message=message)


class TransmissionQueue:
    """Outgoing queue over the transmission_units table."""

    def __init__(
        self,
        settings: Settings,
        transport: Transport,
        *,
        clock: Clock | None = None,
        locks: KeyedLocks | None = None,
    ):
        self.transport = transport
        self.clock = clock or SystemClock()
        self.locks = locks or KeyedLocks()
        self.max_retries = settings.ceisa_max_retries
        self.backoff_base_minutes = settings.ceisa_backoff_base_minutes
        self.timeout_seconds = settings.ceisa_timeout_seconds
        self.message_version = settings.ceisa_message_version
        self.validate_schema = settings.validate_xml_schema

    # ── Enqueue ──

    def prepare_message(self, declaration: Declaration) -> tuple[str, str, str]:
        """Signed XML, content hash and message id for a declaration.

        Submitted declarations carry their signed XML; it is reused verbatim
        and a locked declaration is never serialized again.
        """
        if declaration.xml_content:
            signed = declaration.xml_content
            xml_hash = declaration.xml_hash or hashing.content_digest(signed)
            message_id = (
                declaration.message_id
                or read_message_id(signed)
                or hashing.generate_message_id()
            )
            return signed, xml_hash, message_id

        if is_locked(declaration):
            raise DocumentLockedError(declaration.id, "generate XML")

        now = self.clock.now()
        message_id = hashing.generate_message_id()
        envelope = MessageEnvelope(message_id=message_id, timestamp=now, version=self.message_version)
        xml = canonicalize(declaration, envelope, validate=self.validate_schema)
        xml_hash = hashing.compute_hash(xml)
        return hashing.sign(xml, xml_hash, now), xml_hash, message_id

    async def enqueue(self, db: AsyncSession, declaration: Declaration) -> TransmissionUnit:
        """Append a PENDING unit for the declaration.

        Each call creates a new unit; callers must not enqueue a declaration
        that already has a unit in flight.
        """
        signed, xml_hash, message_id = self.prepare_message(declaration)
        unit = TransmissionUnit(
            id=uuid.uuid4(),
            message_id=message_id,
            document_type=declaration.document_type,
            document_id=declaration.id,
            document_number=declaration.document_number,
            xml_content=signed,
            xml_hash=xml_hash,
            status=TransmissionStatus.PENDING,
            retry_count=0,
            max_retries=self.max_retries,
            errors=[],
            in_flight=False,
        )
        db.add(unit)
        await db.flush()
        logger.info(
            "Enqueued %s %s as %s (hash=%s)",
            unit.document_type.value, unit.document_number, unit.message_id, xml_hash[:12],
        )
        return unit

    # ── Transmit ──

    async def transmit(self, db: AsyncSession, unit: TransmissionUnit) -> TransmissionResult:
        """Make one delivery attempt for a unit.

        Attempts for the same document are serialized: in-process by a keyed
        asyncio lock, across processes by a conditional claim on ``in_flight``.
        """
        async with self.locks.get(unit.document_id):
            if not await self._claim(db, unit.id):
                logger.warning("Unit %s is already in flight, skipping", unit.message_id)
                return self._result(
                    unit,
                    success=False,
                    errors=[FieldError(
                        code="IN_FLIGHT",
                        field="transmission",
                        message="A transmission for this document is already in progress",
                    )],
                )
            unit = await self._reload(db, unit.id)
            try:
                return await self._attempt(db, unit)
            finally:
                unit.in_flight = False
                await db.flush()

    async def _claim(self, db: AsyncSession, unit_id: uuid.UUID) -> bool:
        result = await db.execute(
            update(TransmissionUnit)
            .where(TransmissionUnit.id == unit_id, TransmissionUnit.in_flight.is_(False))
            .values(in_flight=True)
        )
        return result.rowcount == 1

    async def _reload(self, db: AsyncSession, unit_id: uuid.UUID) -> TransmissionUnit:
        result = await db.execute(
            select(TransmissionUnit)
            .where(TransmissionUnit.id == unit_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _attempt(self, db: AsyncSession, unit: TransmissionUnit) -> TransmissionResult:
        refusal = self._refusal(unit)
        if refusal is not None:
            return refusal

        now = self.clock.now()
        unit.retry_count += 1
        unit.last_attempt_at = now
        unit.next_retry_at = None
        logger.info(
            "Transmitting %s (attempt %d/%d)", unit.message_id, unit.retry_count, unit.max_retries
        )

        try:
            reply = await asyncio.wait_for(self.transport.send(unit), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return self._fail(
                unit, TransmissionErrorClass.TIMEOUT,
                f"No reply from CEISA within {self.timeout_seconds:g}s",
            )
        except TransmissionFailure as e:
            return self._fail(unit, e.error_class, e.message)
        except Exception as e:
            logger.exception("Unexpected transport error for %s", unit.message_id)
            return self._fail(unit, TransmissionErrorClass.UNKNOWN, f"Unexpected transport error: {e}")

        try:
            parsed = parse_response(reply, unit.document_type)
        except ResponseParseError as e:
            unit.response_xml = reply
            return self._fail(unit, TransmissionErrorClass.UNKNOWN, e.message)

        status = classify_response(parsed)
        # Delivered but not yet decided: the unit waits as SENT for the final answer
        unit.status = TransmissionStatus.SENT if status == TransmissionStatus.PENDING else status
        unit.ceisa_reference = parsed.reference_number
        unit.response_xml = reply
        unit.errors = [e.model_dump() for e in parsed.errors]
        unit.error_class = TransmissionErrorClass.UNKNOWN.value if status == TransmissionStatus.ERROR else None
        await db.flush()

        logger.info(
            "CEISA replied to %s: code=%s status=%s reference=%s",
            unit.message_id, parsed.response_code, status.value, parsed.reference_number,
        )
        return self._result(
            unit, success=parsed.success, errors=list(parsed.errors), response_xml=reply, status=status,
        )

    def _refusal(self, unit: TransmissionUnit) -> TransmissionResult | None:
        if unit.status in TERMINAL_TRANSMISSION_STATUSES:
            error = FieldError(
                code="ALREADY_COMPLETED",
                field="transmission",
                message=f"Transmission already finished with status {unit.status.value}",
            )
            return self._result(unit, success=unit.status == TransmissionStatus.ACCEPTED, errors=[error])

        if unit.status not in ATTEMPTABLE_STATUSES:
            error = FieldError(
                code="ALREADY_SENT",
                field="transmission",
                message=f"Message already delivered (status {unit.status.value}), awaiting CEISA response",
            )
            return self._result(unit, success=True, errors=[error])

        if unit.retry_count >= unit.max_retries:
            unit.status = TransmissionStatus.ERROR
            unit.error_class = TransmissionErrorClass.MAX_RETRY_EXCEEDED.value
            unit.next_retry_at = None
            error = _transmission_error(
                TransmissionErrorClass.MAX_RETRY_EXCEEDED,
                f"Maximum retry attempts ({unit.max_retries}) exceeded",
            )
            return self._result(unit, success=False, errors=[error])

        if unit.status == TransmissionStatus.ERROR and unit.error_class:
            error_class = TransmissionErrorClass(unit.error_class)
            if not error_class.retryable:
                error = _transmission_error(
                    error_class, f"{error_class.value} failures are not retried"
                )
                return self._result(unit, success=False, errors=[error])
        return None

    def _fail(self, unit: TransmissionUnit, error_class: TransmissionErrorClass, message: str) -> TransmissionResult:
        unit.status = TransmissionStatus.ERROR
        unit.error_class = error_class.value
        errors = [_transmission_error(error_class, message)]
        unit.next_retry_at = None

        if error_class.retryable and unit.retry_count < unit.max_retries:
            delay = timedelta(minutes=self.backoff_base_minutes * 2 ** unit.retry_count)
            unit.next_retry_at = unit.last_attempt_at + delay
            logger.warning(
                "%s failure for %s (attempt %d/%d), retry at %s: %s",
                error_class.value, unit.message_id, unit.retry_count, unit.max_retries,
                unit.next_retry_at.isoformat(), message,
            )
        elif error_class.retryable:
            unit.error_class = TransmissionErrorClass.MAX_RETRY_EXCEEDED.value
            errors.append(_transmission_error(
                TransmissionErrorClass.MAX_RETRY_EXCEEDED,
                f"Maximum retry attempts ({unit.max_retries}) exceeded",
            ))
            logger.error("Giving up on %s after %d attempts: %s", unit.message_id, unit.retry_count, message)
        else:
            logger.error("%s failure for %s, not retrying: %s", error_class.value, unit.message_id, message)

        unit.errors = [*(unit.errors or []), *(e.model_dump() for e in errors)]
        return self._result(unit, success=False, errors=errors)

    def _result(
        self,
        unit: TransmissionUnit,
        *,
        success: bool,
        errors: list[FieldError],
        response_xml: str | None = None,
        status: TransmissionStatus | None = None,
    ) -> TransmissionResult:
        error_class = unit.error_class if unit.status == TransmissionStatus.ERROR else None
        retry_allowed = (
            unit.status == TransmissionStatus.ERROR
            and unit.next_retry_at is not None
            and error_class is not None
            and TransmissionErrorClass(error_class).retryable
            and unit.retry_count < unit.max_retries
        )
        return TransmissionResult(
            success=success,
            unit_id=unit.id,
            message_id=unit.message_id,
            ceisa_reference=unit.ceisa_reference,
            status=status or unit.status,
            errors=errors,
            timestamp=self.clock.now(),
            error_class=error_class,
            retry_allowed=retry_allowed,
            next_retry_at=unit.next_retry_at if retry_allowed else None,
            response_xml=response_xml,
        )

    # ── Queue processing ──

    async def process_queue(self, db: AsyncSession) -> list[TransmissionResult]:
        """Transmit every PENDING unit, one at a time, oldest first."""
        pending = await self.get_pending_items(db)
        results = []
        for unit in pending:
            results.append(await self.transmit(db, unit))
        logger.info("Processed %d pending unit(s)", len(results))
        return results

    async def get_retry_items(self, db: AsyncSession) -> list[TransmissionUnit]:
        """Failed units whose backoff has elapsed and that still have attempts left."""
        result = await db.execute(
            select(TransmissionUnit)
            .where(
                TransmissionUnit.status == TransmissionStatus.ERROR,
                TransmissionUnit.next_retry_at.is_not(None),
                TransmissionUnit.next_retry_at <= self.clock.now(),
                TransmissionUnit.retry_count < TransmissionUnit.max_retries,
            )
            .order_by(TransmissionUnit.next_retry_at)
        )
        return list(result.scalars().all())

    async def retry_due(self, db: AsyncSession) -> list[TransmissionResult]:
        results = []
        for unit in await self.get_retry_items(db):
            results.append(await self.transmit(db, unit))
        return results

    async def record_response(
        self, db: AsyncSession, document_id: uuid.UUID, status: TransmissionStatus, reference: str | None
    ) -> TransmissionUnit | None:
        """Apply an asynchronously delivered response to the document's open unit.

        Only a unit already delivered (SENT or RECEIVED) is moved; units that
        are pending, failed or finished are left alone.
        """
        result = await db.execute(
            select(TransmissionUnit)
            .where(
                TransmissionUnit.document_id == document_id,
                TransmissionUnit.status.in_([TransmissionStatus.SENT, TransmissionStatus.RECEIVED]),
            )
            .order_by(TransmissionUnit.created_at.desc())
            .limit(1)
        )
        unit = result.scalar_one_or_none()
        if unit is None or status in (TransmissionStatus.PENDING, TransmissionStatus.ERROR):
            return None
        logger.info("Unit %s: %s -> %s from authority response", unit.message_id, unit.status.value, status.value)
        unit.status = status
        unit.ceisa_reference = reference or unit.ceisa_reference
        await db.flush()
        return unit

    # ── Queries & maintenance ──

    async def get_pending_items(self, db: AsyncSession) -> list[TransmissionUnit]:
        result = await db.execute(
            select(TransmissionUnit)
            .where(TransmissionUnit.status == TransmissionStatus.PENDING)
            .order_by(TransmissionUnit.created_at, TransmissionUnit.id)
        )
        return list(result.scalars().all())

    async def get_unit(self, db: AsyncSession, unit_id: uuid.UUID) -> TransmissionUnit:
        result = await db.execute(select(TransmissionUnit).where(TransmissionUnit.id == unit_id))
        unit = result.scalar_one_or_none()
        if unit is None:
            raise TransmissionUnitNotFoundError(unit_id)
        return unit

    async def get_units_for_document(self, db: AsyncSession, document_id: uuid.UUID) -> list[TransmissionUnit]:
        result = await db.execute(
            select(TransmissionUnit)
            .where(TransmissionUnit.document_id == document_id)
            .order_by(TransmissionUnit.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_units(
        self,
        db: AsyncSession,
        *,
        status: TransmissionStatus | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[TransmissionUnit], int]:
        query = select(TransmissionUnit)
        count_query = select(func.count(TransmissionUnit.id))
        if status:
            query = query.where(TransmissionUnit.status == status)
            count_query = count_query.where(TransmissionUnit.status == status)

        total = (await db.execute(count_query)).scalar_one()
        offset = (page - 1) * per_page
        query = query.order_by(TransmissionUnit.created_at.desc()).offset(offset).limit(per_page)
        result = await db.execute(query)
        return list(result.scalars().all()), total

    async def remove(self, db: AsyncSession, unit_id: uuid.UUID) -> None:
        unit = await self.get_unit(db, unit_id)
        if unit.in_flight or unit.status not in ATTEMPTABLE_STATUSES:
            raise QueueOperationError(
                f"Unit {unit.message_id} cannot be removed while {unit.status.value}"
                + (" and in flight" if unit.in_flight else "")
            )
        await db.delete(unit)
        await db.flush()
        logger.info("Removed unit %s from queue", unit.message_id)

    async def clear_completed(self, db: AsyncSession) -> int:
        """Delete ACCEPTED / REJECTED units. Their messages stay in the archive."""
        result = await db.execute(
            delete(TransmissionUnit).where(
                TransmissionUnit.status.in_(list(TERMINAL_TRANSMISSION_STATUSES)),
                TransmissionUnit.in_flight.is_(False),
            )
        )
        logger.info("Cleared %d completed unit(s)", result.rowcount)
        return result.rowcount

    async def get_stats(self, db: AsyncSession) -> QueueStats:
        rows = (await db.execute(
            select(TransmissionUnit.status, func.count(TransmissionUnit.id))
            .group_by(TransmissionUnit.status)
        )).all()
        counts = {TransmissionStatus(row[0]).value.lower(): row[1] for row in rows}
        return QueueStats(total=sum(counts.values()), **counts)
