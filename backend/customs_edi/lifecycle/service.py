"""DeclarationService: declaration CRUD and the submit / lock state machine.

Every mutation entry point loads the declaration under a row lock
(SELECT ... FOR UPDATE) and checks the lock rule before touching a field, so
a lock-then-edit race cannot slip a change past a concurrent submit.
"""

import enum
import logging
import os
import re
import uuid
from datetime import date

import aiofiles
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.audit.service import AuditService
from customs_edi.clock import Clock, SystemClock
from customs_edi.config import Settings
from customs_edi.edi import hashing
from customs_edi.edi.xml_mapper import MessageEnvelope, canonicalize
from customs_edi.exceptions import (
    DeclarationNotFoundError,
    InvalidTransitionError,
    UnlockNotPermittedError,
)
from customs_edi.lifecycle.state_machine import (
    XML_GENERATION_STATES,
    can_transition,
    ensure_editable,
    ensure_transition,
    ensure_unlocked,
    lock_target,
)
from customs_edi.lifecycle.validation import validate_for_submission
from customs_edi.models.declaration import (
    Declaration,
    DeclarationStatus,
    DeclarationStatusHistory,
    DocumentType,
    LineItem,
    SupportingDocument,
)
from customs_edi.models.transmission import IncomingMessage, TransmissionStatus
from customs_edi.models.xml_record import DocumentHash, XmlGeneration
from customs_edi.schemas.declaration import (
    DeclarationCreate,
    DeclarationUpdate,
    LineItemIn,
    SubmissionResult,
    SupportingDocumentIn,
    ValidationReport,
    XmlIntegrityReport,
)
from customs_edi.schemas.exchange import RegistrationData

logger = logging.getLogger("edi.lifecycle")

ENTITY_TYPE = "DECLARATION"
AUTHORITY_ACTOR = "CEISA"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9-]")

# Copied onto a revision of a rejected declaration
_HEADER_FIELDS = tuple(DeclarationUpdate.model_fields) + ("document_type",)


def _jsonable(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return value


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        logger.warning("Ignoring unparseable authority date %r", value)
        return None


class DeclarationService:
    """Declaration lifecycle: drafts, validation gate, submit-and-lock, authority responses."""

    def __init__(self, settings: Settings, *, clock: Clock | None = None):
        self.clock = clock or SystemClock()
        self.storage_dir = settings.edi_storage_dir
        self.message_version = settings.ceisa_message_version
        self.validate_schema = settings.validate_xml_schema

    # ── Loading ──

    async def get(self, db: AsyncSession, declaration_id: uuid.UUID, *, for_update: bool = False) -> Declaration:
        query = select(Declaration).where(Declaration.id == declaration_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        declaration = (await db.execute(query)).scalar_one_or_none()
        if declaration is None:
            raise DeclarationNotFoundError(declaration_id)
        return declaration

    async def list_declarations(
        self,
        db: AsyncSession,
        *,
        document_type: DocumentType | None = None,
        status: DeclarationStatus | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[Declaration], int]:
        criteria = []
        if document_type:
            criteria.append(Declaration.document_type == document_type)
        if status:
            criteria.append(Declaration.status == status)

        total = (await db.execute(select(func.count(Declaration.id)).where(*criteria))).scalar_one()
        offset = (page - 1) * per_page
        result = await db.execute(
            select(Declaration)
            .where(*criteria)
            .order_by(Declaration.created_at.desc())
            .offset(offset)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def history(self, db: AsyncSession, declaration_id: uuid.UUID) -> list[DeclarationStatusHistory]:
        await self.get(db, declaration_id)
        result = await db.execute(
            select(DeclarationStatusHistory)
            .where(DeclarationStatusHistory.declaration_id == declaration_id)
            .order_by(DeclarationStatusHistory.created_at, DeclarationStatusHistory.id)
        )
        return list(result.scalars().all())

    # ── Draft editing ──

    async def create(self, db: AsyncSession, data: DeclarationCreate, actor: str = "system") -> Declaration:
        fields = data.model_dump(exclude={"items", "supporting_documents"})
        declaration = Declaration(
            id=uuid.uuid4(),
            status=DeclarationStatus.DRAFT,
            locked=False,
            items=[LineItem(**item.model_dump()) for item in data.items],
            supporting_documents=[SupportingDocument(**doc.model_dump()) for doc in data.supporting_documents],
            **fields,
        )
        db.add(declaration)
        self._record_history(db, declaration, None, DeclarationStatus.DRAFT, actor, "Created")
        await db.flush()

        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="CREATE",
            actor=actor,
            actor_type="user",
            after_data={
                "document_type": declaration.document_type.value,
                "status": declaration.status.value,
                "items": len(declaration.items),
            },
        )
        logger.info("Created %s %s", declaration.document_type.value, declaration.document_number)
        return declaration

    async def update(
        self, db: AsyncSession, declaration_id: uuid.UUID, data: DeclarationUpdate, actor: str = "system"
    ) -> Declaration:
        declaration = await self.get(db, declaration_id, for_update=True)
        ensure_editable(declaration, "update")

        before, after = {}, {}
        for field, value in data.model_dump(exclude_unset=True).items():
            current = getattr(declaration, field)
            if current == value:
                continue
            before[field] = _jsonable(current)
            after[field] = _jsonable(value)
            setattr(declaration, field, value)

        if after:
            await db.flush()
            await AuditService.log_event(
                db,
                entity_type=ENTITY_TYPE,
                entity_id=declaration.id,
                entity_number=declaration.document_number,
                action="UPDATE",
                actor=actor,
                actor_type="user",
                before_data=before,
                after_data=after,
            )
        return declaration

    async def replace_items(
        self, db: AsyncSession, declaration_id: uuid.UUID, items: list[LineItemIn], actor: str = "system"
    ) -> Declaration:
        declaration = await self.get(db, declaration_id, for_update=True)
        ensure_editable(declaration, "replace line items")

        before = len(declaration.items)
        declaration.items = [LineItem(**item.model_dump()) for item in items]
        await db.flush()
        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="UPDATE",
            actor=actor,
            actor_type="user",
            before_data={"items": before},
            after_data={"items": len(declaration.items)},
            notes="Line items replaced",
        )
        return declaration

    async def replace_documents(
        self,
        db: AsyncSession,
        declaration_id: uuid.UUID,
        documents: list[SupportingDocumentIn],
        actor: str = "system",
    ) -> Declaration:
        declaration = await self.get(db, declaration_id, for_update=True)
        ensure_editable(declaration, "replace supporting documents")

        before = sorted(d.document_kind for d in declaration.supporting_documents)
        declaration.supporting_documents = [SupportingDocument(**doc.model_dump()) for doc in documents]
        await db.flush()
        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="UPDATE",
            actor=actor,
            actor_type="user",
            before_data={"supporting_documents": before},
            after_data={"supporting_documents": sorted(d.document_kind for d in documents)},
        )
        return declaration

    async def delete(self, db: AsyncSession, declaration_id: uuid.UUID, actor: str = "system") -> None:
        """Delete a DRAFT declaration together with its items."""
        declaration = await self.get(db, declaration_id, for_update=True)
        ensure_editable(declaration, "delete")

        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="DELETE",
            actor=actor,
            actor_type="user",
            before_data={"status": declaration.status.value, "items": len(declaration.items)},
        )
        await db.delete(declaration)
        await db.flush()
        logger.info("Deleted draft %s %s", declaration.document_type.value, declaration.document_number)

    # ── XML generation & submission ──

    async def validate(self, db: AsyncSession, declaration_id: uuid.UUID) -> ValidationReport:
        return validate_for_submission(await self.get(db, declaration_id))

    async def _next_version(self, db: AsyncSession, declaration_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.max(XmlGeneration.version)).where(XmlGeneration.declaration_id == declaration_id)
        )
        return (result.scalar_one() or 0) + 1

    async def _write_xml(self, declaration: Declaration, xml: str, version: int) -> str:
        directory = os.path.join(self.storage_dir, "outgoing", declaration.document_type.value.lower())
        os.makedirs(directory, exist_ok=True)
        stamp = self.clock.now().strftime("%Y%m%d%H%M%S")
        number = _UNSAFE_FILENAME_CHARS.sub("_", declaration.document_number)
        file_path = os.path.join(directory, f"{number}_{stamp}_v{version}.xml")

        async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
            await f.write(xml)
        return file_path

    async def _generate(
        self, db: AsyncSession, declaration: Declaration, actor: str
    ) -> tuple[XmlGeneration, str, str]:
        """Canonicalize, hash and sign; store the file and a new XmlGeneration row.

        Returns the generation, the signed XML and the payload hash.
        """
        now = self.clock.now()
        message_id = hashing.generate_message_id()
        envelope = MessageEnvelope(message_id=message_id, timestamp=now, version=self.message_version)
        xml = canonicalize(declaration, envelope, validate=self.validate_schema)
        xml_hash = hashing.compute_hash(xml)
        signed = hashing.sign(xml, xml_hash, now)

        version = await self._next_version(db, declaration.id)
        file_path = await self._write_xml(declaration, signed, version)
        generation = XmlGeneration(
            id=uuid.uuid4(),
            declaration_id=declaration.id,
            document_type=declaration.document_type,
            document_number=declaration.document_number,
            version=version,
            message_id=message_id,
            xml_hash=xml_hash,
            file_path=file_path,
            file_size=len(signed.encode("utf-8")),
            generated_by=actor,
        )
        db.add(generation)
        await db.flush()

        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="GENERATE_XML",
            actor=actor,
            actor_type="user",
            after_data={"version": version, "message_id": message_id, "xml_hash": xml_hash},
        )
        logger.info(
            "Generated XML v%d for %s %s (hash=%s)",
            version, declaration.document_type.value, declaration.document_number, xml_hash[:12],
        )
        return generation, signed, xml_hash

    async def generate_xml(
        self, db: AsyncSession, declaration_id: uuid.UUID, actor: str = "system"
    ) -> tuple[XmlGeneration, str]:
        """Versioned preview generation; earlier versions are never overwritten."""
        declaration = await self.get(db, declaration_id, for_update=True)
        ensure_unlocked(declaration, "generate XML")
        if declaration.status not in XML_GENERATION_STATES:
            raise InvalidTransitionError(
                declaration.status.value,
                reason=f"Cannot generate XML for a {declaration.status.value} declaration",
            )
        generation, signed, _ = await self._generate(db, declaration, actor)
        return generation, signed

    async def submit(self, db: AsyncSession, declaration_id: uuid.UUID, actor: str = "system") -> SubmissionResult:
        """Validate, generate and persist the signed XML, then lock.

        The XML, the hash ledger row, the SUBMITTED status and the lock flag
        are written in one transaction. A failed validation changes nothing.
        """
        declaration = await self.get(db, declaration_id, for_update=True)
        ensure_unlocked(declaration, "submit")

        report = validate_for_submission(declaration)
        if not report.is_valid:
            logger.info(
                "Submission of %s refused: %d validation error(s)",
                declaration.document_number, len(report.errors),
            )
            return SubmissionResult(
                success=False,
                declaration_id=declaration.id,
                status=declaration.status,
                locked=False,
                errors=report.errors,
                warnings=report.warnings,
            )

        generation, signed, xml_hash = await self._generate(db, declaration, actor)
        db.add(DocumentHash(
            id=uuid.uuid4(),
            declaration_id=declaration.id,
            document_type=declaration.document_type,
            document_number=declaration.document_number,
            hash_algorithm=hashing.HASH_ALGORITHM,
            xml_hash=xml_hash,
            message_id=generation.message_id,
            signed_xml=signed,
        ))

        now = self.clock.now()
        declaration.xml_content = signed
        declaration.xml_hash = xml_hash
        declaration.message_id = generation.message_id
        declaration.submitted_at = now
        self._transition(db, declaration, DeclarationStatus.SUBMITTED, actor, "Submitted")
        declaration.locked = True
        declaration.locked_at = now
        declaration.locked_by = actor
        await db.flush()

        for action, data in (
            ("SUBMIT", {"status": DeclarationStatus.SUBMITTED.value, "xml_hash": xml_hash}),
            ("LOCK", {"locked": True}),
        ):
            await AuditService.log_event(
                db,
                entity_type=ENTITY_TYPE,
                entity_id=declaration.id,
                entity_number=declaration.document_number,
                action=action,
                actor=actor,
                actor_type="user",
                before_data={"status": DeclarationStatus.DRAFT.value, "locked": False},
                after_data=data,
            )

        logger.info("Submitted and locked %s %s", declaration.document_type.value, declaration.document_number)
        return SubmissionResult(
            success=True,
            declaration_id=declaration.id,
            status=declaration.status,
            xml_hash=xml_hash,
            xml_path=generation.file_path,
            message_id=generation.message_id,
            locked=True,
            warnings=report.warnings,
        )

    async def verify_xml(self, db: AsyncSession, declaration_id: uuid.UUID) -> XmlIntegrityReport:
        """Re-hash the stored signed XML against the hash ledger and its embedded digest."""
        declaration = await self.get(db, declaration_id)
        now = self.clock.now()
        if not declaration.xml_content:
            return XmlIntegrityReport(
                declaration_id=declaration.id,
                is_valid=False,
                message="No XML content stored for this declaration",
                checked_at=now,
            )

        result = await db.execute(
            select(DocumentHash)
            .where(DocumentHash.declaration_id == declaration.id)
            .order_by(DocumentHash.created_at.desc())
            .limit(1)
        )
        ledger = result.scalar_one_or_none()
        stored_hash = ledger.xml_hash if ledger is not None else declaration.xml_hash
        computed_hash = hashing.content_digest(declaration.xml_content)
        embedded_hash = hashing.extract_digest(declaration.xml_content)

        is_valid = (
            ledger is not None
            and computed_hash == stored_hash
            and (embedded_hash is None or embedded_hash == stored_hash)
        )
        if ledger is None:
            message = "No hash ledger entry for this declaration"
        elif is_valid:
            message = "XML integrity verified"
        else:
            message = "XML integrity check failed, stored XML differs from the submitted hash"
            logger.warning(
                "Integrity check failed for %s: stored=%s computed=%s embedded=%s",
                declaration.document_number, stored_hash, computed_hash, embedded_hash,
            )
        return XmlIntegrityReport(
            declaration_id=declaration.id,
            is_valid=is_valid,
            stored_hash=stored_hash,
            computed_hash=computed_hash,
            embedded_hash=embedded_hash,
            message=message,
            checked_at=now,
        )

    # ── Lock / unlock ──

    async def lock(self, db: AsyncSession, declaration_id: uuid.UUID, actor: str = "system") -> Declaration:
        declaration = await self.get(db, declaration_id, for_update=True)
        target = lock_target(declaration)
        before = {"status": declaration.status.value, "locked": declaration.locked}

        self._transition(db, declaration, target, actor, "Locked")
        declaration.locked = True
        declaration.locked_at = self.clock.now()
        declaration.locked_by = actor
        await db.flush()

        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="LOCK",
            actor=actor,
            actor_type="user",
            before_data=before,
            after_data={"status": target.value, "locked": True},
        )
        return declaration

    async def unlock(
        self, db: AsyncSession, declaration_id: uuid.UUID, *, reason: str, actor: str
    ) -> Declaration:
        """Administrative escape hatch: clears the lock flag, status unchanged.

        A declaration whose status is itself a locked state stays read-only.
        """
        if not reason or not reason.strip():
            raise UnlockNotPermittedError("An unlock requires a recorded reason")

        declaration = await self.get(db, declaration_id, for_update=True)
        if not declaration.locked:
            raise InvalidTransitionError(
                declaration.status.value, reason=f"Declaration {declaration.id} is not locked"
            )

        declaration.locked = False
        declaration.locked_at = None
        declaration.locked_by = None
        self._record_history(db, declaration, declaration.status, declaration.status, actor, f"Unlocked: {reason}")
        await db.flush()

        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="UNLOCK",
            actor=actor,
            actor_type="admin",
            before_data={"locked": True},
            after_data={"locked": False, "unlock_reason": reason},
            notes=reason,
        )
        logger.warning(
            "Declaration %s unlocked by %s: %s", declaration.document_number, actor, reason
        )
        return declaration

    # ── Status transitions ──

    def _record_history(
        self,
        db: AsyncSession,
        declaration: Declaration,
        from_status: DeclarationStatus | None,
        to_status: DeclarationStatus,
        actor: str | None,
        reason: str | None,
    ) -> None:
        db.add(DeclarationStatusHistory(
            id=uuid.uuid4(),
            declaration_id=declaration.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            actor=actor,
            reason=reason,
            created_at=self.clock.now(),
        ))

    def _transition(
        self,
        db: AsyncSession,
        declaration: Declaration,
        target: DeclarationStatus,
        actor: str | None,
        reason: str | None = None,
    ) -> None:
        current = declaration.status
        ensure_transition(current, target)
        declaration.status = target
        self._record_history(db, declaration, current, target, actor, reason)
        logger.info(
            "%s %s: %s -> %s", declaration.document_type.value, declaration.document_number,
            current.value, target.value,
        )

    async def _log_status_change(
        self, db: AsyncSession, declaration: Declaration, before: DeclarationStatus, notes: str | None = None
    ) -> None:
        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="STATUS_CHANGE",
            actor=AUTHORITY_ACTOR,
            actor_type="authority",
            before_data={"status": before.value},
            after_data={"status": declaration.status.value},
            notes=notes,
        )

    async def mark_sent_to_broker(self, db: AsyncSession, declaration: Declaration, actor: str = "system") -> None:
        before = declaration.status
        self._transition(db, declaration, DeclarationStatus.SENT_TO_BROKER, actor, "Queued for transmission")
        await db.flush()
        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="STATUS_CHANGE",
            actor=actor,
            actor_type="system",
            before_data={"status": before.value},
            after_data={"status": declaration.status.value},
        )

    async def apply_response(
        self,
        db: AsyncSession,
        declaration: Declaration,
        message: IncomingMessage,
        registration: RegistrationData,
    ) -> Declaration:
        """Move a declaration according to a correlated authority response.

        Acceptance records registration data and, when an issuance number
        (NPE / SPPB) is present, advances to CLEARANCE_ISSUED. Rejection keeps
        the grouped errors on the declaration, which stays locked.
        """
        before = declaration.status
        if message.ceisa_reference:
            declaration.ceisa_reference = message.ceisa_reference

        if message.status in (TransmissionStatus.ACCEPTED, TransmissionStatus.RECEIVED):
            if registration.registration_number:
                declaration.registration_number = registration.registration_number
                declaration.registration_date = _parse_date(registration.registration_date)
            if registration.lane:
                declaration.lane = registration.lane
                declaration.lane_reason = registration.lane_reason

        if message.status == TransmissionStatus.ACCEPTED:
            if can_transition(declaration.status, DeclarationStatus.AUTHORITY_ACCEPTED):
                self._transition(db, declaration, DeclarationStatus.AUTHORITY_ACCEPTED, AUTHORITY_ACTOR)
            if registration.issuance_number and can_transition(
                declaration.status, DeclarationStatus.CLEARANCE_ISSUED
            ):
                declaration.clearance_number = registration.issuance_number
                declaration.clearance_date = _parse_date(registration.issuance_date)
                self._transition(db, declaration, DeclarationStatus.CLEARANCE_ISSUED, AUTHORITY_ACTOR)

        elif message.status == TransmissionStatus.REJECTED:
            if can_transition(declaration.status, DeclarationStatus.AUTHORITY_REJECTED):
                declaration.response_errors = list(message.error_groups or [])
                self._transition(db, declaration, DeclarationStatus.AUTHORITY_REJECTED, AUTHORITY_ACTOR)

        if declaration.status == before:
            logger.info(
                "Response %s (%s) left %s at %s",
                message.id, message.status.value, declaration.document_number, before.value,
            )
        await db.flush()

        if declaration.status != before:
            await self._log_status_change(
                db, declaration, before, notes=f"Authority response {message.ceisa_reference or message.id}"
            )
        return declaration

    async def complete(self, db: AsyncSession, declaration_id: uuid.UUID, actor: str = "system") -> Declaration:
        declaration = await self.get(db, declaration_id, for_update=True)
        before = declaration.status
        self._transition(db, declaration, DeclarationStatus.COMPLETED, actor, "Completed")
        await db.flush()
        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=declaration.id,
            entity_number=declaration.document_number,
            action="STATUS_CHANGE",
            actor=actor,
            actor_type="user",
            before_data={"status": before.value},
            after_data={"status": declaration.status.value},
        )
        return declaration

    async def revise(self, db: AsyncSession, declaration_id: uuid.UUID, actor: str = "system") -> Declaration:
        """Copy a rejected declaration into a new DRAFT for a fresh submission cycle.

        The rejected record itself is left untouched and locked.
        """
        original = await self.get(db, declaration_id)
        if original.status != DeclarationStatus.AUTHORITY_REJECTED:
            raise InvalidTransitionError(
                original.status.value,
                reason="Only AUTHORITY_REJECTED declarations can be revised",
            )

        fields = {name: getattr(original, name) for name in _HEADER_FIELDS}
        revision = Declaration(
            id=uuid.uuid4(),
            status=DeclarationStatus.DRAFT,
            locked=False,
            revision_of_id=original.id,
            created_by=actor,
            items=[
                LineItem(**LineItemIn.model_validate(item, from_attributes=True).model_dump())
                for item in original.items
            ],
            supporting_documents=[
                SupportingDocument(**SupportingDocumentIn.model_validate(doc, from_attributes=True).model_dump())
                for doc in original.supporting_documents
            ],
            **fields,
        )
        db.add(revision)
        self._record_history(db, revision, None, DeclarationStatus.DRAFT, actor, f"Revision of {original.id}")
        await db.flush()

        await AuditService.log_event(
            db,
            entity_type=ENTITY_TYPE,
            entity_id=revision.id,
            entity_number=revision.document_number,
            action="CREATE",
            actor=actor,
            actor_type="user",
            after_data={"revision_of_id": str(original.id), "status": DeclarationStatus.DRAFT.value},
            notes="Revision of rejected declaration",
        )
        return revision

