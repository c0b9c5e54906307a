"""ArchiveStore: append-only, hash-verified record of every exchanged message.

Entries are inserted once and never updated. The only deletion path is
``purge``, which removes entries by age.
"""

import logging
import re
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.clock import Clock, SystemClock, as_utc
from customs_edi.config import Settings
from customs_edi.edi import hashing
from customs_edi.exceptions import ArchiveEntryNotFoundError
from customs_edi.models.archive import ArchiveDirection, ArchiveEntry
from customs_edi.models.declaration import DocumentType
from customs_edi.schemas.archive import (
    ArchiveExport,
    ArchiveMessageRequest,
    ArchiveStats,
    ArchiveVerification,
)

logger = logging.getLogger("edi.archive")

_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9-]")


class ArchiveStore:
    def __init__(self, settings: Settings, *, clock: Clock | None = None):
        self.archive_root = settings.archive_root.rstrip("/")
        self.clock = clock or SystemClock()

    def build_path(
        self,
        document_type: DocumentType,
        direction: ArchiveDirection,
        document_number: str,
        at: datetime,
    ) -> str:
        """``{root}/{direction}/{type}/{YYYY}/{MM}/{DD}/{document_number}.xml``"""
        clean = _UNSAFE_PATH_CHARS.sub("_", document_number)
        return (
            f"{self.archive_root}/{ArchiveDirection(direction).value.lower()}"
            f"/{DocumentType(document_type).value.lower()}"
            f"/{at:%Y}/{at:%m}/{at:%d}/{clean}.xml"
        )

    async def archive(
        self,
        db: AsyncSession,
        *,
        message_id: str,
        document_type: DocumentType | str,
        document_number: str,
        direction: ArchiveDirection | str,
        xml_content: str,
    ) -> ArchiveEntry:
        document_type = DocumentType(document_type)
        direction = ArchiveDirection(direction)
        archived_at = self.clock.now()
        entry = ArchiveEntry(
            id=uuid.uuid4(),
            message_id=message_id,
            document_type=document_type,
            document_number=document_number,
            direction=direction,
            xml_content=xml_content,
            xml_hash=hashing.content_digest(xml_content),
            archive_path=self.build_path(document_type, direction, document_number, archived_at),
            archived_at=archived_at,
        )
        db.add(entry)
        await db.flush()
        logger.info(
            "Archived %s %s %s at %s", direction.value, document_type.value, message_id, entry.archive_path
        )
        return entry

    async def bulk_archive(self, db: AsyncSession, messages: list[ArchiveMessageRequest]) -> list[ArchiveEntry]:
        entries = []
        for message in messages:
            entries.append(await self.archive(
                db,
                message_id=message.message_id,
                document_type=message.document_type,
                document_number=message.document_number,
                direction=message.direction,
                xml_content=message.xml_content,
            ))
        return entries

    async def get_entry(self, db: AsyncSession, entry_id: uuid.UUID, *, reload: bool = False) -> ArchiveEntry:
        query = select(ArchiveEntry).where(ArchiveEntry.id == entry_id)
        if reload:
            query = query.execution_options(populate_existing=True)
        entry = (await db.execute(query)).scalar_one_or_none()
        if entry is None:
            raise ArchiveEntryNotFoundError(entry_id)
        return entry

    async def verify(self, db: AsyncSession, entry_id: uuid.UUID) -> ArchiveVerification:
        """Recompute the hash from the stored content and compare with the recorded one."""
        entry = await self.get_entry(db, entry_id, reload=True)
        computed = hashing.content_digest(entry.xml_content)
        is_valid = computed == entry.xml_hash
        if not is_valid:
            logger.error(
                "Archive entry %s (%s) failed integrity check: recorded=%s computed=%s",
                entry.id, entry.archive_path, entry.xml_hash, computed,
            )
        return ArchiveVerification(
            entry_id=entry.id,
            is_valid=is_valid,
            original_hash=entry.xml_hash,
            computed_hash=computed,
        )

    async def search(
        self,
        db: AsyncSession,
        *,
        message_id: str | None = None,
        document_number: str | None = None,
        document_type: DocumentType | str | None = None,
        direction: ArchiveDirection | str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int | None = None,
    ) -> list[ArchiveEntry]:
        """Filter archive entries, newest first.

        ``document_number`` matches as a case-insensitive substring.
        """
        query = select(ArchiveEntry)
        if message_id:
            query = query.where(ArchiveEntry.message_id == message_id)
        if document_number:
            query = query.where(
                func.lower(ArchiveEntry.document_number).contains(document_number.lower(), autoescape=True)
            )
        if document_type:
            query = query.where(ArchiveEntry.document_type == DocumentType(document_type))
        if direction:
            query = query.where(ArchiveEntry.direction == ArchiveDirection(direction))
        if start_date:
            query = query.where(ArchiveEntry.archived_at >= start_date)
        if end_date:
            query = query.where(ArchiveEntry.archived_at <= end_date)

        query = query.order_by(ArchiveEntry.archived_at.desc(), ArchiveEntry.id)
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_by_message_id(self, db: AsyncSession, message_id: str) -> list[ArchiveEntry]:
        return await self.search(db, message_id=message_id)

    async def recent(self, db: AsyncSession, limit: int = 50) -> list[ArchiveEntry]:
        return await self.search(db, limit=limit)

    async def get_stats(self, db: AsyncSession) -> ArchiveStats:
        rows = (await db.execute(
            select(ArchiveEntry.direction, ArchiveEntry.document_type, ArchiveEntry.archived_at)
        )).all()

        stats = ArchiveStats(total=len(rows))
        for direction, document_type, archived_at in rows:
            if direction == ArchiveDirection.OUTGOING:
                stats.outgoing += 1
            else:
                stats.incoming += 1
            if document_type == DocumentType.PEB:
                stats.peb += 1
            else:
                stats.pib += 1
            month = as_utc(archived_at).strftime("%Y-%m")
            stats.by_month[month] = stats.by_month.get(month, 0) + 1
        return stats

    async def export_entry(self, db: AsyncSession, entry_id: uuid.UUID) -> ArchiveExport:
        entry = await self.get_entry(db, entry_id)
        return ArchiveExport(
            filename=f"{entry.document_type.value}_{entry.document_number}_{entry.direction.value}.xml",
            content=entry.xml_content,
            mime_type="application/xml",
        )

    def purge_cutoff(self, older_than_days: int) -> datetime:
        return self.clock.now() - timedelta(days=older_than_days)

    async def purge(self, db: AsyncSession, older_than_days: int) -> int:
        """Delete entries archived strictly before now - older_than_days."""
        cutoff = self.purge_cutoff(older_than_days)
        result = await db.execute(
            delete(ArchiveEntry)
            .where(ArchiveEntry.archived_at < cutoff)
            .execution_options(synchronize_session="fetch")
        )
        logger.warning("Purged %d archive entries older than %s", result.rowcount, cutoff.isoformat())
        return result.rowcount
