"""AuditService: immutable append-only audit log.

Static methods so the lifecycle and exchange modules can call
AuditService.log_event() directly without DI wiring.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from customs_edi.models.audit import AuditEvent


class AuditService:
    """Static audit event logger and query interface."""

    @staticmethod
    async def log_event(
        db: AsyncSession,
        *,
        entity_type: str,
        action: str,
        entity_id: uuid.UUID | None = None,
        entity_number: str | None = None,
        actor: str | None = "system",
        actor_type: str = "system",
        before_data: dict | None = None,
        after_data: dict | None = None,
        notes: str | None = None,
        ip_address: str | None = None,
    ) -> AuditEvent:
        """Append an immutable audit event."""
        event = AuditEvent(
            id=uuid.uuid4(),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_number=entity_number,
            action=action,
            actor=actor,
            actor_type=actor_type,
            before_data=before_data,
            after_data=after_data,
            notes=notes,
            ip_address=ip_address,
        )
        db.add(event)
        await db.flush()
        return event

    @staticmethod
    async def get_events(
        db: AsyncSession,
        *,
        entity_type: str | None = None,
        entity_id: uuid.UUID | None = None,
        action: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[AuditEvent], int]:
        """Query audit events with filtering and pagination."""
        criteria = []
        if entity_type:
            criteria.append(AuditEvent.entity_type == entity_type)
        if entity_id:
            criteria.append(AuditEvent.entity_id == entity_id)
        if action:
            criteria.append(AuditEvent.action == action)
        if start_date:
            criteria.append(AuditEvent.created_at >= start_date)
        if end_date:
            criteria.append(AuditEvent.created_at <= end_date)

        total = (await db.execute(select(func.count(AuditEvent.id)).where(*criteria))).scalar_one()

        offset = (page - 1) * per_page
        query = (
            select(AuditEvent)
            .where(*criteria)
            .order_by(AuditEvent.created_at.desc())
            .offset(offset)
            .limit(per_page)
        )
        result = await db.execute(query)
        events = list(result.scalars().all())

        return events, total

    @staticmethod
    async def get_stats(db: AsyncSession) -> dict:
        """Get audit event statistics."""
        total = (await db.execute(select(func.count(AuditEvent.id)))).scalar_one()

        # Events by action
        rows = (await db.execute(
            select(AuditEvent.action, func.count(AuditEvent.id))
            .group_by(AuditEvent.action)
        )).all()
        by_action = {row[0] or "unknown": row[1] for row in rows}

        # Events by entity type
        rows = (await db.execute(
            select(AuditEvent.entity_type, func.count(AuditEvent.id))
            .group_by(AuditEvent.entity_type)
        )).all()
        by_entity_type = {row[0] or "unknown": row[1] for row in rows}

        # Recent events
        recent_result = await db.execute(
            select(AuditEvent).order_by(AuditEvent.created_at.desc()).limit(10)
        )
        recent = list(recent_result.scalars().all())

        return {
            "total_events": total,
            "events_by_action": by_action,
            "events_by_entity_type": by_entity_type,
            "recent_events": recent,
        }
