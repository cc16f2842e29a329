"""Audit trail for auction state changes and rejected actions."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.models.audit_log import AuditLog


def _jsonable(values: dict[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, UUID):
            value = str(value)
        elif isinstance(value, Enum):
            value = value.value
        out[key] = value
    return out


class AuditService:
    """Service class for audit log operations.

    ``record`` only stages the row in the caller's session; it is committed
    together with the change it describes.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        now: datetime,
        old_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
        user_id: UUID | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_value=_jsonable(old_value),
            new_value=_jsonable(new_value),
            created_at=now,
        )
        self.db.add(entry)
        return entry

    async def list_for_entity(
        self, entity_type: str, entity_id: UUID, skip: int = 0, limit: int = 50
    ) -> list[AuditLog]:
        """Get audit entries for one entity, newest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id)
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())
