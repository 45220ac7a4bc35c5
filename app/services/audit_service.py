"""
Incentive Engine - Audit Trail Service

Records calculation and approval state changes.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.audit import AuditLog
from app.models.incentive_enums import AuditAction
from app.schemas.incentive import ChangeRecord

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Receives one record per committed transition."""

    @abstractmethod
    async def record(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        action: AuditAction,
        actor_id: Optional[uuid.UUID],
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> None:
        ...

    async def record_change(self, change: ChangeRecord) -> None:
        """Record a domain ChangeRecord."""
        await self.record(
            entity_type=change.entity_type,
            entity_id=change.entity_id,
            action=change.action,
            actor_id=change.actor_id,
            old_value={"status": change.old_status} if change.old_status else None,
            new_value={"status": change.new_status} if change.new_status else None,
            reason=change.reason,
        )


class AuditService(AuditSink):
    """Service for managing the audit trail."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        action: AuditAction,
        actor_id: Optional[uuid.UUID],
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> None:
        """
        Log an audit action.

        Args:
            entity_type: Type of entity (e.g., 'calculation', 'approval')
            entity_id: ID of the affected entity
            action: Type of action performed
            actor_id: ID of user who performed the action
            old_value: Previous values
            new_value: New values
            reason: Human-readable reason for the change
        """
        changes = None
        if old_value and new_value:
            changes = self._calculate_changes(old_value, new_value)

        audit_log = AuditLog(
            target_entity_type=entity_type,
            target_entity_id=str(entity_id),
            action=action,
            user_id=actor_id,
            old_values=old_value,
            new_values=new_value,
            changes=changes,
            description=reason,
        )

        async with self.session_factory() as session:
            async with session.begin():
                session.add(audit_log)

    def _calculate_changes(
        self,
        old_values: Dict[str, Any],
        new_values: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Calculate what changed between old and new values."""
        changes = {}

        all_keys = set(old_values.keys()) | set(new_values.keys())

        for key in all_keys:
            old_val = old_values.get(key)
            new_val = new_values.get(key)

            if old_val != new_val:
                changes[key] = {
                    "old": old_val,
                    "new": new_val,
                }

        return changes

    async def get_entity_history(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
    ) -> List[Dict[str, Any]]:
        """
        Get complete history of changes for a specific entity.

        Returns chronological list of all changes made to the entity.
        """
        query = (
            select(AuditLog)
            .where(
                AuditLog.target_entity_type == entity_type,
                AuditLog.target_entity_id == str(entity_id),
            )
            .order_by(AuditLog.created_at)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            logs = list(result.scalars().all())

        return [
            {
                "timestamp": log.created_at.isoformat(),
                "action": log.action.value,
                "user_id": str(log.user_id) if log.user_id else None,
                "changes": log.changes,
                "reason": log.description,
            }
            for log in logs
        ]
