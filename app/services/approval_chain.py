"""
Incentive Engine - Approval Chain

Multi-level approval records for a single calculation.

Levels run strictly in order starting at 1, and exactly one approval is
pending while the calculation awaits approval. Only the current holder of
a pending approval may decide or delegate it. Delegation reassigns the
holder without opening a new level; escalation closes the overdue record
and opens a replacement at the same level for the escalation approver.

Every mutation returns a new Approval copy with its version incremented;
the store commits it conditionally on the previous version.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from app.config import settings
from app.models.incentive_enums import ApprovalStatus
from app.schemas.incentive import Approval, Calculation, IncentivePlan
from app.utils.error_handling import (
    InvalidStateException,
    UnauthorizedException,
    ValidationException,
)

logger = logging.getLogger(__name__)


# (plan, calculation, level) -> approver user id
ApproverResolver = Callable[[IncentivePlan, Calculation, int], UUID]


class StaticApproverResolver:
    """Resolves approvers from a fixed level -> user mapping."""

    def __init__(self, approvers_by_level: Dict[int, UUID], default_approver: Optional[UUID] = None):
        self.approvers_by_level = dict(approvers_by_level)
        self.default_approver = default_approver

    def __call__(self, plan: IncentivePlan, calculation: Calculation, level: int) -> UUID:
        approver = self.approvers_by_level.get(level, self.default_approver)
        if approver is None:
            raise ValidationException(
                f"No approver configured for level {level} of plan {plan.code}",
                field="approval_levels",
            )
        return approver


class ApprovalChain:
    """Guarded operations on the approvals of one calculation."""

    def __init__(self, sla_hours_for_level: Optional[Callable[[int], float]] = None):
        self.sla_hours_for_level = sla_hours_for_level or settings.sla_hours_for_level

    # ===========================================
    # QUERIES
    # ===========================================

    @staticmethod
    def history(approvals: Iterable[Approval]) -> List[Approval]:
        """Approvals ordered by level, then creation time."""
        return sorted(approvals, key=lambda a: (a.level, a.created_at))

    @staticmethod
    def current_pending(approvals: Iterable[Approval]) -> Optional[Approval]:
        pending = [a for a in approvals if a.is_pending]
        if len(pending) > 1:
            raise InvalidStateException(
                f"Calculation has {len(pending)} pending approvals; expected at most one",
                current_status=ApprovalStatus.PENDING.value,
            )
        return pending[0] if pending else None

    @staticmethod
    def highest_level(approvals: Iterable[Approval]) -> int:
        return max((a.level for a in approvals), default=0)

    # ===========================================
    # MUTATIONS
    # ===========================================

    def open_level(
        self,
        calculation_id: UUID,
        level: int,
        approver_id: UUID,
        now: datetime,
        existing: Sequence[Approval] = (),
    ) -> Approval:
        """Create the pending approval for the next level."""
        expected = self.highest_level(existing) + 1
        if level != expected:
            raise ValidationException(
                f"Approval levels must be contiguous: expected level {expected}, got {level}",
                field="level",
            )
        if self.current_pending(existing) is not None:
            raise InvalidStateException(
                "Cannot open a new approval level while another is pending",
                current_status=ApprovalStatus.PENDING.value,
                action="open_level",
            )
        return self._new_pending(calculation_id, level, approver_id, now)

    def approve(
        self,
        approval: Approval,
        actor_id: UUID,
        now: datetime,
        comments: Optional[str] = None,
    ) -> Approval:
        self._ensure_decidable(approval, actor_id, "approve")
        return self._bump(
            approval,
            status=ApprovalStatus.APPROVED,
            decided_at=now,
            comments=comments,
        )

    def reject(
        self,
        approval: Approval,
        actor_id: UUID,
        now: datetime,
        reason: Optional[str] = None,
    ) -> Approval:
        self._ensure_decidable(approval, actor_id, "reject")
        return self._bump(
            approval,
            status=ApprovalStatus.REJECTED,
            decided_at=now,
            comments=reason,
        )

    def delegate(self, approval: Approval, actor_id: UUID, to_user_id: UUID) -> Approval:
        """Hand a pending approval to another user at the same level."""
        self._ensure_decidable(approval, actor_id, "delegate")
        if to_user_id == actor_id:
            raise ValidationException("Cannot delegate an approval to yourself", field="to_user_id")

        return self._bump(
            approval,
            approver_id=to_user_id,
            delegated_to_id=to_user_id,
            delegated_from_id=actor_id,
        )

    def escalate(
        self,
        approval: Approval,
        to_user_id: UUID,
        now: datetime,
        reason: Optional[str] = None,
    ) -> Tuple[Approval, Approval]:
        """
        Close an overdue approval and reopen its level for another approver.

        Returns:
            Tuple of (escalated approval, replacement pending approval)
        """
        self._ensure_pending(approval, "escalate")
        if to_user_id == approval.approver_id:
            raise ValidationException(
                "Escalation approver is already the current approver",
                field="to_user_id",
            )

        escalated = self._bump(
            approval,
            status=ApprovalStatus.ESCALATED,
            decided_at=now,
            comments=reason,
        )
        replacement = self._new_pending(approval.calculation_id, approval.level, to_user_id, now)
        replacement = replacement.model_copy(update={"escalated_from_id": approval.id})
        return escalated, replacement

    def expire_remaining(self, approvals: Iterable[Approval], now: datetime) -> List[Approval]:
        """Close every still-pending approval as EXPIRED."""
        return [
            self._bump(a, status=ApprovalStatus.EXPIRED, decided_at=now)
            for a in approvals
            if a.is_pending
        ]

    # ===========================================
    # HELPERS
    # ===========================================

    def _new_pending(self, calculation_id: UUID, level: int, approver_id: UUID, now: datetime) -> Approval:
        return Approval(
            calculation_id=calculation_id,
            level=level,
            approver_id=approver_id,
            status=ApprovalStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(hours=self.sla_hours_for_level(level)),
        )

    @staticmethod
    def _bump(approval: Approval, **changes) -> Approval:
        changes["version"] = approval.version + 1
        return approval.model_copy(update=changes)

    @staticmethod
    def _ensure_pending(approval: Approval, action: str) -> None:
        if not approval.is_pending:
            raise InvalidStateException(
                f"Approval {approval.id} is not pending (status: {approval.status.value})",
                current_status=approval.status.value,
                action=action,
            )

    def _ensure_decidable(self, approval: Approval, actor_id: UUID, action: str) -> None:
        self._ensure_pending(approval, action)
        if not approval.can_be_decided_by(actor_id):
            logger.warning(
                f"User {actor_id} attempted to {action} approval {approval.id} held by {approval.approver_id}"
            )
            raise UnauthorizedException(
                actor_id,
                details={"approval_id": str(approval.id), "action": action},
            )
