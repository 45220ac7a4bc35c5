"""
Incentive Engine - Calculation State Machine

Single transition table for the calculation lifecycle:

    CALCULATED -> PENDING_APPROVAL -> APPROVED | REJECTED
    CALCULATED -> APPROVED            (no approval required)
    CALCULATED, APPROVED -> same      (manual adjustment)
    APPROVED   -> PAID
    any non-terminal -> CANCELLED

PAID, REJECTED, CANCELLED and INELIGIBLE are terminal. Every transition
returns a new Calculation with version + 1 plus the ChangeRecords to audit.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from app.models.incentive_enums import ApprovalStatus, AuditAction, CalculationStatus
from app.schemas.incentive import Approval, Calculation, ChangeRecord, IncentivePlan, Money
from app.services.approval_chain import ApprovalChain, ApproverResolver
from app.utils.error_handling import (
    CurrencyMismatchException,
    InvalidAmountException,
    InvalidStateException,
    ValidationException,
)

logger = logging.getLogger(__name__)


class CalculationAction(str, Enum):
    """Actions that drive the calculation lifecycle."""
    SUBMIT = "submit"
    AUTO_APPROVE = "auto_approve"
    APPROVE_INTERMEDIATE = "approve_intermediate"
    APPROVE_FINAL = "approve_final"
    REJECT = "reject"
    MARK_PAID = "mark_paid"
    CANCEL = "cancel"
    SUPERSEDE = "supersede"
    ADJUST = "adjust"


S = CalculationStatus
A = CalculationAction

TRANSITIONS: Dict[Tuple[CalculationStatus, CalculationAction], CalculationStatus] = {
    (S.CALCULATED, A.SUBMIT): S.PENDING_APPROVAL,
    (S.CALCULATED, A.AUTO_APPROVE): S.APPROVED,
    (S.PENDING_APPROVAL, A.APPROVE_INTERMEDIATE): S.PENDING_APPROVAL,
    (S.PENDING_APPROVAL, A.APPROVE_FINAL): S.APPROVED,
    (S.PENDING_APPROVAL, A.REJECT): S.REJECTED,
    (S.APPROVED, A.MARK_PAID): S.PAID,
    (S.CALCULATED, A.CANCEL): S.CANCELLED,
    (S.PENDING_APPROVAL, A.CANCEL): S.CANCELLED,
    (S.APPROVED, A.CANCEL): S.CANCELLED,
    (S.CALCULATED, A.ADJUST): S.CALCULATED,
    (S.APPROVED, A.ADJUST): S.APPROVED,
    # Recalculation replaces results that never reached approval or payment
    (S.CALCULATED, A.SUPERSEDE): S.CALCULATED,
    (S.INELIGIBLE, A.SUPERSEDE): S.INELIGIBLE,
    (S.REJECTED, A.SUPERSEDE): S.REJECTED,
    (S.CANCELLED, A.SUPERSEDE): S.CANCELLED,
}

AUDIT_ACTIONS = {
    A.SUBMIT: AuditAction.SUBMIT,
    A.AUTO_APPROVE: AuditAction.APPROVE,
    A.APPROVE_INTERMEDIATE: AuditAction.APPROVE,
    A.APPROVE_FINAL: AuditAction.APPROVE,
    A.REJECT: AuditAction.REJECT,
    A.MARK_PAID: AuditAction.MARK_PAID,
    A.CANCEL: AuditAction.CANCEL,
    A.SUPERSEDE: AuditAction.SUPERSEDE,
    A.ADJUST: AuditAction.ADJUST,
}


@dataclass
class Transition:
    """Result of one guarded transition, ready to be committed."""
    calculation: Calculation
    action: CalculationAction
    changes: List[ChangeRecord] = field(default_factory=list)
    approvals: List[Approval] = field(default_factory=list)
    decided_approval: Optional[Approval] = None
    opened_approval: Optional[Approval] = None

    @property
    def previous_version(self) -> int:
        return self.calculation.version - 1


def next_status(status: CalculationStatus, action: CalculationAction) -> CalculationStatus:
    """Look up a transition or raise InvalidStateException."""
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidStateException(
            f"Cannot {action.value.replace('_', ' ')} a calculation in status {status.value}",
            current_status=status.value,
            action=action.value,
        ) from None


def can_transition(status: CalculationStatus, action: CalculationAction) -> bool:
    return (status, action) in TRANSITIONS


def approval_change(approval: Approval, action: AuditAction, actor_id: Optional[UUID],
                    old_status: Optional[str], now: datetime, reason: Optional[str] = None) -> ChangeRecord:
    return ChangeRecord(
        entity_type="approval",
        entity_id=approval.id,
        action=action,
        actor_id=actor_id,
        old_status=old_status,
        new_status=approval.status.value,
        reason=reason,
        occurred_at=now,
    )


class CalculationStateMachine:
    """Applies guarded lifecycle transitions to a Calculation."""

    def __init__(self, approval_chain: ApprovalChain, approver_resolver: ApproverResolver):
        self.approval_chain = approval_chain
        self.approver_resolver = approver_resolver

    def _apply(
        self,
        calculation: Calculation,
        action: CalculationAction,
        actor_id: Optional[UUID],
        now: datetime,
        reason: Optional[str] = None,
        **updates,
    ) -> Transition:
        new_status = next_status(calculation.status, action)
        updates.update(status=new_status, version=calculation.version + 1)
        updated = calculation.model_copy(update=updates)

        change = ChangeRecord(
            entity_type="calculation",
            entity_id=calculation.id,
            action=AUDIT_ACTIONS[action],
            actor_id=actor_id,
            old_status=calculation.status.value,
            new_status=new_status.value,
            reason=reason,
            occurred_at=now,
        )
        logger.debug(
            f"Calculation {calculation.id}: {calculation.status.value} -> {new_status.value} "
            f"({action.value}, v{updated.version})"
        )
        return Transition(calculation=updated, action=action, changes=[change])

    # ===========================================
    # TRANSITIONS
    # ===========================================

    def submit_for_approval(
        self,
        calculation: Calculation,
        plan: IncentivePlan,
        actor_id: UUID,
        now: datetime,
        existing: Sequence[Approval] = (),
    ) -> Transition:
        """Open level 1, or approve straight away when the plan needs no approval."""
        if not plan.requires_approval or plan.approval_levels == 0:
            return self._apply(
                calculation, A.AUTO_APPROVE, actor_id, now,
                reason="Plan does not require approval",
            )

        transition = self._apply(calculation, A.SUBMIT, actor_id, now)
        approver_id = self.approver_resolver(plan, calculation, 1)
        first = self.approval_chain.open_level(calculation.id, 1, approver_id, now, existing)
        transition.approvals.append(first)
        transition.opened_approval = first
        return transition

    def record_decision(
        self,
        calculation: Calculation,
        plan: IncentivePlan,
        approvals: Sequence[Approval],
        approval_id: UUID,
        actor_id: UUID,
        approved: bool,
        now: datetime,
        comments: Optional[str] = None,
    ) -> Transition:
        """Approve or reject the current level."""
        if calculation.status != CalculationStatus.PENDING_APPROVAL:
            raise InvalidStateException(
                f"Calculation {calculation.id} is not awaiting approval",
                current_status=calculation.status.value,
                action="decide",
            )

        pending = self.approval_chain.current_pending(approvals)
        if pending is None or pending.id != approval_id:
            target = next((a for a in approvals if a.id == approval_id), None)
            status = target.status.value if target else None
            raise InvalidStateException(
                f"Approval {approval_id} is not the current pending approval",
                current_status=status,
                action="decide",
            )

        if not approved:
            decided = self.approval_chain.reject(pending, actor_id, now, reason=comments)
            remaining = [a for a in approvals if a.id != pending.id]
            expired = self.approval_chain.expire_remaining(remaining, now)
            reason = comments or f"Rejected at level {pending.level}"
            transition = self._apply(
                calculation, A.REJECT, actor_id, now,
                reason=reason,
                rejection_reason=reason,
            )
            transition.approvals.extend([decided, *expired])
            transition.changes.append(approval_change(decided, AuditAction.REJECT, actor_id, pending.status.value, now, comments))
            transition.changes.extend(
                approval_change(a, AuditAction.EXPIRE, actor_id, ApprovalStatus.PENDING.value, now)
                for a in expired
            )
            transition.decided_approval = decided
            return transition

        decided = self.approval_chain.approve(pending, actor_id, now, comments=comments)
        is_final = pending.level >= plan.approval_levels
        action = A.APPROVE_FINAL if is_final else A.APPROVE_INTERMEDIATE
        transition = self._apply(calculation, action, actor_id, now, reason=comments)
        transition.approvals.append(decided)
        transition.changes.append(approval_change(decided, AuditAction.APPROVE, actor_id, pending.status.value, now, comments))
        transition.decided_approval = decided

        if not is_final:
            history = [decided if a.id == decided.id else a for a in approvals]
            next_level = pending.level + 1
            approver_id = self.approver_resolver(plan, calculation, next_level)
            opened = self.approval_chain.open_level(calculation.id, next_level, approver_id, now, history)
            transition.approvals.append(opened)
            transition.opened_approval = opened

        return transition

    def mark_paid(
        self,
        calculation: Calculation,
        batch_reference: str,
        actor_id: Optional[UUID],
        now: datetime,
    ) -> Transition:
        return self._apply(
            calculation, A.MARK_PAID, actor_id, now,
            reason=f"Paid in batch {batch_reference}",
            payment_batch_reference=batch_reference,
        )

    def cancel(
        self,
        calculation: Calculation,
        approvals: Iterable[Approval],
        actor_id: UUID,
        reason: str,
        now: datetime,
    ) -> Transition:
        """Cancel a non-terminal calculation, expiring any pending approval."""
        transition = self._apply(
            calculation, A.CANCEL, actor_id, now,
            reason=reason,
            cancellation_reason=reason,
        )
        expired = self.approval_chain.expire_remaining(approvals, now)
        transition.approvals.extend(expired)
        transition.changes.extend(
            approval_change(a, AuditAction.EXPIRE, actor_id, ApprovalStatus.PENDING.value, now, reason) for a in expired
        )
        return transition

    def supersede(
        self,
        calculation: Calculation,
        replacement_id: UUID,
        actor_id: Optional[UUID],
        now: datetime,
    ) -> Transition:
        """Mark a live calculation as replaced by a recalculation."""
        if calculation.superseded_by_id is not None:
            raise InvalidStateException(
                f"Calculation {calculation.id} is already superseded",
                current_status=calculation.status.value,
                action=A.SUPERSEDE.value,
            )
        return self._apply(
            calculation, A.SUPERSEDE, actor_id, now,
            reason=f"Superseded by {replacement_id}",
            superseded_by_id=replacement_id,
        )

    def adjust(
        self,
        calculation: Calculation,
        new_amount: Money,
        reason: str,
        actor_id: Optional[UUID],
        now: datetime,
    ) -> Transition:
        """
        Override the net incentive by hand.

        Allowed while CALCULATED or APPROVED; the status is kept and the
        gross incentive is left as calculated.
        """
        if not reason or not reason.strip():
            raise ValidationException("Adjustment reason is required", field="reason")
        if new_amount.currency != calculation.net_incentive.currency:
            raise CurrencyMismatchException(calculation.net_incentive.currency, new_amount.currency)
        if new_amount.amount < 0:
            raise InvalidAmountException(new_amount.amount, message="Adjusted amount cannot be negative")

        reason = reason.strip()
        return self._apply(
            calculation, A.ADJUST, actor_id, now,
            reason=f"{reason} (net was {calculation.net_incentive}, now {new_amount})",
            net_incentive=new_amount,
            adjustment_reason=reason,
        )
