"""
Incentive Engine - Engine Facade

Public entry point for calculation runs and the approval workflow.

Every operation returns a Result: domain failures (validation, invalid
state, unauthorized actor, concurrency conflict, missing slab) come back as
Result.failure and leave stored state untouched. Audit and notification
calls happen after the store commit and are best-effort; their failures
are logged and never undo the business transition.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID
import logging

from pydantic import ValidationError as PydanticValidationError

from app.config import Settings, get_settings
from app.models.incentive_enums import (
    AuditAction,
    EscalationPolicy,
    NotificationEventType,
)
from app.schemas.incentive import (
    Approval,
    Calculation,
    ChangeRecord,
    DateRange,
    EmployeeFacts,
    EscalationReport,
    IncentivePlan,
    Money,
)
from app.services.approval_chain import ApprovalChain, ApproverResolver
from app.services.audit_service import AuditSink
from app.services.calculation_state_machine import (
    CalculationAction,
    CalculationStateMachine,
    Transition,
    approval_change,
)
from app.services.escalation_scanner import EscalationScanner
from app.services.incentive_calculator import Deduction, IncentiveCalculator
from app.services.notification_service import NotificationDispatcher
from app.services.plan_validation import PlanValidationResult, PlanValidationService
from app.services.store import IncentiveStore
from app.utils.error_handling import (
    AppException,
    ErrorCode,
    InvalidStateException,
    NotFoundException,
    Result,
    ValidationException,
    failure_from,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Per-item results of a batch operation; one failure never aborts the rest."""
    succeeded: Dict[UUID, Any] = field(default_factory=dict)
    failed: Dict[UUID, AppException] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": [str(key) for key in self.succeeded],
            "failed": {str(key): exc.to_dict() for key, exc in self.failed.items()},
        }


class IncentiveEngine:
    """Calculation and approval workflow engine."""

    def __init__(
        self,
        store: IncentiveStore,
        audit: AuditSink,
        notifier: NotificationDispatcher,
        approver_resolver: ApproverResolver,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.audit = audit
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock or datetime.utcnow
        self.approval_chain = ApprovalChain(self.settings.sla_hours_for_level)
        self.state_machine = CalculationStateMachine(self.approval_chain, approver_resolver)
        self.plan_validator = PlanValidationService(self.settings.max_approval_levels)

    # ===========================================
    # CALCULATION
    # ===========================================

    async def calculate(
        self,
        plan_id: UUID,
        employee_id: UUID,
        period: DateRange,
        facts: EmployeeFacts,
        actor_id: Optional[UUID] = None,
        deduction: Optional[Deduction] = None,
    ) -> Result[Calculation]:
        """Calculate, superseding any live calculation for the same employee, plan and period."""
        return await self._guard(
            "calculate",
            lambda: self._calculate(plan_id, employee_id, period, facts, actor_id, deduction),
        )

    async def _calculate(
        self,
        plan_id: UUID,
        employee_id: UUID,
        period: DateRange,
        facts: EmployeeFacts,
        actor_id: Optional[UUID],
        deduction: Optional[Deduction],
    ) -> Calculation:
        plan = await self._require_plan(plan_id)
        now = self.clock()
        calculation = IncentiveCalculator.calculate(
            plan, employee_id, facts, period, actor_id, now, deduction
        )

        prior = await self.store.find_live_calculation(employee_id, plan.id, period)
        if prior is None:
            await self.store.save_calculation(calculation, expected_version=None)
            changes = [self._created(calculation, actor_id, now)]
        else:
            superseded = self.state_machine.supersede(prior, calculation.id, actor_id, now)
            calculation = calculation.model_copy(update={
                "previous_version_id": prior.id,
                "version": superseded.calculation.version,
            })
            await self.store.supersede_calculation(superseded.calculation, prior.version, calculation)
            changes = superseded.changes + [
                self._created(calculation, actor_id, now, reason=f"Recalculation of {prior.id}")
            ]

        logger.info(
            f"Calculated incentive for employee {employee_id} on plan {plan.code}: "
            f"{calculation.status.value}, achievement {calculation.achievement_percentage}, "
            f"gross {calculation.gross_incentive}, net {calculation.net_incentive}"
        )
        await self._record(changes)
        return calculation

    async def calculate_batch(
        self,
        plan_id: UUID,
        period: DateRange,
        facts_by_employee: Dict[UUID, EmployeeFacts],
        actor_id: Optional[UUID] = None,
    ) -> Result[BatchOutcome]:
        """Calculate for many employees; failures are collected per employee."""
        plan_result = await self._guard("calculate_batch", lambda: self._require_plan(plan_id))
        if not plan_result.ok:
            return plan_result

        outcome = BatchOutcome()
        for employee_id, facts in facts_by_employee.items():
            result = await self.calculate(plan_id, employee_id, period, facts, actor_id)
            if result.ok:
                outcome.succeeded[employee_id] = result.value
            else:
                outcome.failed[employee_id] = result.error

        logger.info(
            f"Batch calculation for plan {plan_result.value.code} {period}: "
            f"{len(outcome.succeeded)} succeeded, {len(outcome.failed)} failed"
        )
        return Result.success(outcome)

    # ===========================================
    # APPROVAL WORKFLOW
    # ===========================================

    async def submit_for_approval(self, calculation_id: UUID, actor_id: UUID) -> Result[Calculation]:
        return await self._guard("submit_for_approval", lambda: self._submit(calculation_id, actor_id))

    async def _submit(self, calculation_id: UUID, actor_id: UUID) -> Calculation:
        calculation = await self._require_live_calculation(calculation_id, "submit")
        plan = await self._require_plan(calculation.incentive_plan_id)
        approvals = await self.store.load_approvals(calculation.id)
        now = self.clock()

        transition = self.state_machine.submit_for_approval(calculation, plan, actor_id, now, approvals)
        await self._commit(calculation, transition)

        if transition.opened_approval is not None:
            opened = transition.opened_approval
            await self._notify(NotificationEventType.APPROVAL_PENDING, self._payload(
                transition.calculation, [opened.approver_id], approval_id=opened.id, level=opened.level,
            ))
        else:
            await self._notify(NotificationEventType.APPROVAL_APPROVED, self._payload(
                transition.calculation, [calculation.employee_id],
            ))
        return transition.calculation

    async def decide(
        self,
        approval_id: UUID,
        actor_id: UUID,
        approved: bool,
        comments: Optional[str] = None,
    ) -> Result[Calculation]:
        """Approve or reject the current approval level."""
        return await self._guard(
            "decide",
            lambda: self._decide(approval_id, actor_id, approved, comments, self.clock()),
        )

    async def _decide(
        self,
        approval_id: UUID,
        actor_id: UUID,
        approved: bool,
        comments: Optional[str],
        now: datetime,
    ) -> Calculation:
        approval = await self._require_approval(approval_id)
        calculation = await self._require_calculation(approval.calculation_id)
        plan = await self._require_plan(calculation.incentive_plan_id)
        approvals = await self.store.load_approvals(calculation.id)

        transition = self.state_machine.record_decision(
            calculation, plan, approvals, approval_id, actor_id, approved, now, comments
        )
        await self._commit(calculation, transition)

        updated = transition.calculation
        if transition.action == CalculationAction.REJECT:
            await self._notify(NotificationEventType.APPROVAL_REJECTED, self._payload(
                updated, [updated.employee_id], approval_id=approval_id, reason=updated.rejection_reason,
            ))
        elif transition.action == CalculationAction.APPROVE_FINAL:
            await self._notify(NotificationEventType.APPROVAL_APPROVED, self._payload(
                updated, [updated.employee_id], approval_id=approval_id,
            ))
        elif transition.opened_approval is not None:
            opened = transition.opened_approval
            await self._notify(NotificationEventType.APPROVAL_PENDING, self._payload(
                updated, [opened.approver_id], approval_id=opened.id, level=opened.level,
            ))
        return updated

    async def bulk_decide(
        self,
        approval_ids: Iterable[UUID],
        actor_id: UUID,
        approved: bool,
        comments: Optional[str] = None,
    ) -> Result[BatchOutcome]:
        """Decide several approvals independently."""
        outcome = BatchOutcome()
        for approval_id in approval_ids:
            result = await self.decide(approval_id, actor_id, approved, comments)
            if result.ok:
                outcome.succeeded[approval_id] = result.value
            else:
                outcome.failed[approval_id] = result.error

        logger.info(
            f"Bulk {'approval' if approved else 'rejection'} by {actor_id}: "
            f"{len(outcome.succeeded)} succeeded, {len(outcome.failed)} failed"
        )
        return Result.success(outcome)

    async def delegate(self, approval_id: UUID, actor_id: UUID, to_user_id: UUID) -> Result[Approval]:
        return await self._guard("delegate", lambda: self._delegate(approval_id, actor_id, to_user_id))

    async def _delegate(self, approval_id: UUID, actor_id: UUID, to_user_id: UUID) -> Approval:
        approval = await self._require_approval(approval_id)
        calculation = await self._require_calculation(approval.calculation_id)
        now = self.clock()

        delegated = self.approval_chain.delegate(approval, actor_id, to_user_id)
        await self.store.save_approval(delegated)

        logger.info(f"Approval {approval_id} (level {approval.level}) delegated from {actor_id} to {to_user_id}")
        await self._record([approval_change(
            delegated, AuditAction.DELEGATE, actor_id, approval.status.value, now,
            reason=f"Delegated to {to_user_id}",
        )])
        await self._notify(NotificationEventType.APPROVAL_PENDING, self._payload(
            calculation, [to_user_id], approval_id=delegated.id, level=delegated.level, delegated_by=actor_id,
        ))
        return delegated

    async def escalate(
        self,
        approval_id: UUID,
        to_user_id: UUID,
        reason: str,
        actor_id: Optional[UUID] = None,
    ) -> Result[Approval]:
        """Reassign a pending approval; returns the replacement approval."""
        return await self._guard(
            "escalate",
            lambda: self._escalate(approval_id, to_user_id, reason, actor_id, self.clock()),
        )

    async def _escalate(
        self,
        approval_id: UUID,
        to_user_id: UUID,
        reason: str,
        actor_id: Optional[UUID],
        now: datetime,
    ) -> Approval:
        approval = await self._require_approval(approval_id)
        calculation = await self._require_calculation(approval.calculation_id)

        escalated, replacement = self.approval_chain.escalate(approval, to_user_id, now, reason)
        await self.store.save_approvals([escalated, replacement])

        logger.warning(
            f"Approval {approval_id} (level {approval.level}) escalated from "
            f"{approval.approver_id} to {to_user_id}: {reason}"
        )
        await self._record([approval_change(
            escalated, AuditAction.ESCALATE, actor_id, approval.status.value, now, reason=reason,
        )])
        await self._notify(NotificationEventType.APPROVAL_PENDING, self._payload(
            calculation, [to_user_id], approval_id=replacement.id, level=replacement.level,
            escalated_from=approval.id,
        ))
        return replacement

    # ===========================================
    # PAYMENT AND CANCELLATION
    # ===========================================

    async def mark_paid(
        self,
        calculation_id: UUID,
        batch_reference: str,
        actor_id: Optional[UUID] = None,
    ) -> Result[Calculation]:
        return await self._guard("mark_paid", lambda: self._mark_paid(calculation_id, batch_reference, actor_id))

    async def _mark_paid(self, calculation_id: UUID, batch_reference: str, actor_id: Optional[UUID]) -> Calculation:
        if not batch_reference or not batch_reference.strip():
            raise ValidationException("Payment batch reference is required", field="batch_reference")

        calculation = await self._require_live_calculation(calculation_id, "mark_paid")
        transition = self.state_machine.mark_paid(calculation, batch_reference.strip(), actor_id, self.clock())
        await self._commit(calculation, transition)

        await self._notify(NotificationEventType.PAYMENT_PROCESSED, self._payload(
            transition.calculation, [calculation.employee_id], batch_reference=batch_reference.strip(),
        ))
        return transition.calculation

    async def cancel(self, calculation_id: UUID, actor_id: UUID, reason: str) -> Result[Calculation]:
        return await self._guard("cancel", lambda: self._cancel(calculation_id, actor_id, reason))

    async def _cancel(self, calculation_id: UUID, actor_id: UUID, reason: str) -> Calculation:
        if not reason or not reason.strip():
            raise ValidationException("Cancellation reason is required", field="reason")

        calculation = await self._require_live_calculation(calculation_id, "cancel")
        approvals = await self.store.load_approvals(calculation.id)
        transition = self.state_machine.cancel(calculation, approvals, actor_id, reason.strip(), self.clock())
        await self._commit(calculation, transition)
        return transition.calculation

    async def adjust(
        self,
        calculation_id: UUID,
        new_amount: Money,
        reason: str,
        actor_id: Optional[UUID] = None,
    ) -> Result[Calculation]:
        """Override the net incentive of a live CALCULATED or APPROVED calculation."""
        return await self._guard("adjust", lambda: self._adjust(calculation_id, new_amount, reason, actor_id))

    async def _adjust(
        self,
        calculation_id: UUID,
        new_amount: Money,
        reason: str,
        actor_id: Optional[UUID],
    ) -> Calculation:
        calculation = await self._require_live_calculation(calculation_id, "adjust")
        transition = self.state_machine.adjust(calculation, new_amount, reason, actor_id, self.clock())
        await self._commit(calculation, transition)

        logger.info(
            f"Calculation {calculation_id} adjusted by {actor_id}: "
            f"net {calculation.net_incentive} -> {new_amount} ({transition.calculation.adjustment_reason})"
        )
        return transition.calculation

    # ===========================================
    # ESCALATION SCAN
    # ===========================================

    async def scan_for_escalation(
        self,
        now: Optional[datetime] = None,
        sla_hours: Optional[float] = None,
    ) -> Result[EscalationReport]:
        """
        Escalate or alert on every pending approval past its SLA.

        Policy AUTO escalates to the configured escalation approver; policy
        ALERT_ONLY, or AUTO without an escalation approver, only notifies.
        Approvals approaching the SLA get an early warning without any
        state change.
        """
        return await self._guard("scan_for_escalation", lambda: self._scan(now or self.clock(), sla_hours))

    async def _scan(self, now: datetime, sla_hours: Optional[float]) -> EscalationReport:
        sla = sla_hours if sla_hours is not None else self.settings.approval_sla_hours
        if sla <= 0:
            raise ValidationException("SLA hours must be positive", field="sla_hours")

        pending = await self.store.list_pending_approvals()
        scan = EscalationScanner.scan(pending, now, sla, self.settings.sla_warning_ratio)

        policy = EscalationPolicy(self.settings.escalation_policy)
        escalation_approver = self.settings.escalation_approver_id
        escalated: List[UUID] = []
        alerted: List[UUID] = []
        failed: List[Tuple[UUID, str]] = []

        for approval in scan.breached:
            hours = round(approval.pending_hours(now), 1)
            can_escalate = (
                policy == EscalationPolicy.AUTO
                and escalation_approver is not None
                and escalation_approver != approval.approver_id
            )
            if can_escalate:
                result = await self._guard("escalate", lambda a=approval: self._escalate(
                    a.id, escalation_approver, f"SLA of {sla} hours breached ({hours} hours pending)", None, now,
                ))
                if result.ok:
                    escalated.append(approval.id)
                else:
                    failed.append((approval.id, result.error.code.value))
            else:
                alerted.append(approval.id)

            recipients = [approval.approver_id]
            if escalation_approver is not None and escalation_approver != approval.approver_id:
                recipients.append(escalation_approver)
            await self._notify(NotificationEventType.SLA_BREACH, self._approval_payload(
                approval, recipients, pending_hours=hours, sla_hours=sla,
            ))

        for approval in scan.warnings:
            await self._notify(NotificationEventType.SLA_WARNING, self._approval_payload(
                approval, [approval.approver_id],
                pending_hours=round(approval.pending_hours(now), 1), sla_hours=sla,
            ))

        if scan.breached:
            logger.warning(
                f"Escalation scan found {len(scan.breached)} breached approvals: "
                f"{len(escalated)} escalated, {len(alerted)} alerted, {len(failed)} failed"
            )

        return EscalationReport(
            scanned_at=now,
            sla_hours=sla,
            warning_hours=scan.warning_hours,
            breached=tuple(a.id for a in scan.breached),
            warnings=tuple(a.id for a in scan.warnings),
            escalated=tuple(escalated),
            alerted=tuple(alerted),
            failed=tuple(failed),
        )

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_calculation(self, calculation_id: UUID) -> Result[Calculation]:
        return await self._guard("get_calculation", lambda: self._require_calculation(calculation_id))

    async def approval_history(self, calculation_id: UUID) -> Result[List[Approval]]:
        async def _history() -> List[Approval]:
            await self._require_calculation(calculation_id)
            return self.approval_chain.history(await self.store.load_approvals(calculation_id))

        return await self._guard("approval_history", _history)

    async def current_pending(self, calculation_id: UUID) -> Result[Optional[Approval]]:
        async def _pending() -> Optional[Approval]:
            await self._require_calculation(calculation_id)
            return self.approval_chain.current_pending(await self.store.load_approvals(calculation_id))

        return await self._guard("current_pending", _pending)

    async def validate_plan(self, plan_id: UUID, as_of: Optional[date] = None) -> Result[PlanValidationResult]:
        async def _validate() -> PlanValidationResult:
            plan = await self._require_plan(plan_id)
            return self.plan_validator.validate(plan, as_of)

        return await self._guard("validate_plan", _validate)

    # ===========================================
    # HELPERS
    # ===========================================

    async def _guard(self, operation: str, action: Callable[[], Awaitable[Any]]) -> Result:
        try:
            return Result.success(await action())
        except AppException as exc:
            return failure_from(exc, operation)
        except PydanticValidationError as exc:
            return failure_from(
                ValidationException(
                    f"Invalid input: {exc.error_count()} validation error(s)",
                    details={"errors": [error["msg"] for error in exc.errors()]},
                ),
                operation,
            )

    async def _commit(self, calculation: Calculation, transition: Transition) -> None:
        await self.store.save_calculation(
            transition.calculation,
            expected_version=calculation.version,
            approvals=transition.approvals,
        )
        logger.info(
            f"Calculation {calculation.id}: {calculation.status.value} -> "
            f"{transition.calculation.status.value} (v{transition.calculation.version})"
        )
        await self._record(transition.changes)

    async def _record(self, changes: Iterable[ChangeRecord]) -> None:
        for change in changes:
            try:
                await self.audit.record_change(change)
            except Exception:
                logger.exception(
                    f"Audit record failed for {change.entity_type} {change.entity_id} ({change.action.value})"
                )

    async def _notify(self, event_type: NotificationEventType, payload: Dict[str, Any]) -> None:
        try:
            await self.notifier.notify(event_type, payload)
        except Exception:
            logger.exception(f"Notification {event_type.value} failed for calculation {payload.get('calculation_id')}")

    @staticmethod
    def _created(
        calculation: Calculation,
        actor_id: Optional[UUID],
        now: datetime,
        reason: Optional[str] = None,
    ) -> ChangeRecord:
        return ChangeRecord(
            entity_type="calculation",
            entity_id=calculation.id,
            action=AuditAction.CREATE,
            actor_id=actor_id,
            new_status=calculation.status.value,
            reason=reason or calculation.adjustment_reason,
            occurred_at=now,
        )

    @staticmethod
    def _payload(calculation: Calculation, recipients: Iterable[UUID], **extra: Any) -> Dict[str, Any]:
        payload = {
            "calculation_id": str(calculation.id),
            "employee_id": str(calculation.employee_id),
            "plan_id": str(calculation.incentive_plan_id),
            "status": calculation.status.value,
            "net_incentive": str(calculation.net_incentive),
            "recipient_ids": [str(r) for r in recipients],
        }
        payload.update({key: str(value) if value is not None else None for key, value in extra.items()})
        return payload

    @staticmethod
    def _approval_payload(approval: Approval, recipients: Iterable[UUID], **extra: Any) -> Dict[str, Any]:
        payload = {
            "calculation_id": str(approval.calculation_id),
            "approval_id": str(approval.id),
            "level": approval.level,
            "approver_id": str(approval.approver_id),
            "recipient_ids": [str(r) for r in recipients],
        }
        payload.update(extra)
        return payload

    async def _require_plan(self, plan_id: UUID) -> IncentivePlan:
        plan = await self.store.load_plan(plan_id)
        if plan is None:
            raise NotFoundException("Incentive plan", plan_id, code=ErrorCode.PLAN_NOT_FOUND)
        return plan

    async def _require_calculation(self, calculation_id: UUID) -> Calculation:
        calculation = await self.store.load_calculation(calculation_id)
        if calculation is None:
            raise NotFoundException("Calculation", calculation_id, code=ErrorCode.CALCULATION_NOT_FOUND)
        return calculation

    async def _require_live_calculation(self, calculation_id: UUID, action: str) -> Calculation:
        calculation = await self._require_calculation(calculation_id)
        if not calculation.is_live:
            raise InvalidStateException(
                f"Calculation {calculation_id} was superseded by {calculation.superseded_by_id}",
                current_status=calculation.status.value,
                action=action,
            )
        return calculation

    async def _require_approval(self, approval_id: UUID) -> Approval:
        approval = await self.store.load_approval(approval_id)
        if approval is None:
            raise NotFoundException("Approval", approval_id, code=ErrorCode.APPROVAL_NOT_FOUND)
        return approval
