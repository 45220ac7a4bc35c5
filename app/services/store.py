"""
Incentive Engine - Incentive Store

Persistence boundary of the engine. Every write is conditional on the
version the caller read, so concurrent writers surface as
ConcurrencyConflictException instead of overwriting each other.

Implementations:
- SQLAlchemyIncentiveStore: SQLAlchemy 2.0 async, one transaction per call
- InMemoryIncentiveStore: lock-protected dictionaries for tests and local runs
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID
import asyncio
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.incentive import ApprovalModel, CalculationModel, IncentivePlanModel, SlabModel
from app.models.incentive_enums import ApprovalStatus
from app.schemas.incentive import (
    Approval,
    Calculation,
    DateRange,
    IncentivePlan,
    Money,
    Percentage,
    Slab,
    Target,
)
from app.utils.error_handling import ConcurrencyConflictException

logger = logging.getLogger(__name__)


class IncentiveStore(ABC):
    """Store contract consumed by the engine."""

    @abstractmethod
    async def load_plan(self, plan_id: UUID) -> Optional[IncentivePlan]:
        ...

    @abstractmethod
    async def save_plan(self, plan: IncentivePlan) -> IncentivePlan:
        ...

    @abstractmethod
    async def load_calculation(self, calculation_id: UUID) -> Optional[Calculation]:
        ...

    @abstractmethod
    async def find_live_calculation(
        self,
        employee_id: UUID,
        plan_id: UUID,
        period: DateRange,
    ) -> Optional[Calculation]:
        ...

    @abstractmethod
    async def save_calculation(
        self,
        calculation: Calculation,
        expected_version: Optional[int],
        approvals: Sequence[Approval] = (),
    ) -> Calculation:
        """
        Insert when expected_version is None, otherwise update only if the
        stored version still equals expected_version. Approvals are written
        in the same unit of work.
        """

    @abstractmethod
    async def supersede_calculation(
        self,
        prior: Calculation,
        expected_version: int,
        replacement: Calculation,
    ) -> Calculation:
        """Mark prior as superseded and insert its replacement atomically."""

    @abstractmethod
    async def load_approvals(self, calculation_id: UUID) -> List[Approval]:
        ...

    @abstractmethod
    async def load_approval(self, approval_id: UUID) -> Optional[Approval]:
        ...

    @abstractmethod
    async def list_pending_approvals(self) -> List[Approval]:
        ...

    @abstractmethod
    async def save_approvals(self, approvals: Sequence[Approval]) -> None:
        """
        Insert approvals at version 1; update the others only if the stored
        version equals version - 1. All or nothing.
        """

    async def save_approval(self, approval: Approval) -> Approval:
        await self.save_approvals([approval])
        return approval


# ===========================================
# ROW <-> DOMAIN MAPPING
# ===========================================

def plan_from_row(row: IncentivePlanModel) -> IncentivePlan:
    return IncentivePlan(
        id=row.id,
        code=row.code,
        name=row.name,
        status=row.status,
        effective_period=DateRange(start=row.effective_from, end=row.effective_to),
        target=Target(
            target_value=row.target_value,
            minimum_threshold=row.minimum_threshold,
            achievement_type=row.achievement_type,
            metric_unit=row.metric_unit,
        ),
        slabs=tuple(
            Slab(
                id=s.id,
                lower_bound_pct=s.lower_bound_pct,
                upper_bound_pct=s.upper_bound_pct,
                payout_rate=s.payout_rate,
                is_flat=s.is_flat,
                description=s.description,
            )
            for s in row.slabs
        ),
        currency=row.currency,
        maximum_payout=Money(amount=row.maximum_payout, currency=row.currency) if row.maximum_payout is not None else None,
        minimum_payout=Money(amount=row.minimum_payout, currency=row.currency) if row.minimum_payout is not None else None,
        requires_approval=row.requires_approval,
        approval_levels=row.approval_levels,
        proratable=row.proratable,
    )


def plan_values(plan: IncentivePlan) -> Dict[str, Any]:
    return dict(
        code=plan.code,
        name=plan.name,
        status=plan.status,
        effective_from=plan.effective_period.start,
        effective_to=plan.effective_period.end,
        target_value=plan.target.target_value,
        minimum_threshold=plan.target.minimum_threshold,
        achievement_type=plan.target.achievement_type,
        metric_unit=plan.target.metric_unit,
        currency=plan.currency,
        maximum_payout=plan.maximum_payout.amount if plan.maximum_payout else None,
        minimum_payout=plan.minimum_payout.amount if plan.minimum_payout else None,
        requires_approval=plan.requires_approval,
        approval_levels=plan.approval_levels,
        proratable=plan.proratable,
    )


def calculation_from_row(row: CalculationModel) -> Calculation:
    return Calculation(
        id=row.id,
        employee_id=row.employee_id,
        incentive_plan_id=row.incentive_plan_id,
        calculation_period=DateRange(start=row.period_start, end=row.period_end),
        target_value=row.target_value,
        actual_value=row.actual_value,
        achievement_percentage=Percentage(value=row.achievement_percentage),
        applied_slab_id=row.applied_slab_id,
        gross_incentive=Money(amount=row.gross_incentive, currency=row.currency),
        net_incentive=Money(amount=row.net_incentive, currency=row.currency),
        prorata_factor=Percentage(value=row.prorata_factor) if row.prorata_factor is not None else None,
        status=row.status,
        is_eligible=row.is_eligible,
        calculated_at=row.calculated_at,
        calculated_by=row.calculated_by,
        rejection_reason=row.rejection_reason,
        adjustment_reason=row.adjustment_reason,
        cancellation_reason=row.cancellation_reason,
        payment_batch_reference=row.payment_batch_reference,
        previous_version_id=row.previous_version_id,
        superseded_by_id=row.superseded_by_id,
        version=row.version,
    )


def calculation_values(calc: Calculation) -> Dict[str, Any]:
    return dict(
        id=calc.id,
        employee_id=calc.employee_id,
        incentive_plan_id=calc.incentive_plan_id,
        period_start=calc.calculation_period.start,
        period_end=calc.calculation_period.end,
        target_value=calc.target_value,
        actual_value=calc.actual_value,
        achievement_percentage=calc.achievement_percentage.value,
        applied_slab_id=calc.applied_slab_id,
        currency=calc.gross_incentive.currency,
        gross_incentive=calc.gross_incentive.amount,
        net_incentive=calc.net_incentive.amount,
        prorata_factor=calc.prorata_factor.value if calc.prorata_factor else None,
        status=calc.status,
        is_eligible=calc.is_eligible,
        calculated_at=calc.calculated_at,
        calculated_by=calc.calculated_by,
        rejection_reason=calc.rejection_reason,
        adjustment_reason=calc.adjustment_reason,
        cancellation_reason=calc.cancellation_reason,
        payment_batch_reference=calc.payment_batch_reference,
        previous_version_id=calc.previous_version_id,
        superseded_by_id=calc.superseded_by_id,
        version=calc.version,
    )


def approval_from_row(row: ApprovalModel) -> Approval:
    return Approval(
        id=row.id,
        calculation_id=row.calculation_id,
        level=row.level,
        approver_id=row.approver_id,
        status=row.status,
        created_at=row.requested_at,
        decided_at=row.decided_at,
        delegated_to_id=row.delegated_to_id,
        delegated_from_id=row.delegated_from_id,
        escalated_from_id=row.escalated_from_id,
        comments=row.comments,
        expires_at=row.expires_at,
        version=row.version,
    )


def approval_values(approval: Approval) -> Dict[str, Any]:
    return dict(
        id=approval.id,
        calculation_id=approval.calculation_id,
        level=approval.level,
        approver_id=approval.approver_id,
        status=approval.status,
        requested_at=approval.created_at,
        decided_at=approval.decided_at,
        delegated_to_id=approval.delegated_to_id,
        delegated_from_id=approval.delegated_from_id,
        escalated_from_id=approval.escalated_from_id,
        comments=approval.comments,
        expires_at=approval.expires_at,
        version=approval.version,
    )


# ===========================================
# SQLALCHEMY STORE
# ===========================================

class SQLAlchemyIncentiveStore(IncentiveStore):
    """Store backed by the incentive tables; one transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_plan(self, plan_id: UUID) -> Optional[IncentivePlan]:
        async with self.session_factory() as session:
            row = await session.get(IncentivePlanModel, plan_id)
            return plan_from_row(row) if row else None

    async def save_plan(self, plan: IncentivePlan) -> IncentivePlan:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(IncentivePlanModel, plan.id)
                if row is None:
                    row = IncentivePlanModel(id=plan.id, **plan_values(plan))
                    session.add(row)
                else:
                    for key, value in plan_values(plan).items():
                        setattr(row, key, value)
                row.slabs = [
                    SlabModel(
                        id=s.id,
                        lower_bound_pct=s.lower_bound_pct,
                        upper_bound_pct=s.upper_bound_pct,
                        payout_rate=s.payout_rate,
                        is_flat=s.is_flat,
                        description=s.description,
                    )
                    for s in plan.sorted_slabs()
                ]
        logger.info(f"Saved incentive plan {plan.code} with {len(plan.slabs)} slabs")
        return plan

    async def load_calculation(self, calculation_id: UUID) -> Optional[Calculation]:
        async with self.session_factory() as session:
            row = await session.get(CalculationModel, calculation_id)
            return calculation_from_row(row) if row else None

    async def find_live_calculation(
        self,
        employee_id: UUID,
        plan_id: UUID,
        period: DateRange,
    ) -> Optional[Calculation]:
        query = select(CalculationModel).where(
            CalculationModel.employee_id == employee_id,
            CalculationModel.incentive_plan_id == plan_id,
            CalculationModel.period_start == period.start,
            CalculationModel.period_end == period.end,
            CalculationModel.superseded_by_id.is_(None),
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
            return calculation_from_row(row) if row else None

    async def save_calculation(
        self,
        calculation: Calculation,
        expected_version: Optional[int],
        approvals: Sequence[Approval] = (),
    ) -> Calculation:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if expected_version is None:
                        session.add(CalculationModel(**calculation_values(calculation)))
                        await session.flush()
                    else:
                        await self._update_calculation(session, calculation, expected_version)
                    await self._write_approvals(session, approvals)
        except IntegrityError as exc:
            raise ConcurrencyConflictException(
                "Calculation",
                calculation.id,
                expected_version,
                message=f"Calculation {calculation.id} conflicts with a concurrent write",
            ) from exc
        return calculation

    async def supersede_calculation(
        self,
        prior: Calculation,
        expected_version: int,
        replacement: Calculation,
    ) -> Calculation:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    # Release the live slot before claiming it
                    await self._update_calculation(session, prior, expected_version)
                    session.add(CalculationModel(**calculation_values(replacement)))
                    await session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictException(
                "Calculation",
                replacement.id,
                message=(
                    f"Another live calculation exists for employee {replacement.employee_id}, "
                    f"plan {replacement.incentive_plan_id}, period {replacement.calculation_period}"
                ),
            ) from exc
        return replacement

    async def load_approvals(self, calculation_id: UUID) -> List[Approval]:
        query = (
            select(ApprovalModel)
            .where(ApprovalModel.calculation_id == calculation_id)
            .order_by(ApprovalModel.level, ApprovalModel.requested_at)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [approval_from_row(row) for row in result.scalars().all()]

    async def load_approval(self, approval_id: UUID) -> Optional[Approval]:
        async with self.session_factory() as session:
            row = await session.get(ApprovalModel, approval_id)
            return approval_from_row(row) if row else None

    async def list_pending_approvals(self) -> List[Approval]:
        query = (
            select(ApprovalModel)
            .where(ApprovalModel.status == ApprovalStatus.PENDING)
            .order_by(ApprovalModel.requested_at)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [approval_from_row(row) for row in result.scalars().all()]

    async def save_approvals(self, approvals: Sequence[Approval]) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._write_approvals(session, approvals)
        except IntegrityError as exc:
            raise ConcurrencyConflictException(
                "Approval",
                approvals[0].id if approvals else "",
                message="Approval conflicts with a concurrent write",
            ) from exc

    async def _update_calculation(
        self,
        session: AsyncSession,
        calculation: Calculation,
        expected_version: int,
    ) -> None:
        values = calculation_values(calculation)
        values.pop("id")
        stmt = (
            update(CalculationModel)
            .where(
                CalculationModel.id == calculation.id,
                CalculationModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrencyConflictException("Calculation", calculation.id, expected_version)

    async def _write_approvals(self, session: AsyncSession, approvals: Sequence[Approval]) -> None:
        for approval in approvals:
            if approval.version == 1:
                session.add(ApprovalModel(**approval_values(approval)))
                await session.flush()
                continue

            values = approval_values(approval)
            values.pop("id")
            stmt = (
                update(ApprovalModel)
                .where(
                    ApprovalModel.id == approval.id,
                    ApprovalModel.version == approval.version - 1,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise ConcurrencyConflictException("Approval", approval.id, approval.version - 1)


# ===========================================
# IN-MEMORY STORE
# ===========================================

class InMemoryIncentiveStore(IncentiveStore):
    """Dictionary store with the same conditional-write contract."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self.plans: Dict[UUID, IncentivePlan] = {}
        self.calculations: Dict[UUID, Calculation] = {}
        self.approvals: Dict[UUID, Approval] = {}

    async def load_plan(self, plan_id: UUID) -> Optional[IncentivePlan]:
        return self.plans.get(plan_id)

    async def save_plan(self, plan: IncentivePlan) -> IncentivePlan:
        async with self._lock:
            self.plans[plan.id] = plan
        return plan

    async def load_calculation(self, calculation_id: UUID) -> Optional[Calculation]:
        return self.calculations.get(calculation_id)

    async def find_live_calculation(
        self,
        employee_id: UUID,
        plan_id: UUID,
        period: DateRange,
    ) -> Optional[Calculation]:
        return self._live_for(self._triple(employee_id, plan_id, period))

    async def save_calculation(
        self,
        calculation: Calculation,
        expected_version: Optional[int],
        approvals: Sequence[Approval] = (),
    ) -> Calculation:
        async with self._lock:
            if expected_version is None:
                self._check_insertable(calculation)
            else:
                self._check_version(calculation.id, expected_version)
            self._check_approvals(approvals)

            self.calculations[calculation.id] = calculation
            for approval in approvals:
                self.approvals[approval.id] = approval
        return calculation

    async def supersede_calculation(
        self,
        prior: Calculation,
        expected_version: int,
        replacement: Calculation,
    ) -> Calculation:
        async with self._lock:
            self._check_version(prior.id, expected_version)
            triple = self._triple(replacement.employee_id, replacement.incentive_plan_id, replacement.calculation_period)
            live = self._live_for(triple)
            if replacement.id in self.calculations or (live is not None and live.id != prior.id):
                raise ConcurrencyConflictException(
                    "Calculation",
                    replacement.id,
                    message="Another live calculation exists for this employee, plan and period",
                )
            self.calculations[prior.id] = prior
            self.calculations[replacement.id] = replacement
        return replacement

    async def load_approvals(self, calculation_id: UUID) -> List[Approval]:
        rows = [a for a in self.approvals.values() if a.calculation_id == calculation_id]
        return sorted(rows, key=lambda a: (a.level, a.created_at))

    async def load_approval(self, approval_id: UUID) -> Optional[Approval]:
        return self.approvals.get(approval_id)

    async def list_pending_approvals(self) -> List[Approval]:
        rows = [a for a in self.approvals.values() if a.status == ApprovalStatus.PENDING]
        return sorted(rows, key=lambda a: a.created_at)

    async def save_approvals(self, approvals: Sequence[Approval]) -> None:
        async with self._lock:
            self._check_approvals(approvals)
            for approval in approvals:
                self.approvals[approval.id] = approval

    # ---- guards (caller holds the lock) ----

    @staticmethod
    def _triple(employee_id: UUID, plan_id: UUID, period: DateRange) -> Tuple[UUID, UUID, DateRange]:
        return (employee_id, plan_id, period)

    def _live_for(self, triple: Tuple[UUID, UUID, DateRange]) -> Optional[Calculation]:
        for calc in self.calculations.values():
            if calc.is_live and (calc.employee_id, calc.incentive_plan_id, calc.calculation_period) == triple:
                return calc
        return None

    def _check_insertable(self, calculation: Calculation) -> None:
        if calculation.id in self.calculations:
            raise ConcurrencyConflictException("Calculation", calculation.id)
        triple = self._triple(calculation.employee_id, calculation.incentive_plan_id, calculation.calculation_period)
        existing = self._live_for(triple)
        if existing is not None and existing.id != calculation.id:
            raise ConcurrencyConflictException(
                "Calculation",
                calculation.id,
                message=f"Calculation {existing.id} is already live for this employee, plan and period",
            )

    def _check_version(self, calculation_id: UUID, expected_version: int) -> None:
        stored = self.calculations.get(calculation_id)
        if stored is None or stored.version != expected_version:
            raise ConcurrencyConflictException("Calculation", calculation_id, expected_version)

    def _check_approvals(self, approvals: Sequence[Approval]) -> None:
        for approval in approvals:
            stored = self.approvals.get(approval.id)
            if approval.version == 1:
                if stored is not None:
                    raise ConcurrencyConflictException("Approval", approval.id)
            elif stored is None or stored.version != approval.version - 1:
                raise ConcurrencyConflictException("Approval", approval.id, approval.version - 1)
