"""
Incentive Engine - Incentive Models

Persistence for incentive plans, their slab tables, calculations and
approval records.

A calculation is "live" until it is superseded by a recalculation. At most
one live calculation exists per (employee, plan, period); the partial
unique index enforces this even under concurrent writers.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, Enum as SQLEnum, ForeignKey, Index,
    Integer, Numeric, String, Text, Uuid, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel
from app.models.incentive_enums import (
    AchievementType,
    ApprovalStatus,
    CalculationStatus,
    PlanStatus,
)


class IncentivePlanModel(BaseModel):
    """Incentive plan configuration."""

    __tablename__ = "incentive_plans"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[PlanStatus] = mapped_column(
        SQLEnum(PlanStatus),
        default=PlanStatus.DRAFT,
        nullable=False,
    )

    # Effective period (inclusive)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date] = mapped_column(Date, nullable=False)

    # Target
    target_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    minimum_threshold: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    achievement_type: Mapped[AchievementType] = mapped_column(
        SQLEnum(AchievementType),
        default=AchievementType.ABSOLUTE,
        nullable=False,
    )
    metric_unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Payout limits, in plan currency
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    maximum_payout: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    minimum_payout: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    # Approval
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    approval_levels: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    proratable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    slabs: Mapped[List["SlabModel"]] = relationship(
        "SlabModel",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="SlabModel.lower_bound_pct",
        lazy="selectin",
    )


class SlabModel(BaseModel):
    """Payout bracket of a plan, half-open [lower, upper)."""

    __tablename__ = "incentive_slabs"

    incentive_plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("incentive_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lower_bound_pct: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    upper_bound_pct: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(9, 4),
        nullable=True,
        comment="NULL means open-ended",
    )
    payout_rate: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    is_flat: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    plan: Mapped["IncentivePlanModel"] = relationship("IncentivePlanModel", back_populates="slabs")


class CalculationModel(BaseModel):
    """Incentive calculation for one employee, plan and period."""

    __tablename__ = "incentive_calculations"
    __table_args__ = (
        Index(
            "uq_incentive_calculations_live",
            "employee_id",
            "incentive_plan_id",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text("superseded_by_id IS NULL"),
            sqlite_where=text("superseded_by_id IS NULL"),
        ),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    incentive_plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("incentive_plans.id"),
        nullable=False,
        index=True,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Figures
    target_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    actual_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    achievement_percentage: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    applied_slab_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    gross_incentive: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    net_incentive: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    prorata_factor: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 4), nullable=True)

    # Lifecycle
    status: Mapped[CalculationStatus] = mapped_column(
        SQLEnum(CalculationStatus),
        default=CalculationStatus.CALCULATED,
        nullable=False,
        index=True,
    )
    is_eligible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    calculated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    adjustment_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_batch_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Recalculation chain
    previous_version_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("incentive_calculations.id"),
        nullable=True,
    )
    superseded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Set when a recalculation replaces this row",
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    approvals: Mapped[List["ApprovalModel"]] = relationship(
        "ApprovalModel",
        back_populates="calculation",
        order_by="ApprovalModel.created_at",
        lazy="raise",
    )


class ApprovalModel(BaseModel):
    """Single approval record in a calculation's chain."""

    __tablename__ = "incentive_approvals"

    calculation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("incentive_calculations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    status: Mapped[ApprovalStatus] = mapped_column(
        SQLEnum(ApprovalStatus),
        default=ApprovalStatus.PENDING,
        nullable=False,
        index=True,
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Hand-off trail
    delegated_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    delegated_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    escalated_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    calculation: Mapped["CalculationModel"] = relationship("CalculationModel", back_populates="approvals")
