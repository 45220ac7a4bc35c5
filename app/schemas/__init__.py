"""
Incentive Engine - Schemas Package

Immutable pydantic models for the incentive domain.
"""

from app.schemas.incentive import (
    # Value types
    Money,
    Percentage,
    DateRange,
    Target,
    # Plan configuration
    Slab,
    IncentivePlan,
    # Performance facts
    DeductionPolicy,
    EmployeeFacts,
    # Calculation aggregate
    Calculation,
    Approval,
    ChangeRecord,
    EscalationReport,
)
