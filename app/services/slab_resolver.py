"""
Incentive Engine - Slab Resolver

Selects the payout slab for an achievement percentage and checks slab
tables for configuration defects.

Slab bounds are half-open [lower, upper): a value sitting exactly on a
boundary belongs to the slab that starts there. The last slab has no upper
bound, so a valid table covers [0, +inf).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Union
from uuid import UUID

from app.schemas.incentive import Percentage, Slab
from app.utils.error_handling import NoApplicableSlabException


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found in a plan or slab table."""
    code: str
    message: str
    field: Optional[str] = None
    is_warning: bool = False


class SlabResolver:
    """Stateless slab lookup."""

    @staticmethod
    def sort(slabs: Iterable[Slab]) -> List[Slab]:
        return sorted(slabs, key=lambda s: s.lower_bound_pct)

    @classmethod
    def resolve(
        cls,
        slabs: Sequence[Slab],
        achievement_pct: Union[Percentage, Decimal],
        plan_id: Optional[UUID] = None,
    ) -> Slab:
        """
        Return the slab whose [lower, upper) interval contains the value.

        Raises:
            NoApplicableSlabException: the table does not cover the value
        """
        value = achievement_pct.value if isinstance(achievement_pct, Percentage) else Decimal(achievement_pct)

        for slab in cls.sort(slabs):
            if slab.contains(value):
                return slab

        raise NoApplicableSlabException(value, plan_id)

    @classmethod
    def validate_table(cls, slabs: Sequence[Slab]) -> List[ValidationIssue]:
        """
        Check that the table is ordered, non-overlapping and covers [0, +inf).

        Returns an empty list for a valid table.
        """
        if not slabs:
            return [ValidationIssue("NO_SLABS", "At least one slab must be defined", field="slabs")]

        issues: List[ValidationIssue] = []
        ordered = cls.sort(slabs)

        if ordered[0].lower_bound_pct != 0:
            issues.append(ValidationIssue(
                "SLAB_GAP_AT_START",
                f"First slab starts at {ordered[0].lower_bound_pct}%; achievements below it have no slab",
                field="slabs",
            ))

        for index, slab in enumerate(ordered):
            if slab.payout_rate < 0:
                issues.append(ValidationIssue(
                    "INVALID_PAYOUT_RATE",
                    f"Slab {slab} has a negative payout rate",
                    field="payout_rate",
                ))

            if index == len(ordered) - 1:
                break
            following = ordered[index + 1]

            if slab.upper_bound_pct is None:
                issues.append(ValidationIssue(
                    "OPEN_SLAB_NOT_LAST",
                    f"Open-ended slab starting at {slab.lower_bound_pct}% must be the last slab",
                    field="upper_bound_pct",
                ))
            elif following.lower_bound_pct < slab.upper_bound_pct:
                issues.append(ValidationIssue(
                    "SLAB_OVERLAP",
                    f"Slabs {slab} and {following} overlap",
                    field="slabs",
                ))
            elif following.lower_bound_pct > slab.upper_bound_pct:
                issues.append(ValidationIssue(
                    "SLAB_GAP",
                    f"No slab covers [{slab.upper_bound_pct}, {following.lower_bound_pct})",
                    field="slabs",
                ))

        if ordered[-1].upper_bound_pct is not None:
            issues.append(ValidationIssue(
                "SLAB_NOT_OPEN_ENDED",
                f"Last slab ends at {ordered[-1].upper_bound_pct}%; achievements above it have no slab",
                field="upper_bound_pct",
            ))

        return issues
