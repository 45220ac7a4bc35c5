"""
Incentive Engine - Escalation Scanner

Finds pending approvals that have breached, or are approaching, their SLA.

The scan only reads; acting on the result (escalating or alerting) goes
through the engine's versioned approval operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List

from app.schemas.incentive import Approval


DEFAULT_WARNING_RATIO = 0.75


@dataclass
class EscalationScan:
    """Pending approvals past the SLA and past the early-warning threshold."""
    sla_hours: float
    warning_hours: float
    breached: List[Approval] = field(default_factory=list)
    warnings: List[Approval] = field(default_factory=list)


class EscalationScanner:
    """Pure SLA scan over pending approvals."""

    @staticmethod
    def scan(
        pending: Iterable[Approval],
        now: datetime,
        sla_hours: float,
        warning_ratio: float = DEFAULT_WARNING_RATIO,
    ) -> EscalationScan:
        """
        Partition pending approvals by how long they have waited.

        An approval is breached when it has waited longer than sla_hours and
        is a warning when it has waited longer than warning_ratio * sla_hours
        without breaching. Non-pending approvals are ignored.
        """
        warning_hours = sla_hours * warning_ratio
        result = EscalationScan(sla_hours=sla_hours, warning_hours=warning_hours)

        for approval in sorted(pending, key=lambda a: a.created_at):
            if not approval.is_pending:
                continue
            waited = approval.pending_hours(now)
            if waited > sla_hours:
                result.breached.append(approval)
            elif waited > warning_hours:
                result.warnings.append(approval)

        return result
