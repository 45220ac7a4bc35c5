"""
Incentive Engine - Approval Chain Tests

Unit tests for level ordering, decisions, delegation and escalation.
"""

import pytest
from datetime import timedelta
from uuid import uuid4

from app.models.incentive_enums import ApprovalStatus
from app.services.approval_chain import ApprovalChain, StaticApproverResolver
from app.utils.error_handling import (
    InvalidStateException,
    UnauthorizedException,
    ValidationException,
)
from tests.fixtures.incentive_factories import (
    APPROVER_L1,
    APPROVER_L2,
    ESCALATION_APPROVER,
    START_TIME,
    make_plan,
)


SLA_BY_LEVEL = {1: 72.0, 2: 48.0}


@pytest.fixture
def chain():
    return ApprovalChain(lambda level: SLA_BY_LEVEL.get(level, 24.0))


@pytest.fixture
def first(chain):
    return chain.open_level(uuid4(), 1, APPROVER_L1, START_TIME)


class TestOpeningLevels:
    """Test creation of pending approvals."""

    def test_first_level(self, first):
        assert first.level == 1
        assert first.status == ApprovalStatus.PENDING
        assert first.version == 1
        assert first.expires_at == START_TIME + timedelta(hours=72)

    def test_levels_must_be_contiguous(self, chain, first):
        approved = chain.approve(first, APPROVER_L1, START_TIME)

        with pytest.raises(ValidationException):
            chain.open_level(first.calculation_id, 3, APPROVER_L2, START_TIME, [approved])

        second = chain.open_level(first.calculation_id, 2, APPROVER_L2, START_TIME, [approved])
        assert second.expires_at == START_TIME + timedelta(hours=48)

    def test_cannot_open_while_pending(self, chain, first):
        with pytest.raises(InvalidStateException):
            chain.open_level(first.calculation_id, 2, APPROVER_L2, START_TIME, [first])

    def test_current_pending(self, chain, first):
        approved = chain.approve(first, APPROVER_L1, START_TIME)

        assert chain.current_pending([first]) == first
        assert chain.current_pending([approved]) is None

    def test_two_pending_is_corrupt(self, chain, first):
        other = chain.open_level(first.calculation_id, 1, APPROVER_L2, START_TIME)

        with pytest.raises(InvalidStateException):
            chain.current_pending([first, other])


class TestDecisions:
    """Test approve and reject."""

    def test_approve_bumps_version(self, chain, first):
        decided_at = START_TIME + timedelta(hours=2)
        approved = chain.approve(first, APPROVER_L1, decided_at, comments="ok")

        assert approved.status == ApprovalStatus.APPROVED
        assert approved.decided_at == decided_at
        assert approved.comments == "ok"
        assert approved.version == 2
        # Original is untouched
        assert first.status == ApprovalStatus.PENDING

    def test_only_current_approver_may_decide(self, chain, first):
        with pytest.raises(UnauthorizedException):
            chain.approve(first, APPROVER_L2, START_TIME)

    def test_cannot_decide_twice(self, chain, first):
        rejected = chain.reject(first, APPROVER_L1, START_TIME, reason="numbers disputed")

        with pytest.raises(InvalidStateException):
            chain.approve(rejected, APPROVER_L1, START_TIME)

    def test_expire_remaining_only_touches_pending(self, chain, first):
        approved = chain.approve(first, APPROVER_L1, START_TIME)
        second = chain.open_level(first.calculation_id, 2, APPROVER_L2, START_TIME, [approved])

        expired = chain.expire_remaining([approved, second], START_TIME)

        assert [a.id for a in expired] == [second.id]
        assert expired[0].status == ApprovalStatus.EXPIRED


class TestDelegationAndEscalation:
    """Test reassignment of pending approvals."""

    def test_delegate_keeps_level_and_status(self, chain, first):
        deputy = uuid4()
        delegated = chain.delegate(first, APPROVER_L1, deputy)

        assert delegated.status == ApprovalStatus.PENDING
        assert delegated.level == 1
        assert delegated.approver_id == deputy
        assert delegated.delegated_to_id == deputy
        assert delegated.delegated_from_id == APPROVER_L1
        assert delegated.version == 2

    def test_delegate_then_only_deputy_decides(self, chain, first):
        deputy = uuid4()
        delegated = chain.delegate(first, APPROVER_L1, deputy)

        with pytest.raises(UnauthorizedException):
            chain.approve(delegated, APPROVER_L1, START_TIME)
        assert chain.approve(delegated, deputy, START_TIME).status == ApprovalStatus.APPROVED

    def test_delegate_requires_holder_and_other_user(self, chain, first):
        with pytest.raises(UnauthorizedException):
            chain.delegate(first, APPROVER_L2, uuid4())
        with pytest.raises(ValidationException):
            chain.delegate(first, APPROVER_L1, APPROVER_L1)

    def test_escalate_opens_replacement_at_same_level(self, chain, first):
        now = START_TIME + timedelta(hours=80)
        escalated, replacement = chain.escalate(first, ESCALATION_APPROVER, now, "SLA breached")

        assert escalated.status == ApprovalStatus.ESCALATED
        assert escalated.decided_at == now
        assert escalated.version == 2
        assert replacement.status == ApprovalStatus.PENDING
        assert replacement.level == first.level
        assert replacement.approver_id == ESCALATION_APPROVER
        assert replacement.escalated_from_id == first.id
        assert replacement.version == 1
        assert chain.current_pending([escalated, replacement]) == replacement

    def test_escalate_to_current_approver_rejected(self, chain, first):
        with pytest.raises(ValidationException):
            chain.escalate(first, APPROVER_L1, START_TIME)

    def test_escalate_non_pending_rejected(self, chain, first):
        approved = chain.approve(first, APPROVER_L1, START_TIME)

        with pytest.raises(InvalidStateException):
            chain.escalate(approved, ESCALATION_APPROVER, START_TIME)

    def test_history_orders_by_level_then_time(self, chain, first):
        later = START_TIME + timedelta(hours=80)
        escalated, replacement = chain.escalate(first, ESCALATION_APPROVER, later)
        approved = chain.approve(replacement, ESCALATION_APPROVER, later)
        second = chain.open_level(first.calculation_id, 2, APPROVER_L2, later, [escalated, approved])

        history = chain.history([second, approved, escalated])

        assert [a.id for a in history] == [escalated.id, approved.id, second.id]


class TestStaticApproverResolver:
    """Test level to approver mapping."""

    def test_mapped_level(self):
        resolver = StaticApproverResolver({1: APPROVER_L1})
        assert resolver(make_plan(), None, 1) == APPROVER_L1

    def test_default_approver(self):
        resolver = StaticApproverResolver({1: APPROVER_L1}, default_approver=ESCALATION_APPROVER)
        assert resolver(make_plan(), None, 3) == ESCALATION_APPROVER

    def test_missing_level(self):
        with pytest.raises(ValidationException):
            StaticApproverResolver({})(make_plan(), None, 1)


def test_pending_hours():
    approval = ApprovalChain(lambda level: 72.0).open_level(uuid4(), 1, APPROVER_L1, START_TIME)
    assert approval.pending_hours(START_TIME + timedelta(hours=50)) == 50.0
