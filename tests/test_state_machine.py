"""Tests for lifecycle state machines."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from caregiver_payroll.models import (
    DiscrepancyFlag,
    DiscrepancySeverity,
    DiscrepancyType,
    PayPeriodStatus,
    PayRun,
    PayRunStatus,
    PayStubStatus,
    TimeSheet,
    TimeSheetStatus,
)
from caregiver_payroll.services.state_machine import (
    InvalidTransitionError,
    PayPeriodNotReadyError,
    PayPeriodStateMachine,
    PayRunStateMachine,
    PayStubStateMachine,
    TimeSheetStateMachine,
    UnresolvedDiscrepanciesError,
)


@pytest.fixture
def make_sheet(org_id, caregiver_id, make_pay_period):
    period = make_pay_period()

    def _make(status=TimeSheetStatus.DRAFT, **overrides) -> TimeSheet:
        values = {
            "organization_id": org_id,
            "caregiver_id": caregiver_id,
            "pay_period_id": period.id,
            "period_start": period.start_date,
            "period_end": period.end_date,
            "status": status,
        }
        values.update(overrides)
        return TimeSheet(**values)

    return _make


@pytest.fixture
def make_run(org_id, make_pay_period):
    period = make_pay_period()

    def _make(status=PayRunStatus.CALCULATED, **overrides) -> PayRun:
        values = {
            "organization_id": org_id,
            "pay_period_id": period.id,
            "run_number": "2024-01",
            "period_start": period.start_date,
            "period_end": period.end_date,
            "pay_date": period.pay_date,
            "status": status,
        }
        values.update(overrides)
        return PayRun(**values)

    return _make


def blocking_flag() -> DiscrepancyFlag:
    return DiscrepancyFlag(
        discrepancy_type=DiscrepancyType.OVERLAPPING_SHIFTS,
        severity=DiscrepancySeverity.CRITICAL,
        description="Shifts overlap",
    )


class TestPayPeriodStateMachine:
    """Test pay period transitions."""

    def test_valid_transitions(self):
        """Test the forward path through the lifecycle."""
        path = [
            PayPeriodStatus.DRAFT,
            PayPeriodStatus.OPEN,
            PayPeriodStatus.LOCKED,
            PayPeriodStatus.PROCESSING,
            PayPeriodStatus.PENDING_APPROVAL,
            PayPeriodStatus.APPROVED,
            PayPeriodStatus.PAID,
            PayPeriodStatus.CLOSED,
        ]
        for from_status, to_status in zip(path, path[1:]):
            assert PayPeriodStateMachine.can_transition(from_status, to_status) is True

    def test_invalid_transitions(self):
        """Test that skipping steps is blocked."""
        # Can't process an open period
        assert (
            PayPeriodStateMachine.can_transition(PayPeriodStatus.OPEN, PayPeriodStatus.PROCESSING)
            is False
        )
        # Can't reopen a locked period
        assert (
            PayPeriodStateMachine.can_transition(PayPeriodStatus.LOCKED, PayPeriodStatus.OPEN)
            is False
        )
        # Closed is terminal
        assert (
            PayPeriodStateMachine.can_transition(PayPeriodStatus.CLOSED, PayPeriodStatus.CANCELLED)
            is False
        )

    def test_cancel_from_any_non_terminal_status(self):
        for status in PayPeriodStatus:
            expected = status not in (PayPeriodStatus.CLOSED, PayPeriodStatus.CANCELLED)
            assert (
                PayPeriodStateMachine.can_transition(status, PayPeriodStatus.CANCELLED) is expected
            )

    def test_processing_back_to_locked(self):
        """A cancelled pay run returns the period to LOCKED."""
        assert (
            PayPeriodStateMachine.can_transition(
                PayPeriodStatus.PROCESSING, PayPeriodStatus.LOCKED
            )
            is True
        )

    def test_approved_back_to_locked(self):
        """A pay run that fails before payment returns the period to LOCKED."""
        assert (
            PayPeriodStateMachine.can_transition(PayPeriodStatus.APPROVED, PayPeriodStatus.LOCKED)
            is True
        )

    def test_pay_run_allowed(self, make_pay_period):
        assert PayPeriodStateMachine.can_start_pay_run(PayPeriodStatus.LOCKED) is True
        assert PayPeriodStateMachine.can_start_pay_run(PayPeriodStatus.PROCESSING) is True
        assert PayPeriodStateMachine.can_start_pay_run(PayPeriodStatus.OPEN) is False

        with pytest.raises(PayPeriodNotReadyError) as exc_info:
            PayPeriodStateMachine.validate_for_pay_run(make_pay_period(status=PayPeriodStatus.OPEN))

        assert exc_info.value.from_status == "OPEN"
        assert isinstance(exc_info.value, InvalidTransitionError)

    def test_terminal_statuses(self):
        assert PayPeriodStateMachine.is_terminal(PayPeriodStatus.CLOSED) is True
        assert PayPeriodStateMachine.is_terminal(PayPeriodStatus.CANCELLED) is True
        assert PayPeriodStateMachine.is_terminal(PayPeriodStatus.OPEN) is False

    def test_transition_records_history(self, make_pay_period):
        period = make_pay_period(status=PayPeriodStatus.OPEN)

        change = PayPeriodStateMachine.transition(
            period, PayPeriodStatus.LOCKED, changed_by="manager", reason="Cutoff reached"
        )

        assert period.status is PayPeriodStatus.LOCKED
        assert period.status_history == [change]
        assert change.from_status == "OPEN"
        assert change.to_status == "LOCKED"
        assert change.reason == "Cutoff reached"
        assert period.updated_by == "manager"

    def test_rejected_transition_changes_nothing(self, make_pay_period):
        period = make_pay_period(status=PayPeriodStatus.OPEN)

        with pytest.raises(InvalidTransitionError) as exc_info:
            PayPeriodStateMachine.transition(period, PayPeriodStatus.PAID, changed_by="manager")

        assert str(exc_info.value) == "Invalid transition from 'OPEN' to 'PAID'"
        assert period.status is PayPeriodStatus.OPEN
        assert period.status_history == []


class TestTimeSheetStateMachine:
    """Test time sheet transitions and approval guards."""

    def test_valid_transitions(self):
        assert TimeSheetStateMachine.can_transition(
            TimeSheetStatus.DRAFT, TimeSheetStatus.SUBMITTED
        )
        assert TimeSheetStateMachine.can_transition(
            TimeSheetStatus.SUBMITTED, TimeSheetStatus.APPROVED
        )
        assert TimeSheetStateMachine.can_transition(
            TimeSheetStatus.PENDING_REVIEW, TimeSheetStatus.REJECTED
        )
        assert TimeSheetStateMachine.can_transition(TimeSheetStatus.REJECTED, TimeSheetStatus.DRAFT)
        assert TimeSheetStateMachine.can_transition(
            TimeSheetStatus.PROCESSING, TimeSheetStatus.APPROVED
        )

    def test_invalid_transitions(self):
        # Can't approve a draft
        assert not TimeSheetStateMachine.can_transition(
            TimeSheetStatus.DRAFT, TimeSheetStatus.APPROVED
        )
        # Can't void once in a pay run
        assert not TimeSheetStateMachine.can_transition(
            TimeSheetStatus.PROCESSING, TimeSheetStatus.VOIDED
        )
        assert TimeSheetStateMachine.get_next_statuses(TimeSheetStatus.PAID) == []

    def test_adjustment_and_resolution_windows(self):
        assert TimeSheetStateMachine.can_modify_adjustments(TimeSheetStatus.SUBMITTED) is True
        assert TimeSheetStateMachine.can_modify_adjustments(TimeSheetStatus.APPROVED) is False
        assert TimeSheetStateMachine.can_resolve_discrepancies(TimeSheetStatus.PENDING_REVIEW)
        assert not TimeSheetStateMachine.can_resolve_discrepancies(TimeSheetStatus.APPROVED)

    def test_approval_blocked_by_discrepancies(self, make_sheet):
        sheet = make_sheet(TimeSheetStatus.SUBMITTED, discrepancies=[blocking_flag()])

        with pytest.raises(UnresolvedDiscrepanciesError) as exc_info:
            TimeSheetStateMachine.validate_for_approval(sheet)

        assert exc_info.value.blocking_count == 1
        assert "Cannot approve timesheet with 1 unresolved discrepancies" in str(exc_info.value)
        assert TimeSheetStateMachine.validate_time_sheet_for_transition(
            sheet, TimeSheetStatus.APPROVED
        ) == ["1 unresolved discrepancies require resolution"]

    def test_approval_allowed_after_resolution(self, make_sheet):
        flag = blocking_flag()
        flag.resolved = True
        sheet = make_sheet(TimeSheetStatus.SUBMITTED, discrepancies=[flag])

        TimeSheetStateMachine.validate_for_approval(sheet)

        assert (
            TimeSheetStateMachine.validate_time_sheet_for_transition(
                sheet, TimeSheetStatus.APPROVED
            )
            == []
        )

    def test_return_from_processing_ignores_discrepancies(self, make_sheet):
        sheet = make_sheet(TimeSheetStatus.PROCESSING, discrepancies=[blocking_flag()])

        errors = TimeSheetStateMachine.validate_time_sheet_for_transition(
            sheet, TimeSheetStatus.APPROVED
        )

        assert errors == []

    def test_empty_sheet_cannot_be_submitted(self, make_sheet):
        sheet = make_sheet()

        errors = TimeSheetStateMachine.validate_time_sheet_for_transition(
            sheet, TimeSheetStatus.SUBMITTED
        )

        assert errors == ["Time sheet has no entries, hours or adjustments"]

    def test_sheet_with_hours_can_be_submitted(self, make_sheet):
        sheet = make_sheet(total_hours=Decimal("8"))

        assert (
            TimeSheetStateMachine.validate_time_sheet_for_transition(
                sheet, TimeSheetStatus.SUBMITTED
            )
            == []
        )

    def test_invalid_transition_reported_as_error(self, make_sheet):
        sheet = make_sheet(TimeSheetStatus.PAID)

        errors = TimeSheetStateMachine.validate_time_sheet_for_transition(
            sheet, TimeSheetStatus.DRAFT
        )

        assert errors == ["Cannot transition from 'PAID' to 'DRAFT'"]


class TestPayRunStateMachine:
    """Test pay run transitions."""

    def test_valid_transitions(self):
        """Test the happy path from draft to completed."""
        path = [
            PayRunStatus.DRAFT,
            PayRunStatus.CALCULATING,
            PayRunStatus.CALCULATED,
            PayRunStatus.APPROVED,
            PayRunStatus.PROCESSING,
            PayRunStatus.PROCESSED,
            PayRunStatus.FUNDED,
            PayRunStatus.COMPLETED,
        ]
        for from_status, to_status in zip(path, path[1:]):
            assert PayRunStateMachine.can_transition(from_status, to_status) is True

    def test_invalid_transitions(self):
        # Can't skip calculation
        assert not PayRunStateMachine.can_transition(PayRunStatus.DRAFT, PayRunStatus.APPROVED)
        # Can't cancel once disbursement has started
        assert not PayRunStateMachine.can_transition(
            PayRunStatus.PROCESSING, PayRunStatus.CANCELLED
        )
        # Completed is terminal
        assert PayRunStateMachine.get_next_statuses(PayRunStatus.COMPLETED) == []

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayRunStateMachine.validate_transition(PayRunStatus.DRAFT, PayRunStatus.COMPLETED)

        assert exc_info.value.from_status == "DRAFT"
        assert exc_info.value.to_status == "COMPLETED"

    def test_live_runs(self):
        assert PayRunStateMachine.is_live(PayRunStatus.CALCULATED) is True
        assert PayRunStateMachine.is_live(PayRunStatus.COMPLETED) is True
        assert PayRunStateMachine.is_live(PayRunStatus.CANCELLED) is False
        assert PayRunStateMachine.is_live(PayRunStatus.FAILED) is False

    def test_are_results_immutable(self):
        assert PayRunStateMachine.are_results_immutable(PayRunStatus.CALCULATED) is False
        assert PayRunStateMachine.are_results_immutable(PayRunStatus.APPROVED) is True
        assert PayRunStateMachine.are_results_immutable(PayRunStatus.COMPLETED) is True

    def test_approval_requires_pay_stubs(self, make_run):
        errors = PayRunStateMachine.validate_pay_run_for_transition(
            make_run(), PayRunStatus.APPROVED
        )

        assert errors == ["Pay run has no pay stubs"]

    def test_approval_blocked_by_errors(self, make_run):
        run = make_run(errors=["Tax tables missing"])

        errors = PayRunStateMachine.validate_pay_run_for_transition(run, PayRunStatus.APPROVED)

        assert "Pay run has 1 calculation error(s)" in errors

    def test_automatic_transition(self, make_run):
        run = make_run(status=PayRunStatus.DRAFT)

        change = PayRunStateMachine.transition(
            run, PayRunStatus.CALCULATING, changed_by="system", automatic=True
        )

        assert change.automatic is True
        assert change.timestamp <= datetime.now(timezone.utc)
        assert run.status_history[-1] is change


class TestPayStubStateMachine:
    """Test pay stub transitions."""

    def test_paid_stub_can_only_be_voided(self):
        assert PayStubStateMachine.get_next_statuses(PayStubStatus.PAID) == [PayStubStatus.VOID]

    def test_payment_pending_cannot_be_cancelled(self):
        assert not PayStubStateMachine.can_transition(
            PayStubStatus.PAYMENT_PENDING, PayStubStatus.CANCELLED
        )

    def test_disbursement_eligibility(self):
        assert PayStubStateMachine.is_eligible_for_disbursement(PayStubStatus.PAYMENT_PENDING)
        assert not PayStubStateMachine.is_eligible_for_disbursement(PayStubStatus.APPROVED)
