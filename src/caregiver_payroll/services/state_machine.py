"""Lifecycle state machines with transition validation.

Each machine lists its allowed transitions; ``transition`` validates a move,
sets the new status and appends an entry to the entity's status history.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Protocol

from caregiver_payroll.models.entities import (
    PayPeriod,
    PayRun,
    StatusChange,
    TimeSheet,
    utcnow,
)
from caregiver_payroll.models.enums import (
    PayPeriodStatus,
    PayRunStatus,
    PayStubStatus,
    TimeSheetStatus,
)


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnresolvedDiscrepanciesError(InvalidTransitionError):
    """Raised when approving a time sheet that still has blocking discrepancies."""

    def __init__(self, from_status: str, blocking_count: int):
        self.blocking_count = blocking_count
        super().__init__(
            from_status,
            TimeSheetStatus.APPROVED.value,
            f"Cannot approve timesheet with {blocking_count} unresolved discrepancies",
        )


class PayPeriodNotReadyError(InvalidTransitionError):
    """Raised when a pay run is started against a period that is not locked."""

    def __init__(self, from_status: str):
        super().__init__(
            from_status,
            PayPeriodStatus.PROCESSING.value,
            "Pay period must be LOCKED or PROCESSING to start a pay run",
        )


class HasStatus(Protocol):
    status: Enum
    status_history: list[StatusChange]

    def touch(self, actor: str) -> None: ...


def _value(status: Enum | str) -> str:
    return status.value if isinstance(status, Enum) else status


class StateMachine:
    """Base class for status transition rules."""

    VALID_TRANSITIONS: ClassVar[dict[Enum, list[Enum]]] = {}

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(_value(from_status), _value(to_status))

    @classmethod
    def get_next_statuses(cls, current_status: Enum) -> list[Enum]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(current_status, []))

    @classmethod
    def is_terminal(cls, status: Enum) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)

    @classmethod
    def transition(
        cls,
        entity: HasStatus,
        to_status: Enum,
        *,
        changed_by: str,
        reason: str | None = None,
        notes: str | None = None,
        automatic: bool = False,
    ) -> StatusChange:
        """Move an entity to a new status and record the change."""
        from_status = entity.status
        cls.validate_transition(from_status, to_status)

        change = StatusChange(
            from_status=_value(from_status),
            to_status=_value(to_status),
            timestamp=utcnow(),
            changed_by=changed_by,
            reason=reason,
            notes=notes,
            automatic=automatic,
        )
        entity.status = to_status
        entity.status_history.append(change)
        entity.touch(changed_by)
        return change


class PayPeriodStateMachine(StateMachine):
    """State machine for pay period status transitions.

    Allowed transitions:
    - draft → open → locked → processing → (pending_approval) → approved → paid → closed
    - processing → locked (pay run cancelled)
    - approved → locked (pay run failed before payment)
    - any non-terminal status → cancelled
    """

    VALID_TRANSITIONS = {
        PayPeriodStatus.DRAFT: [PayPeriodStatus.OPEN, PayPeriodStatus.CANCELLED],
        PayPeriodStatus.OPEN: [PayPeriodStatus.LOCKED, PayPeriodStatus.CANCELLED],
        PayPeriodStatus.LOCKED: [PayPeriodStatus.PROCESSING, PayPeriodStatus.CANCELLED],
        PayPeriodStatus.PROCESSING: [
            PayPeriodStatus.PENDING_APPROVAL,
            PayPeriodStatus.APPROVED,
            PayPeriodStatus.LOCKED,
            PayPeriodStatus.CANCELLED,
        ],
        PayPeriodStatus.PENDING_APPROVAL: [PayPeriodStatus.APPROVED, PayPeriodStatus.CANCELLED],
        PayPeriodStatus.APPROVED: [
            PayPeriodStatus.PAID,
            PayPeriodStatus.LOCKED,
            PayPeriodStatus.CANCELLED,
        ],
        PayPeriodStatus.PAID: [PayPeriodStatus.CLOSED, PayPeriodStatus.CANCELLED],
        PayPeriodStatus.CLOSED: [],  # Terminal state
        PayPeriodStatus.CANCELLED: [],  # Terminal state
    }

    # Statuses from which a pay run may be started
    PAY_RUN_ALLOWED = {PayPeriodStatus.LOCKED, PayPeriodStatus.PROCESSING}

    # Statuses in which time sheets may be compiled for the period
    TIME_ENTRY_ALLOWED = {PayPeriodStatus.OPEN, PayPeriodStatus.LOCKED}

    @classmethod
    def can_start_pay_run(cls, status: PayPeriodStatus) -> bool:
        return status in cls.PAY_RUN_ALLOWED

    @classmethod
    def validate_for_pay_run(cls, period: PayPeriod) -> None:
        """Raise PayPeriodNotReadyError unless the period can start a pay run."""
        if not cls.can_start_pay_run(period.status):
            raise PayPeriodNotReadyError(period.status.value)


class TimeSheetStateMachine(StateMachine):
    """State machine for time sheet status transitions.

    Allowed transitions:
    - draft → submitted → pending_review → approved → processing → paid
    - submitted → approved
    - submitted/pending_review → rejected → draft
    - processing → approved (pay run cancelled)
    - any status before processing → voided
    """

    VALID_TRANSITIONS = {
        TimeSheetStatus.DRAFT: [TimeSheetStatus.SUBMITTED, TimeSheetStatus.VOIDED],
        TimeSheetStatus.SUBMITTED: [
            TimeSheetStatus.PENDING_REVIEW,
            TimeSheetStatus.APPROVED,
            TimeSheetStatus.REJECTED,
            TimeSheetStatus.VOIDED,
        ],
        TimeSheetStatus.PENDING_REVIEW: [
            TimeSheetStatus.APPROVED,
            TimeSheetStatus.REJECTED,
            TimeSheetStatus.VOIDED,
        ],
        TimeSheetStatus.APPROVED: [TimeSheetStatus.PROCESSING, TimeSheetStatus.VOIDED],
        TimeSheetStatus.REJECTED: [TimeSheetStatus.DRAFT, TimeSheetStatus.VOIDED],
        TimeSheetStatus.PROCESSING: [TimeSheetStatus.PAID, TimeSheetStatus.APPROVED],
        TimeSheetStatus.PAID: [],  # Terminal state
        TimeSheetStatus.VOIDED: [],  # Terminal state
    }

    # Statuses where adjustments can be added
    ADJUSTMENTS_ALLOWED = {TimeSheetStatus.DRAFT, TimeSheetStatus.SUBMITTED}

    # Statuses where discrepancies can be resolved
    RESOLUTION_ALLOWED = {
        TimeSheetStatus.DRAFT,
        TimeSheetStatus.SUBMITTED,
        TimeSheetStatus.PENDING_REVIEW,
    }

    @classmethod
    def can_modify_adjustments(cls, status: TimeSheetStatus) -> bool:
        return status in cls.ADJUSTMENTS_ALLOWED

    @classmethod
    def can_resolve_discrepancies(cls, status: TimeSheetStatus) -> bool:
        return status in cls.RESOLUTION_ALLOWED

    @classmethod
    def validate_time_sheet_for_transition(
        cls, sheet: TimeSheet, to_status: TimeSheetStatus
    ) -> list[str]:
        """Validate a time sheet for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        if not cls.can_transition(sheet.status, to_status):
            errors.append(f"Cannot transition from '{sheet.status.value}' to '{to_status.value}'")
            return errors

        if to_status == TimeSheetStatus.APPROVED and sheet.status != TimeSheetStatus.PROCESSING:
            blocking = sheet.blocking_discrepancies
            if blocking:
                errors.append(f"{len(blocking)} unresolved discrepancies require resolution")

        elif to_status == TimeSheetStatus.SUBMITTED:
            if not sheet.entries and sheet.total_hours <= 0 and not sheet.adjustments:
                errors.append("Time sheet has no entries, hours or adjustments")

        return errors

    @classmethod
    def validate_for_approval(cls, sheet: TimeSheet) -> None:
        """Raise unless the sheet can be approved now."""
        cls.validate_transition(sheet.status, TimeSheetStatus.APPROVED)
        blocking = sheet.blocking_discrepancies
        if blocking:
            raise UnresolvedDiscrepanciesError(sheet.status.value, len(blocking))


class PayRunStateMachine(StateMachine):
    """State machine for pay run status transitions.

    Allowed transitions:
    - draft → calculating → calculated → (pending_review / pending_approval) → approved
    - approved → processing → processed → funded → completed
    - failed exit from calculating and the disbursement steps
    - cancelled exit from every status before processing
    """

    VALID_TRANSITIONS = {
        PayRunStatus.DRAFT: [PayRunStatus.CALCULATING, PayRunStatus.CANCELLED],
        PayRunStatus.CALCULATING: [
            PayRunStatus.CALCULATED,
            PayRunStatus.FAILED,
            PayRunStatus.CANCELLED,
        ],
        PayRunStatus.CALCULATED: [
            PayRunStatus.PENDING_REVIEW,
            PayRunStatus.PENDING_APPROVAL,
            PayRunStatus.APPROVED,
            PayRunStatus.CANCELLED,
        ],
        PayRunStatus.PENDING_REVIEW: [
            PayRunStatus.PENDING_APPROVAL,
            PayRunStatus.APPROVED,
            PayRunStatus.CANCELLED,
        ],
        PayRunStatus.PENDING_APPROVAL: [PayRunStatus.APPROVED, PayRunStatus.CANCELLED],
        PayRunStatus.APPROVED: [PayRunStatus.PROCESSING, PayRunStatus.CANCELLED],
        PayRunStatus.PROCESSING: [PayRunStatus.PROCESSED, PayRunStatus.FAILED],
        PayRunStatus.PROCESSED: [PayRunStatus.FUNDED, PayRunStatus.FAILED],
        PayRunStatus.FUNDED: [PayRunStatus.COMPLETED, PayRunStatus.FAILED],
        PayRunStatus.COMPLETED: [],  # Terminal state
        PayRunStatus.FAILED: [],  # Terminal state
        PayRunStatus.CANCELLED: [],  # Terminal state
    }

    # Runs in these statuses no longer occupy their pay period
    RELEASED = {PayRunStatus.CANCELLED, PayRunStatus.FAILED}

    # Statuses where results are immutable
    RESULTS_IMMUTABLE = {
        PayRunStatus.APPROVED,
        PayRunStatus.PROCESSING,
        PayRunStatus.PROCESSED,
        PayRunStatus.FUNDED,
        PayRunStatus.COMPLETED,
    }

    @classmethod
    def is_live(cls, status: PayRunStatus) -> bool:
        return status not in cls.RELEASED

    @classmethod
    def are_results_immutable(cls, status: PayRunStatus) -> bool:
        return status in cls.RESULTS_IMMUTABLE

    @classmethod
    def validate_pay_run_for_transition(
        cls, pay_run: PayRun, to_status: PayRunStatus
    ) -> list[str]:
        """Validate a pay run for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = pay_run.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status.value}' to '{to_status.value}'")
            return errors

        if to_status == PayRunStatus.APPROVED:
            if pay_run.has_errors:
                errors.append(f"Pay run has {len(pay_run.errors)} calculation error(s)")
            if pay_run.total_pay_stubs == 0:
                errors.append("Pay run has no pay stubs")

        return errors


class PayStubStateMachine(StateMachine):
    """State machine for pay stub status transitions.

    Allowed transitions:
    - draft → calculated → (pending_approval) → approved → payment_pending → paid
    - void from any calculated status; a voided stub is kept, never deleted
    - cancelled before payment is pending
    """

    VALID_TRANSITIONS = {
        PayStubStatus.DRAFT: [PayStubStatus.CALCULATED, PayStubStatus.CANCELLED],
        PayStubStatus.CALCULATED: [
            PayStubStatus.PENDING_APPROVAL,
            PayStubStatus.APPROVED,
            PayStubStatus.VOID,
            PayStubStatus.CANCELLED,
        ],
        PayStubStatus.PENDING_APPROVAL: [
            PayStubStatus.APPROVED,
            PayStubStatus.VOID,
            PayStubStatus.CANCELLED,
        ],
        PayStubStatus.APPROVED: [
            PayStubStatus.PAYMENT_PENDING,
            PayStubStatus.VOID,
            PayStubStatus.CANCELLED,
        ],
        PayStubStatus.PAYMENT_PENDING: [PayStubStatus.PAID, PayStubStatus.VOID],
        PayStubStatus.PAID: [PayStubStatus.VOID],
        PayStubStatus.VOID: [],  # Terminal state
        PayStubStatus.CANCELLED: [],  # Terminal state
    }

    @classmethod
    def is_eligible_for_disbursement(cls, status: PayStubStatus) -> bool:
        return status == PayStubStatus.PAYMENT_PENDING
