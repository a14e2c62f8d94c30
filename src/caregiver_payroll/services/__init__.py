"""Payroll lifecycle services."""

from caregiver_payroll.services.payroll_service import (
    NoApprovedTimeSheetsError,
    PayrollService,
    PayRunCancelledError,
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

__all__ = [
    "InvalidTransitionError",
    "NoApprovedTimeSheetsError",
    "PayPeriodNotReadyError",
    "PayPeriodStateMachine",
    "PayRunCancelledError",
    "PayRunStateMachine",
    "PayStubStateMachine",
    "PayrollService",
    "TimeSheetStateMachine",
    "UnresolvedDiscrepanciesError",
]
