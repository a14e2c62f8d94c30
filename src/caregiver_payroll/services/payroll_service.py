"""Payroll service - orchestrates pay periods, time sheets and pay runs.

Every operation loads what it needs, validates the transition with the state
machines and writes inside one unit of work, so a failure leaves storage as it
was before the call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from caregiver_payroll.calculators.pay_stub_calculator import (
    PayStubCalculator,
    year_to_date_from,
)
from caregiver_payroll.calculators.rounding import ZERO, non_negative
from caregiver_payroll.calculators.tax_calculator import TaxCalculator
from caregiver_payroll.calculators.tax_tables import load_tax_tables
from caregiver_payroll.calculators.timesheet_compiler import RateSchedule, TimesheetCompiler
from caregiver_payroll.calculators.types import LeaveHours
from caregiver_payroll.config import Settings, get_settings
from caregiver_payroll.models.entities import (
    Deduction,
    PayPeriod,
    PayRun,
    PayStub,
    StatusChange,
    TaxConfiguration,
    TimeSheet,
    TimeSheetAdjustment,
    VerifiedTimeRecord,
    utcnow,
)
from caregiver_payroll.models.enums import (
    PayPeriodStatus,
    PayRunStatus,
    PayStubStatus,
    TimeSheetStatus,
)
from caregiver_payroll.repository.base import EntityNotFoundError, PayrollRepository
from caregiver_payroll.schemas import PayPeriodCreate, PayRunCreate, TimeSheetAdjustmentCreate
from caregiver_payroll.services.state_machine import (
    InvalidTransitionError,
    PayPeriodStateMachine,
    PayRunStateMachine,
    PayStubStateMachine,
    TimeSheetStateMachine,
)
from caregiver_payroll.sources import TimeRecordSource

logger = logging.getLogger(__name__)


class NoApprovedTimeSheetsError(ValueError):
    """Raised when a pay run is requested for a period with nothing to pay."""

    def __init__(self, pay_period_id: UUID):
        self.pay_period_id = pay_period_id
        super().__init__(f"Pay period {pay_period_id} has no approved time sheets")


class PayRunCancelledError(Exception):
    """Raised when pay run creation is cancelled before it completes."""

    def __init__(self, pay_period_id: UUID, processed: int):
        self.pay_period_id = pay_period_id
        self.processed = processed
        super().__init__(
            f"Pay run for pay period {pay_period_id} cancelled after {processed} caregiver(s)"
        )


def _withheld_by_deduction(stub: PayStub) -> dict[UUID, Decimal]:
    """Amounts a stub withheld, keyed by the deduction rule they came from."""
    taken: dict[UUID, Decimal] = {}
    for line in stub.deductions:
        if line.deduction_id is not None and line.calculated_amount > ZERO:
            taken[line.deduction_id] = taken.get(line.deduction_id, ZERO) + line.calculated_amount
    return taken


class PayrollService:
    """Service for the payroll lifecycle.

    Operations:
    - pay periods: create, open, lock, transition, cancel
    - time sheets: compile, adjust, submit, review, resolve discrepancies,
      approve, reject, reopen, void
    - pay runs: create (calculate all stubs), approve, release for payment,
      mark processed/funded, complete, fail, cancel
    - pay stubs: void
    """

    def __init__(
        self,
        repository: PayrollRepository,
        tax_calculator: TaxCalculator,
        *,
        time_source: TimeRecordSource | None = None,
        engine_version: str = "1.0.0",
        default_state_code: str | None = None,
        use_supplemental_flat_rate: bool = True,
    ):
        self.repository = repository
        self.tax_calculator = tax_calculator
        self.time_source = time_source
        self.engine_version = engine_version
        self.stub_calculator = PayStubCalculator(
            tax_calculator,
            default_state_code=default_state_code,
            use_supplemental_flat_rate=use_supplemental_flat_rate,
        )

    @classmethod
    def from_settings(
        cls,
        repository: PayrollRepository,
        settings: Settings | None = None,
        time_source: TimeRecordSource | None = None,
    ) -> PayrollService:
        """Build a service using tax tables and defaults from settings."""
        settings = settings or get_settings()
        tables = load_tax_tables(settings.tax_year, settings.tax_tables_path)
        return cls(
            repository,
            TaxCalculator(tables),
            time_source=time_source,
            engine_version=settings.engine_version,
            default_state_code=settings.default_state_code,
            use_supplemental_flat_rate=settings.use_supplemental_flat_rate,
        )

    # =========================================================================
    # Pay periods
    # =========================================================================

    async def create_pay_period(self, data: PayPeriodCreate, actor: str) -> PayPeriod:
        """Create a DRAFT pay period."""
        period = PayPeriod(**data.model_dump(), created_by=actor, updated_by=actor)
        period.status_history.append(
            StatusChange(
                from_status=None,
                to_status=PayPeriodStatus.DRAFT.value,
                changed_by=actor,
                reason="Pay period created",
            )
        )
        async with self.repository.unit_of_work():
            await self.repository.create_pay_period(period)

        logger.info(
            "Created pay period %s-%02d (%s to %s)",
            period.period_year,
            period.period_number,
            period.start_date,
            period.end_date,
        )
        return period

    async def open_pay_period(self, period_id: UUID, actor: str) -> PayPeriod:
        return await self.transition_pay_period(period_id, PayPeriodStatus.OPEN, actor)

    async def lock_pay_period(self, period_id: UUID, actor: str) -> PayPeriod:
        """Lock a period so no new time is compiled into it."""
        return await self.transition_pay_period(
            period_id, PayPeriodStatus.LOCKED, actor, reason="Time entry closed"
        )

    async def cancel_pay_period(self, period_id: UUID, actor: str, reason: str) -> PayPeriod:
        """Cancel a period that has no active pay run."""
        async with self.repository.unit_of_work():
            period = await self.repository.get_pay_period(period_id)
            if period.pay_run_id is not None:
                pay_run = await self.repository.get_pay_run(period.pay_run_id)
                if PayRunStateMachine.is_live(pay_run.status):
                    raise InvalidTransitionError(
                        period.status.value,
                        PayPeriodStatus.CANCELLED.value,
                        f"Pay run {pay_run.run_number} must be cancelled first",
                    )
            PayPeriodStateMachine.transition(
                period, PayPeriodStatus.CANCELLED, changed_by=actor, reason=reason
            )
            await self.repository.update_pay_period(period)

        logger.info("Pay period %s cancelled: %s", period_id, reason)
        return period

    async def transition_pay_period(
        self,
        period_id: UUID,
        to_status: PayPeriodStatus,
        actor: str,
        reason: str | None = None,
    ) -> PayPeriod:
        """Move a pay period to any status its state machine allows."""
        async with self.repository.unit_of_work():
            period = await self.repository.get_pay_period(period_id)
            from_status = period.status
            PayPeriodStateMachine.transition(period, to_status, changed_by=actor, reason=reason)
            await self.repository.update_pay_period(period)

        logger.info("Pay period %s: %s -> %s", period_id, from_status.value, to_status.value)
        return period

    # =========================================================================
    # Time sheets
    # =========================================================================

    async def compile_time_sheet(
        self,
        pay_period_id: UUID,
        caregiver_id: UUID,
        schedule: RateSchedule,
        actor: str,
        *,
        records: Sequence[VerifiedTimeRecord] | None = None,
        leave: LeaveHours | None = None,
    ) -> TimeSheet:
        """Compile a DRAFT time sheet from verified time records.

        Records are fetched from the configured time source unless given.
        """
        period = await self.repository.get_pay_period(pay_period_id)
        if period.status not in PayPeriodStateMachine.TIME_ENTRY_ALLOWED:
            raise InvalidTransitionError(
                period.status.value,
                TimeSheetStatus.DRAFT.value,
                "Time sheets can only be compiled for OPEN or LOCKED pay periods",
            )

        if records is None:
            if self.time_source is None:
                raise ValueError("No time record source configured")
            records = await self.time_source.fetch_records(
                caregiver_id, period.start_date, period.end_date
            )

        async with self.repository.unit_of_work():
            existing = await self.repository.find_time_sheets(
                period.organization_id, pay_period_id=period.id, caregiver_id=caregiver_id
            )
            if any(s.status != TimeSheetStatus.VOIDED for s in existing):
                raise ValueError(
                    f"Caregiver {caregiver_id} already has a time sheet for pay period {period.id}"
                )
            sheet = TimesheetCompiler(schedule).compile(
                period, caregiver_id, records, compiled_by=actor, leave=leave
            )
            await self.repository.create_time_sheet(sheet)

        if sheet.blocking_discrepancies:
            logger.warning(
                "Time sheet %s compiled with %d blocking discrepancies",
                sheet.id,
                len(sheet.blocking_discrepancies),
            )
        return sheet

    async def add_time_sheet_adjustment(
        self, sheet_id: UUID, data: TimeSheetAdjustmentCreate, actor: str
    ) -> TimeSheet:
        """Add a manual adjustment to a DRAFT or SUBMITTED time sheet."""
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            if not TimeSheetStateMachine.can_modify_adjustments(sheet.status):
                raise InvalidTransitionError(
                    sheet.status.value,
                    sheet.status.value,
                    "Adjustments can only be added to DRAFT or SUBMITTED time sheets",
                )
            sheet.adjustments.append(TimeSheetAdjustment(**data.model_dump(), added_by=actor))
            sheet.recalculate_totals()
            sheet.touch(actor)
            await self.repository.update_time_sheet(sheet)
        return sheet

    async def submit_time_sheet(self, sheet_id: UUID, actor: str) -> TimeSheet:
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            self._check_time_sheet(sheet, TimeSheetStatus.SUBMITTED)
            TimeSheetStateMachine.transition(sheet, TimeSheetStatus.SUBMITTED, changed_by=actor)
            sheet.submitted_at = utcnow()
            sheet.submitted_by = actor
            await self.repository.update_time_sheet(sheet)
        return sheet

    async def request_time_sheet_review(
        self, sheet_id: UUID, actor: str, reason: str | None = None
    ) -> TimeSheet:
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            TimeSheetStateMachine.transition(
                sheet, TimeSheetStatus.PENDING_REVIEW, changed_by=actor, reason=reason
            )
            await self.repository.update_time_sheet(sheet)
        return sheet

    async def resolve_discrepancy(
        self, sheet_id: UUID, flag_id: UUID, actor: str, notes: str
    ) -> TimeSheet:
        """Mark one discrepancy flag as resolved."""
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            if not TimeSheetStateMachine.can_resolve_discrepancies(sheet.status):
                raise InvalidTransitionError(
                    sheet.status.value,
                    sheet.status.value,
                    "Discrepancies can only be resolved before approval",
                )
            flag = sheet.find_discrepancy(flag_id)
            if flag is None:
                raise EntityNotFoundError("DiscrepancyFlag", flag_id)
            if not flag.resolved:
                flag.resolved = True
                flag.resolved_by = actor
                flag.resolved_at = utcnow()
                flag.resolution_notes = notes
                sheet.touch(actor)
                await self.repository.update_time_sheet(sheet)
        return sheet

    async def approve_time_sheet(
        self, sheet_id: UUID, actor: str, notes: str | None = None
    ) -> TimeSheet:
        """Approve a time sheet.

        Raises UnresolvedDiscrepanciesError while any flag requiring
        resolution is still open.
        """
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            TimeSheetStateMachine.validate_for_approval(sheet)
            TimeSheetStateMachine.transition(
                sheet, TimeSheetStatus.APPROVED, changed_by=actor, notes=notes
            )
            sheet.approved_at = utcnow()
            sheet.approved_by = actor
            sheet.approval_notes = notes
            await self.repository.update_time_sheet(sheet)

        logger.info("Time sheet %s approved by %s", sheet_id, actor)
        return sheet

    async def reject_time_sheet(self, sheet_id: UUID, actor: str, reason: str) -> TimeSheet:
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            TimeSheetStateMachine.transition(
                sheet, TimeSheetStatus.REJECTED, changed_by=actor, reason=reason
            )
            sheet.rejected_at = utcnow()
            sheet.rejected_by = actor
            sheet.rejection_reason = reason
            await self.repository.update_time_sheet(sheet)
        return sheet

    async def reopen_time_sheet(self, sheet_id: UUID, actor: str) -> TimeSheet:
        """Return a rejected time sheet to DRAFT for correction."""
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            TimeSheetStateMachine.transition(
                sheet, TimeSheetStatus.DRAFT, changed_by=actor, reason="Reopened for correction"
            )
            await self.repository.update_time_sheet(sheet)
        return sheet

    async def void_time_sheet(self, sheet_id: UUID, actor: str, reason: str) -> TimeSheet:
        async with self.repository.unit_of_work():
            sheet = await self.repository.get_time_sheet(sheet_id)
            TimeSheetStateMachine.transition(
                sheet, TimeSheetStatus.VOIDED, changed_by=actor, reason=reason
            )
            await self.repository.update_time_sheet(sheet)
        return sheet

    @staticmethod
    def _check_time_sheet(sheet: TimeSheet, to_status: TimeSheetStatus) -> None:
        errors = TimeSheetStateMachine.validate_time_sheet_for_transition(sheet, to_status)
        if errors:
            raise InvalidTransitionError(sheet.status.value, to_status.value, "; ".join(errors))

    # =========================================================================
    # Pay run creation
    # =========================================================================

    async def create_pay_run(
        self,
        data: PayRunCreate,
        actor: str,
        cancel_event: asyncio.Event | None = None,
    ) -> PayRun:
        """Calculate and persist a pay run for every approved time sheet.

        Preconditions are checked before any transaction starts. All stubs,
        time sheet moves, deduction balances, the pay run and the period
        update commit together or not at all. ``cancel_event`` is checked
        between caregivers; setting it aborts and rolls back the run.
        """
        period = await self.repository.get_pay_period(data.pay_period_id)
        await self._check_pay_run_allowed(period)
        approved = await self.repository.find_time_sheets(
            period.organization_id,
            pay_period_id=period.id,
            statuses=[TimeSheetStatus.APPROVED],
        )
        if not approved:
            raise NoApprovedTimeSheetsError(period.id)

        try:
            async with self.repository.unit_of_work():
                pay_run = await self._calculate_pay_run(data, actor, cancel_event)
        except PayRunCancelledError:
            logger.warning("Pay run for pay period %s cancelled; changes rolled back", period.id)
            raise
        except Exception:
            logger.exception("Pay run for pay period %s failed; changes rolled back", period.id)
            raise

        logger.info(
            "Pay run %s calculated: %d caregivers, gross %s, net %s",
            pay_run.run_number,
            pay_run.total_caregivers,
            pay_run.total_gross_pay,
            pay_run.total_net_pay,
        )
        return pay_run

    async def _check_pay_run_allowed(self, period: PayPeriod) -> None:
        PayPeriodStateMachine.validate_for_pay_run(period)
        runs = await self.repository.find_pay_runs(
            period.organization_id, pay_period_id=period.id
        )
        live = [r for r in runs if PayRunStateMachine.is_live(r.status)]
        if live:
            raise InvalidTransitionError(
                period.status.value,
                PayPeriodStatus.PROCESSING.value,
                f"Pay period already has active pay run {live[0].run_number}",
            )

    async def _calculate_pay_run(
        self,
        data: PayRunCreate,
        actor: str,
        cancel_event: asyncio.Event | None,
    ) -> PayRun:
        period = await self.repository.get_pay_period(data.pay_period_id)
        await self._check_pay_run_allowed(period)
        sheets = await self.repository.find_time_sheets(
            period.organization_id,
            pay_period_id=period.id,
            statuses=[TimeSheetStatus.APPROVED],
        )
        if not sheets:
            raise NoApprovedTimeSheetsError(period.id)

        previous_runs = await self.repository.find_pay_runs(
            period.organization_id, pay_period_id=period.id
        )
        run_number = f"{period.period_year}-{period.period_number:02d}"
        if previous_runs:
            run_number = f"{run_number}-{len(previous_runs) + 1}"

        pay_run = PayRun(
            organization_id=period.organization_id,
            pay_period_id=period.id,
            run_number=run_number,
            run_type=data.run_type,
            period_start=period.start_date,
            period_end=period.end_date,
            pay_date=period.pay_date,
            engine_version=self.engine_version,
            notes=data.notes,
            created_by=actor,
            updated_by=actor,
        )
        pay_run.status_history.append(
            StatusChange(
                from_status=None,
                to_status=PayRunStatus.DRAFT.value,
                changed_by=actor,
                reason="Pay run created",
            )
        )
        PayRunStateMachine.transition(
            pay_run, PayRunStatus.CALCULATING, changed_by=actor, automatic=True
        )

        for processed, sheet in enumerate(sheets):
            if cancel_event is not None and cancel_event.is_set():
                raise PayRunCancelledError(period.id, processed)
            await self._pay_time_sheet(period, pay_run, sheet, actor)

        PayRunStateMachine.transition(
            pay_run,
            PayRunStatus.CALCULATED,
            changed_by=actor,
            reason=f"{pay_run.total_pay_stubs} pay stubs calculated",
            automatic=True,
        )
        pay_run.calculated_at = utcnow()
        await self.repository.create_pay_run(pay_run)

        period.pay_run_id = pay_run.id
        if period.status != PayPeriodStatus.PROCESSING:
            PayPeriodStateMachine.transition(
                period,
                PayPeriodStatus.PROCESSING,
                changed_by=actor,
                reason=f"Pay run {run_number} calculated",
                automatic=True,
            )
        period.update_statistics(pay_run)
        period.touch(actor)
        await self.repository.update_pay_period(period)
        return pay_run

    async def _pay_time_sheet(
        self, period: PayPeriod, pay_run: PayRun, sheet: TimeSheet, actor: str
    ) -> PayStub:
        org_id = period.organization_id
        caregiver_id = sheet.caregiver_id

        tax_config = await self.repository.find_effective_tax_configuration(
            org_id, caregiver_id, period.pay_date
        )
        if tax_config is None:
            logger.warning(
                "No tax configuration for caregiver %s; withholding as SINGLE", caregiver_id
            )
            pay_run.warnings.append(
                f"Caregiver {caregiver_id}: no tax configuration, default SINGLE withholding used"
            )
            tax_config = TaxConfiguration(
                organization_id=org_id,
                caregiver_id=caregiver_id,
                effective_date=period.start_date,
            )

        deductions = await self.repository.find_deductions(org_id, caregiver_id)
        prior_stubs = await self.repository.find_pay_stubs(
            org_id, caregiver_id=caregiver_id, year=period.pay_date.year
        )
        election = await self.repository.find_payment_election(org_id, caregiver_id)

        stub = self.stub_calculator.calculate(
            time_sheet=sheet,
            pay_period=period,
            pay_run_id=pay_run.id,
            stub_number=f"{pay_run.run_number}-{str(caregiver_id)[:8]}",
            tax_config=tax_config,
            deductions=deductions,
            year_to_date=year_to_date_from(prior_stubs),
            payment_election=election,
            calculated_by=actor,
        )
        await self.repository.create_pay_stub(stub)
        await self._apply_deduction_balances(deductions, stub, actor)

        TimeSheetStateMachine.transition(
            sheet,
            TimeSheetStatus.PROCESSING,
            changed_by=actor,
            reason=f"Included in pay run {pay_run.run_number}",
            automatic=True,
        )
        sheet.pay_run_id = pay_run.id
        sheet.pay_stub_id = stub.id
        await self.repository.update_time_sheet(sheet)

        pay_run.add_pay_stub(stub)
        return stub

    async def _apply_deduction_balances(
        self, deductions: Sequence[Deduction], stub: PayStub, actor: str
    ) -> None:
        """Add withheld amounts to year-to-date totals and garnishment balances."""
        taken = _withheld_by_deduction(stub)
        for deduction in deductions:
            amount = taken.get(deduction.id)
            if amount is None:
                continue
            deduction.year_to_date_amount += amount
            order = deduction.garnishment_order
            if order is not None:
                remaining = order.remaining_balance
                deduction.garnishment_order = order.model_copy(
                    update={
                        "total_paid": order.total_paid + amount,
                        "remaining_balance": (
                            non_negative(remaining - amount) if remaining is not None else None
                        ),
                    }
                )
            deduction.touch(actor)
            await self.repository.update_deduction(deduction)

    # =========================================================================
    # Pay run lifecycle
    # =========================================================================

    async def approve_pay_run(
        self, pay_run_id: UUID, actor: str, notes: str | None = None
    ) -> PayRun:
        """Approve a calculated pay run and its stubs."""
        async with self.repository.unit_of_work():
            pay_run = await self.repository.get_pay_run(pay_run_id)
            self._move_pay_run(pay_run, PayRunStatus.APPROVED, actor, notes=notes)
            pay_run.approved_at = utcnow()
            pay_run.approved_by = actor
            await self._move_stubs(
                pay_run,
                PayStubStatus.APPROVED,
                actor,
                from_statuses={PayStubStatus.CALCULATED, PayStubStatus.PENDING_APPROVAL},
            )
            await self.repository.update_pay_run(pay_run)

        logger.info("Pay run %s approved by %s", pay_run.run_number, actor)
        return pay_run

    async def release_pay_run_for_payment(self, pay_run_id: UUID, actor: str) -> PayRun:
        """Mark approved stubs eligible for disbursement.

        The pay run moves to PROCESSING and its period to APPROVED; the
        disbursement system picks up stubs in PAYMENT_PENDING.
        """
        async with self.repository.unit_of_work():
            pay_run = await self.repository.get_pay_run(pay_run_id)
            self._move_pay_run(pay_run, PayRunStatus.PROCESSING, actor, reason="Released for payment")
            await self._move_stubs(
                pay_run,
                PayStubStatus.PAYMENT_PENDING,
                actor,
                from_statuses={PayStubStatus.APPROVED},
            )
            await self.repository.update_pay_run(pay_run)
            await self._move_period(pay_run, PayPeriodStatus.APPROVED, actor)

        logger.info("Pay run %s released for payment", pay_run.run_number)
        return pay_run

    async def mark_pay_run_processed(self, pay_run_id: UUID, actor: str) -> PayRun:
        return await self._simple_pay_run_transition(pay_run_id, PayRunStatus.PROCESSED, actor)

    async def mark_pay_run_funded(self, pay_run_id: UUID, actor: str) -> PayRun:
        return await self._simple_pay_run_transition(pay_run_id, PayRunStatus.FUNDED, actor)

    async def complete_pay_run(self, pay_run_id: UUID, actor: str) -> PayRun:
        """Complete a funded pay run: stubs, time sheets and period become PAID."""
        async with self.repository.unit_of_work():
            pay_run = await self.repository.get_pay_run(pay_run_id)
            self._move_pay_run(pay_run, PayRunStatus.COMPLETED, actor)
            pay_run.completed_at = utcnow()
            await self._move_stubs(
                pay_run, PayStubStatus.PAID, actor, from_statuses={PayStubStatus.PAYMENT_PENDING}
            )
            for sheet in await self._run_time_sheets(pay_run):
                if sheet.status == TimeSheetStatus.PROCESSING:
                    TimeSheetStateMachine.transition(
                        sheet, TimeSheetStatus.PAID, changed_by=actor, automatic=True
                    )
                    await self.repository.update_time_sheet(sheet)
            await self.repository.update_pay_run(pay_run)
            await self._move_period(pay_run, PayPeriodStatus.PAID, actor)

        logger.info("Pay run %s completed", pay_run.run_number)
        return pay_run

    async def fail_pay_run(self, pay_run_id: UUID, actor: str, reason: str) -> PayRun:
        """Record a failure reported by calculation or disbursement.

        Nothing on a failed run may still be paid: unpaid stubs are cancelled
        or voided, their deductions reversed, and the time sheets and period
        released for a new run.
        """
        async with self.repository.unit_of_work():
            pay_run = await self.repository.get_pay_run(pay_run_id)
            self._move_pay_run(pay_run, PayRunStatus.FAILED, actor, reason=reason)
            pay_run.errors.append(reason)
            await self._release_pay_run(pay_run, actor, reason)
            await self.repository.update_pay_run(pay_run)

        logger.error("Pay run %s failed: %s", pay_run.run_number, reason)
        return pay_run

    async def cancel_pay_run(self, pay_run_id: UUID, actor: str, reason: str) -> PayRun:
        """Cancel a pay run before payment and release its time sheets.

        Stubs are cancelled, deduction balances reversed, time sheets go back
        to APPROVED and the period returns to LOCKED so a new run can be created.
        """
        async with self.repository.unit_of_work():
            pay_run = await self.repository.get_pay_run(pay_run_id)
            self._move_pay_run(pay_run, PayRunStatus.CANCELLED, actor, reason=reason)
            await self._release_pay_run(pay_run, actor, reason)
            await self.repository.update_pay_run(pay_run)

        logger.info("Pay run %s cancelled: %s", pay_run.run_number, reason)
        return pay_run

    async def void_pay_stub(self, stub_id: UUID, actor: str, reason: str) -> PayStub:
        """Void a pay stub; voided stubs are kept for audit and excluded from YTD."""
        async with self.repository.unit_of_work():
            stub = await self.repository.get_pay_stub(stub_id)
            self._void_stub(stub, actor, reason)
            await self.repository.update_pay_stub(stub)
            await self._reverse_deduction_balances(stub, actor)

        logger.info("Pay stub %s voided: %s", stub.stub_number, reason)
        return stub

    @staticmethod
    def _void_stub(stub: PayStub, actor: str, reason: str) -> None:
        PayStubStateMachine.transition(stub, PayStubStatus.VOID, changed_by=actor, reason=reason)
        stub.is_void = True
        stub.void_reason = reason
        stub.voided_at = utcnow()
        stub.voided_by = actor

    async def _release_pay_run(self, pay_run: PayRun, actor: str, reason: str) -> None:
        """Undo what a cancelled or failed run holds on to.

        Stubs not yet paid are cancelled, or voided once payment is pending.
        Stubs already voided were reversed when they were voided.
        """
        stubs = await self.repository.find_pay_stubs(
            pay_run.organization_id, pay_run_id=pay_run.id
        )
        for stub in stubs:
            if PayStubStateMachine.can_transition(stub.status, PayStubStatus.CANCELLED):
                PayStubStateMachine.transition(
                    stub, PayStubStatus.CANCELLED, changed_by=actor, reason=reason, automatic=True
                )
            elif stub.status == PayStubStatus.PAYMENT_PENDING:
                self._void_stub(stub, actor, reason)
            else:
                continue
            await self.repository.update_pay_stub(stub)
            await self._reverse_deduction_balances(stub, actor)

        for sheet in await self._run_time_sheets(pay_run):
            if sheet.status == TimeSheetStatus.PROCESSING:
                TimeSheetStateMachine.transition(
                    sheet,
                    TimeSheetStatus.APPROVED,
                    changed_by=actor,
                    reason=f"Pay run {pay_run.run_number} {pay_run.status.value.lower()}",
                    automatic=True,
                )
                sheet.pay_run_id = None
                sheet.pay_stub_id = None
                await self.repository.update_time_sheet(sheet)

        period = await self.repository.get_pay_period(pay_run.pay_period_id)
        if period.pay_run_id == pay_run.id:
            period.pay_run_id = None
            period.clear_statistics()
            if PayPeriodStateMachine.can_transition(period.status, PayPeriodStatus.LOCKED):
                PayPeriodStateMachine.transition(
                    period,
                    PayPeriodStatus.LOCKED,
                    changed_by=actor,
                    reason=f"Pay run {pay_run.run_number} {pay_run.status.value.lower()}",
                    automatic=True,
                )
            period.touch(actor)
            await self.repository.update_pay_period(period)

    async def _reverse_deduction_balances(self, stub: PayStub, actor: str) -> None:
        """Take a stub's withheld amounts back out of deduction balances."""
        for deduction_id, amount in _withheld_by_deduction(stub).items():
            deduction = await self.repository.get_deduction(deduction_id)
            deduction.year_to_date_amount = non_negative(deduction.year_to_date_amount - amount)
            order = deduction.garnishment_order
            if order is not None:
                remaining = order.remaining_balance
                deduction.garnishment_order = order.model_copy(
                    update={
                        "total_paid": non_negative(order.total_paid - amount),
                        "remaining_balance": remaining + amount if remaining is not None else None,
                    }
                )
            deduction.touch(actor)
            await self.repository.update_deduction(deduction)

    async def _simple_pay_run_transition(
        self, pay_run_id: UUID, to_status: PayRunStatus, actor: str
    ) -> PayRun:
        async with self.repository.unit_of_work():
            pay_run = await self.repository.get_pay_run(pay_run_id)
            self._move_pay_run(pay_run, to_status, actor)
            await self.repository.update_pay_run(pay_run)

        logger.info("Pay run %s: %s", pay_run.run_number, to_status.value)
        return pay_run

    @staticmethod
    def _move_pay_run(
        pay_run: PayRun,
        to_status: PayRunStatus,
        actor: str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> None:
        errors = PayRunStateMachine.validate_pay_run_for_transition(pay_run, to_status)
        if errors:
            raise InvalidTransitionError(pay_run.status.value, to_status.value, "; ".join(errors))
        PayRunStateMachine.transition(
            pay_run, to_status, changed_by=actor, reason=reason, notes=notes
        )

    async def _move_stubs(
        self,
        pay_run: PayRun,
        to_status: PayStubStatus,
        actor: str,
        *,
        from_statuses: set[PayStubStatus],
        reason: str | None = None,
    ) -> None:
        stubs = await self.repository.find_pay_stubs(
            pay_run.organization_id, pay_run_id=pay_run.id
        )
        for stub in stubs:
            if stub.status in from_statuses:
                PayStubStateMachine.transition(
                    stub, to_status, changed_by=actor, reason=reason, automatic=True
                )
                await self.repository.update_pay_stub(stub)

    async def _move_period(
        self, pay_run: PayRun, to_status: PayPeriodStatus, actor: str
    ) -> None:
        period = await self.repository.get_pay_period(pay_run.pay_period_id)
        if PayPeriodStateMachine.can_transition(period.status, to_status):
            PayPeriodStateMachine.transition(
                period,
                to_status,
                changed_by=actor,
                reason=f"Pay run {pay_run.run_number} {pay_run.status.value.lower()}",
                automatic=True,
            )
            await self.repository.update_pay_period(period)

    async def _run_time_sheets(self, pay_run: PayRun) -> list[TimeSheet]:
        sheets = await self.repository.find_time_sheets(
            pay_run.organization_id, pay_period_id=pay_run.pay_period_id
        )
        return [s for s in sheets if s.pay_run_id == pay_run.id]
