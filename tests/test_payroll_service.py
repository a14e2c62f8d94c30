"""Tests for the payroll service lifecycle."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from pydantic import ValidationError

from caregiver_payroll.calculators.timesheet_compiler import RateSchedule
from caregiver_payroll.config import Settings
from caregiver_payroll.models import (
    AdjustmentType,
    Deduction,
    DeductionType,
    DiscrepancyType,
    GarnishmentOrder,
    GarnishmentType,
    PayPeriodStatus,
    PayRunStatus,
    PayStubStatus,
    TaxTreatment,
    TimeSheetStatus,
)
from caregiver_payroll.repository import (
    EntityNotFoundError,
    SqlAlchemyPayrollRepository,
)
from caregiver_payroll.schemas import PayPeriodCreate, PayRunCreate, TimeSheetAdjustmentCreate
from caregiver_payroll.services import (
    InvalidTransitionError,
    NoApprovedTimeSheetsError,
    PayPeriodNotReadyError,
    PayrollService,
    PayRunCancelledError,
    PayStubStateMachine,
    UnresolvedDiscrepanciesError,
)
from caregiver_payroll.sources import TimeRecordSource

pytestmark = pytest.mark.asyncio

# Ten weekdays across the two workweeks of the first period
WEEKDAYS = [date(2024, 1, d) for d in (1, 2, 3, 4, 5, 8, 9, 10, 11, 12)]
SCHEDULE = RateSchedule(base_rate=Decimal("25"))


class StaticTimeSource:
    """Time source returning a fixed list of records."""

    def __init__(self, records):
        self.records = records
        self.calls = []

    async def fetch_records(self, caregiver_id, start, end):
        self.calls.append((caregiver_id, start, end))
        return [r for r in self.records if r.caregiver_id == caregiver_id]


@pytest_asyncio.fixture
async def open_period(repository, make_pay_period):
    period = make_pay_period(status=PayPeriodStatus.OPEN)
    await repository.create_pay_period(period)
    return period


@pytest.fixture
def approve_sheet(service, make_record):
    """Compile, submit and approve an 80 hour, $2,000 time sheet."""

    async def _approve(period, caregiver_id, days=WEEKDAYS):
        records = [make_record(caregiver_id, day, hours=8) for day in days]
        sheet = await service.compile_time_sheet(
            period.id, caregiver_id, SCHEDULE, "scheduler", records=records
        )
        await service.submit_time_sheet(sheet.id, "caregiver")
        return await service.approve_time_sheet(sheet.id, "manager")

    return _approve


@pytest_asyncio.fixture
async def locked_period(service, repository, open_period, caregiver_id, single_config, approve_sheet):
    """A LOCKED period with one approved time sheet and a tax configuration."""
    await repository.create_tax_configuration(single_config)
    await approve_sheet(open_period, caregiver_id)
    return await service.lock_pay_period(open_period.id, "manager")


def run_request(period) -> PayRunCreate:
    return PayRunCreate(organization_id=period.organization_id, pay_period_id=period.id)


async def add_garnishment(repository, period, caregiver_id, balance="100") -> Deduction:
    """Store a creditor garnishment with ``balance`` left to collect."""
    garnishment = Deduction(
        organization_id=period.organization_id,
        caregiver_id=caregiver_id,
        deduction_type=DeductionType.GARNISHMENT,
        code="GARN",
        description="Creditor garnishment",
        tax_treatment=TaxTreatment.POST_TAX,
        garnishment_order=GarnishmentOrder(
            order_number="CR-77",
            issuing_authority="District Court",
            order_type=GarnishmentType.CREDITOR,
            remaining_balance=Decimal(balance),
        ),
    )
    return await repository.create_deduction(garnishment)


async def assert_garnishment_untouched(repository, garnishment, balance="100"):
    stored = await repository.get_deduction(garnishment.id)
    assert stored.year_to_date_amount == Decimal("0")
    assert stored.garnishment_order.total_paid == Decimal("0")
    assert stored.garnishment_order.remaining_balance == Decimal(balance)


class TestPayPeriods:
    """Tests for the pay period lifecycle."""

    async def test_create(self, service, repository, org_id):
        data = PayPeriodCreate(
            organization_id=org_id,
            period_number=1,
            period_year=2024,
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 14),
            pay_date=date(2024, 1, 19),
        )

        period = await service.create_pay_period(data, "manager")

        stored = await repository.get_pay_period(period.id)
        assert stored.status is PayPeriodStatus.DRAFT
        assert stored.created_by == "manager"
        assert [(c.from_status, c.to_status) for c in stored.status_history] == [(None, "DRAFT")]

    async def test_end_before_start_rejected(self, org_id):
        with pytest.raises(ValidationError):
            PayPeriodCreate(
                organization_id=org_id,
                period_number=1,
                period_year=2024,
                start_date=date(2024, 1, 14),
                end_date=date(2024, 1, 1),
                pay_date=date(2024, 1, 19),
            )

    async def test_open_and_lock(self, service, repository, make_pay_period):
        period = make_pay_period(status=PayPeriodStatus.DRAFT)
        await repository.create_pay_period(period)

        await service.open_pay_period(period.id, "manager")
        locked = await service.lock_pay_period(period.id, "manager")

        assert locked.status is PayPeriodStatus.LOCKED
        stored = await repository.get_pay_period(period.id)
        assert [c.to_status for c in stored.status_history] == ["OPEN", "LOCKED"]
        assert stored.version == 2

    async def test_invalid_transition_leaves_period_unchanged(self, service, repository, open_period):
        with pytest.raises(InvalidTransitionError):
            await service.transition_pay_period(open_period.id, PayPeriodStatus.PAID, "manager")

        stored = await repository.get_pay_period(open_period.id)
        assert stored.status is PayPeriodStatus.OPEN
        assert stored.version == 0

    async def test_cancel_blocked_by_live_pay_run(self, service, locked_period):
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")

        with pytest.raises(InvalidTransitionError, match="must be cancelled first"):
            await service.cancel_pay_period(locked_period.id, "manager", "Duplicate period")

        await service.cancel_pay_run(pay_run.id, "payroll-admin", "Wrong rates")
        period = await service.cancel_pay_period(locked_period.id, "manager", "Duplicate period")

        assert period.status is PayPeriodStatus.CANCELLED


class TestTimeSheets:
    """Tests for compiling and approving time sheets."""

    async def test_compile_from_time_source(
        self, repository, tax_calculator, open_period, caregiver_id, make_record
    ):
        source = StaticTimeSource([make_record(caregiver_id, day) for day in WEEKDAYS[:3]])
        service = PayrollService(repository, tax_calculator, time_source=source)

        sheet = await service.compile_time_sheet(open_period.id, caregiver_id, SCHEDULE, "scheduler")

        assert isinstance(source, TimeRecordSource)
        assert source.calls == [(caregiver_id, open_period.start_date, open_period.end_date)]
        assert sheet.total_hours == Decimal("24.00")
        assert (await repository.get_time_sheet(sheet.id)).gross_earnings == Decimal("600.00")

    async def test_compile_without_records_or_source(self, service, open_period, caregiver_id):
        with pytest.raises(ValueError, match="No time record source"):
            await service.compile_time_sheet(open_period.id, caregiver_id, SCHEDULE, "scheduler")

    async def test_compile_requires_open_or_locked_period(
        self, service, repository, make_pay_period, caregiver_id
    ):
        period = make_pay_period(status=PayPeriodStatus.DRAFT)
        await repository.create_pay_period(period)

        with pytest.raises(InvalidTransitionError):
            await service.compile_time_sheet(
                period.id, caregiver_id, SCHEDULE, "scheduler", records=[]
            )

    async def test_one_sheet_per_caregiver_and_period(
        self, service, open_period, caregiver_id, make_record
    ):
        records = [make_record(caregiver_id, WEEKDAYS[0])]
        sheet = await service.compile_time_sheet(
            open_period.id, caregiver_id, SCHEDULE, "scheduler", records=records
        )

        with pytest.raises(ValueError, match="already has a time sheet"):
            await service.compile_time_sheet(
                open_period.id, caregiver_id, SCHEDULE, "scheduler", records=records
            )

        await service.void_time_sheet(sheet.id, "manager", "Recompile")
        replacement = await service.compile_time_sheet(
            open_period.id, caregiver_id, SCHEDULE, "scheduler", records=records
        )
        assert replacement.id != sheet.id

    async def test_empty_sheet_cannot_be_submitted(self, service, open_period, caregiver_id):
        sheet = await service.compile_time_sheet(
            open_period.id, caregiver_id, SCHEDULE, "scheduler", records=[]
        )

        with pytest.raises(InvalidTransitionError, match="no entries, hours or adjustments"):
            await service.submit_time_sheet(sheet.id, "caregiver")

    async def test_approval_requires_resolved_discrepancies(
        self, service, repository, open_period, caregiver_id, make_record
    ):
        records = [
            make_record(caregiver_id, WEEKDAYS[1], hours=8),
            make_record(caregiver_id, WEEKDAYS[1], hours=4, start_hour=12),
        ]
        sheet = await service.compile_time_sheet(
            open_period.id, caregiver_id, SCHEDULE, "scheduler", records=records
        )
        await service.submit_time_sheet(sheet.id, "caregiver")
        flag = sheet.discrepancies[0]
        assert flag.discrepancy_type is DiscrepancyType.OVERLAPPING_SHIFTS

        with pytest.raises(UnresolvedDiscrepanciesError):
            await service.approve_time_sheet(sheet.id, "manager")
        assert (await repository.get_time_sheet(sheet.id)).status is TimeSheetStatus.SUBMITTED

        await service.resolve_discrepancy(
            sheet.id, flag.id, "manager", "Second visit was a duplicate"
        )
        approved = await service.approve_time_sheet(sheet.id, "manager", notes="Checked with client")

        assert approved.status is TimeSheetStatus.APPROVED
        assert approved.discrepancies[0].resolved_by == "manager"
        last = approved.status_history[-1]
        assert (last.from_status, last.to_status, last.changed_by) == (
            "SUBMITTED",
            "APPROVED",
            "manager",
        )
        assert len(approved.status_history) == 3

    async def test_resolve_is_idempotent(
        self, service, repository, open_period, caregiver_id, make_record
    ):
        records = [
            make_record(caregiver_id, WEEKDAYS[1], hours=8),
            make_record(caregiver_id, WEEKDAYS[1], hours=4, start_hour=12),
        ]
        sheet = await service.compile_time_sheet(
            open_period.id, caregiver_id, SCHEDULE, "scheduler", records=records
        )
        flag_id = sheet.discrepancies[0].id

        first = await service.resolve_discrepancy(sheet.id, flag_id, "manager", "ok")
        second = await service.resolve_discrepancy(sheet.id, flag_id, "someone-else", "again")

        assert second.discrepancies[0].resolved_by == "manager"
        assert second.version == first.version

    async def test_resolve_unknown_flag(self, service, open_period, caregiver_id, make_record):
        sheet = await service.compile_time_sheet(
            open_period.id,
            caregiver_id,
            SCHEDULE,
            "scheduler",
            records=[make_record(caregiver_id, WEEKDAYS[0])],
        )

        with pytest.raises(EntityNotFoundError):
            await service.resolve_discrepancy(sheet.id, uuid4(), "manager", "n/a")

    async def test_reject_and_reopen(self, service, open_period, caregiver_id, make_record):
        sheet = await service.compile_time_sheet(
            open_period.id,
            caregiver_id,
            SCHEDULE,
            "scheduler",
            records=[make_record(caregiver_id, WEEKDAYS[0])],
        )
        await service.submit_time_sheet(sheet.id, "caregiver")
        await service.request_time_sheet_review(sheet.id, "manager", reason="Check mileage")

        rejected = await service.reject_time_sheet(sheet.id, "manager", "Missing visit notes")
        reopened = await service.reopen_time_sheet(sheet.id, "manager")

        assert rejected.rejection_reason == "Missing visit notes"
        assert reopened.status is TimeSheetStatus.DRAFT
        assert [c.to_status for c in reopened.status_history] == [
            "DRAFT",
            "SUBMITTED",
            "PENDING_REVIEW",
            "REJECTED",
            "DRAFT",
        ]

    async def test_adjustments(self, service, open_period, caregiver_id, make_record):
        sheet = await service.compile_time_sheet(
            open_period.id,
            caregiver_id,
            SCHEDULE,
            "scheduler",
            records=[make_record(caregiver_id, WEEKDAYS[0])],
        )
        bonus = TimeSheetAdjustmentCreate(
            adjustment_type=AdjustmentType.BONUS, amount=Decimal("100"), description="Holiday bonus"
        )

        adjusted = await service.add_time_sheet_adjustment(sheet.id, bonus, "manager")

        assert adjusted.total_adjustments == Decimal("100")
        assert adjusted.total_gross_pay == Decimal("300.00")
        assert adjusted.adjustments[0].added_by == "manager"

        await service.submit_time_sheet(sheet.id, "caregiver")
        await service.approve_time_sheet(sheet.id, "manager")
        with pytest.raises(InvalidTransitionError):
            await service.add_time_sheet_adjustment(sheet.id, bonus, "manager")


class TestCreatePayRun:
    """Tests for pay run calculation."""

    async def test_calculates_stubs_and_totals(self, service, repository, locked_period, caregiver_id):
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")

        assert pay_run.status is PayRunStatus.CALCULATED
        assert pay_run.run_number == "2024-01"
        assert pay_run.engine_version == "test"
        assert pay_run.total_caregivers == 1
        assert pay_run.total_gross_pay == Decimal("2000.00")
        assert pay_run.total_net_pay == Decimal("1643.62")
        assert pay_run.warnings == []
        assert [c.to_status for c in pay_run.status_history] == ["DRAFT", "CALCULATING", "CALCULATED"]

        stubs = await repository.find_pay_stubs(locked_period.organization_id, pay_run_id=pay_run.id)
        assert len(stubs) == 1
        assert stubs[0].caregiver_id == caregiver_id
        assert stubs[0].federal_income_tax == Decimal("203.38")

        sheets = await repository.find_time_sheets(locked_period.organization_id)
        assert sheets[0].status is TimeSheetStatus.PROCESSING
        assert sheets[0].pay_stub_id == stubs[0].id

        period = await repository.get_pay_period(locked_period.id)
        assert period.status is PayPeriodStatus.PROCESSING
        assert period.pay_run_id == pay_run.id
        assert period.total_net_pay == Decimal("1643.62")

    async def test_missing_tax_configuration_warns(
        self, service, repository, open_period, caregiver_id, approve_sheet
    ):
        await approve_sheet(open_period, caregiver_id)
        await service.lock_pay_period(open_period.id, "manager")

        pay_run = await service.create_pay_run(run_request(open_period), "payroll-admin")

        assert len(pay_run.warnings) == 1
        assert "no tax configuration" in pay_run.warnings[0]
        assert pay_run.total_net_pay == Decimal("1643.62")

    async def test_period_must_be_locked(self, service, open_period, caregiver_id, approve_sheet):
        await approve_sheet(open_period, caregiver_id)

        with pytest.raises(PayPeriodNotReadyError):
            await service.create_pay_run(run_request(open_period), "payroll-admin")

    async def test_no_approved_time_sheets(self, service, repository, open_period):
        await service.lock_pay_period(open_period.id, "manager")
        before = await repository.get_pay_period(open_period.id)

        with pytest.raises(NoApprovedTimeSheetsError):
            await service.create_pay_run(run_request(open_period), "payroll-admin")

        assert await repository.find_pay_runs(open_period.organization_id) == []
        assert await repository.get_pay_period(open_period.id) == before

    async def test_one_live_run_per_period(self, service, locked_period):
        await service.create_pay_run(run_request(locked_period), "payroll-admin")

        with pytest.raises(InvalidTransitionError, match="already has active pay run"):
            await service.create_pay_run(run_request(locked_period), "payroll-admin")

    async def test_failure_rolls_back_everything(
        self, service, repository, locked_period, approve_sheet, monkeypatch
    ):
        second_caregiver = uuid4()
        # Period is locked; compile for the second caregiver is still allowed
        await approve_sheet(locked_period, second_caregiver)
        before = await repository.get_pay_period(locked_period.id)
        calculate = service.stub_calculator.calculate
        calls = []

        def failing_calculate(**kwargs):
            calls.append(kwargs["time_sheet"].caregiver_id)
            if len(calls) == 2:
                raise RuntimeError("tax service unavailable")
            return calculate(**kwargs)

        monkeypatch.setattr(service.stub_calculator, "calculate", failing_calculate)

        with pytest.raises(RuntimeError, match="tax service unavailable"):
            await service.create_pay_run(run_request(locked_period), "payroll-admin")

        org_id = locked_period.organization_id
        assert len(calls) == 2
        assert await repository.find_pay_runs(org_id) == []
        assert await repository.find_pay_stubs(org_id) == []
        sheets = await repository.find_time_sheets(org_id)
        assert {s.status for s in sheets} == {TimeSheetStatus.APPROVED}
        assert all(s.pay_run_id is None for s in sheets)
        assert await repository.get_pay_period(locked_period.id) == before

    async def test_cancellation_rolls_back(
        self, service, repository, locked_period, approve_sheet, monkeypatch
    ):
        await approve_sheet(locked_period, uuid4())
        cancel = asyncio.Event()
        calculate = service.stub_calculator.calculate

        def cancel_after_first(**kwargs):
            stub = calculate(**kwargs)
            cancel.set()
            return stub

        monkeypatch.setattr(service.stub_calculator, "calculate", cancel_after_first)

        with pytest.raises(PayRunCancelledError) as exc_info:
            await service.create_pay_run(run_request(locked_period), "payroll-admin", cancel)

        assert exc_info.value.processed == 1
        org_id = locked_period.organization_id
        assert await repository.find_pay_runs(org_id) == []
        assert await repository.find_pay_stubs(org_id) == []
        period = await repository.get_pay_period(locked_period.id)
        assert period.status is PayPeriodStatus.LOCKED
        assert period.pay_run_id is None

    async def test_garnishment_balance_updated(
        self, service, repository, locked_period, caregiver_id
    ):
        garnishment = await add_garnishment(repository, locked_period, caregiver_id)

        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")

        assert pay_run.total_garnishments == Decimal("100")
        stored = await repository.get_deduction(garnishment.id)
        assert stored.year_to_date_amount == Decimal("100")
        assert stored.garnishment_order.total_paid == Decimal("100")
        assert stored.garnishment_order.remaining_balance == Decimal("0")


class TestPayRunLifecycle:
    """Tests for approval, payment and cancellation."""

    async def test_full_lifecycle(self, service, repository, locked_period):
        org_id = locked_period.organization_id
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")

        approved = await service.approve_pay_run(pay_run.id, "controller", notes="Looks right")
        assert approved.approved_by == "controller"
        stubs = await repository.find_pay_stubs(org_id, pay_run_id=pay_run.id)
        assert {s.status for s in stubs} == {PayStubStatus.APPROVED}

        await service.release_pay_run_for_payment(pay_run.id, "controller")
        stubs = await repository.find_pay_stubs(org_id, pay_run_id=pay_run.id)
        assert {s.status for s in stubs} == {PayStubStatus.PAYMENT_PENDING}
        assert (await repository.get_pay_period(locked_period.id)).status is PayPeriodStatus.APPROVED

        await service.mark_pay_run_processed(pay_run.id, "disbursement")
        await service.mark_pay_run_funded(pay_run.id, "disbursement")
        completed = await service.complete_pay_run(pay_run.id, "disbursement")

        assert completed.status is PayRunStatus.COMPLETED
        assert completed.completed_at is not None
        stubs = await repository.find_pay_stubs(org_id, pay_run_id=pay_run.id)
        assert {s.status for s in stubs} == {PayStubStatus.PAID}
        sheets = await repository.find_time_sheets(org_id)
        assert {s.status for s in sheets} == {TimeSheetStatus.PAID}
        assert (await repository.get_pay_period(locked_period.id)).status is PayPeriodStatus.PAID

    async def test_cannot_complete_before_funding(self, service, locked_period):
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        await service.approve_pay_run(pay_run.id, "controller")

        with pytest.raises(InvalidTransitionError):
            await service.complete_pay_run(pay_run.id, "disbursement")

    async def test_cancel_restores_period_and_sheets(
        self, service, repository, locked_period, caregiver_id
    ):
        org_id = locked_period.organization_id
        garnishment = await add_garnishment(repository, locked_period, caregiver_id)
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        await service.approve_pay_run(pay_run.id, "controller")

        cancelled = await service.cancel_pay_run(pay_run.id, "controller", "Rate change")

        assert cancelled.status is PayRunStatus.CANCELLED
        stubs = await repository.find_pay_stubs(org_id, pay_run_id=pay_run.id)
        assert {s.status for s in stubs} == {PayStubStatus.CANCELLED}
        sheets = await repository.find_time_sheets(org_id)
        assert sheets[0].status is TimeSheetStatus.APPROVED
        assert sheets[0].pay_run_id is None
        period = await repository.get_pay_period(locked_period.id)
        assert period.status is PayPeriodStatus.LOCKED
        assert period.pay_run_id is None
        assert period.total_gross_pay == Decimal("0")
        await assert_garnishment_untouched(repository, garnishment)

        rerun = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        assert rerun.run_number == "2024-01-2"
        assert rerun.total_gross_pay == Decimal("2000.00")
        assert rerun.total_garnishments == Decimal("100")
        stored = await repository.get_deduction(garnishment.id)
        assert stored.garnishment_order.remaining_balance == Decimal("0")

    async def test_cannot_cancel_after_release(self, service, locked_period):
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        await service.approve_pay_run(pay_run.id, "controller")
        await service.release_pay_run_for_payment(pay_run.id, "controller")

        with pytest.raises(InvalidTransitionError):
            await service.cancel_pay_run(pay_run.id, "controller", "Too late")

    async def test_fail_pay_run(self, service, repository, locked_period, caregiver_id):
        org_id = locked_period.organization_id
        garnishment = await add_garnishment(repository, locked_period, caregiver_id)
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        await service.approve_pay_run(pay_run.id, "controller")
        await service.release_pay_run_for_payment(pay_run.id, "controller")

        failed = await service.fail_pay_run(pay_run.id, "disbursement", "Bank file rejected")

        assert failed.status is PayRunStatus.FAILED
        assert failed.errors == ["Bank file rejected"]
        stubs = await repository.find_pay_stubs(org_id, pay_run_id=pay_run.id)
        assert [s.status for s in stubs] == [PayStubStatus.VOID]
        assert not PayStubStateMachine.is_eligible_for_disbursement(stubs[0].status)
        assert stubs[0].is_void is True
        sheets = await repository.find_time_sheets(org_id)
        assert sheets[0].status is TimeSheetStatus.APPROVED
        assert sheets[0].pay_run_id is None
        period = await repository.get_pay_period(locked_period.id)
        assert period.status is PayPeriodStatus.LOCKED
        assert period.pay_run_id is None
        await assert_garnishment_untouched(repository, garnishment)

        rerun = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        assert rerun.run_number == "2024-01-2"
        assert rerun.total_garnishments == Decimal("100")

    async def test_void_pay_stub(self, service, repository, locked_period, caregiver_id):
        garnishment = await add_garnishment(repository, locked_period, caregiver_id)
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        stub = (await repository.find_pay_stubs(locked_period.organization_id, pay_run_id=pay_run.id))[0]

        voided = await service.void_pay_stub(stub.id, "controller", "Issued in error")

        assert voided.status is PayStubStatus.VOID
        assert voided.is_void is True
        assert voided.voided_by == "controller"
        assert (await repository.get_pay_stub(stub.id)).void_reason == "Issued in error"
        await assert_garnishment_untouched(repository, garnishment)

    async def test_cancel_after_void_reverses_once(
        self, service, repository, locked_period, caregiver_id
    ):
        garnishment = await add_garnishment(repository, locked_period, caregiver_id, balance="300")
        pay_run = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        stub = (await repository.find_pay_stubs(locked_period.organization_id, pay_run_id=pay_run.id))[0]

        await service.void_pay_stub(stub.id, "controller", "Issued in error")
        await service.cancel_pay_run(pay_run.id, "controller", "Rate change")

        await assert_garnishment_untouched(repository, garnishment, balance="300")

    async def test_year_to_date_carries_into_next_period(
        self, service, repository, locked_period, caregiver_id, make_pay_period, approve_sheet
    ):
        first = await service.create_pay_run(run_request(locked_period), "payroll-admin")
        await service.approve_pay_run(first.id, "controller")
        await service.release_pay_run_for_payment(first.id, "controller")
        await service.mark_pay_run_processed(first.id, "disbursement")
        await service.mark_pay_run_funded(first.id, "disbursement")
        await service.complete_pay_run(first.id, "disbursement")

        second_period = make_pay_period(
            start=date(2024, 1, 15),
            end=date(2024, 1, 28),
            pay_date=date(2024, 2, 2),
            period_number=2,
        )
        await repository.create_pay_period(second_period)
        days = [date(2024, 1, d) for d in (15, 16, 17, 18, 19, 22, 23, 24, 25, 26)]
        await approve_sheet(second_period, caregiver_id, days=days)
        await service.lock_pay_period(second_period.id, "manager")

        second = await service.create_pay_run(run_request(second_period), "payroll-admin")

        stub = (await repository.find_pay_stubs(second_period.organization_id, pay_run_id=second.id))[0]
        assert second.run_number == "2024-02"
        assert stub.ytd_gross_pay == Decimal("4000.00")
        assert stub.ytd_net_pay == Decimal("3287.24")


class TestServiceConfiguration:
    async def test_from_settings(self, repository):
        settings = Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            engine_version="2.1.0",
            tax_year=2024,
            tax_tables_path=None,
            default_state_code="CA",
            use_supplemental_flat_rate=False,
        )

        service = PayrollService.from_settings(repository, settings)

        assert service.engine_version == "2.1.0"
        assert service.stub_calculator.default_state_code == "CA"
        assert service.stub_calculator.use_supplemental_flat_rate is False


class TestSqlBackedService:
    """End-to-end run against the SQLAlchemy repository."""

    async def test_pay_run_round_trip(
        self, session_factory, tax_calculator, make_pay_period, make_record, caregiver_id
    ):
        repository = SqlAlchemyPayrollRepository(session_factory)
        service = PayrollService(repository, tax_calculator, engine_version="test")
        period = make_pay_period(status=PayPeriodStatus.OPEN)
        await repository.create_pay_period(period)
        records = [make_record(caregiver_id, day, hours=8) for day in WEEKDAYS]
        sheet = await service.compile_time_sheet(
            period.id, caregiver_id, SCHEDULE, "scheduler", records=records
        )
        await service.submit_time_sheet(sheet.id, "caregiver")
        await service.approve_time_sheet(sheet.id, "manager")
        await service.lock_pay_period(period.id, "manager")

        pay_run = await service.create_pay_run(run_request(period), "payroll-admin")

        stored = await repository.get_pay_run(pay_run.id)
        assert stored.status is PayRunStatus.CALCULATED
        assert stored.total_net_pay == Decimal("1643.62")
        assert stored.pay_stub_ids == pay_run.pay_stub_ids
        stored_sheet = await repository.get_time_sheet(sheet.id)
        assert stored_sheet.status is TimeSheetStatus.PROCESSING
        assert len(stored_sheet.entries) == 10

    async def test_rollback_on_empty_period(self, session_factory, tax_calculator, make_pay_period):
        repository = SqlAlchemyPayrollRepository(session_factory)
        service = PayrollService(repository, tax_calculator)
        period = make_pay_period(status=PayPeriodStatus.LOCKED)
        await repository.create_pay_period(period)

        with pytest.raises(NoApprovedTimeSheetsError):
            await service.create_pay_run(run_request(period), "payroll-admin")

        assert await repository.find_pay_runs(period.organization_id) == []
