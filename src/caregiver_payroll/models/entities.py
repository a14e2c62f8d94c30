"""Payroll domain entities.

Entities are pydantic models so they can be snapshotted, compared and stored
as JSON payloads. Money fields are ``Decimal`` values already rounded to cents
by the calculators; entities never round on their own.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from caregiver_payroll.models.enums import (
    AdjustmentType,
    CalculationMethod,
    DeductionType,
    DiscrepancySeverity,
    DiscrepancyType,
    FilingStatus,
    GarnishmentType,
    PaymentMethod,
    PayPeriodStatus,
    PayPeriodType,
    PayRunStatus,
    PayRunType,
    PayStubStatus,
    RateMultiplierType,
    TaxTreatment,
    TimeSheetStatus,
)

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusChange(BaseModel):
    """One append-only entry in an entity's status history."""

    model_config = ConfigDict(frozen=True)

    from_status: str | None
    to_status: str
    timestamp: datetime = Field(default_factory=utcnow)
    changed_by: str
    reason: str | None = None
    notes: str | None = None
    automatic: bool = False


class Entity(BaseModel):
    """Common identity and audit fields.

    ``version`` is owned by the repository: it is compared on update and
    incremented when the write succeeds.
    """

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: str | None = None
    updated_by: str | None = None
    version: int = 0

    def touch(self, actor: str) -> None:
        self.updated_at = utcnow()
        self.updated_by = actor


class StatusTracked(Entity):
    """Entity with a lifecycle status and its history."""

    status_history: list[StatusChange] = Field(default_factory=list)


# ===== Pay Periods =====


class PayPeriod(StatusTracked):
    """A date range that caregivers are paid for."""

    branch_id: UUID | None = None
    period_type: PayPeriodType = PayPeriodType.BI_WEEKLY
    period_number: int
    period_year: int
    start_date: date
    end_date: date
    pay_date: date
    cutoff_date: date | None = None
    approval_deadline: date | None = None
    status: PayPeriodStatus = PayPeriodStatus.DRAFT
    pay_run_id: UUID | None = None
    notes: str | None = None

    total_caregivers: int = 0
    total_hours: Decimal = ZERO
    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_tax_withheld: Decimal = ZERO
    total_deductions: Decimal = ZERO

    def update_statistics(self, pay_run: PayRun) -> None:
        self.total_caregivers = pay_run.total_caregivers
        self.total_hours = pay_run.total_hours
        self.total_gross_pay = pay_run.total_gross_pay
        self.total_net_pay = pay_run.total_net_pay
        self.total_tax_withheld = pay_run.total_tax_withheld
        self.total_deductions = pay_run.total_deductions

    def clear_statistics(self) -> None:
        self.total_caregivers = 0
        self.total_hours = ZERO
        self.total_gross_pay = ZERO
        self.total_net_pay = ZERO
        self.total_tax_withheld = ZERO
        self.total_deductions = ZERO


# ===== Time Sheets =====


class AppliedRateMultiplier(BaseModel):
    """A shift premium applied to an entry's base rate."""

    model_config = ConfigDict(frozen=True)

    multiplier_type: RateMultiplierType
    multiplier: Decimal
    base_rate: Decimal
    applied_amount: Decimal


class TimeSheetEntry(BaseModel):
    """One worked interval on a time sheet."""

    id: UUID = Field(default_factory=uuid4)
    evv_record_id: str | None = None
    client_id: UUID | None = None
    visit_id: UUID | None = None
    service_type: str | None = None
    service_code: str | None = None

    work_date: date
    clock_in: datetime
    clock_out: datetime
    break_hours: Decimal = ZERO

    total_hours: Decimal = ZERO
    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    double_time_hours: Decimal = ZERO

    base_rate: Decimal = ZERO
    effective_rate: Decimal = ZERO
    rate_multipliers: list[AppliedRateMultiplier] = Field(default_factory=list)

    regular_pay: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    double_time_pay: Decimal = ZERO
    total_pay: Decimal = ZERO

    is_weekend: bool = False
    is_holiday: bool = False
    is_night_shift: bool = False
    is_live_in: bool = False

    requires_review: bool = False
    review_reasons: list[str] = Field(default_factory=list)


class TimeSheetAdjustment(BaseModel):
    """A manual earnings adjustment with its provenance."""

    id: UUID = Field(default_factory=uuid4)
    adjustment_type: AdjustmentType
    amount: Decimal
    description: str
    reason: str | None = None
    reference_id: str | None = None
    added_by: str
    added_at: datetime = Field(default_factory=utcnow)


class DiscrepancyFlag(BaseModel):
    """An anomaly detected in a time sheet's entries."""

    id: UUID = Field(default_factory=uuid4)
    discrepancy_type: DiscrepancyType
    severity: DiscrepancySeverity
    description: str
    entry_ids: list[UUID] = Field(default_factory=list)
    requires_resolution: bool = True
    detected_at: datetime = Field(default_factory=utcnow)
    resolved: bool = False
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None

    @property
    def is_blocking(self) -> bool:
        return self.requires_resolution and not self.resolved


class TimeSheet(StatusTracked):
    """Hours and earnings of one caregiver for one pay period."""

    caregiver_id: UUID
    pay_period_id: UUID
    period_start: date
    period_end: date

    entries: list[TimeSheetEntry] = Field(default_factory=list)

    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    double_time_hours: Decimal = ZERO
    pto_hours: Decimal = ZERO
    holiday_hours: Decimal = ZERO
    sick_hours: Decimal = ZERO
    other_hours: Decimal = ZERO
    total_hours: Decimal = ZERO

    base_rate: Decimal = ZERO
    overtime_rate: Decimal = ZERO
    double_time_rate: Decimal = ZERO

    regular_earnings: Decimal = ZERO
    overtime_earnings: Decimal = ZERO
    double_time_earnings: Decimal = ZERO
    pto_earnings: Decimal = ZERO
    holiday_earnings: Decimal = ZERO
    sick_earnings: Decimal = ZERO
    other_earnings: Decimal = ZERO
    gross_earnings: Decimal = ZERO

    adjustments: list[TimeSheetAdjustment] = Field(default_factory=list)
    total_adjustments: Decimal = ZERO
    total_gross_pay: Decimal = ZERO

    discrepancies: list[DiscrepancyFlag] = Field(default_factory=list)
    pto_accrued: Decimal = ZERO
    evv_record_ids: list[str] = Field(default_factory=list)

    status: TimeSheetStatus = TimeSheetStatus.DRAFT
    submitted_at: datetime | None = None
    submitted_by: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    approval_notes: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None

    pay_run_id: UUID | None = None
    pay_stub_id: UUID | None = None

    def recalculate_totals(self) -> None:
        """Re-derive summary totals from category values and adjustments."""
        self.total_hours = (
            self.regular_hours
            + self.overtime_hours
            + self.double_time_hours
            + self.pto_hours
            + self.holiday_hours
            + self.sick_hours
            + self.other_hours
        )
        self.gross_earnings = (
            self.regular_earnings
            + self.overtime_earnings
            + self.double_time_earnings
            + self.pto_earnings
            + self.holiday_earnings
            + self.sick_earnings
            + self.other_earnings
        )
        self.total_adjustments = sum((a.amount for a in self.adjustments), ZERO)
        self.total_gross_pay = self.gross_earnings + self.total_adjustments

    @property
    def blocking_discrepancies(self) -> list[DiscrepancyFlag]:
        return [d for d in self.discrepancies if d.is_blocking]

    def find_discrepancy(self, flag_id: UUID) -> DiscrepancyFlag | None:
        return next((d for d in self.discrepancies if d.id == flag_id), None)


# ===== Deductions =====


class GarnishmentOrder(BaseModel):
    """Legal order backing a garnishment deduction.

    ``order_amount`` is an explicit per-period amount; when absent the
    garnishment takes ``max_percentage`` of disposable income.
    """

    order_number: str
    issuing_authority: str
    order_type: GarnishmentType
    order_date: date | None = None
    order_amount: Decimal | None = None
    max_percentage: Decimal | None = None
    priority: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    total_amount_ordered: Decimal | None = None
    total_paid: Decimal = ZERO
    remaining_balance: Decimal | None = None
    case_number: str | None = None


class Deduction(Entity):
    """A recurring withholding rule for one caregiver.

    ``amount`` is the literal amount for FIXED, GRADUATED and FORMULA methods;
    ``percentage`` is a percent number (5 means 5%) for the percentage methods.
    """

    caregiver_id: UUID
    deduction_type: DeductionType
    code: str
    description: str
    calculation_method: CalculationMethod = CalculationMethod.FIXED
    tax_treatment: TaxTreatment
    amount: Decimal = ZERO
    percentage: Decimal | None = None

    yearly_limit: Decimal | None = None
    year_to_date_amount: Decimal = ZERO

    garnishment_order: GarnishmentOrder | None = None

    employer_match_percentage: Decimal | None = None
    employer_match_max: Decimal | None = None

    is_active: bool = True
    effective_date: date | None = None
    end_date: date | None = None

    def is_effective(self, on: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_date is not None and self.effective_date > on:
            return False
        if self.end_date is not None and self.end_date < on:
            return False
        return True


class CalculatedDeduction(BaseModel):
    """A deduction line on a pay stub with its computed amount."""

    model_config = ConfigDict(frozen=True)

    deduction_id: UUID | None = None
    deduction_type: DeductionType
    code: str
    description: str
    tax_treatment: TaxTreatment
    calculation_method: CalculationMethod
    calculated_amount: Decimal
    garnishment_type: GarnishmentType | None = None
    employer_match_amount: Decimal = ZERO

    @classmethod
    def from_deduction(cls, deduction: Deduction, amount: Decimal) -> CalculatedDeduction:
        order = deduction.garnishment_order
        return cls(
            deduction_id=deduction.id,
            deduction_type=deduction.deduction_type,
            code=deduction.code,
            description=deduction.description,
            tax_treatment=deduction.tax_treatment,
            calculation_method=deduction.calculation_method,
            calculated_amount=amount,
            garnishment_type=order.order_type if order else None,
        )


# ===== Tax Configuration & Payment Elections =====


class TaxConfiguration(Entity):
    """A caregiver's withholding elections for a date range."""

    caregiver_id: UUID | None = None

    federal_filing_status: FilingStatus = FilingStatus.SINGLE
    federal_extra_withholding: Decimal = ZERO
    federal_exempt: bool = False
    w4_step2_multiple_jobs: bool = False
    w4_step3_dependents_amount: Decimal = ZERO
    w4_step4a_other_income: Decimal = ZERO
    w4_step4b_deductions: Decimal = ZERO
    w4_step4c_extra_withholding: Decimal = ZERO

    state_code: str | None = None
    state_filing_status: str | None = None
    state_allowances: int = 0
    state_extra_withholding: Decimal = ZERO
    state_exempt: bool = False

    local_jurisdiction: str | None = None
    local_exempt: bool = False

    effective_date: date
    end_date: date | None = None

    def is_effective(self, on: date) -> bool:
        if self.effective_date > on:
            return False
        return self.end_date is None or self.end_date >= on


class PaymentElection(Entity):
    """How a caregiver wants to be paid."""

    caregiver_id: UUID
    payment_method: PaymentMethod = PaymentMethod.DIRECT_DEPOSIT
    bank_account_last4: str | None = None
    routing_number_last4: str | None = None


# ===== Pay Runs & Pay Stubs =====


class PayStub(StatusTracked):
    """Immutable-once-calculated pay snapshot for one caregiver."""

    pay_run_id: UUID
    pay_period_id: UUID
    time_sheet_id: UUID
    caregiver_id: UUID
    stub_number: str
    pay_date: date
    period_start: date
    period_end: date
    state_code: str | None = None

    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    double_time_hours: Decimal = ZERO
    pto_hours: Decimal = ZERO
    holiday_hours: Decimal = ZERO
    sick_hours: Decimal = ZERO
    other_hours: Decimal = ZERO
    total_hours: Decimal = ZERO

    regular_pay: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    double_time_pay: Decimal = ZERO
    pto_pay: Decimal = ZERO
    holiday_pay: Decimal = ZERO
    sick_pay: Decimal = ZERO
    other_pay: Decimal = ZERO
    bonuses: Decimal = ZERO
    commissions: Decimal = ZERO
    other_earnings: Decimal = ZERO
    reimbursements: Decimal = ZERO
    gross_pay: Decimal = ZERO
    taxable_income: Decimal = ZERO

    federal_income_tax: Decimal = ZERO
    state_income_tax: Decimal = ZERO
    local_income_tax: Decimal = ZERO
    social_security_tax: Decimal = ZERO
    medicare_tax: Decimal = ZERO
    additional_medicare_tax: Decimal = ZERO
    total_tax: Decimal = ZERO

    deductions: list[CalculatedDeduction] = Field(default_factory=list)
    pre_tax_deductions: Decimal = ZERO
    post_tax_deductions: Decimal = ZERO
    total_benefits: Decimal = ZERO
    total_retirement: Decimal = ZERO
    total_garnishments: Decimal = ZERO
    other_deductions: Decimal = ZERO
    total_deductions: Decimal = ZERO
    disposable_income: Decimal = ZERO
    net_pay: Decimal = ZERO

    employer_social_security: Decimal = ZERO
    employer_medicare: Decimal = ZERO
    employer_match: Decimal = ZERO

    ytd_gross_pay: Decimal = ZERO
    ytd_net_pay: Decimal = ZERO
    ytd_federal_tax: Decimal = ZERO
    ytd_state_tax: Decimal = ZERO
    ytd_local_tax: Decimal = ZERO
    ytd_social_security: Decimal = ZERO
    ytd_medicare: Decimal = ZERO
    ytd_deductions: Decimal = ZERO

    payment_method: PaymentMethod = PaymentMethod.DIRECT_DEPOSIT
    bank_account_last4: str | None = None

    status: PayStubStatus = PayStubStatus.DRAFT
    calculated_at: datetime | None = None
    is_void: bool = False
    void_reason: str | None = None
    voided_at: datetime | None = None
    voided_by: str | None = None


class PayRun(StatusTracked):
    """One executed payroll cycle for a pay period."""

    pay_period_id: UUID
    run_number: str
    run_type: PayRunType = PayRunType.REGULAR
    period_start: date
    period_end: date
    pay_date: date
    status: PayRunStatus = PayRunStatus.DRAFT
    engine_version: str | None = None
    notes: str | None = None

    pay_stub_ids: list[UUID] = Field(default_factory=list)

    total_caregivers: int = 0
    total_hours: Decimal = ZERO
    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_tax_withheld: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_federal_tax: Decimal = ZERO
    total_state_tax: Decimal = ZERO
    total_local_tax: Decimal = ZERO
    total_social_security: Decimal = ZERO
    total_medicare: Decimal = ZERO
    total_benefits: Decimal = ZERO
    total_garnishments: Decimal = ZERO
    total_other_deductions: Decimal = ZERO
    total_reimbursements: Decimal = ZERO
    total_employer_taxes: Decimal = ZERO

    direct_deposit_count: int = 0
    direct_deposit_amount: Decimal = ZERO
    check_count: int = 0
    check_amount: Decimal = ZERO
    cash_count: int = 0
    cash_amount: Decimal = ZERO
    other_payment_count: int = 0
    other_payment_amount: Decimal = ZERO

    calculated_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    completed_at: datetime | None = None

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pay_stubs(self) -> int:
        return len(self.pay_stub_ids)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def add_pay_stub(self, stub: PayStub) -> None:
        """Fold one calculated stub into the run's aggregates."""
        self.pay_stub_ids.append(stub.id)
        self.total_caregivers += 1
        self.total_hours += stub.total_hours
        self.total_gross_pay += stub.gross_pay
        self.total_net_pay += stub.net_pay
        self.total_tax_withheld += stub.total_tax
        self.total_deductions += stub.total_deductions
        self.total_federal_tax += stub.federal_income_tax
        self.total_state_tax += stub.state_income_tax
        self.total_local_tax += stub.local_income_tax
        self.total_social_security += stub.social_security_tax
        self.total_medicare += stub.medicare_tax + stub.additional_medicare_tax
        self.total_benefits += stub.total_benefits + stub.total_retirement
        self.total_garnishments += stub.total_garnishments
        self.total_other_deductions += stub.other_deductions
        self.total_reimbursements += stub.reimbursements
        self.total_employer_taxes += stub.employer_social_security + stub.employer_medicare

        if stub.payment_method == PaymentMethod.DIRECT_DEPOSIT:
            self.direct_deposit_count += 1
            self.direct_deposit_amount += stub.net_pay
        elif stub.payment_method == PaymentMethod.CHECK:
            self.check_count += 1
            self.check_amount += stub.net_pay
        elif stub.payment_method == PaymentMethod.CASH:
            self.cash_count += 1
            self.cash_amount += stub.net_pay
        else:
            self.other_payment_count += 1
            self.other_payment_amount += stub.net_pay


# ===== Time source =====


class VerifiedTimeRecord(BaseModel):
    """A verified visit record supplied by the time-tracking/EVV system."""

    record_id: str
    caregiver_id: UUID
    client_id: UUID | None = None
    visit_id: UUID | None = None
    service_type: str | None = None
    service_code: str | None = None
    clock_in: datetime
    clock_out: datetime
    break_minutes: int = 0
    pay_rate: Decimal | None = None
    is_holiday: bool = False
    is_live_in: bool = False
    requires_review: bool = False
    review_reasons: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
