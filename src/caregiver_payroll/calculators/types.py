"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from caregiver_payroll.calculators.rounding import ZERO
from caregiver_payroll.models.entities import CalculatedDeduction, TaxConfiguration
from caregiver_payroll.models.enums import (
    PayPeriodType,
    RateMultiplierType,
    TaxTreatment,
)

PAY_PERIODS_PER_YEAR: dict[PayPeriodType, int] = {
    PayPeriodType.WEEKLY: 52,
    PayPeriodType.BI_WEEKLY: 26,
    PayPeriodType.SEMI_MONTHLY: 24,
    PayPeriodType.MONTHLY: 12,
    PayPeriodType.DAILY: 260,
    PayPeriodType.CUSTOM: 52,  # custom periods annualize as weekly
}


# ===== Hours & Rates =====


@dataclass(frozen=True)
class HoursSplit:
    """Hours divided into pay tiers."""

    regular: Decimal
    overtime: Decimal
    double_time: Decimal

    @property
    def total(self) -> Decimal:
        return self.regular + self.overtime + self.double_time


@dataclass(frozen=True)
class OvertimePay:
    """Hours per tier and the cent-rounded pay for each tier."""

    regular_hours: Decimal
    overtime_hours: Decimal
    double_time_hours: Decimal
    regular_pay: Decimal
    overtime_pay: Decimal
    double_time_pay: Decimal

    @property
    def total_hours(self) -> Decimal:
        return self.regular_hours + self.overtime_hours + self.double_time_hours

    @property
    def total_pay(self) -> Decimal:
        return self.regular_pay + self.overtime_pay + self.double_time_pay


@dataclass(frozen=True)
class RateMultiplier:
    """A requested premium, e.g. 1.25 for a 25% weekend premium."""

    multiplier_type: RateMultiplierType
    multiplier: Decimal


@dataclass(frozen=True)
class AppliedMultiplier:
    multiplier_type: RateMultiplierType
    multiplier: Decimal
    base_rate: Decimal
    applied_amount: Decimal  # dollar delta against the base rate


@dataclass(frozen=True)
class RateMultiplierResult:
    base_rate: Decimal
    final_rate: Decimal
    applied: tuple[AppliedMultiplier, ...] = ()


# ===== Taxes =====


@dataclass(frozen=True)
class TaxWithholding:
    """Per-period tax withholding for one caregiver."""

    federal_income_tax: Decimal = ZERO
    state_income_tax: Decimal = ZERO
    local_income_tax: Decimal = ZERO
    social_security_tax: Decimal = ZERO
    medicare_tax: Decimal = ZERO
    additional_medicare_tax: Decimal = ZERO

    @property
    def total_tax(self) -> Decimal:
        return (
            self.federal_income_tax
            + self.state_income_tax
            + self.local_income_tax
            + self.social_security_tax
            + self.medicare_tax
            + self.additional_medicare_tax
        )


@dataclass(frozen=True)
class AggregateParameters:
    """Inputs for the aggregate supplemental withholding method."""

    regular_gross_pay: Decimal
    pay_period_type: PayPeriodType
    tax_config: TaxConfiguration


@dataclass(frozen=True)
class EmployerFica:
    social_security: Decimal
    medicare: Decimal

    @property
    def total(self) -> Decimal:
        return self.social_security + self.medicare


@dataclass(frozen=True)
class QuarterlyTaxEstimate:
    """Estimated Form 941 deposit liability for a quarter."""

    quarter_wages: Decimal
    withheld_income_tax: Decimal
    employee_social_security: Decimal
    employee_medicare: Decimal
    employer_social_security: Decimal
    employer_medicare: Decimal

    @property
    def total_deposits(self) -> Decimal:
        return (
            self.withheld_income_tax
            + self.employee_social_security
            + self.employee_medicare
            + self.employer_social_security
            + self.employer_medicare
        )


# ===== Deductions =====


@dataclass(frozen=True)
class DeductionStep:
    """Result of one stage of the deduction fold.

    ``base`` is the running amount entering the stage and ``remaining`` what
    is left after every deduction in the stage has been taken.
    """

    tax_treatment: TaxTreatment
    base: Decimal
    deductions: tuple[CalculatedDeduction, ...]
    remaining: Decimal

    @property
    def total(self) -> Decimal:
        return sum((d.calculated_amount for d in self.deductions), ZERO)


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of the pre-tax, statutory, post-tax fold."""

    gross_pay: Decimal
    pre_tax: DeductionStep
    statutory: DeductionStep
    post_tax: DeductionStep

    @property
    def taxable_income(self) -> Decimal:
        return self.pre_tax.remaining

    @property
    def disposable_income(self) -> Decimal:
        return self.statutory.remaining

    @property
    def net_pay(self) -> Decimal:
        return self.post_tax.remaining

    @property
    def pre_tax_total(self) -> Decimal:
        return self.pre_tax.total

    @property
    def statutory_total(self) -> Decimal:
        return self.statutory.total

    @property
    def post_tax_total(self) -> Decimal:
        return self.post_tax.total

    @property
    def total_deductions(self) -> Decimal:
        return self.pre_tax_total + self.statutory_total + self.post_tax_total

    @property
    def deductions(self) -> list[CalculatedDeduction]:
        return [
            *self.pre_tax.deductions,
            *self.statutory.deductions,
            *self.post_tax.deductions,
        ]


# ===== Timesheet compilation =====


@dataclass(frozen=True)
class LeaveHours:
    """Paid leave hours for the period, paid at the base rate."""

    pto: Decimal = ZERO
    holiday: Decimal = ZERO
    sick: Decimal = ZERO
    other: Decimal = ZERO


@dataclass
class YearToDate:
    """Year-to-date totals from a caregiver's prior pay stubs.

    ``taxable_wages`` sums taxable income after pre-tax deductions, the base
    Social Security and Medicare are withheld on, so wage-base limits are
    measured against the same wages the taxes were computed from.
    """

    gross_pay: Decimal = ZERO
    taxable_wages: Decimal = ZERO
    net_pay: Decimal = ZERO
    federal_tax: Decimal = ZERO
    state_tax: Decimal = ZERO
    local_tax: Decimal = ZERO
    social_security: Decimal = ZERO
    medicare: Decimal = ZERO
    deductions: Decimal = ZERO
    stub_count: int = field(default=0)
