"""Deduction and garnishment calculation.

Deductions are taken in a fixed order: pre-tax deductions reduce taxable
income, statutory deductions (taxes computed by the tax calculator) come out
of taxable income, and post-tax deductions, garnishments first in legal
priority, come out of what is left. Each stage is a fold producing an
immutable ``DeductionStep``; no amount may exceed the running base it is
taken from.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from enum import Enum

from caregiver_payroll.calculators.rounding import (
    ZERO,
    Number,
    non_negative,
    percent_of,
    round_money,
    to_decimal,
)
from caregiver_payroll.calculators.types import DeductionResult, DeductionStep
from caregiver_payroll.models.entities import CalculatedDeduction, Deduction
from caregiver_payroll.models.enums import (
    CalculationMethod,
    DeductionType,
    GarnishmentType,
    TaxTreatment,
)

# Default ceiling as a percent of disposable income
GARNISHMENT_CEILINGS: dict[GarnishmentType, Decimal] = {
    GarnishmentType.CHILD_SUPPORT: Decimal("50"),
    GarnishmentType.SPOUSAL_SUPPORT: Decimal("50"),
    GarnishmentType.TAX_LEVY: Decimal("100"),
    GarnishmentType.STUDENT_LOAN: Decimal("15"),
    GarnishmentType.CREDITOR: Decimal("25"),
    GarnishmentType.BANKRUPTCY: Decimal("25"),
    GarnishmentType.OTHER: Decimal("25"),
}

# Lower rank is withheld first
GARNISHMENT_PRIORITY: dict[GarnishmentType, int] = {
    GarnishmentType.CHILD_SUPPORT: 1,
    GarnishmentType.SPOUSAL_SUPPORT: 1,
    GarnishmentType.TAX_LEVY: 2,
    GarnishmentType.STUDENT_LOAN: 3,
    GarnishmentType.CREDITOR: 4,
    GarnishmentType.BANKRUPTCY: 4,
    GarnishmentType.OTHER: 5,
}
NON_GARNISHMENT_PRIORITY = 999


class DeductionCategory(str, Enum):
    """Pay stub grouping of deduction lines."""

    TAXES = "taxes"
    BENEFITS = "benefits"
    RETIREMENT = "retirement"
    GARNISHMENTS = "garnishments"
    OTHER = "other"


TAX_TYPES = frozenset(
    {
        DeductionType.FEDERAL_TAX,
        DeductionType.STATE_TAX,
        DeductionType.LOCAL_TAX,
        DeductionType.SOCIAL_SECURITY,
        DeductionType.MEDICARE,
        DeductionType.ADDITIONAL_MEDICARE,
    }
)
BENEFIT_TYPES = frozenset(
    {
        DeductionType.HEALTH_INSURANCE,
        DeductionType.DENTAL_INSURANCE,
        DeductionType.VISION_INSURANCE,
        DeductionType.LIFE_INSURANCE,
        DeductionType.DISABILITY_INSURANCE,
        DeductionType.HSA,
        DeductionType.FSA,
    }
)
RETIREMENT_TYPES = frozenset(
    {DeductionType.RETIREMENT_401K, DeductionType.RETIREMENT_403B, DeductionType.ROTH_401K}
)
GARNISHMENT_TYPES = frozenset(
    {DeductionType.GARNISHMENT, DeductionType.CHILD_SUPPORT, DeductionType.TAX_LEVY}
)


# ===== Single deductions =====


def remaining_deduction_limit(deduction: Deduction) -> Decimal | None:
    """Amount left under the yearly limit, or None when there is no limit."""
    if deduction.yearly_limit is None:
        return None
    ytd = to_decimal(deduction.year_to_date_amount)
    return non_negative(to_decimal(deduction.yearly_limit) - ytd)


def is_deduction_limit_reached(deduction: Deduction) -> bool:
    remaining = remaining_deduction_limit(deduction)
    return remaining is not None and remaining <= ZERO


def deduction_amount(gross_pay: Number, net_pay: Number, deduction: Deduction) -> Decimal:
    """Amount for one deduction, clamped to its remaining yearly limit.

    GRADUATED and FORMULA deductions carry a precomputed ``amount``.
    """
    method = deduction.calculation_method
    if method is CalculationMethod.FIXED:
        amount = to_decimal(deduction.amount)
    elif method is CalculationMethod.PERCENTAGE:
        amount = percent_of(to_decimal(gross_pay), deduction.percentage)
    elif method is CalculationMethod.PERCENTAGE_OF_NET:
        amount = percent_of(to_decimal(net_pay), deduction.percentage)
    elif method in (CalculationMethod.GRADUATED, CalculationMethod.FORMULA):
        amount = to_decimal(deduction.amount)
    else:
        raise ValueError(f"Unsupported calculation method: {method}")

    amount = round_money(amount)
    remaining = remaining_deduction_limit(deduction)
    if remaining is not None:
        amount = min(amount, remaining)
    return non_negative(amount)


def garnishment_amount(
    gross_pay: Number, disposable_income: Number, deduction: Deduction
) -> Decimal:
    """Amount for a garnishment, capped by its disposable-income ceiling.

    An explicit ``order_amount`` is used when present, still limited by the
    ceiling; otherwise the ceiling itself is taken. The result is then capped
    by the order's remaining balance. Deductions without an order are
    calculated as ordinary deductions against disposable income.
    """
    order = deduction.garnishment_order
    if order is None:
        return deduction_amount(gross_pay, disposable_income, deduction)

    disposable = to_decimal(disposable_income)
    if disposable <= ZERO:
        return ZERO

    ceiling_pct = (
        to_decimal(order.max_percentage)
        if order.max_percentage is not None
        else GARNISHMENT_CEILINGS[order.order_type]
    )
    ceiling = round_money(percent_of(disposable, ceiling_pct))

    if order.order_amount is not None:
        amount = min(round_money(order.order_amount), ceiling)
    else:
        amount = ceiling

    if order.remaining_balance is not None:
        amount = min(amount, non_negative(to_decimal(order.remaining_balance)))

    return non_negative(amount)


def sort_garnishments_by_priority(deductions: Iterable[Deduction]) -> list[Deduction]:
    """Order deductions so garnishments come first in legal priority.

    Child and spousal support, then tax levies, student loans, creditors and
    other orders; ties fall back to the order's own ``priority``. Deductions
    without an order keep their relative position at the end.
    """

    def key(deduction: Deduction) -> tuple[int, int]:
        order = deduction.garnishment_order
        if order is None:
            return (NON_GARNISHMENT_PRIORITY, NON_GARNISHMENT_PRIORITY)
        explicit = order.priority if order.priority is not None else NON_GARNISHMENT_PRIORITY
        return (GARNISHMENT_PRIORITY[order.order_type], explicit)

    return sorted(deductions, key=key)


def employer_match(
    employee_contribution: Number,
    match_percentage: Number,
    max_match: Number | None = None,
) -> Decimal:
    """Employer match on an employee contribution, optionally capped."""
    match = round_money(percent_of(to_decimal(employee_contribution), match_percentage))
    if max_match is not None:
        match = min(match, to_decimal(max_match))
    return non_negative(match)


# ===== Deduction fold =====


def apply_pre_tax(gross_pay: Number, deductions: Sequence[Deduction]) -> DeductionStep:
    """Take pre-tax deductions from gross, producing taxable income.

    Percentage deductions use the original gross; percentage-of-net
    deductions use the running taxable income.
    """
    gross = non_negative(to_decimal(gross_pay))
    running = gross
    taken: list[CalculatedDeduction] = []

    for deduction in deductions:
        amount = min(deduction_amount(gross, running, deduction), running)
        running -= amount
        taken.append(_annotate(deduction, amount))

    return DeductionStep(
        tax_treatment=TaxTreatment.PRE_TAX,
        base=gross,
        deductions=tuple(taken),
        remaining=running,
    )


def apply_statutory(taxable_income: Number, deductions: Sequence[Deduction]) -> DeductionStep:
    """Take statutory deductions (precomputed tax amounts) from taxable income."""
    taxable = non_negative(to_decimal(taxable_income))
    running = taxable
    taken: list[CalculatedDeduction] = []

    for deduction in deductions:
        amount = min(deduction_amount(taxable, running, deduction), running)
        running -= amount
        taken.append(_annotate(deduction, amount))

    return DeductionStep(
        tax_treatment=TaxTreatment.STATUTORY,
        base=taxable,
        deductions=tuple(taken),
        remaining=running,
    )


def apply_post_tax(
    gross_pay: Number, disposable_income: Number, deductions: Sequence[Deduction]
) -> DeductionStep:
    """Take post-tax deductions, garnishments first, from disposable income.

    Garnishment ceilings are measured against disposable income; every amount
    is capped at the running net so net pay never goes negative.
    """
    gross = to_decimal(gross_pay)
    disposable = non_negative(to_decimal(disposable_income))
    running = disposable
    taken: list[CalculatedDeduction] = []

    for deduction in sort_garnishments_by_priority(deductions):
        if deduction.garnishment_order is not None:
            amount = garnishment_amount(gross, disposable, deduction)
        else:
            amount = deduction_amount(gross, running, deduction)
        amount = min(amount, running)
        running -= amount
        taken.append(_annotate(deduction, amount))

    return DeductionStep(
        tax_treatment=TaxTreatment.POST_TAX,
        base=disposable,
        deductions=tuple(taken),
        remaining=running,
    )


def calculate_all_deductions(
    gross_pay: Number,
    pre_tax: Sequence[Deduction],
    post_tax: Sequence[Deduction],
    statutory: Sequence[Deduction],
) -> DeductionResult:
    """Run the pre-tax, statutory and post-tax stages in order."""
    gross = non_negative(to_decimal(gross_pay))
    pre_step = apply_pre_tax(gross, pre_tax)
    statutory_step = apply_statutory(pre_step.remaining, statutory)
    post_step = apply_post_tax(gross, statutory_step.remaining, post_tax)

    return DeductionResult(
        gross_pay=gross,
        pre_tax=pre_step,
        statutory=statutory_step,
        post_tax=post_step,
    )


def _annotate(deduction: Deduction, amount: Decimal) -> CalculatedDeduction:
    calculated = CalculatedDeduction.from_deduction(deduction, amount)
    if deduction.employer_match_percentage is None:
        return calculated
    match = employer_match(
        amount, deduction.employer_match_percentage, deduction.employer_match_max
    )
    return calculated.model_copy(update={"employer_match_amount": match})


# ===== Grouping =====


def deduction_category(deduction: CalculatedDeduction) -> DeductionCategory:
    if deduction.tax_treatment is TaxTreatment.STATUTORY or deduction.deduction_type in TAX_TYPES:
        return DeductionCategory.TAXES
    if deduction.garnishment_type is not None or deduction.deduction_type in GARNISHMENT_TYPES:
        return DeductionCategory.GARNISHMENTS
    if deduction.deduction_type in RETIREMENT_TYPES:
        return DeductionCategory.RETIREMENT
    if deduction.deduction_type in BENEFIT_TYPES:
        return DeductionCategory.BENEFITS
    return DeductionCategory.OTHER


def group_deductions_by_category(
    deductions: Iterable[CalculatedDeduction],
) -> dict[DeductionCategory, list[CalculatedDeduction]]:
    """Bucket deduction lines for pay stub display and totals."""
    groups: dict[DeductionCategory, list[CalculatedDeduction]] = {
        category: [] for category in DeductionCategory
    }
    for deduction in deductions:
        groups[deduction_category(deduction)].append(deduction)
    return groups
