"""Hours, overtime and pay-rate calculations.

Every function here is pure. Hours are split into regular, overtime and
double-time tiers, and each tier is priced and rounded to cents on its own
before the tiers are summed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from caregiver_payroll.calculators.rounding import (
    ZERO,
    Number,
    non_negative,
    round_hours,
    round_money,
    to_decimal,
)
from caregiver_payroll.calculators.types import (
    PAY_PERIODS_PER_YEAR,
    AppliedMultiplier,
    HoursSplit,
    OvertimePay,
    RateMultiplier,
    RateMultiplierResult,
)
from caregiver_payroll.models.enums import PayPeriodType

WEEKLY_OVERTIME_THRESHOLD = Decimal("40")
LIVE_IN_OVERTIME_THRESHOLD = Decimal("44")
DAILY_OVERTIME_THRESHOLD = Decimal("8")
DAILY_DOUBLE_TIME_THRESHOLD = Decimal("12")
SEVENTH_DAY_OVERTIME_LIMIT = Decimal("8")

OVERTIME_MULTIPLIER = Decimal("1.5")
DOUBLE_TIME_MULTIPLIER = Decimal("2.0")


def split_hours(
    total_hours: Number,
    regular_threshold: Number = WEEKLY_OVERTIME_THRESHOLD,
    double_time_threshold: Number | None = None,
) -> HoursSplit:
    """Split total hours into regular, overtime and double-time tiers.

    Hours up to ``regular_threshold`` are regular. Past it they are overtime,
    and past ``double_time_threshold`` (when given) they are double-time.
    """
    total = to_decimal(total_hours)
    threshold = to_decimal(regular_threshold)

    if total <= threshold:
        return HoursSplit(regular=total, overtime=ZERO, double_time=ZERO)

    if double_time_threshold is not None:
        dt_threshold = to_decimal(double_time_threshold)
        if total > dt_threshold:
            return HoursSplit(
                regular=threshold,
                overtime=dt_threshold - threshold,
                double_time=total - dt_threshold,
            )

    return HoursSplit(regular=threshold, overtime=total - threshold, double_time=ZERO)


def daily_overtime(
    hours: Number,
    overtime_threshold: Number = DAILY_OVERTIME_THRESHOLD,
    double_time_threshold: Number = DAILY_DOUBLE_TIME_THRESHOLD,
) -> HoursSplit:
    """Split one day's hours under daily overtime law (8h / 12h by default)."""
    return split_hours(hours, overtime_threshold, double_time_threshold)


def seventh_day_overtime(
    hours: Number, overtime_limit: Number = SEVENTH_DAY_OVERTIME_LIMIT
) -> HoursSplit:
    """Hours on the seventh consecutive workday are all premium.

    The first ``overtime_limit`` hours are overtime, the rest double-time.
    """
    total = non_negative(to_decimal(hours))
    limit = to_decimal(overtime_limit)
    overtime = min(total, limit)
    return HoursSplit(regular=ZERO, overtime=overtime, double_time=total - overtime)


def pay_for_hours(
    regular_hours: Number,
    overtime_hours: Number,
    double_time_hours: Number,
    base_rate: Number,
    overtime_multiplier: Number = OVERTIME_MULTIPLIER,
    double_time_multiplier: Number = DOUBLE_TIME_MULTIPLIER,
) -> OvertimePay:
    """Price each hour tier and round each tier to cents independently.

    Negative hours or rates price at zero.
    """
    rate = non_negative(to_decimal(base_rate))
    regular = to_decimal(regular_hours)
    overtime = to_decimal(overtime_hours)
    double_time = to_decimal(double_time_hours)

    return OvertimePay(
        regular_hours=regular,
        overtime_hours=overtime,
        double_time_hours=double_time,
        regular_pay=round_money(non_negative(regular) * rate),
        overtime_pay=round_money(
            non_negative(overtime) * rate * to_decimal(overtime_multiplier)
        ),
        double_time_pay=round_money(
            non_negative(double_time) * rate * to_decimal(double_time_multiplier)
        ),
    )


def overtime_pay(
    total_hours: Number,
    base_rate: Number,
    regular_threshold: Number = WEEKLY_OVERTIME_THRESHOLD,
    double_time_threshold: Number | None = None,
    overtime_multiplier: Number = OVERTIME_MULTIPLIER,
    double_time_multiplier: Number = DOUBLE_TIME_MULTIPLIER,
) -> OvertimePay:
    """Split total hours and price the tiers in one step."""
    split = split_hours(total_hours, regular_threshold, double_time_threshold)
    return pay_for_hours(
        split.regular,
        split.overtime,
        split.double_time,
        base_rate,
        overtime_multiplier,
        double_time_multiplier,
    )


def live_in_overtime(
    total_hours: Number,
    base_rate: Number,
    threshold: Number = LIVE_IN_OVERTIME_THRESHOLD,
    overtime_multiplier: Number = OVERTIME_MULTIPLIER,
) -> OvertimePay:
    """Overtime for live-in caregivers, who use a higher weekly threshold."""
    return overtime_pay(
        total_hours,
        base_rate,
        regular_threshold=threshold,
        overtime_multiplier=overtime_multiplier,
    )


def apply_rate_multipliers(
    base_rate: Number, multipliers: Iterable[RateMultiplier]
) -> RateMultiplierResult:
    """Apply premiums additively against the original base rate.

    ``final = base + sum(base * (m - 1))``; a 1.2 and a 1.1 premium on $20
    give $26, not $26.40.
    """
    base = round_money(base_rate)
    applied: list[AppliedMultiplier] = []
    final_rate = base

    for item in multipliers:
        factor = to_decimal(item.multiplier)
        delta = round_money(base * (factor - 1))
        applied.append(
            AppliedMultiplier(
                multiplier_type=item.multiplier_type,
                multiplier=factor,
                base_rate=base,
                applied_amount=delta,
            )
        )
        final_rate += delta

    return RateMultiplierResult(
        base_rate=base,
        final_rate=non_negative(final_rate),
        applied=tuple(applied),
    )


def blended_overtime_rate(
    period_earnings: Number,
    period_regular_hours: Number,
    multiplier: Number = OVERTIME_MULTIPLIER,
) -> Decimal:
    """Overtime rate from the caregiver's effective average rate.

    Used when a caregiver worked at more than one rate in the same week.
    Returns zero when there are no hours.
    """
    hours = to_decimal(period_regular_hours)
    if hours <= ZERO:
        return ZERO
    return round_money(to_decimal(period_earnings) / hours * to_decimal(multiplier))


def pto_accrual(hours_worked: Number, accrual_rate: Number) -> Decimal:
    """PTO hours earned for hours worked (e.g. 0.0385 per hour)."""
    return round_hours(non_negative(to_decimal(hours_worked) * to_decimal(accrual_rate)))


def prorate_salary(annual_salary: Number, period_type: PayPeriodType) -> Decimal:
    return round_money(to_decimal(annual_salary) / PAY_PERIODS_PER_YEAR[period_type])


def on_call_pay(hours: Number, on_call_rate: Number) -> Decimal:
    return round_money(non_negative(to_decimal(hours) * to_decimal(on_call_rate)))


def shift_differential(hours: Number, differential_per_hour: Number) -> Decimal:
    return round_money(non_negative(to_decimal(hours) * to_decimal(differential_per_hour)))


def total_compensation(earnings: Mapping[str, Number | None]) -> Decimal:
    """Sum an earnings breakdown (regular, overtime, bonuses, ...) to cents."""
    return round_money(sum((to_decimal(v) for v in earnings.values()), ZERO))
