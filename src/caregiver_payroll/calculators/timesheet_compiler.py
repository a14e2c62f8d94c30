"""Compile verified time records into a time sheet.

Records become entries with their paid hours and shift premiums. Entries are
grouped into seven-day workweeks counted from the pay period start, overtime
tiers are allocated to entries in chronological order under the configured
overtime rule, and each entry's tiers are priced with per-tier rounding.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from caregiver_payroll.calculators.discrepancies import detect_discrepancies
from caregiver_payroll.calculators.hours import (
    DAILY_DOUBLE_TIME_THRESHOLD,
    DAILY_OVERTIME_THRESHOLD,
    DOUBLE_TIME_MULTIPLIER,
    LIVE_IN_OVERTIME_THRESHOLD,
    OVERTIME_MULTIPLIER,
    SEVENTH_DAY_OVERTIME_LIMIT,
    WEEKLY_OVERTIME_THRESHOLD,
    apply_rate_multipliers,
    blended_overtime_rate,
    daily_overtime,
    pay_for_hours,
    pto_accrual,
    seventh_day_overtime,
    split_hours,
)
from caregiver_payroll.calculators.rounding import (
    ZERO,
    non_negative,
    round_hours,
    round_money,
)
from caregiver_payroll.calculators.types import (
    HoursSplit,
    LeaveHours,
    OvertimePay,
    RateMultiplier,
)
from caregiver_payroll.models.entities import (
    AppliedRateMultiplier,
    PayPeriod,
    StatusChange,
    TimeSheet,
    TimeSheetEntry,
    VerifiedTimeRecord,
)
from caregiver_payroll.models.enums import (
    OvertimeRule,
    RateMultiplierType,
    TimeSheetStatus,
)

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = Decimal("3600")
MINUTES_PER_HOUR = Decimal("60")


@dataclass(frozen=True)
class RateSchedule:
    """Pay rates, premiums and overtime rule for one caregiver."""

    base_rate: Decimal
    overtime_rule: OvertimeRule = OvertimeRule.WEEKLY
    weekly_threshold: Decimal = WEEKLY_OVERTIME_THRESHOLD
    live_in_threshold: Decimal = LIVE_IN_OVERTIME_THRESHOLD
    daily_overtime_threshold: Decimal = DAILY_OVERTIME_THRESHOLD
    daily_double_time_threshold: Decimal = DAILY_DOUBLE_TIME_THRESHOLD
    seventh_day_overtime_limit: Decimal = SEVENTH_DAY_OVERTIME_LIMIT
    overtime_multiplier: Decimal = OVERTIME_MULTIPLIER
    double_time_multiplier: Decimal = DOUBLE_TIME_MULTIPLIER

    # Premium factors; None disables the premium
    weekend_multiplier: Decimal | None = None
    holiday_multiplier: Decimal | None = None
    night_shift_multiplier: Decimal | None = None
    live_in_multiplier: Decimal | None = None
    night_start_hour: int = 22
    night_end_hour: int = 6

    pto_accrual_rate: Decimal = ZERO


class TimesheetCompiler:
    """Builds DRAFT time sheets from verified time records."""

    def __init__(self, schedule: RateSchedule):
        self.schedule = schedule

    def compile(
        self,
        pay_period: PayPeriod,
        caregiver_id: UUID,
        records: Sequence[VerifiedTimeRecord],
        *,
        compiled_by: str,
        leave: LeaveHours | None = None,
    ) -> TimeSheet:
        """Compile records for one caregiver and pay period into a time sheet."""
        entries = [
            self._build_entry(record)
            for record in sorted(records, key=lambda r: r.clock_in)
        ]

        for week_entries in self._group_by_workweek(entries, pay_period.start_date):
            splits = self._allocate(week_entries)
            self._price_week(week_entries, splits)

        sheet = TimeSheet(
            organization_id=pay_period.organization_id,
            caregiver_id=caregiver_id,
            pay_period_id=pay_period.id,
            period_start=pay_period.start_date,
            period_end=pay_period.end_date,
            entries=entries,
            base_rate=round_money(self.schedule.base_rate),
            overtime_rate=round_money(self.schedule.base_rate * self.schedule.overtime_multiplier),
            double_time_rate=round_money(
                self.schedule.base_rate * self.schedule.double_time_multiplier
            ),
            evv_record_ids=[r.record_id for r in records],
            created_by=compiled_by,
            updated_by=compiled_by,
        )

        sheet.regular_hours = sum((e.regular_hours for e in entries), ZERO)
        sheet.overtime_hours = sum((e.overtime_hours for e in entries), ZERO)
        sheet.double_time_hours = sum((e.double_time_hours for e in entries), ZERO)
        sheet.regular_earnings = sum((e.regular_pay for e in entries), ZERO)
        sheet.overtime_earnings = sum((e.overtime_pay for e in entries), ZERO)
        sheet.double_time_earnings = sum((e.double_time_pay for e in entries), ZERO)
        self._apply_leave(sheet, leave or LeaveHours())
        sheet.recalculate_totals()

        worked_hours = sheet.regular_hours + sheet.overtime_hours + sheet.double_time_hours
        sheet.pto_accrued = pto_accrual(worked_hours, self.schedule.pto_accrual_rate)
        sheet.discrepancies = detect_discrepancies(entries)
        sheet.status_history.append(
            StatusChange(
                from_status=None,
                to_status=TimeSheetStatus.DRAFT.value,
                changed_by=compiled_by,
                reason="Time sheet compiled from verified time records",
                automatic=True,
            )
        )

        logger.debug(
            "Compiled time sheet for caregiver %s: %s entries, %s hours, %s discrepancies",
            caregiver_id,
            len(entries),
            sheet.total_hours,
            len(sheet.discrepancies),
        )
        return sheet

    # ----- Entries -----

    def _build_entry(self, record: VerifiedTimeRecord) -> TimeSheetEntry:
        schedule = self.schedule
        span = Decimal(str((record.clock_out - record.clock_in).total_seconds())) / SECONDS_PER_HOUR
        break_hours = round_hours(Decimal(record.break_minutes) / MINUTES_PER_HOUR)
        work_date = record.clock_in.date()
        base_rate = round_money(
            record.pay_rate if record.pay_rate is not None else schedule.base_rate
        )

        is_weekend = work_date.weekday() >= 5
        start_hour = record.clock_in.hour
        is_night = start_hour >= schedule.night_start_hour or start_hour < schedule.night_end_hour

        premiums: list[RateMultiplier] = []
        for applies, multiplier_type, factor in (
            (is_weekend, RateMultiplierType.WEEKEND, schedule.weekend_multiplier),
            (record.is_holiday, RateMultiplierType.HOLIDAY, schedule.holiday_multiplier),
            (is_night, RateMultiplierType.NIGHT_SHIFT, schedule.night_shift_multiplier),
            (record.is_live_in, RateMultiplierType.LIVE_IN, schedule.live_in_multiplier),
        ):
            if applies and factor is not None:
                premiums.append(RateMultiplier(multiplier_type=multiplier_type, multiplier=factor))

        rates = apply_rate_multipliers(base_rate, premiums)

        return TimeSheetEntry(
            evv_record_id=record.record_id,
            client_id=record.client_id,
            visit_id=record.visit_id,
            service_type=record.service_type,
            service_code=record.service_code,
            work_date=work_date,
            clock_in=record.clock_in,
            clock_out=record.clock_out,
            break_hours=break_hours,
            total_hours=round_hours(span - break_hours),
            base_rate=base_rate,
            effective_rate=rates.final_rate,
            rate_multipliers=[
                AppliedRateMultiplier(
                    multiplier_type=a.multiplier_type,
                    multiplier=a.multiplier,
                    base_rate=a.base_rate,
                    applied_amount=a.applied_amount,
                )
                for a in rates.applied
            ],
            is_weekend=is_weekend,
            is_holiday=record.is_holiday,
            is_night_shift=is_night,
            is_live_in=record.is_live_in,
            requires_review=record.requires_review,
            review_reasons=list(record.review_reasons),
        )

    @staticmethod
    def _paid_hours(entry: TimeSheetEntry) -> Decimal:
        return non_negative(entry.total_hours)

    @staticmethod
    def _group_by_workweek(
        entries: list[TimeSheetEntry], period_start: date
    ) -> list[list[TimeSheetEntry]]:
        weeks: dict[int, list[TimeSheetEntry]] = defaultdict(list)
        for entry in entries:
            weeks[max((entry.work_date - period_start).days // 7, 0)].append(entry)
        return [weeks[index] for index in sorted(weeks)]

    # ----- Overtime allocation -----

    def _allocate(self, week_entries: list[TimeSheetEntry]) -> dict[UUID, HoursSplit]:
        rule = self.schedule.overtime_rule
        if rule is OvertimeRule.DAILY:
            return self._allocate_daily(week_entries)
        if rule is OvertimeRule.LIVE_IN:
            return self._allocate_weekly(week_entries, self.schedule.live_in_threshold)
        return self._allocate_weekly(week_entries, self.schedule.weekly_threshold)

    def _allocate_weekly(
        self, week_entries: list[TimeSheetEntry], threshold: Decimal
    ) -> dict[UUID, HoursSplit]:
        week_total = sum((self._paid_hours(e) for e in week_entries), ZERO)
        return self._draw(week_entries, split_hours(week_total, threshold))

    def _allocate_daily(self, week_entries: list[TimeSheetEntry]) -> dict[UUID, HoursSplit]:
        """Daily 8/12 tiers, seventh-consecutive-day premium and a weekly regular cap."""
        schedule = self.schedule
        by_day: dict[date, list[TimeSheetEntry]] = defaultdict(list)
        for entry in week_entries:
            by_day[entry.work_date].append(entry)
        worked_days = {
            day
            for day, entries in by_day.items()
            if sum((self._paid_hours(e) for e in entries), ZERO) > ZERO
        }

        splits: dict[UUID, HoursSplit] = {}
        for day in sorted(by_day):
            day_total = sum((self._paid_hours(e) for e in by_day[day]), ZERO)
            if all(day - timedelta(days=k) in worked_days for k in range(1, 7)):
                pools = seventh_day_overtime(day_total, schedule.seventh_day_overtime_limit)
            else:
                pools = daily_overtime(
                    day_total,
                    schedule.daily_overtime_threshold,
                    schedule.daily_double_time_threshold,
                )
            splits.update(self._draw(by_day[day], pools))

        regular_so_far = ZERO
        for entry in week_entries:
            split = splits[entry.id]
            allowed = non_negative(schedule.weekly_threshold - regular_so_far)
            if split.regular > allowed:
                split = HoursSplit(
                    regular=allowed,
                    overtime=split.overtime + split.regular - allowed,
                    double_time=split.double_time,
                )
                splits[entry.id] = split
            regular_so_far += split.regular
        return splits

    def _draw(
        self, entries: list[TimeSheetEntry], pools: HoursSplit
    ) -> dict[UUID, HoursSplit]:
        """Hand out tier pools to entries in order: regular first, then overtime."""
        regular_left = pools.regular
        overtime_left = pools.overtime
        splits: dict[UUID, HoursSplit] = {}

        for entry in entries:
            hours = self._paid_hours(entry)
            regular = min(hours, regular_left)
            overtime = min(hours - regular, overtime_left)
            double_time = hours - regular - overtime
            regular_left -= regular
            overtime_left -= overtime
            splits[entry.id] = HoursSplit(regular=regular, overtime=overtime, double_time=double_time)
        return splits

    # ----- Pricing -----

    def _price_week(
        self, week_entries: list[TimeSheetEntry], splits: dict[UUID, HoursSplit]
    ) -> None:
        schedule = self.schedule
        paid = [e for e in week_entries if self._paid_hours(e) > ZERO]
        mixed_rates = len({e.effective_rate for e in paid}) > 1

        overtime_rate = double_time_rate = ZERO
        if mixed_rates:
            week_hours = sum((self._paid_hours(e) for e in paid), ZERO)
            week_earnings = sum(
                (round_money(self._paid_hours(e) * e.effective_rate) for e in paid), ZERO
            )
            overtime_rate = blended_overtime_rate(
                week_earnings, week_hours, schedule.overtime_multiplier
            )
            double_time_rate = blended_overtime_rate(
                week_earnings, week_hours, schedule.double_time_multiplier
            )

        for entry in week_entries:
            split = splits[entry.id]
            if mixed_rates:
                pay = OvertimePay(
                    regular_hours=split.regular,
                    overtime_hours=split.overtime,
                    double_time_hours=split.double_time,
                    regular_pay=round_money(split.regular * entry.effective_rate),
                    overtime_pay=round_money(split.overtime * overtime_rate),
                    double_time_pay=round_money(split.double_time * double_time_rate),
                )
            else:
                pay = pay_for_hours(
                    split.regular,
                    split.overtime,
                    split.double_time,
                    entry.effective_rate,
                    schedule.overtime_multiplier,
                    schedule.double_time_multiplier,
                )
            entry.regular_hours = pay.regular_hours
            entry.overtime_hours = pay.overtime_hours
            entry.double_time_hours = pay.double_time_hours
            entry.regular_pay = pay.regular_pay
            entry.overtime_pay = pay.overtime_pay
            entry.double_time_pay = pay.double_time_pay
            entry.total_pay = pay.total_pay

    def _apply_leave(self, sheet: TimeSheet, leave: LeaveHours) -> None:
        rate = sheet.base_rate
        sheet.pto_hours = round_hours(non_negative(leave.pto))
        sheet.holiday_hours = round_hours(non_negative(leave.holiday))
        sheet.sick_hours = round_hours(non_negative(leave.sick))
        sheet.other_hours = round_hours(non_negative(leave.other))
        sheet.pto_earnings = round_money(sheet.pto_hours * rate)
        sheet.holiday_earnings = round_money(sheet.holiday_hours * rate)
        sheet.sick_earnings = round_money(sheet.sick_hours * rate)
        sheet.other_earnings = round_money(sheet.other_hours * rate)
