"""Time entry anomaly detection.

``detect_discrepancies`` only annotates: it returns flags and never changes or
rejects the entries it is given. Flags that require resolution block time
sheet approval until someone resolves them.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal

from caregiver_payroll.calculators.rounding import ZERO, Number, to_decimal
from caregiver_payroll.models.entities import DiscrepancyFlag, TimeSheetEntry
from caregiver_payroll.models.enums import DiscrepancySeverity, DiscrepancyType

MAX_PERIOD_HOURS = Decimal("80")
MAX_DAILY_HOURS = Decimal("16")
MAX_SHIFT_SPAN = timedelta(hours=24)
MIN_SHIFT_HOURS = Decimal("0.25")


def detect_discrepancies(
    entries: Sequence[TimeSheetEntry],
    total_hours: Number | None = None,
    *,
    max_period_hours: Number = MAX_PERIOD_HOURS,
    max_daily_hours: Number = MAX_DAILY_HOURS,
) -> list[DiscrepancyFlag]:
    """Scan a time sheet's entries and return every anomaly found.

    Checks are independent, so one entry can raise several flags.
    """
    flags: list[DiscrepancyFlag] = []
    if total_hours is None:
        period_total = sum((e.total_hours for e in entries), ZERO)
    else:
        period_total = to_decimal(total_hours)

    period_limit = to_decimal(max_period_hours)
    if period_total > period_limit:
        flags.append(
            DiscrepancyFlag(
                discrepancy_type=DiscrepancyType.EXCESSIVE_HOURS,
                severity=DiscrepancySeverity.HIGH,
                description=f"Total hours ({period_total}) exceed {period_limit} for the period",
                entry_ids=[e.id for e in entries],
                requires_resolution=True,
            )
        )

    flags.extend(_daily_hour_flags(entries, to_decimal(max_daily_hours)))
    flags.extend(_overlap_flags(entries))

    for entry in entries:
        flags.extend(_entry_flags(entry))

    review_entries = [e for e in entries if e.requires_review]
    if review_entries:
        reasons = sorted({r for e in review_entries for r in e.review_reasons})
        detail = f": {', '.join(reasons)}" if reasons else ""
        flags.append(
            DiscrepancyFlag(
                discrepancy_type=DiscrepancyType.COMPLIANCE_REVIEW,
                severity=DiscrepancySeverity.MEDIUM,
                description=f"{len(review_entries)} entries flagged for compliance review{detail}",
                entry_ids=[e.id for e in review_entries],
                requires_resolution=False,
            )
        )

    return flags


def _daily_hour_flags(
    entries: Sequence[TimeSheetEntry], limit: Decimal
) -> list[DiscrepancyFlag]:
    by_day: dict[date, list[TimeSheetEntry]] = defaultdict(list)
    for entry in entries:
        by_day[entry.work_date].append(entry)

    flags = []
    for work_date in sorted(by_day):
        day_entries = by_day[work_date]
        day_total = sum((e.total_hours for e in day_entries), ZERO)
        if day_total > limit:
            flags.append(
                DiscrepancyFlag(
                    discrepancy_type=DiscrepancyType.EXCESSIVE_DAILY_HOURS,
                    severity=DiscrepancySeverity.HIGH,
                    description=f"{day_total} hours worked on {work_date.isoformat()} exceed {limit}",
                    entry_ids=[e.id for e in day_entries],
                    requires_resolution=True,
                )
            )
    return flags


def _overlap_flags(entries: Sequence[TimeSheetEntry]) -> list[DiscrepancyFlag]:
    """Flag entries whose clock-in falls before an earlier entry's clock-out."""
    flags = []
    ordered = sorted(entries, key=lambda e: e.clock_in)
    latest: TimeSheetEntry | None = None

    for entry in ordered:
        if latest is not None and entry.clock_in < latest.clock_out:
            flags.append(
                DiscrepancyFlag(
                    discrepancy_type=DiscrepancyType.OVERLAPPING_SHIFTS,
                    severity=DiscrepancySeverity.CRITICAL,
                    description=(
                        f"Shift starting {entry.clock_in.isoformat()} overlaps shift "
                        f"ending {latest.clock_out.isoformat()}"
                    ),
                    entry_ids=[latest.id, entry.id],
                    requires_resolution=True,
                )
            )
        if latest is None or entry.clock_out > latest.clock_out:
            latest = entry
    return flags


def _entry_flags(entry: TimeSheetEntry) -> list[DiscrepancyFlag]:
    flags = []
    span = entry.clock_out - entry.clock_in

    if span > MAX_SHIFT_SPAN:
        flags.append(
            DiscrepancyFlag(
                discrepancy_type=DiscrepancyType.MISSING_CLOCK_OUT,
                severity=DiscrepancySeverity.HIGH,
                description=f"Shift on {entry.work_date.isoformat()} spans more than 24 hours; possible missing clock-out",
                entry_ids=[entry.id],
                requires_resolution=True,
            )
        )

    if entry.clock_out < entry.clock_in:
        flags.append(
            DiscrepancyFlag(
                discrepancy_type=DiscrepancyType.INVALID_CLOCK_SEQUENCE,
                severity=DiscrepancySeverity.CRITICAL,
                description=f"Clock-out precedes clock-in on {entry.work_date.isoformat()}",
                entry_ids=[entry.id],
                requires_resolution=True,
            )
        )

    if entry.total_hours < ZERO:
        flags.append(
            DiscrepancyFlag(
                discrepancy_type=DiscrepancyType.NEGATIVE_HOURS,
                severity=DiscrepancySeverity.CRITICAL,
                description=f"Negative hours ({entry.total_hours}) on {entry.work_date.isoformat()}",
                entry_ids=[entry.id],
                requires_resolution=True,
            )
        )
    elif ZERO < entry.total_hours < MIN_SHIFT_HOURS:
        flags.append(
            DiscrepancyFlag(
                discrepancy_type=DiscrepancyType.SHORT_SHIFT,
                severity=DiscrepancySeverity.MEDIUM,
                description=f"Very short shift ({entry.total_hours} hours) on {entry.work_date.isoformat()}",
                entry_ids=[entry.id],
                requires_resolution=False,
            )
        )

    return flags
