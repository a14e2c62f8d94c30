"""Closed value sets shared by payroll entities and calculators."""

from __future__ import annotations

from enum import Enum


class PayPeriodType(str, Enum):
    """Pay frequency of a pay period."""

    WEEKLY = "WEEKLY"
    BI_WEEKLY = "BI_WEEKLY"
    SEMI_MONTHLY = "SEMI_MONTHLY"
    MONTHLY = "MONTHLY"
    DAILY = "DAILY"
    CUSTOM = "CUSTOM"


class PayPeriodStatus(str, Enum):
    """Pay period lifecycle states."""

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    LOCKED = "LOCKED"
    PROCESSING = "PROCESSING"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    PAID = "PAID"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class TimeSheetStatus(str, Enum):
    """Time sheet lifecycle states."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    VOIDED = "VOIDED"


class PayRunStatus(str, Enum):
    """Pay run lifecycle states."""

    DRAFT = "DRAFT"
    CALCULATING = "CALCULATING"
    CALCULATED = "CALCULATED"
    PENDING_REVIEW = "PENDING_REVIEW"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FUNDED = "FUNDED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PayRunType(str, Enum):
    """Reason a pay run was executed."""

    REGULAR = "REGULAR"
    OFF_CYCLE = "OFF_CYCLE"
    CORRECTION = "CORRECTION"
    BONUS = "BONUS"
    FINAL = "FINAL"
    ADVANCE = "ADVANCE"
    RETRO = "RETRO"


class PayStubStatus(str, Enum):
    """Pay stub lifecycle states."""

    DRAFT = "DRAFT"
    CALCULATED = "CALCULATED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAID = "PAID"
    VOID = "VOID"
    CANCELLED = "CANCELLED"


class AdjustmentType(str, Enum):
    """Manual time sheet adjustment kinds."""

    BONUS = "BONUS"
    COMMISSION = "COMMISSION"
    REIMBURSEMENT = "REIMBURSEMENT"
    MILEAGE = "MILEAGE"
    CORRECTION = "CORRECTION"
    RETROACTIVE = "RETROACTIVE"
    RETENTION = "RETENTION"
    REFERRAL = "REFERRAL"
    HOLIDAY_BONUS = "HOLIDAY_BONUS"
    SHIFT_DIFFERENTIAL = "SHIFT_DIFFERENTIAL"
    HAZARD_PAY = "HAZARD_PAY"
    OTHER = "OTHER"


# Paid as supplemental wages (flat-rate federal withholding)
SUPPLEMENTAL_ADJUSTMENTS = frozenset(
    {
        AdjustmentType.BONUS,
        AdjustmentType.COMMISSION,
        AdjustmentType.RETENTION,
        AdjustmentType.REFERRAL,
        AdjustmentType.HOLIDAY_BONUS,
    }
)

# Paid back to the caregiver without withholding
NON_TAXABLE_ADJUSTMENTS = frozenset({AdjustmentType.REIMBURSEMENT, AdjustmentType.MILEAGE})


class DiscrepancyType(str, Enum):
    """Anomalies the discrepancy detector can flag."""

    EXCESSIVE_HOURS = "EXCESSIVE_HOURS"
    EXCESSIVE_DAILY_HOURS = "EXCESSIVE_DAILY_HOURS"
    OVERLAPPING_SHIFTS = "OVERLAPPING_SHIFTS"
    MISSING_CLOCK_OUT = "MISSING_CLOCK_OUT"
    SHORT_SHIFT = "SHORT_SHIFT"
    NEGATIVE_HOURS = "NEGATIVE_HOURS"
    INVALID_CLOCK_SEQUENCE = "INVALID_CLOCK_SEQUENCE"
    COMPLIANCE_REVIEW = "COMPLIANCE_REVIEW"


class DiscrepancySeverity(str, Enum):
    """Severity attached to a discrepancy flag."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class PaymentMethod(str, Enum):
    """How a pay stub's net pay is disbursed."""

    DIRECT_DEPOSIT = "DIRECT_DEPOSIT"
    CHECK = "CHECK"
    CASH = "CASH"
    PAYCARD = "PAYCARD"
    WIRE = "WIRE"
    VENMO = "VENMO"
    ZELLE = "ZELLE"


class DeductionType(str, Enum):
    """What a deduction pays for."""

    FEDERAL_TAX = "FEDERAL_TAX"
    STATE_TAX = "STATE_TAX"
    LOCAL_TAX = "LOCAL_TAX"
    SOCIAL_SECURITY = "SOCIAL_SECURITY"
    MEDICARE = "MEDICARE"
    ADDITIONAL_MEDICARE = "ADDITIONAL_MEDICARE"
    HEALTH_INSURANCE = "HEALTH_INSURANCE"
    DENTAL_INSURANCE = "DENTAL_INSURANCE"
    VISION_INSURANCE = "VISION_INSURANCE"
    LIFE_INSURANCE = "LIFE_INSURANCE"
    DISABILITY_INSURANCE = "DISABILITY_INSURANCE"
    RETIREMENT_401K = "RETIREMENT_401K"
    RETIREMENT_403B = "RETIREMENT_403B"
    ROTH_401K = "ROTH_401K"
    HSA = "HSA"
    FSA = "FSA"
    GARNISHMENT = "GARNISHMENT"
    CHILD_SUPPORT = "CHILD_SUPPORT"
    TAX_LEVY = "TAX_LEVY"
    UNION_DUES = "UNION_DUES"
    LOAN_REPAYMENT = "LOAN_REPAYMENT"
    ADVANCE_REPAYMENT = "ADVANCE_REPAYMENT"
    UNIFORM = "UNIFORM"
    EQUIPMENT = "EQUIPMENT"
    OTHER = "OTHER"


class CalculationMethod(str, Enum):
    """How a deduction amount is derived."""

    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"
    PERCENTAGE_OF_NET = "PERCENTAGE_OF_NET"
    GRADUATED = "GRADUATED"
    FORMULA = "FORMULA"


class TaxTreatment(str, Enum):
    """Where a deduction sits in the withholding order."""

    PRE_TAX = "PRE_TAX"
    STATUTORY = "STATUTORY"
    POST_TAX = "POST_TAX"


class GarnishmentType(str, Enum):
    """Legal garnishment order kinds."""

    CHILD_SUPPORT = "CHILD_SUPPORT"
    SPOUSAL_SUPPORT = "SPOUSAL_SUPPORT"
    TAX_LEVY = "TAX_LEVY"
    CREDITOR = "CREDITOR"
    STUDENT_LOAN = "STUDENT_LOAN"
    BANKRUPTCY = "BANKRUPTCY"
    OTHER = "OTHER"


class FilingStatus(str, Enum):
    """Federal W-4 filing status."""

    SINGLE = "SINGLE"
    MARRIED_JOINTLY = "MARRIED_JOINTLY"
    MARRIED_SEPARATELY = "MARRIED_SEPARATELY"
    HEAD_OF_HOUSEHOLD = "HEAD_OF_HOUSEHOLD"
    QUALIFYING_WIDOW = "QUALIFYING_WIDOW"


class OvertimeRule(str, Enum):
    """Jurisdictional overtime regime applied by the timesheet compiler."""

    WEEKLY = "WEEKLY"
    DAILY = "DAILY"
    LIVE_IN = "LIVE_IN"


class RateMultiplierType(str, Enum):
    """Shift-rate premiums applied on top of a base rate."""

    WEEKEND = "WEEKEND"
    HOLIDAY = "HOLIDAY"
    NIGHT_SHIFT = "NIGHT_SHIFT"
    LIVE_IN = "LIVE_IN"
    HAZARD = "HAZARD"
    OTHER = "OTHER"
