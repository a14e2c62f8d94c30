"""Payroll domain entities and their storage tables."""

from caregiver_payroll.models.entities import (
    AppliedRateMultiplier,
    CalculatedDeduction,
    Deduction,
    DiscrepancyFlag,
    Entity,
    GarnishmentOrder,
    PaymentElection,
    PayPeriod,
    PayRun,
    PayStub,
    StatusChange,
    TaxConfiguration,
    TimeSheet,
    TimeSheetAdjustment,
    TimeSheetEntry,
    VerifiedTimeRecord,
)
from caregiver_payroll.models.enums import (
    AdjustmentType,
    CalculationMethod,
    DeductionType,
    DiscrepancySeverity,
    DiscrepancyType,
    FilingStatus,
    GarnishmentType,
    OvertimeRule,
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
from caregiver_payroll.models.records import Base

__all__ = [
    "AdjustmentType",
    "AppliedRateMultiplier",
    "Base",
    "CalculatedDeduction",
    "CalculationMethod",
    "Deduction",
    "DeductionType",
    "DiscrepancyFlag",
    "DiscrepancySeverity",
    "DiscrepancyType",
    "Entity",
    "FilingStatus",
    "GarnishmentOrder",
    "GarnishmentType",
    "OvertimeRule",
    "PayPeriod",
    "PayPeriodStatus",
    "PayPeriodType",
    "PayRun",
    "PayRunStatus",
    "PayRunType",
    "PayStub",
    "PayStubStatus",
    "PaymentElection",
    "PaymentMethod",
    "RateMultiplierType",
    "StatusChange",
    "TaxConfiguration",
    "TaxTreatment",
    "TimeSheet",
    "TimeSheetAdjustment",
    "TimeSheetEntry",
    "TimeSheetStatus",
    "VerifiedTimeRecord",
]
