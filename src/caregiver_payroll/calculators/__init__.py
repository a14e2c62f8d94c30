"""Payroll calculation engines."""

from caregiver_payroll.calculators.pay_stub_calculator import PayStubCalculator
from caregiver_payroll.calculators.tax_calculator import (
    AggregateParametersRequiredError,
    TaxCalculator,
)
from caregiver_payroll.calculators.tax_tables import TaxTables, load_tax_tables
from caregiver_payroll.calculators.timesheet_compiler import RateSchedule, TimesheetCompiler

__all__ = [
    "AggregateParametersRequiredError",
    "PayStubCalculator",
    "RateSchedule",
    "TaxCalculator",
    "TaxTables",
    "TimesheetCompiler",
    "load_tax_tables",
]
