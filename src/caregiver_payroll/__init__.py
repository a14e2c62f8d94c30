"""Caregiver payroll calculation and pay run orchestration engine."""

__version__ = "1.0.0"
