"""Persistence for payroll entities."""

from caregiver_payroll.repository.base import (
    EntityNotFoundError,
    PayrollRepository,
    StaleEntityError,
    UnitOfWork,
)
from caregiver_payroll.repository.memory import InMemoryPayrollRepository
from caregiver_payroll.repository.sql import SqlAlchemyPayrollRepository

__all__ = [
    "EntityNotFoundError",
    "InMemoryPayrollRepository",
    "PayrollRepository",
    "SqlAlchemyPayrollRepository",
    "StaleEntityError",
    "UnitOfWork",
]
