"""Persistence interface used by the payroll service.

Implementations store entities by value: ``create_*`` and ``update_*`` never
keep a reference to the caller's object, and ``get_*``/``find_*`` return fresh
copies. Every update compares the entity's ``version`` with the stored one and
raises ``StaleEntityError`` on mismatch; on success the stored version and the
caller's entity are both incremented.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date
from types import TracebackType
from typing import TypeVar
from uuid import UUID

from caregiver_payroll.models.entities import (
    Deduction,
    Entity,
    PaymentElection,
    PayPeriod,
    PayRun,
    PayStub,
    TaxConfiguration,
    TimeSheet,
)
from caregiver_payroll.models.enums import (
    PayPeriodStatus,
    PayRunStatus,
    TimeSheetStatus,
)

E = TypeVar("E", bound=Entity)


class EntityNotFoundError(LookupError):
    """Raised when an entity does not exist."""

    def __init__(self, entity_type: type[Entity] | str, entity_id: UUID):
        self.entity_type = entity_type if isinstance(entity_type, str) else entity_type.__name__
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} {entity_id} not found")


class StaleEntityError(RuntimeError):
    """Raised when an update is based on an outdated version of an entity."""

    def __init__(self, entity_type: type[Entity] | str, entity_id: UUID, expected_version: int):
        self.entity_type = entity_type if isinstance(entity_type, str) else entity_type.__name__
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{self.entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class UnitOfWork(ABC):
    """Transaction boundary over a repository.

    Used as an async context manager: commits on normal exit and rolls back
    when the block raises.
    """

    @abstractmethod
    async def begin(self) -> None: ...

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...

    async def __aenter__(self) -> UnitOfWork:
        await self.begin()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class PayrollRepository(ABC):
    """Storage for payroll entities."""

    # ===== Generic storage =====

    @abstractmethod
    async def add(self, entity: E) -> E:
        """Insert a new entity."""

    @abstractmethod
    async def get(self, entity_type: type[E], entity_id: UUID) -> E:
        """Load an entity, raising EntityNotFoundError if it does not exist."""

    @abstractmethod
    async def save(self, entity: E) -> E:
        """Update an existing entity with an optimistic version check."""

    @abstractmethod
    def unit_of_work(self) -> UnitOfWork:
        """Return a new unit of work for this repository."""

    # ===== Pay periods =====

    async def create_pay_period(self, period: PayPeriod) -> PayPeriod:
        return await self.add(period)

    async def get_pay_period(self, period_id: UUID) -> PayPeriod:
        return await self.get(PayPeriod, period_id)

    async def update_pay_period(self, period: PayPeriod) -> PayPeriod:
        return await self.save(period)

    @abstractmethod
    async def find_pay_periods(
        self,
        organization_id: UUID,
        *,
        statuses: Iterable[PayPeriodStatus] | None = None,
        year: int | None = None,
    ) -> list[PayPeriod]: ...

    # ===== Time sheets =====

    async def create_time_sheet(self, sheet: TimeSheet) -> TimeSheet:
        return await self.add(sheet)

    async def get_time_sheet(self, sheet_id: UUID) -> TimeSheet:
        return await self.get(TimeSheet, sheet_id)

    async def update_time_sheet(self, sheet: TimeSheet) -> TimeSheet:
        return await self.save(sheet)

    @abstractmethod
    async def find_time_sheets(
        self,
        organization_id: UUID,
        *,
        pay_period_id: UUID | None = None,
        caregiver_id: UUID | None = None,
        statuses: Iterable[TimeSheetStatus] | None = None,
    ) -> list[TimeSheet]: ...

    # ===== Pay runs =====

    async def create_pay_run(self, pay_run: PayRun) -> PayRun:
        return await self.add(pay_run)

    async def get_pay_run(self, pay_run_id: UUID) -> PayRun:
        return await self.get(PayRun, pay_run_id)

    async def update_pay_run(self, pay_run: PayRun) -> PayRun:
        return await self.save(pay_run)

    @abstractmethod
    async def find_pay_runs(
        self,
        organization_id: UUID,
        *,
        pay_period_id: UUID | None = None,
        statuses: Iterable[PayRunStatus] | None = None,
    ) -> list[PayRun]: ...

    # ===== Pay stubs =====

    async def create_pay_stub(self, stub: PayStub) -> PayStub:
        return await self.add(stub)

    async def get_pay_stub(self, stub_id: UUID) -> PayStub:
        return await self.get(PayStub, stub_id)

    async def update_pay_stub(self, stub: PayStub) -> PayStub:
        return await self.save(stub)

    @abstractmethod
    async def find_pay_stubs(
        self,
        organization_id: UUID,
        *,
        pay_run_id: UUID | None = None,
        caregiver_id: UUID | None = None,
        year: int | None = None,
    ) -> list[PayStub]: ...

    # ===== Tax configuration =====

    async def create_tax_configuration(self, config: TaxConfiguration) -> TaxConfiguration:
        return await self.add(config)

    async def get_tax_configuration(self, config_id: UUID) -> TaxConfiguration:
        return await self.get(TaxConfiguration, config_id)

    async def update_tax_configuration(self, config: TaxConfiguration) -> TaxConfiguration:
        return await self.save(config)

    @abstractmethod
    async def find_effective_tax_configuration(
        self, organization_id: UUID, caregiver_id: UUID, on: date
    ) -> TaxConfiguration | None:
        """Caregiver configuration effective on a date, else the organization default."""

    # ===== Deductions =====

    async def create_deduction(self, deduction: Deduction) -> Deduction:
        return await self.add(deduction)

    async def get_deduction(self, deduction_id: UUID) -> Deduction:
        return await self.get(Deduction, deduction_id)

    async def update_deduction(self, deduction: Deduction) -> Deduction:
        return await self.save(deduction)

    @abstractmethod
    async def find_deductions(
        self, organization_id: UUID, caregiver_id: UUID, *, active_only: bool = True
    ) -> list[Deduction]: ...

    # ===== Payment elections =====

    async def create_payment_election(self, election: PaymentElection) -> PaymentElection:
        return await self.add(election)

    async def update_payment_election(self, election: PaymentElection) -> PaymentElection:
        return await self.save(election)

    @abstractmethod
    async def find_payment_election(
        self, organization_id: UUID, caregiver_id: UUID
    ) -> PaymentElection | None: ...


def pick_effective_configuration(
    configs: Iterable[TaxConfiguration], caregiver_id: UUID, on: date
) -> TaxConfiguration | None:
    """Choose the most recent caregiver configuration, falling back to the organization default."""
    effective = [c for c in configs if c.is_effective(on)]
    for owner in (caregiver_id, None):
        candidates = [c for c in effective if c.caregiver_id == owner]
        if candidates:
            return max(candidates, key=lambda c: c.effective_date)
    return None
