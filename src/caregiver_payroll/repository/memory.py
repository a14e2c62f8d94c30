"""In-memory repository with snapshot transactions."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from datetime import date
from typing import Any
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
from caregiver_payroll.models.enums import PayPeriodStatus, PayRunStatus, TimeSheetStatus
from caregiver_payroll.repository.base import (
    E,
    EntityNotFoundError,
    PayrollRepository,
    StaleEntityError,
    UnitOfWork,
    pick_effective_configuration,
)

Store = dict[type[Entity], dict[UUID, Entity]]


class InMemoryUnitOfWork(UnitOfWork):
    """Snapshots the store on begin and restores it on rollback."""

    def __init__(self, repository: InMemoryPayrollRepository):
        self.repository = repository
        self._snapshot: Store | None = None

    async def begin(self) -> None:
        if self._snapshot is not None:
            raise RuntimeError("Unit of work already started")
        self._snapshot = copy.deepcopy(self.repository._store)

    async def commit(self) -> None:
        self._snapshot = None

    async def rollback(self) -> None:
        if self._snapshot is not None:
            self.repository._store = self._snapshot
            self._snapshot = None


class InMemoryPayrollRepository(PayrollRepository):
    """Dictionary-backed repository, used as the test double for storage."""

    def __init__(self) -> None:
        self._store: Store = {}

    def _table(self, entity_type: type[Entity]) -> dict[UUID, Entity]:
        return self._store.setdefault(entity_type, {})

    def _select(
        self, entity_type: type[E], predicate: Callable[[Any], bool]
    ) -> list[E]:
        rows = [e for e in self._table(entity_type).values() if predicate(e)]
        rows.sort(key=lambda e: e.created_at)
        return [e.model_copy(deep=True) for e in rows]  # type: ignore[misc]

    async def add(self, entity: E) -> E:
        table = self._table(type(entity))
        if entity.id in table:
            raise ValueError(f"{type(entity).__name__} {entity.id} already exists")
        table[entity.id] = entity.model_copy(deep=True)
        return entity

    async def get(self, entity_type: type[E], entity_id: UUID) -> E:
        stored = self._table(entity_type).get(entity_id)
        if stored is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return stored.model_copy(deep=True)  # type: ignore[return-value]

    async def save(self, entity: E) -> E:
        table = self._table(type(entity))
        stored = table.get(entity.id)
        if stored is None:
            raise EntityNotFoundError(type(entity), entity.id)
        if stored.version != entity.version:
            raise StaleEntityError(type(entity), entity.id, entity.version)

        entity.version += 1
        table[entity.id] = entity.model_copy(deep=True)
        return entity

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)

    async def find_pay_periods(
        self,
        organization_id: UUID,
        *,
        statuses: Iterable[PayPeriodStatus] | None = None,
        year: int | None = None,
    ) -> list[PayPeriod]:
        wanted = set(statuses) if statuses is not None else None
        return self._select(
            PayPeriod,
            lambda p: p.organization_id == organization_id
            and (wanted is None or p.status in wanted)
            and (year is None or p.period_year == year),
        )

    async def find_time_sheets(
        self,
        organization_id: UUID,
        *,
        pay_period_id: UUID | None = None,
        caregiver_id: UUID | None = None,
        statuses: Iterable[TimeSheetStatus] | None = None,
    ) -> list[TimeSheet]:
        wanted = set(statuses) if statuses is not None else None
        return self._select(
            TimeSheet,
            lambda s: s.organization_id == organization_id
            and (pay_period_id is None or s.pay_period_id == pay_period_id)
            and (caregiver_id is None or s.caregiver_id == caregiver_id)
            and (wanted is None or s.status in wanted),
        )

    async def find_pay_runs(
        self,
        organization_id: UUID,
        *,
        pay_period_id: UUID | None = None,
        statuses: Iterable[PayRunStatus] | None = None,
    ) -> list[PayRun]:
        wanted = set(statuses) if statuses is not None else None
        return self._select(
            PayRun,
            lambda r: r.organization_id == organization_id
            and (pay_period_id is None or r.pay_period_id == pay_period_id)
            and (wanted is None or r.status in wanted),
        )

    async def find_pay_stubs(
        self,
        organization_id: UUID,
        *,
        pay_run_id: UUID | None = None,
        caregiver_id: UUID | None = None,
        year: int | None = None,
    ) -> list[PayStub]:
        return self._select(
            PayStub,
            lambda s: s.organization_id == organization_id
            and (pay_run_id is None or s.pay_run_id == pay_run_id)
            and (caregiver_id is None or s.caregiver_id == caregiver_id)
            and (year is None or s.pay_date.year == year),
        )

    async def find_effective_tax_configuration(
        self, organization_id: UUID, caregiver_id: UUID, on: date
    ) -> TaxConfiguration | None:
        configs = self._select(
            TaxConfiguration, lambda c: c.organization_id == organization_id
        )
        return pick_effective_configuration(configs, caregiver_id, on)

    async def find_deductions(
        self, organization_id: UUID, caregiver_id: UUID, *, active_only: bool = True
    ) -> list[Deduction]:
        return self._select(
            Deduction,
            lambda d: d.organization_id == organization_id
            and d.caregiver_id == caregiver_id
            and (d.is_active or not active_only),
        )

    async def find_payment_election(
        self, organization_id: UUID, caregiver_id: UUID
    ) -> PaymentElection | None:
        matches = self._select(
            PaymentElection,
            lambda p: p.organization_id == organization_id and p.caregiver_id == caregiver_id,
        )
        return matches[-1] if matches else None
