"""SQLAlchemy-backed repository.

Entities are stored as JSON payloads in the tables from
``caregiver_payroll.models.records``. Updates are conditional on the stored
version so that two writers working from the same read cannot both succeed.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from contextvars import ContextVar, Token
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import Select, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

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
from caregiver_payroll.models.records import (
    RECORD_TYPES,
    DeductionRecord,
    PaymentElectionRecord,
    PayPeriodRecord,
    PayRunRecord,
    PayStubRecord,
    TaxConfigurationRecord,
    TimeSheetRecord,
)
from caregiver_payroll.repository.base import (
    E,
    EntityNotFoundError,
    PayrollRepository,
    StaleEntityError,
    UnitOfWork,
    pick_effective_configuration,
)

logger = logging.getLogger(__name__)


def _record_for(entity_type: type[Entity]) -> Any:
    try:
        return RECORD_TYPES[entity_type]
    except KeyError:
        raise TypeError(f"No table registered for {entity_type.__name__}") from None


def _payload(entity: Entity) -> dict[str, Any]:
    return entity.model_dump(mode="json")


class SqlAlchemyUnitOfWork(UnitOfWork):
    """Opens one session and transaction shared by all repository calls."""

    def __init__(self, repository: SqlAlchemyPayrollRepository):
        self.repository = repository
        self.session: AsyncSession | None = None
        self._token: Token[AsyncSession | None] | None = None

    async def begin(self) -> None:
        if self.repository._active_session.get() is not None:
            raise RuntimeError("Unit of work already started")
        self.session = self.repository.session_factory()
        await self.session.begin()
        self._token = self.repository._active_session.set(self.session)

    async def commit(self) -> None:
        if self.session is None:
            return
        try:
            await self.session.commit()
        finally:
            await self._close()

    async def rollback(self) -> None:
        if self.session is None:
            return
        try:
            await self.session.rollback()
        finally:
            await self._close()

    async def _close(self) -> None:
        if self.session is not None:
            await self.session.close()
        self.session = None
        if self._token is not None:
            self.repository._active_session.reset(self._token)
            self._token = None


class SqlAlchemyPayrollRepository(PayrollRepository):
    """Repository over an async SQLAlchemy session factory.

    Calls made inside a unit of work share its session; calls outside one run
    in their own short transaction. The active session is tracked per asyncio
    task, so concurrent tasks sharing a repository each get their own unit
    of work and never see one another's uncommitted writes.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._active_session: ContextVar[AsyncSession | None] = ContextVar(
            f"payroll_session_{id(self)}", default=None
        )

    def unit_of_work(self) -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(self)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        active = self._active_session.get()
        if active is not None:
            yield active
            return
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def _fetch(self, entity_type: type[E], stmt: Select[Any]) -> list[E]:
        async with self._session() as session:
            result = await session.execute(stmt)
            return [entity_type.model_validate(payload) for payload in result.scalars()]

    # ===== Generic storage =====

    async def add(self, entity: E) -> E:
        record = _record_for(type(entity))
        async with self._session() as session:
            await session.execute(
                insert(record).values(**record.columns_from(entity), payload=_payload(entity))
            )
        return entity

    async def get(self, entity_type: type[E], entity_id: UUID) -> E:
        record = _record_for(entity_type)
        async with self._session() as session:
            result = await session.execute(select(record.payload).where(record.id == entity_id))
            payload = result.scalar_one_or_none()
        if payload is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return entity_type.model_validate(payload)

    async def save(self, entity: E) -> E:
        entity_type = type(entity)
        record = _record_for(entity_type)
        expected = entity.version
        candidate = entity.model_copy(update={"version": expected + 1})
        columns = record.columns_from(candidate)
        del columns["id"]

        async with self._session() as session:
            result = await session.execute(
                update(record)
                .where(record.id == entity.id, record.version == expected)
                .values(**columns, payload=_payload(candidate))
            )
            if result.rowcount == 0:
                exists = await session.execute(select(record.id).where(record.id == entity.id))
                if exists.scalar_one_or_none() is None:
                    raise EntityNotFoundError(entity_type, entity.id)
                logger.warning(
                    "Stale update rejected for %s %s at version %s",
                    entity_type.__name__,
                    entity.id,
                    expected,
                )
                raise StaleEntityError(entity_type, entity.id, expected)

        entity.version = expected + 1
        return entity

    # ===== Finders =====

    async def find_pay_periods(
        self,
        organization_id: UUID,
        *,
        statuses: Iterable[PayPeriodStatus] | None = None,
        year: int | None = None,
    ) -> list[PayPeriod]:
        stmt = select(PayPeriodRecord.payload).where(
            PayPeriodRecord.organization_id == organization_id
        )
        if statuses is not None:
            stmt = stmt.where(PayPeriodRecord.status.in_([s.value for s in statuses]))
        if year is not None:
            stmt = stmt.where(PayPeriodRecord.period_year == year)
        return await self._fetch(PayPeriod, stmt.order_by(PayPeriodRecord.start_date))

    async def find_time_sheets(
        self,
        organization_id: UUID,
        *,
        pay_period_id: UUID | None = None,
        caregiver_id: UUID | None = None,
        statuses: Iterable[TimeSheetStatus] | None = None,
    ) -> list[TimeSheet]:
        stmt = select(TimeSheetRecord.payload).where(
            TimeSheetRecord.organization_id == organization_id
        )
        if pay_period_id is not None:
            stmt = stmt.where(TimeSheetRecord.pay_period_id == pay_period_id)
        if caregiver_id is not None:
            stmt = stmt.where(TimeSheetRecord.caregiver_id == caregiver_id)
        if statuses is not None:
            stmt = stmt.where(TimeSheetRecord.status.in_([s.value for s in statuses]))
        return await self._fetch(TimeSheet, stmt.order_by(TimeSheetRecord.created_at))

    async def find_pay_runs(
        self,
        organization_id: UUID,
        *,
        pay_period_id: UUID | None = None,
        statuses: Iterable[PayRunStatus] | None = None,
    ) -> list[PayRun]:
        stmt = select(PayRunRecord.payload).where(PayRunRecord.organization_id == organization_id)
        if pay_period_id is not None:
            stmt = stmt.where(PayRunRecord.pay_period_id == pay_period_id)
        if statuses is not None:
            stmt = stmt.where(PayRunRecord.status.in_([s.value for s in statuses]))
        return await self._fetch(PayRun, stmt.order_by(PayRunRecord.created_at))

    async def find_pay_stubs(
        self,
        organization_id: UUID,
        *,
        pay_run_id: UUID | None = None,
        caregiver_id: UUID | None = None,
        year: int | None = None,
    ) -> list[PayStub]:
        stmt = select(PayStubRecord.payload).where(PayStubRecord.organization_id == organization_id)
        if pay_run_id is not None:
            stmt = stmt.where(PayStubRecord.pay_run_id == pay_run_id)
        if caregiver_id is not None:
            stmt = stmt.where(PayStubRecord.caregiver_id == caregiver_id)
        if year is not None:
            stmt = stmt.where(PayStubRecord.pay_year == year)
        return await self._fetch(PayStub, stmt.order_by(PayStubRecord.created_at))

    async def find_effective_tax_configuration(
        self, organization_id: UUID, caregiver_id: UUID, on: date
    ) -> TaxConfiguration | None:
        stmt = select(TaxConfigurationRecord.payload).where(
            TaxConfigurationRecord.organization_id == organization_id,
            or_(
                TaxConfigurationRecord.caregiver_id == caregiver_id,
                TaxConfigurationRecord.caregiver_id.is_(None),
            ),
            TaxConfigurationRecord.effective_date <= on,
            or_(
                TaxConfigurationRecord.end_date.is_(None),
                TaxConfigurationRecord.end_date >= on,
            ),
        )
        configs = await self._fetch(TaxConfiguration, stmt)
        return pick_effective_configuration(configs, caregiver_id, on)

    async def find_deductions(
        self, organization_id: UUID, caregiver_id: UUID, *, active_only: bool = True
    ) -> list[Deduction]:
        stmt = select(DeductionRecord.payload).where(
            DeductionRecord.organization_id == organization_id,
            DeductionRecord.caregiver_id == caregiver_id,
        )
        if active_only:
            stmt = stmt.where(DeductionRecord.is_active.is_(True))
        return await self._fetch(Deduction, stmt.order_by(DeductionRecord.created_at))

    async def find_payment_election(
        self, organization_id: UUID, caregiver_id: UUID
    ) -> PaymentElection | None:
        stmt = select(PaymentElectionRecord.payload).where(
            PaymentElectionRecord.organization_id == organization_id,
            PaymentElectionRecord.caregiver_id == caregiver_id,
        )
        matches = await self._fetch(
            PaymentElection, stmt.order_by(PaymentElectionRecord.created_at)
        )
        return matches[-1] if matches else None
