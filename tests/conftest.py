"""Pytest fixtures for caregiver payroll tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from caregiver_payroll.calculators.tax_calculator import TaxCalculator
from caregiver_payroll.calculators.tax_tables import TaxTables, load_tax_tables
from caregiver_payroll.database import create_schema, make_session_factory
from caregiver_payroll.models import (
    FilingStatus,
    PayPeriod,
    PayPeriodStatus,
    PayPeriodType,
    TaxConfiguration,
    TimeSheetEntry,
    VerifiedTimeRecord,
)
from caregiver_payroll.repository import InMemoryPayrollRepository
from caregiver_payroll.services import PayrollService

# In-memory SQLite keeps one shared connection so every session sees the schema
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 2024-01-01 is a Monday
PERIOD_START = date(2024, 1, 1)
PERIOD_END = date(2024, 1, 14)
PAY_DATE = date(2024, 1, 19)


@pytest.fixture(scope="session")
def tax_tables() -> TaxTables:
    return load_tax_tables(2024)


@pytest.fixture
def tax_calculator(tax_tables: TaxTables) -> TaxCalculator:
    return TaxCalculator(tax_tables)


@pytest.fixture
def org_id() -> UUID:
    return uuid4()


@pytest.fixture
def caregiver_id() -> UUID:
    return uuid4()


@pytest.fixture
def single_config(org_id: UUID, caregiver_id: UUID) -> TaxConfiguration:
    """Single filer with no W-4 adjustments and no state withholding."""
    return TaxConfiguration(
        organization_id=org_id,
        caregiver_id=caregiver_id,
        federal_filing_status=FilingStatus.SINGLE,
        effective_date=date(2024, 1, 1),
    )


@pytest.fixture
def make_pay_period(org_id: UUID) -> Callable[..., PayPeriod]:
    def _make(
        status: PayPeriodStatus = PayPeriodStatus.OPEN,
        period_type: PayPeriodType = PayPeriodType.BI_WEEKLY,
        start: date = PERIOD_START,
        end: date = PERIOD_END,
        pay_date: date = PAY_DATE,
        period_number: int = 1,
    ) -> PayPeriod:
        return PayPeriod(
            organization_id=org_id,
            period_type=period_type,
            period_number=period_number,
            period_year=pay_date.year,
            start_date=start,
            end_date=end,
            pay_date=pay_date,
            status=status,
        )

    return _make


@pytest.fixture
def make_record() -> Callable[..., VerifiedTimeRecord]:
    """Build a verified visit starting at ``start_hour`` on ``day`` (UTC)."""

    def _make(
        caregiver_id: UUID,
        day: date,
        hours: float | Decimal = 8,
        start_hour: int = 8,
        break_minutes: int = 0,
        pay_rate: Decimal | None = None,
        **kwargs,
    ) -> VerifiedTimeRecord:
        clock_in = datetime(day.year, day.month, day.day, start_hour, tzinfo=timezone.utc)
        clock_out = clock_in + timedelta(hours=float(hours))
        return VerifiedTimeRecord(
            record_id=f"EVV-{uuid4().hex[:8]}",
            caregiver_id=caregiver_id,
            clock_in=clock_in,
            clock_out=clock_out,
            break_minutes=break_minutes,
            pay_rate=pay_rate,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_entry() -> Callable[..., TimeSheetEntry]:
    """Build a time sheet entry from a clock-in and an hour count."""

    def _make(
        clock_in: datetime,
        hours: float | Decimal,
        total_hours: Decimal | None = None,
        **kwargs,
    ) -> TimeSheetEntry:
        clock_out = clock_in + timedelta(hours=float(hours))
        return TimeSheetEntry(
            work_date=clock_in.date(),
            clock_in=clock_in,
            clock_out=clock_out,
            total_hours=total_hours if total_hours is not None else Decimal(str(hours)),
            **kwargs,
        )

    return _make


@pytest.fixture
def repository() -> InMemoryPayrollRepository:
    return InMemoryPayrollRepository()


@pytest.fixture
def service(repository: InMemoryPayrollRepository, tax_calculator: TaxCalculator) -> PayrollService:
    return PayrollService(repository, tax_calculator, engine_version="test")


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database for one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)
