"""SQLAlchemy tables backing the payroll repository.

Each table stores the full entity as a JSON payload next to the columns the
repository filters on. The payload is the source of truth; indexed columns are
rewritten from it on every save.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

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


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        UUID: Uuid(as_uuid=True),
        datetime: DateTime(timezone=True),
        dict[str, Any]: JSON,
    }


class DocumentMixin:
    """Identity, optimistic version and JSON payload shared by every table."""

    id: Mapped[UUID] = mapped_column(primary_key=True)
    organization_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    @classmethod
    def columns_from(cls, entity: Any) -> dict[str, Any]:
        """Column values derived from an entity (payload excluded)."""
        return {
            "id": entity.id,
            "organization_id": entity.organization_id,
            "version": entity.version,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }


class PayPeriodRecord(Base, DocumentMixin):
    __tablename__ = "pay_period"

    status: Mapped[str] = mapped_column(String, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    @classmethod
    def columns_from(cls, entity: PayPeriod) -> dict[str, Any]:
        return {
            **super().columns_from(entity),
            "status": entity.status.value,
            "period_year": entity.period_year,
            "start_date": entity.start_date,
        }


class TimeSheetRecord(Base, DocumentMixin):
    __tablename__ = "time_sheet"

    caregiver_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    pay_period_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("ix_time_sheet_period_status", "pay_period_id", "status"),)

    @classmethod
    def columns_from(cls, entity: TimeSheet) -> dict[str, Any]:
        return {
            **super().columns_from(entity),
            "caregiver_id": entity.caregiver_id,
            "pay_period_id": entity.pay_period_id,
            "status": entity.status.value,
        }


class PayRunRecord(Base, DocumentMixin):
    __tablename__ = "pay_run"

    pay_period_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    run_number: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)

    @classmethod
    def columns_from(cls, entity: PayRun) -> dict[str, Any]:
        return {
            **super().columns_from(entity),
            "pay_period_id": entity.pay_period_id,
            "run_number": entity.run_number,
            "status": entity.status.value,
        }


class PayStubRecord(Base, DocumentMixin):
    __tablename__ = "pay_stub"

    pay_run_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    caregiver_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    pay_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)

    @classmethod
    def columns_from(cls, entity: PayStub) -> dict[str, Any]:
        return {
            **super().columns_from(entity),
            "pay_run_id": entity.pay_run_id,
            "caregiver_id": entity.caregiver_id,
            "pay_year": entity.pay_date.year,
            "status": entity.status.value,
        }


class TaxConfigurationRecord(Base, DocumentMixin):
    __tablename__ = "tax_configuration"

    caregiver_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    @classmethod
    def columns_from(cls, entity: TaxConfiguration) -> dict[str, Any]:
        return {
            **super().columns_from(entity),
            "caregiver_id": entity.caregiver_id,
            "effective_date": entity.effective_date,
            "end_date": entity.end_date,
        }


class DeductionRecord(Base, DocumentMixin):
    __tablename__ = "deduction"

    caregiver_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    @classmethod
    def columns_from(cls, entity: Deduction) -> dict[str, Any]:
        return {
            **super().columns_from(entity),
            "caregiver_id": entity.caregiver_id,
            "is_active": entity.is_active,
        }


class PaymentElectionRecord(Base, DocumentMixin):
    __tablename__ = "payment_election"

    caregiver_id: Mapped[UUID] = mapped_column(nullable=False, index=True)

    @classmethod
    def columns_from(cls, entity: PaymentElection) -> dict[str, Any]:
        return {
            **super().columns_from(entity),
            "caregiver_id": entity.caregiver_id,
        }


RECORD_TYPES: dict[type[Entity], type[DocumentMixin]] = {
    PayPeriod: PayPeriodRecord,
    TimeSheet: TimeSheetRecord,
    PayRun: PayRunRecord,
    PayStub: PayStubRecord,
    TaxConfiguration: TaxConfigurationRecord,
    Deduction: DeductionRecord,
    PaymentElection: PaymentElectionRecord,
}
