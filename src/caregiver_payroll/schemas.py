"""Pydantic schemas for service inputs."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from caregiver_payroll.models.enums import AdjustmentType, PayPeriodType, PayRunType


# ============================================================================
# Pay Period schemas
# ============================================================================


class PayPeriodCreate(BaseModel):
    """Schema for creating a new pay period."""

    organization_id: UUID
    branch_id: UUID | None = None
    period_type: PayPeriodType = PayPeriodType.BI_WEEKLY
    period_number: int = Field(ge=1)
    period_year: int = Field(ge=2000)
    start_date: date
    end_date: date
    pay_date: date
    cutoff_date: date | None = None
    approval_deadline: date | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def check_dates(self) -> "PayPeriodCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.pay_date < self.start_date:
            raise ValueError("pay_date must not be before start_date")
        return self


# ============================================================================
# Time Sheet schemas
# ============================================================================


class TimeSheetAdjustmentCreate(BaseModel):
    """Schema for adding a manual adjustment to a time sheet."""

    adjustment_type: AdjustmentType
    amount: Decimal
    description: str = Field(min_length=1)
    reason: str | None = None
    reference_id: str | None = None


# ============================================================================
# Pay Run schemas
# ============================================================================


class PayRunCreate(BaseModel):
    """Schema for creating a new pay run."""

    organization_id: UUID
    pay_period_id: UUID
    run_type: PayRunType = PayRunType.REGULAR
    notes: str | None = None
