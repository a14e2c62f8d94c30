"""Interface to the upstream time-tracking system."""

from __future__ import annotations

from datetime import date
from typing import Protocol, runtime_checkable
from uuid import UUID

from caregiver_payroll.models.entities import VerifiedTimeRecord


@runtime_checkable
class TimeRecordSource(Protocol):
    """Supplies verified visit records for a caregiver and date range."""

    async def fetch_records(
        self, caregiver_id: UUID, start: date, end: date
    ) -> list[VerifiedTimeRecord]: ...
