"""Tax tables as explicit configuration.

A ``TaxTables`` instance holds every rate, bracket and threshold the tax
calculator needs for one tax year. Tables are loaded from JSON payloads so
that several years can be evaluated side by side.

Payload structure::

    {
        "year": 2024,
        "federal": {
            "standard": {"SINGLE": [{"limit": 6000, "rate": 0}, ...], ...},
            "multiple_jobs": {...},          // W-4 step 2 checkbox schedule
            "filing_status_aliases": {"MARRIED_SEPARATELY": "SINGLE"}
        },
        "fica": {"social_security_rate": 0.062, "social_security_wage_base": 168600, ...},
        "supplemental": {"flat_rate": 0.22, "high_rate": 0.37, "high_threshold": 1000000},
        "state": {"default_rate": 0.03, "rates": {"CA": 0.05, "TX": 0}},
        "local": {"rates": {"NYC": 0.03876}}
    }

Bracket ``limit`` is the upper bound of the bracket; ``null`` marks the top.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

from caregiver_payroll.models.enums import FilingStatus


class TaxTablesNotFoundError(Exception):
    """Raised when no tax tables exist for a requested year."""

    def __init__(self, year: int, location: str):
        self.year = year
        self.location = location
        super().__init__(f"No tax tables for {year} at {location}")


@dataclass(frozen=True)
class TaxBracket:
    """Marginal bracket: ``rate`` applies to income up to ``limit``."""

    limit: Decimal | None  # None = no upper limit
    rate: Decimal


@dataclass(frozen=True)
class TaxTables:
    """Rates and thresholds for one tax year."""

    year: int
    federal_brackets: dict[FilingStatus, tuple[TaxBracket, ...]]
    multiple_jobs_brackets: dict[FilingStatus, tuple[TaxBracket, ...]]
    filing_status_aliases: dict[FilingStatus, FilingStatus]

    social_security_rate: Decimal
    social_security_wage_base: Decimal
    medicare_rate: Decimal
    additional_medicare_rate: Decimal
    additional_medicare_threshold: Decimal

    supplemental_rate: Decimal
    supplemental_high_rate: Decimal
    supplemental_high_threshold: Decimal

    state_rates: dict[str, Decimal]
    default_state_rate: Decimal
    local_rates: dict[str, Decimal]

    def brackets_for(
        self, filing_status: FilingStatus, multiple_jobs: bool = False
    ) -> tuple[TaxBracket, ...]:
        """Bracket schedule for a filing status, following aliases."""
        status = self.filing_status_aliases.get(filing_status, filing_status)
        schedule = self.multiple_jobs_brackets if multiple_jobs else self.federal_brackets
        try:
            return schedule[status]
        except KeyError:
            raise KeyError(
                f"No {self.year} federal brackets for filing status {filing_status.value}"
            ) from None

    def state_rate(self, state_code: str) -> Decimal:
        """Flat withholding rate for a state; unknown states use the default."""
        return self.state_rates.get(state_code.upper(), self.default_state_rate)

    def local_rate(self, jurisdiction: str) -> Decimal | None:
        return self.local_rates.get(jurisdiction.upper())

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TaxTables:
        """Build tables from a parsed JSON payload."""
        federal = payload["federal"]
        fica = payload["fica"]
        supplemental = payload["supplemental"]
        state = payload.get("state", {})
        local = payload.get("local", {})

        return cls(
            year=int(payload["year"]),
            federal_brackets=_parse_schedule(federal["standard"]),
            multiple_jobs_brackets=_parse_schedule(
                federal.get("multiple_jobs", federal["standard"])
            ),
            filing_status_aliases={
                FilingStatus(k): FilingStatus(v)
                for k, v in federal.get("filing_status_aliases", {}).items()
            },
            social_security_rate=_dec(fica["social_security_rate"]),
            social_security_wage_base=_dec(fica["social_security_wage_base"]),
            medicare_rate=_dec(fica["medicare_rate"]),
            additional_medicare_rate=_dec(fica["additional_medicare_rate"]),
            additional_medicare_threshold=_dec(fica["additional_medicare_threshold"]),
            supplemental_rate=_dec(supplemental["flat_rate"]),
            supplemental_high_rate=_dec(supplemental["high_rate"]),
            supplemental_high_threshold=_dec(supplemental["high_threshold"]),
            state_rates={k.upper(): _dec(v) for k, v in state.get("rates", {}).items()},
            default_state_rate=_dec(state.get("default_rate", 0)),
            local_rates={k.upper(): _dec(v) for k, v in local.get("rates", {}).items()},
        )


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _parse_schedule(raw: dict[str, list[dict[str, Any]]]) -> dict[FilingStatus, tuple[TaxBracket, ...]]:
    schedule: dict[FilingStatus, tuple[TaxBracket, ...]] = {}
    for status, brackets in raw.items():
        parsed = tuple(
            TaxBracket(
                limit=None if b.get("limit") is None else _dec(b["limit"]),
                rate=_dec(b["rate"]),
            )
            for b in brackets
        )
        schedule[FilingStatus(status)] = parsed
    return schedule


@lru_cache(maxsize=8)
def load_tax_tables(year: int, path: str | None = None) -> TaxTables:
    """Load tax tables for a year.

    ``path`` is a directory holding ``tax_tables_<year>.json`` files; when
    omitted the tables bundled with the package are used.
    """
    filename = f"tax_tables_{year}.json"
    if path is not None:
        source = Path(path) / filename
        if not source.is_file():
            raise TaxTablesNotFoundError(year, str(source))
        text = source.read_text(encoding="utf-8")
    else:
        bundled = resources.files("caregiver_payroll.calculators").joinpath("data").joinpath(filename)
        if not bundled.is_file():
            raise TaxTablesNotFoundError(year, "package data")
        text = bundled.read_text(encoding="utf-8")

    return TaxTables.from_payload(json.loads(text, parse_float=Decimal))
