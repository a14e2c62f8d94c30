"""Per-period tax withholding.

``TaxCalculator`` binds a set of ``TaxTables`` and computes federal, state,
local, Social Security and Medicare withholding for one pay period. It keeps
no state between calls; calculators for different tax years can be used side
by side.
"""

from __future__ import annotations

from decimal import Decimal

from caregiver_payroll.calculators.rounding import (
    ZERO,
    Number,
    non_negative,
    round_money,
    to_decimal,
)
from caregiver_payroll.calculators.tax_tables import TaxBracket, TaxTables
from caregiver_payroll.calculators.types import (
    PAY_PERIODS_PER_YEAR,
    AggregateParameters,
    EmployerFica,
    QuarterlyTaxEstimate,
    TaxWithholding,
)
from caregiver_payroll.models.entities import TaxConfiguration
from caregiver_payroll.models.enums import PayPeriodType


class AggregateParametersRequiredError(ValueError):
    """Raised when aggregate supplemental withholding is requested without its inputs."""

    def __init__(self) -> None:
        super().__init__("Aggregate method requires aggregate parameters")


class TaxCalculator:
    """Calculates tax withholding from explicit tax tables."""

    def __init__(self, tables: TaxTables):
        self.tables = tables

    # ----- Federal income tax -----

    def federal_income_tax(
        self,
        gross_pay: Number,
        pay_period_type: PayPeriodType,
        tax_config: TaxConfiguration,
    ) -> Decimal:
        """Percentage-method federal withholding for one period.

        W-4 elections are converted to per-period amounts, the adjusted pay is
        annualized, run through the marginal brackets for the filing status,
        and brought back to one period before flat extra withholding is added.
        """
        gross = to_decimal(gross_pay)
        if tax_config.federal_exempt or gross <= ZERO:
            return ZERO

        periods = Decimal(PAY_PERIODS_PER_YEAR[pay_period_type])
        adjusted = (
            gross
            + to_decimal(tax_config.w4_step4a_other_income) / periods
            - to_decimal(tax_config.w4_step3_dependents_amount) / periods
            - to_decimal(tax_config.w4_step4b_deductions) / periods
        )
        annual_pay = non_negative(adjusted) * periods

        brackets = self.tables.brackets_for(
            tax_config.federal_filing_status,
            multiple_jobs=tax_config.w4_step2_multiple_jobs,
        )
        period_tax = round_money(self._apply_brackets(annual_pay, brackets) / periods)

        extra = round_money(
            to_decimal(tax_config.federal_extra_withholding)
            + to_decimal(tax_config.w4_step4c_extra_withholding)
        )
        return period_tax + non_negative(extra)

    @staticmethod
    def _apply_brackets(annual_pay: Decimal, brackets: tuple[TaxBracket, ...]) -> Decimal:
        """Accumulate marginal tax across ascending brackets (unrounded)."""
        if annual_pay <= ZERO:
            return ZERO

        tax = ZERO
        previous_limit = ZERO
        for bracket in brackets:
            if annual_pay <= previous_limit:
                break
            upper = annual_pay if bracket.limit is None else min(annual_pay, bracket.limit)
            tax += (upper - previous_limit) * bracket.rate
            if bracket.limit is None:
                break
            previous_limit = bracket.limit
        return tax

    # ----- FICA -----

    def social_security_tax(self, gross_pay: Number, ytd_gross_pay: Number) -> Decimal:
        """Social Security on wages up to the annual wage base."""
        gross = to_decimal(gross_pay)
        if gross <= ZERO:
            return ZERO

        ytd = non_negative(to_decimal(ytd_gross_pay))
        remaining_base = self.tables.social_security_wage_base - ytd
        if remaining_base <= ZERO:
            return ZERO

        taxable = min(gross, remaining_base)
        return round_money(taxable * self.tables.social_security_rate)

    def medicare_tax(self, gross_pay: Number) -> Decimal:
        gross = to_decimal(gross_pay)
        if gross <= ZERO:
            return ZERO
        return round_money(gross * self.tables.medicare_rate)

    def additional_medicare_tax(self, gross_pay: Number, ytd_gross_pay: Number) -> Decimal:
        """Extra Medicare on the part of year-to-date wages above the threshold."""
        gross = to_decimal(gross_pay)
        if gross <= ZERO:
            return ZERO

        ytd = non_negative(to_decimal(ytd_gross_pay))
        threshold = self.tables.additional_medicare_threshold
        excess = ytd + gross - threshold
        if excess <= ZERO:
            return ZERO

        return round_money(min(gross, excess) * self.tables.additional_medicare_rate)

    def employer_fica(self, gross_pay: Number, ytd_gross_pay: Number) -> EmployerFica:
        """Employer share of Social Security and Medicare (no additional Medicare)."""
        return EmployerFica(
            social_security=self.social_security_tax(gross_pay, ytd_gross_pay),
            medicare=self.medicare_tax(gross_pay),
        )

    # ----- State & local -----

    def state_income_tax(
        self,
        gross_pay: Number,
        state_code: str | None,
        tax_config: TaxConfiguration,
    ) -> Decimal:
        """Flat-rate state withholding plus any extra state withholding.

        With no state code on the call or the configuration nothing is withheld.
        """
        gross = to_decimal(gross_pay)
        if tax_config.state_exempt or gross <= ZERO:
            return ZERO

        code = state_code or tax_config.state_code
        if not code:
            return ZERO

        tax = round_money(gross * self.tables.state_rate(code))
        return tax + non_negative(round_money(tax_config.state_extra_withholding))

    def local_income_tax(
        self,
        gross_pay: Number,
        local_jurisdiction: str | None,
        tax_config: TaxConfiguration,
    ) -> Decimal:
        gross = to_decimal(gross_pay)
        if tax_config.local_exempt or gross <= ZERO:
            return ZERO

        jurisdiction = local_jurisdiction or tax_config.local_jurisdiction
        if not jurisdiction:
            return ZERO

        rate = self.tables.local_rate(jurisdiction)
        if rate is None:
            return ZERO
        return round_money(gross * rate)

    # ----- Combined -----

    def calculate_all_taxes(
        self,
        gross_pay: Number,
        ytd_gross_pay: Number,
        pay_period_type: PayPeriodType,
        tax_config: TaxConfiguration,
        state_code: str | None = None,
        local_jurisdiction: str | None = None,
        supplemental_wages: Number = ZERO,
        use_supplemental_flat_rate: bool = True,
    ) -> TaxWithholding:
        """All withholding for one period.

        ``supplemental_wages`` is the part of ``gross_pay`` paid as bonuses or
        commissions; federal income tax on it uses the flat supplemental rate
        (or the aggregate method when ``use_supplemental_flat_rate`` is false)
        while FICA, state and local taxes apply to the full gross.
        """
        gross = to_decimal(gross_pay)
        supplemental = min(non_negative(to_decimal(supplemental_wages)), non_negative(gross))
        regular = gross - supplemental

        federal = self.federal_income_tax(regular, pay_period_type, tax_config)
        if supplemental > ZERO and not tax_config.federal_exempt:
            federal += self.supplemental_withholding(
                supplemental,
                use_flat_rate=use_supplemental_flat_rate,
                aggregate=AggregateParameters(
                    regular_gross_pay=regular,
                    pay_period_type=pay_period_type,
                    tax_config=tax_config,
                ),
            )

        return TaxWithholding(
            federal_income_tax=federal,
            state_income_tax=self.state_income_tax(gross, state_code, tax_config),
            local_income_tax=self.local_income_tax(gross, local_jurisdiction, tax_config),
            social_security_tax=self.social_security_tax(gross, ytd_gross_pay),
            medicare_tax=self.medicare_tax(gross),
            additional_medicare_tax=self.additional_medicare_tax(gross, ytd_gross_pay),
        )

    # ----- Supplemental wages -----

    def supplemental_withholding(
        self,
        amount: Number,
        use_flat_rate: bool = True,
        aggregate: AggregateParameters | None = None,
    ) -> Decimal:
        """Federal withholding on a bonus or commission payment.

        The flat method withholds the supplemental rate, or the high rate on
        payments above the high threshold. The aggregate method withholds the
        difference between tax on regular plus supplemental pay and tax on
        regular pay alone, clamped to ``[0, amount]``.
        """
        if not use_flat_rate and aggregate is None:
            raise AggregateParametersRequiredError()

        supplemental = to_decimal(amount)
        if supplemental <= ZERO:
            return ZERO

        if use_flat_rate or aggregate is None:
            if supplemental > self.tables.supplemental_high_threshold:
                return round_money(supplemental * self.tables.supplemental_high_rate)
            return round_money(supplemental * self.tables.supplemental_rate)

        regular = to_decimal(aggregate.regular_gross_pay)
        with_supplemental = self.federal_income_tax(
            regular + supplemental, aggregate.pay_period_type, aggregate.tax_config
        )
        without_supplemental = self.federal_income_tax(
            regular, aggregate.pay_period_type, aggregate.tax_config
        )
        return min(non_negative(with_supplemental - without_supplemental), supplemental)

    # ----- Employer liability -----

    def estimate_quarterly_liability(
        self, quarter_wages: Number, withheld_income_tax: Number
    ) -> QuarterlyTaxEstimate:
        """Estimate the quarter's deposit: withheld income tax plus both FICA shares."""
        wages = non_negative(to_decimal(quarter_wages))
        social_security = round_money(
            min(wages, self.tables.social_security_wage_base) * self.tables.social_security_rate
        )
        medicare = round_money(wages * self.tables.medicare_rate)

        return QuarterlyTaxEstimate(
            quarter_wages=wages,
            withheld_income_tax=round_money(withheld_income_tax),
            employee_social_security=social_security,
            employee_medicare=medicare,
            employer_social_security=social_security,
            employer_medicare=medicare,
        )
