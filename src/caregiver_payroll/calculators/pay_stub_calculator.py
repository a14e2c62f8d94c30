"""Pay stub calculation for one approved time sheet."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from uuid import UUID

from caregiver_payroll.calculators.deductions import (
    DeductionCategory,
    apply_pre_tax,
    calculate_all_deductions,
    group_deductions_by_category,
)
from caregiver_payroll.calculators.rounding import ZERO, non_negative
from caregiver_payroll.calculators.tax_calculator import TaxCalculator
from caregiver_payroll.calculators.types import TaxWithholding, YearToDate
from caregiver_payroll.models.entities import (
    Deduction,
    PaymentElection,
    PayPeriod,
    PayStub,
    StatusChange,
    TaxConfiguration,
    TimeSheet,
    utcnow,
)
from caregiver_payroll.models.enums import (
    NON_TAXABLE_ADJUSTMENTS,
    SUPPLEMENTAL_ADJUSTMENTS,
    AdjustmentType,
    CalculationMethod,
    DeductionType,
    PaymentMethod,
    PayStubStatus,
    TaxTreatment,
)

# Tax withholding fields mapped to the statutory deduction lines they become
STATUTORY_LINES: tuple[tuple[str, DeductionType, str, str], ...] = (
    ("federal_income_tax", DeductionType.FEDERAL_TAX, "FIT", "Federal Income Tax"),
    ("state_income_tax", DeductionType.STATE_TAX, "SIT", "State Income Tax"),
    ("local_income_tax", DeductionType.LOCAL_TAX, "LIT", "Local Income Tax"),
    ("social_security_tax", DeductionType.SOCIAL_SECURITY, "SS", "Social Security"),
    ("medicare_tax", DeductionType.MEDICARE, "MED", "Medicare"),
    ("additional_medicare_tax", DeductionType.ADDITIONAL_MEDICARE, "AMED", "Additional Medicare"),
)


def year_to_date_from(stubs: Iterable[PayStub]) -> YearToDate:
    """Sum prior pay stubs into year-to-date totals, skipping void and cancelled stubs."""
    ytd = YearToDate()
    for stub in stubs:
        if stub.is_void or stub.status in (PayStubStatus.VOID, PayStubStatus.CANCELLED):
            continue
        ytd.gross_pay += stub.gross_pay
        ytd.taxable_wages += stub.taxable_income
        ytd.net_pay += stub.net_pay
        ytd.federal_tax += stub.federal_income_tax
        ytd.state_tax += stub.state_income_tax
        ytd.local_tax += stub.local_income_tax
        ytd.social_security += stub.social_security_tax
        ytd.medicare += stub.medicare_tax + stub.additional_medicare_tax
        ytd.deductions += stub.total_deductions
        ytd.stub_count += 1
    return ytd


class PayStubCalculator:
    """Combines a time sheet with taxes and deductions into a pay stub.

    Gross pay is split into regular wages, supplemental wages (bonuses and
    commissions) and non-taxable reimbursements. Pre-tax deductions reduce
    taxable income, taxes are computed on what remains and become statutory
    deduction lines, and post-tax deductions come out last. Reimbursements
    are added back to net pay.
    """

    def __init__(
        self,
        tax_calculator: TaxCalculator,
        default_state_code: str | None = None,
        use_supplemental_flat_rate: bool = True,
    ):
        self.tax_calculator = tax_calculator
        self.default_state_code = default_state_code
        self.use_supplemental_flat_rate = use_supplemental_flat_rate

    def calculate(
        self,
        *,
        time_sheet: TimeSheet,
        pay_period: PayPeriod,
        pay_run_id: UUID,
        stub_number: str,
        tax_config: TaxConfiguration,
        deductions: Sequence[Deduction],
        year_to_date: YearToDate,
        payment_election: PaymentElection | None,
        calculated_by: str,
    ) -> PayStub:
        """Calculate a CALCULATED pay stub for one caregiver."""
        sheet = time_sheet
        bonuses = self._adjustment_total(
            sheet, SUPPLEMENTAL_ADJUSTMENTS - {AdjustmentType.COMMISSION}
        )
        commissions = self._adjustment_total(sheet, {AdjustmentType.COMMISSION})
        reimbursements = self._adjustment_total(sheet, NON_TAXABLE_ADJUSTMENTS)
        other_adjustments = self._adjustment_total(
            sheet,
            set(AdjustmentType) - SUPPLEMENTAL_ADJUSTMENTS - NON_TAXABLE_ADJUSTMENTS,
        )

        gross_pay = non_negative(sheet.gross_earnings + bonuses + commissions + other_adjustments)
        supplemental = min(bonuses + commissions, gross_pay)

        active = [d for d in deductions if d.is_effective(pay_period.pay_date)]
        pre_tax = [d for d in active if d.tax_treatment is TaxTreatment.PRE_TAX]
        post_tax = [d for d in active if d.tax_treatment is TaxTreatment.POST_TAX]

        taxable_income = apply_pre_tax(gross_pay, pre_tax).remaining
        state_code = tax_config.state_code or self.default_state_code
        taxes = self.tax_calculator.calculate_all_taxes(
            gross_pay=taxable_income,
            ytd_gross_pay=year_to_date.taxable_wages,
            pay_period_type=pay_period.period_type,
            tax_config=tax_config,
            state_code=state_code,
            local_jurisdiction=tax_config.local_jurisdiction,
            supplemental_wages=min(supplemental, taxable_income),
            use_supplemental_flat_rate=self.use_supplemental_flat_rate,
        )
        statutory = self._statutory_deductions(taxes, sheet)

        result = calculate_all_deductions(gross_pay, pre_tax, post_tax, statutory)
        withheld = {
            line.deduction_type: line.calculated_amount for line in result.statutory.deductions
        }
        # Tax lines are not backed by a stored deduction
        lines = [
            d.model_copy(update={"deduction_id": None})
            if d.tax_treatment is TaxTreatment.STATUTORY
            else d
            for d in result.deductions
        ]
        groups = group_deductions_by_category(lines)

        def category_total(category: DeductionCategory) -> Decimal:
            return sum((d.calculated_amount for d in groups[category]), ZERO)

        employer = self.tax_calculator.employer_fica(taxable_income, year_to_date.taxable_wages)
        net_pay = result.net_pay + reimbursements
        now = utcnow()

        stub = PayStub(
            organization_id=sheet.organization_id,
            pay_run_id=pay_run_id,
            pay_period_id=pay_period.id,
            time_sheet_id=sheet.id,
            caregiver_id=sheet.caregiver_id,
            stub_number=stub_number,
            pay_date=pay_period.pay_date,
            period_start=pay_period.start_date,
            period_end=pay_period.end_date,
            state_code=state_code,
            regular_hours=sheet.regular_hours,
            overtime_hours=sheet.overtime_hours,
            double_time_hours=sheet.double_time_hours,
            pto_hours=sheet.pto_hours,
            holiday_hours=sheet.holiday_hours,
            sick_hours=sheet.sick_hours,
            other_hours=sheet.other_hours,
            total_hours=sheet.total_hours,
            regular_pay=sheet.regular_earnings,
            overtime_pay=sheet.overtime_earnings,
            double_time_pay=sheet.double_time_earnings,
            pto_pay=sheet.pto_earnings,
            holiday_pay=sheet.holiday_earnings,
            sick_pay=sheet.sick_earnings,
            other_pay=sheet.other_earnings,
            bonuses=bonuses,
            commissions=commissions,
            other_earnings=other_adjustments,
            reimbursements=reimbursements,
            gross_pay=gross_pay,
            taxable_income=result.taxable_income,
            federal_income_tax=withheld.get(DeductionType.FEDERAL_TAX, ZERO),
            state_income_tax=withheld.get(DeductionType.STATE_TAX, ZERO),
            local_income_tax=withheld.get(DeductionType.LOCAL_TAX, ZERO),
            social_security_tax=withheld.get(DeductionType.SOCIAL_SECURITY, ZERO),
            medicare_tax=withheld.get(DeductionType.MEDICARE, ZERO),
            additional_medicare_tax=withheld.get(DeductionType.ADDITIONAL_MEDICARE, ZERO),
            total_tax=result.statutory_total,
            deductions=lines,
            pre_tax_deductions=result.pre_tax_total,
            post_tax_deductions=result.post_tax_total,
            total_benefits=category_total(DeductionCategory.BENEFITS),
            total_retirement=category_total(DeductionCategory.RETIREMENT),
            total_garnishments=category_total(DeductionCategory.GARNISHMENTS),
            other_deductions=category_total(DeductionCategory.OTHER),
            total_deductions=result.total_deductions,
            disposable_income=result.disposable_income,
            net_pay=net_pay,
            employer_social_security=employer.social_security,
            employer_medicare=employer.medicare,
            employer_match=sum((d.employer_match_amount for d in result.deductions), ZERO),
            ytd_gross_pay=year_to_date.gross_pay + gross_pay,
            ytd_net_pay=year_to_date.net_pay + net_pay,
            ytd_federal_tax=year_to_date.federal_tax + withheld.get(DeductionType.FEDERAL_TAX, ZERO),
            ytd_state_tax=year_to_date.state_tax + withheld.get(DeductionType.STATE_TAX, ZERO),
            ytd_local_tax=year_to_date.local_tax + withheld.get(DeductionType.LOCAL_TAX, ZERO),
            ytd_social_security=year_to_date.social_security
            + withheld.get(DeductionType.SOCIAL_SECURITY, ZERO),
            ytd_medicare=year_to_date.medicare
            + withheld.get(DeductionType.MEDICARE, ZERO)
            + withheld.get(DeductionType.ADDITIONAL_MEDICARE, ZERO),
            ytd_deductions=year_to_date.deductions + result.total_deductions,
            payment_method=(
                payment_election.payment_method if payment_election else PaymentMethod.DIRECT_DEPOSIT
            ),
            bank_account_last4=payment_election.bank_account_last4 if payment_election else None,
            status=PayStubStatus.CALCULATED,
            calculated_at=now,
            created_by=calculated_by,
            updated_by=calculated_by,
        )
        stub.status_history.append(
            StatusChange(
                from_status=PayStubStatus.DRAFT.value,
                to_status=PayStubStatus.CALCULATED.value,
                timestamp=now,
                changed_by=calculated_by,
                reason="Pay stub calculated",
                automatic=True,
            )
        )
        return stub

    @staticmethod
    def _adjustment_total(sheet: TimeSheet, types: Iterable[AdjustmentType]) -> Decimal:
        wanted = set(types)
        return sum((a.amount for a in sheet.adjustments if a.adjustment_type in wanted), ZERO)

    @staticmethod
    def _statutory_deductions(taxes: TaxWithholding, sheet: TimeSheet) -> list[Deduction]:
        """Turn computed taxes into fixed-amount statutory deductions."""
        statutory = []
        for attribute, deduction_type, code, description in STATUTORY_LINES:
            amount = getattr(taxes, attribute)
            if amount <= ZERO:
                continue
            statutory.append(
                Deduction(
                    organization_id=sheet.organization_id,
                    caregiver_id=sheet.caregiver_id,
                    deduction_type=deduction_type,
                    code=code,
                    description=description,
                    calculation_method=CalculationMethod.FIXED,
                    tax_treatment=TaxTreatment.STATUTORY,
                    amount=amount,
                )
            )
        return statutory
