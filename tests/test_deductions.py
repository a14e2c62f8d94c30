"""Tests for deductions and garnishments."""

from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from caregiver_payroll.calculators.deductions import (
    GARNISHMENT_CEILINGS,
    DeductionCategory,
    apply_post_tax,
    apply_pre_tax,
    calculate_all_deductions,
    deduction_amount,
    employer_match,
    garnishment_amount,
    group_deductions_by_category,
    is_deduction_limit_reached,
    remaining_deduction_limit,
    sort_garnishments_by_priority,
)
from caregiver_payroll.models import (
    CalculationMethod,
    Deduction,
    DeductionType,
    GarnishmentOrder,
    GarnishmentType,
    TaxTreatment,
)

ORG_ID = uuid4()
CAREGIVER_ID = uuid4()


def make_deduction(
    deduction_type: DeductionType = DeductionType.OTHER,
    tax_treatment: TaxTreatment = TaxTreatment.POST_TAX,
    **overrides,
) -> Deduction:
    values = {
        "organization_id": ORG_ID,
        "caregiver_id": CAREGIVER_ID,
        "deduction_type": deduction_type,
        "code": deduction_type.value[:8],
        "description": deduction_type.value.replace("_", " ").title(),
        "tax_treatment": tax_treatment,
    }
    values.update(overrides)
    return Deduction(**values)


def make_garnishment(order_type: GarnishmentType, **order_fields) -> Deduction:
    order = GarnishmentOrder(
        order_number=f"ORD-{uuid4().hex[:6]}",
        issuing_authority="County Court",
        order_type=order_type,
        **order_fields,
    )
    return make_deduction(DeductionType.GARNISHMENT, garnishment_order=order)


class TestDeductionAmount:
    """Tests for single deduction amounts."""

    def test_fixed(self):
        deduction = make_deduction(amount=Decimal("100"))

        assert deduction_amount(2000, 1500, deduction) == Decimal("100.00")

    def test_percentage_of_gross(self):
        deduction = make_deduction(
            calculation_method=CalculationMethod.PERCENTAGE, percentage=Decimal("5")
        )

        assert deduction_amount(2000, 1500, deduction) == Decimal("100.00")

    def test_percentage_of_net(self):
        deduction = make_deduction(
            calculation_method=CalculationMethod.PERCENTAGE_OF_NET, percentage=Decimal("10")
        )

        assert deduction_amount(2000, 1500, deduction) == Decimal("150.00")

    def test_clamped_to_yearly_limit(self):
        deduction = make_deduction(
            amount=Decimal("100"),
            yearly_limit=Decimal("1000"),
            year_to_date_amount=Decimal("950"),
        )

        assert remaining_deduction_limit(deduction) == Decimal("50")
        assert deduction_amount(2000, 2000, deduction) == Decimal("50.00")

    def test_limit_reached(self):
        deduction = make_deduction(
            amount=Decimal("100"),
            yearly_limit=Decimal("1000"),
            year_to_date_amount=Decimal("1000"),
        )

        assert is_deduction_limit_reached(deduction) is True
        assert deduction_amount(2000, 2000, deduction) == Decimal("0")

    def test_no_limit(self):
        deduction = make_deduction(amount=Decimal("100"))

        assert remaining_deduction_limit(deduction) is None
        assert is_deduction_limit_reached(deduction) is False

    def test_negative_amount_clamped(self):
        deduction = make_deduction(amount=Decimal("-50"))

        assert deduction_amount(2000, 2000, deduction) == Decimal("0")


class TestGarnishments:
    """Tests for garnishment ceilings and priority."""

    def test_child_support_ceiling(self):
        """Child support takes 50% of $800 disposable income."""
        deduction = make_garnishment(GarnishmentType.CHILD_SUPPORT)

        assert garnishment_amount(1000, 800, deduction) == Decimal("400.00")

    def test_order_amount_below_ceiling(self):
        deduction = make_garnishment(GarnishmentType.CHILD_SUPPORT, order_amount=Decimal("250"))

        assert garnishment_amount(1000, 800, deduction) == Decimal("250.00")

    def test_order_amount_capped_by_ceiling(self):
        deduction = make_garnishment(GarnishmentType.CHILD_SUPPORT, order_amount=Decimal("600"))

        assert garnishment_amount(1000, 800, deduction) == Decimal("400.00")

    def test_remaining_balance_cap(self):
        deduction = make_garnishment(
            GarnishmentType.CREDITOR, remaining_balance=Decimal("100")
        )

        assert garnishment_amount(1000, 800, deduction) == Decimal("100")

    def test_explicit_max_percentage(self):
        deduction = make_garnishment(GarnishmentType.CREDITOR, max_percentage=Decimal("20"))

        assert garnishment_amount(1000, 800, deduction) == Decimal("160.00")

    def test_student_loan_ceiling(self):
        deduction = make_garnishment(GarnishmentType.STUDENT_LOAN)

        assert garnishment_amount(1000, 800, deduction) == Decimal("120.00")

    def test_no_disposable_income(self):
        deduction = make_garnishment(GarnishmentType.CHILD_SUPPORT)

        assert garnishment_amount(1000, 0, deduction) == Decimal("0")

    def test_priority_order(self):
        creditor = make_garnishment(GarnishmentType.CREDITOR)
        plain = make_deduction(amount=Decimal("10"))
        levy = make_garnishment(GarnishmentType.TAX_LEVY)
        support = make_garnishment(GarnishmentType.CHILD_SUPPORT)

        ordered = sort_garnishments_by_priority([creditor, plain, levy, support])

        assert ordered == [support, levy, creditor, plain]

    def test_explicit_priority_breaks_ties(self):
        second = make_garnishment(GarnishmentType.CREDITOR, priority=2)
        first = make_garnishment(GarnishmentType.CREDITOR, priority=1)

        assert sort_garnishments_by_priority([second, first]) == [first, second]

    @settings(max_examples=100)
    @given(
        order_type=st.sampled_from(list(GarnishmentType)),
        disposable=st.decimals(min_value=-100, max_value=10000, places=2),
        order_amount=st.none() | st.decimals(min_value=0, max_value=10000, places=2),
        remaining=st.none() | st.decimals(min_value=0, max_value=5000, places=2),
    )
    def test_never_exceeds_ceiling_or_balance(self, order_type, disposable, order_amount, remaining):
        deduction = make_garnishment(
            order_type, order_amount=order_amount, remaining_balance=remaining
        )

        amount = garnishment_amount(disposable + 500, disposable, deduction)

        ceiling = (
            max(disposable, Decimal("0")) * GARNISHMENT_CEILINGS[order_type] / 100
        ).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        assert Decimal("0") <= amount <= ceiling
        if remaining is not None:
            assert amount <= remaining


class TestEmployerMatch:
    def test_match_capped(self):
        assert employer_match(100, 50, max_match=40) == Decimal("40")

    def test_match_uncapped(self):
        assert employer_match(100, 50) == Decimal("50.00")


class TestDeductionFold:
    """Tests for the pre-tax, statutory, post-tax fold."""

    def test_pre_tax_reduces_taxable_income(self):
        retirement = make_deduction(
            DeductionType.RETIREMENT_401K,
            TaxTreatment.PRE_TAX,
            calculation_method=CalculationMethod.PERCENTAGE,
            percentage=Decimal("5"),
        )
        health = make_deduction(
            DeductionType.HEALTH_INSURANCE, TaxTreatment.PRE_TAX, amount=Decimal("150")
        )

        step = apply_pre_tax(2000, [retirement, health])

        assert [d.calculated_amount for d in step.deductions] == [
            Decimal("100.00"),
            Decimal("150.00"),
        ]
        assert step.remaining == Decimal("1750.00")

    def test_full_fold(self):
        health = make_deduction(
            DeductionType.HEALTH_INSURANCE, TaxTreatment.PRE_TAX, amount=Decimal("100")
        )
        federal = make_deduction(
            DeductionType.FEDERAL_TAX, TaxTreatment.STATUTORY, amount=Decimal("300")
        )
        support = make_garnishment(GarnishmentType.CHILD_SUPPORT)

        result = calculate_all_deductions(2000, [health], [support], [federal])

        assert result.taxable_income == Decimal("1900.00")
        assert result.disposable_income == Decimal("1600.00")
        assert result.post_tax_total == Decimal("800.00")
        assert result.net_pay == Decimal("800.00")
        assert result.total_deductions == Decimal("1200.00")
        assert [d.deduction_type for d in result.deductions] == [
            DeductionType.HEALTH_INSURANCE,
            DeductionType.FEDERAL_TAX,
            DeductionType.GARNISHMENT,
        ]

    def test_post_tax_capped_at_running_net(self):
        large = make_deduction(amount=Decimal("5000"))

        step = apply_post_tax(2000, 300, [large])

        assert step.deductions[0].calculated_amount == Decimal("300")
        assert step.remaining == Decimal("0")

    def test_garnishments_taken_first(self):
        uniform = make_deduction(DeductionType.UNIFORM, amount=Decimal("500"))
        support = make_garnishment(GarnishmentType.CHILD_SUPPORT)

        step = apply_post_tax(1000, 800, [uniform, support])

        assert step.deductions[0].garnishment_type is GarnishmentType.CHILD_SUPPORT
        assert step.deductions[0].calculated_amount == Decimal("400.00")
        assert step.deductions[1].calculated_amount == Decimal("400.00")
        assert step.remaining == Decimal("0.00")

    def test_employer_match_annotated(self):
        retirement = make_deduction(
            DeductionType.RETIREMENT_401K,
            TaxTreatment.PRE_TAX,
            amount=Decimal("100"),
            employer_match_percentage=Decimal("50"),
        )

        step = apply_pre_tax(2000, [retirement])

        assert step.deductions[0].employer_match_amount == Decimal("50.00")

    @settings(max_examples=75)
    @given(
        gross=st.decimals(min_value=0, max_value=10000, places=2),
        pre=st.lists(st.decimals(min_value=0, max_value=3000, places=2), max_size=3),
        statutory=st.lists(st.decimals(min_value=0, max_value=3000, places=2), max_size=3),
        post=st.lists(st.decimals(min_value=0, max_value=3000, places=2), max_size=3),
    )
    def test_net_never_negative(self, gross, pre, statutory, post):
        """Deductions reconcile exactly and never push net pay below zero."""
        result = calculate_all_deductions(
            gross,
            [make_deduction(tax_treatment=TaxTreatment.PRE_TAX, amount=a) for a in pre],
            [make_deduction(tax_treatment=TaxTreatment.POST_TAX, amount=a) for a in post],
            [make_deduction(tax_treatment=TaxTreatment.STATUTORY, amount=a) for a in statutory],
        )

        assert result.net_pay >= 0
        assert gross - result.total_deductions == result.net_pay
        assert all(d.calculated_amount >= 0 for d in result.deductions)


class TestGrouping:
    def test_group_by_category(self):
        result = calculate_all_deductions(
            2000,
            [
                make_deduction(DeductionType.RETIREMENT_401K, TaxTreatment.PRE_TAX, amount=Decimal("100")),
                make_deduction(DeductionType.DENTAL_INSURANCE, TaxTreatment.PRE_TAX, amount=Decimal("20")),
            ],
            [make_garnishment(GarnishmentType.CREDITOR), make_deduction(amount=Decimal("5"))],
            [make_deduction(DeductionType.MEDICARE, TaxTreatment.STATUTORY, amount=Decimal("29"))],
        )

        groups = group_deductions_by_category(result.deductions)

        assert len(groups[DeductionCategory.RETIREMENT]) == 1
        assert len(groups[DeductionCategory.BENEFITS]) == 1
        assert len(groups[DeductionCategory.TAXES]) == 1
        assert len(groups[DeductionCategory.GARNISHMENTS]) == 1
        assert len(groups[DeductionCategory.OTHER]) == 1


@pytest.mark.parametrize(
    ("order_type", "expected"),
    [
        (GarnishmentType.CHILD_SUPPORT, Decimal("500.00")),
        (GarnishmentType.TAX_LEVY, Decimal("1000.00")),
        (GarnishmentType.CREDITOR, Decimal("250.00")),
        (GarnishmentType.BANKRUPTCY, Decimal("250.00")),
    ],
)
def test_default_ceilings(order_type, expected):
    assert garnishment_amount(1500, 1000, make_garnishment(order_type)) == expected
