import pytest

from household import MARRIED_FILING_JOINTLY, SINGLE, TaxRules
from tax_rules import (
    TaxableIncome,
    TaxEngine,
    bracket_top,
    federal_income_tax,
    standard_deduction,
    taxable_social_security,
)


@pytest.mark.parametrize("other_income, expected", [
    (10000, 0.0),
    (20000, 1500.0),
    (30000, 6850.0),
    (200000, 25500.0),
])
def test_taxable_social_security_joint(other_income, expected):
    assert taxable_social_security(30000, other_income, MARRIED_FILING_JOINTLY) == pytest.approx(expected)


def test_taxable_social_security_single_thresholds_are_lower():
    assert taxable_social_security(20000, 16000, SINGLE) == pytest.approx(500.0)
    assert taxable_social_security(20000, 16000, MARRIED_FILING_JOINTLY) == 0.0
    assert taxable_social_security(0, 100000, SINGLE) == 0.0


def test_federal_income_tax_brackets():
    assert federal_income_tax(50000, MARRIED_FILING_JOINTLY) == pytest.approx(5536.0)
    assert federal_income_tax(50000, SINGLE) == pytest.approx(6053.0)
    assert federal_income_tax(0, SINGLE) == 0.0


def test_standard_deduction_with_seniors():
    assert standard_deduction(MARRIED_FILING_JOINTLY, 2) == pytest.approx(33100)
    assert standard_deduction(SINGLE, 0) == pytest.approx(15000)


def test_bracket_top():
    assert bracket_top(MARRIED_FILING_JOINTLY, 22) == 201050
    assert bracket_top(SINGLE, 22) == pytest.approx(100525)
    assert bracket_top(MARRIED_FILING_JOINTLY, 99) is None


def test_fica_caps_each_earner_separately():
    engine = TaxEngine()
    fica = engine.fica([100000, 200000], MARRIED_FILING_JOINTLY)
    expected = 100000 * 0.062 + 176100 * 0.062 + 300000 * 0.0145 + 50000 * 0.009
    assert fica == pytest.approx(expected)


def test_retirement_income_has_no_state_local_or_fica():
    engine = TaxEngine()
    income = TaxableIncome(pension=50000, traditional_withdrawals=30000, social_security=24000)
    federal, state, local, fica = engine.compute_taxes(income, MARRIED_FILING_JOINTLY, [66, 64], [])
    assert federal > 0
    assert (state, local, fica) == (0.0, 0.0, 0.0)


def test_compute_taxes_on_wages():
    engine = TaxEngine(TaxRules(state_rate=0.03, local_eit_rate=0.01))
    income = TaxableIncome(wages=100000)
    federal, state, local, fica = engine.compute_taxes(income, SINGLE, [50], 100000)
    assert federal == pytest.approx(federal_income_tax(85000, SINGLE))
    assert state == pytest.approx(3000)
    assert local == pytest.approx(1000)
    assert fica == pytest.approx(7650)


def test_self_employment_income_is_state_taxed_but_not_fica():
    engine = TaxEngine()
    income = TaxableIncome(self_employment=40000)
    _, state, _, fica = engine.compute_taxes(income, SINGLE, [60], [], self_employment_income=40000)
    assert state == pytest.approx(40000 * 0.0307)
    assert fica == 0.0


def test_federal_taxable_income_reports_deduction():
    engine = TaxEngine()
    income = TaxableIncome(pension=40000, roth_conversions=20000)
    taxable, deduction = engine.federal_taxable_income(income, MARRIED_FILING_JOINTLY, [66, 66])
    assert deduction == pytest.approx(33100)
    assert taxable == pytest.approx(60000 - 33100)
