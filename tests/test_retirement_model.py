import datetime as dt

import pytest

from retirement_model import (
    WithdrawalStrategy,
    age_in_months,
    apply_fers_cola,
    calculate_age,
    calculate_fers_pension,
    calculate_fers_supplement,
    calculate_rmd,
    calculate_service_years,
    calculate_tsp_matching,
    calculate_weighted_tsp_growth,
    compute_withdrawal,
    fers_supplement_earnings_reduction,
    full_retirement_age,
    is_srs_eligible,
    minimum_retirement_age,
    rmd_age,
    self_employment_tax,
    snap_survivor_election,
    social_security_monthly_benefit,
    ss_months_paid_in_year,
    survivor_benefit_fraction,
    survivor_ss_benefit,
    work_fraction,
)


def test_calculate_age_turns_on_birthday():
    birth = dt.date(1965, 6, 15)
    assert calculate_age(birth, dt.date(2025, 6, 14)) == 59
    assert calculate_age(birth, dt.date(2025, 6, 15)) == 60


def test_age_in_months():
    assert age_in_months(dt.date(1966, 6, 15), dt.date(2026, 1, 1)) == 59 * 12 + 6


def test_service_years_with_sick_leave():
    base = calculate_service_years(dt.date(2000, 1, 1), dt.date(2030, 1, 1))
    assert base == pytest.approx(30.0, abs=0.01)
    with_sick = calculate_service_years(dt.date(2000, 1, 1), dt.date(2030, 1, 1), sick_leave_hours=174 * 12)
    assert with_sick == pytest.approx(base + 1.0)


def test_service_years_zero_when_end_before_hire():
    assert calculate_service_years(dt.date(2020, 1, 1), dt.date(2019, 1, 1)) == 0.0


def test_full_and_minimum_retirement_ages():
    assert full_retirement_age(1960) == 67.0
    assert full_retirement_age(1957) == pytest.approx(66.5)
    assert full_retirement_age(1950) == 66.0
    assert minimum_retirement_age(1970) == 57.0
    assert minimum_retirement_age(1966) == pytest.approx(56 + 4 / 12)
    assert minimum_retirement_age(1945) == 55.0


def test_work_fraction():
    assert work_fraction(dt.date(2025, 7, 2), 2024) == 1.0
    assert work_fraction(dt.date(2025, 7, 2), 2026) == 0.0
    assert work_fraction(dt.date(2025, 7, 2), 2025) == pytest.approx(182 / 365)
    assert work_fraction(dt.date(2025, 1, 1), 2025) == 0.0
    assert work_fraction(dt.date(2024, 7, 2), 2024) == pytest.approx(183 / 366)
    assert work_fraction(None, 2040) == 1.0


@pytest.mark.parametrize("requested, expected", [
    (0.0, 0.0), (0.1, 0.0), (0.3, 0.25), (0.375, 0.50), (0.6, 0.50), (None, 0.0),
])
def test_snap_survivor_election(requested, expected):
    assert snap_survivor_election(requested) == expected


def test_fers_pension_multiplier_and_survivor_reduction():
    assert calculate_fers_pension(100000, 20, 62) == (pytest.approx(22000), 0.0)
    assert calculate_fers_pension(100000, 20, 61) == (pytest.approx(20000), 0.0)
    pension, survivor = calculate_fers_pension(100000, 20, 62, survivor_election=0.5)
    assert pension == pytest.approx(19800)
    assert survivor == pytest.approx(11000)
    pension, survivor = calculate_fers_pension(100000, 20, 62, survivor_election=0.25)
    assert pension == pytest.approx(20900)
    assert survivor == pytest.approx(5500)


@pytest.mark.parametrize("inflation, expected", [(0.02, 30600), (0.025, 30600), (0.04, 30900)])
def test_fers_cola_tiering(inflation, expected):
    assert apply_fers_cola(30000, inflation, 62) == pytest.approx(expected)


def test_no_fers_cola_before_62():
    assert apply_fers_cola(30000, 0.04, 61) == 30000


def test_fers_supplement():
    assert calculate_fers_supplement(30, 2000, 60) == pytest.approx(18000)
    assert calculate_fers_supplement(30, 2000, 62) == 0.0
    assert calculate_fers_supplement(45, 2000, 57) == pytest.approx(24000)


def test_srs_eligibility():
    mra = round(minimum_retirement_age(1966) * 12)
    assert is_srs_eligible(57 * 12, mra, 30)
    assert not is_srs_eligible(57 * 12, mra, 25)
    assert is_srs_eligible(60 * 12, mra, 20)


def test_fers_supplement_earnings_test():
    assert fers_supplement_earnings_reduction(33400, 60) == pytest.approx(5000)
    assert fers_supplement_earnings_reduction(20000, 60) == 0.0
    assert fers_supplement_earnings_reduction(33400, 62) == 0.0


def test_social_security_interpolation():
    assert social_security_monthly_benefit(62, 2000, 2800, 3500) == 2000
    assert social_security_monthly_benefit(67, 2000, 2800, 3500) == pytest.approx(2800)
    assert social_security_monthly_benefit(70, 2000, 2800, 3500) == 3500
    assert social_security_monthly_benefit(64.5, 2000, 2800, 3500) == pytest.approx(2400)
    assert social_security_monthly_benefit(68.5, 2000, 2800, 3500) == pytest.approx(3150)


def test_ss_paid_from_month_after_claim():
    claim = dt.date(2030, 3, 15)
    assert ss_months_paid_in_year(claim, 2029) == 0
    assert ss_months_paid_in_year(claim, 2030) == 9
    assert ss_months_paid_in_year(claim, 2031) == 12


def test_survivor_benefit_fraction():
    assert survivor_benefit_fraction(59, 67) == 0.0
    assert survivor_benefit_fraction(60, 67) == pytest.approx(0.715)
    assert survivor_benefit_fraction(67, 67) == 1.0
    assert survivor_ss_benefit(1000, 30000, 67, 67) == 30000
    assert survivor_ss_benefit(40000, 30000, 67, 67) == 40000


@pytest.mark.parametrize("employee, expected", [
    (0.05, (1000, 4000)),
    (0.02, (1000, 2000)),
    (0.10, (1000, 4000)),
    (0.0, (1000, 0.0)),
])
def test_tsp_matching(employee, expected):
    auto, match = calculate_tsp_matching(100000, employee)
    assert auto == pytest.approx(expected[0])
    assert match == pytest.approx(expected[1])


def test_tsp_matching_without_salary():
    assert calculate_tsp_matching(0, 0.05) == (0.0, 0.0)


def test_self_employment_tax():
    assert self_employment_tax(40000) == pytest.approx(40000 * 0.9235 * 0.153)
    assert self_employment_tax(-10) == 0.0


def test_rmd_age_by_birth_year():
    assert rmd_age(1950) == 72
    assert rmd_age(1955) == 73
    assert rmd_age(1960) == 75


@pytest.mark.parametrize("balance, age, birth_year, minimum", [
    (1_000_000, 72, 1950, 36000),
    (500_000, 80, 1945, 20000),
    (200_000, 90, 1935, 10000),
])
def test_rmd_minimums(balance, age, birth_year, minimum):
    assert calculate_rmd(balance, age, birth_year) >= minimum


def test_rmd_before_start_age_and_past_table():
    assert calculate_rmd(1_000_000, 72, 1955) == 0.0
    assert calculate_rmd(600_000, 101, 1930) == pytest.approx(100_000)
    assert calculate_rmd(0, 80, 1945) == 0.0


def test_four_percent_rule_inflates():
    first = compute_withdrawal("4_percent_rule", 500000, 0, initial_balance=500000, inflation_rate=0.025)
    third = compute_withdrawal("4_percent_rule", 500000, 2, initial_balance=500000, inflation_rate=0.025)
    assert first == pytest.approx(20000)
    assert third == pytest.approx(20000 * 1.025 ** 2)


def test_need_based_and_variable_withdrawals():
    assert compute_withdrawal(WithdrawalStrategy.NEED_BASED, 400000, target_monthly=3000) == pytest.approx(36000)
    assert compute_withdrawal("need_based", 400000) == 0.0
    assert compute_withdrawal("variable_percentage", 400000, rate=0.05) == pytest.approx(20000)


def test_withdrawal_floored_at_rmd_and_capped_at_available():
    assert compute_withdrawal("variable_percentage", 400000, rate=0.05, rmd_amount=25000) == pytest.approx(25000)
    assert compute_withdrawal("need_based", 10000, target_monthly=3000) == pytest.approx(10000)
    assert compute_withdrawal("need_based", 10000, target_monthly=3000, available=50000) == pytest.approx(36000)


def test_weighted_tsp_growth():
    assert calculate_weighted_tsp_growth({"g_fund_pct": 100}) == pytest.approx(0.025)
    assert calculate_weighted_tsp_growth({"c_fund_pct": 50, "f_fund_pct": 50}) == pytest.approx(0.0525)
    assert calculate_weighted_tsp_growth(None) is None
