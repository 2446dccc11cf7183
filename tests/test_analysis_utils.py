import datetime as dt

import pandas as pd
import pytest

from analysis_utils import (
    calculate_cumulative_income,
    compare_scenarios,
    find_breakeven_point,
    find_tsp_depletion_year,
    present_value,
    projection_to_dataframe,
    summarize_projection,
)
from household import AnnualCashFlow, Assumptions
from projection import project


def _year(year, balance, withdrawal=0.0, net=50000.0):
    cf = AnnualCashFlow(year_index=year - 2025, year=year, date=dt.date(year, 1, 1))
    cf.tsp_balances = {"Alice": balance}
    cf.tsp_withdrawals = {"Alice": withdrawal}
    cf.net_income = net
    return cf


def test_projection_to_dataframe(household, scenario, assumptions):
    df = projection_to_dataframe(project(household, scenario, assumptions))
    assert df.index.name == "Year"
    assert df.index[0] == 2025
    assert len(df) == assumptions.projection_years
    for column in ("Year", "Net_Income", "TSP_Balance", "TSP_Balance_Alice", "Age_Bob", "Deceased_Alice"):
        assert column in df.columns
    assert projection_to_dataframe([]).empty


def test_find_tsp_depletion_year():
    projection = [_year(2025, 0.0), _year(2026, 1000, withdrawal=500), _year(2027, 0.0, withdrawal=1000)]
    assert find_tsp_depletion_year(projection) == 2027
    assert find_tsp_depletion_year([_year(2025, 1000), _year(2026, 900)]) is None


def test_present_value():
    assert present_value([100, 100], 0.1) == pytest.approx(100 + 100 / 1.1)
    assert present_value([], 0.1) == 0.0


def test_summarize_projection(household, scenario):
    projection = project(household, scenario, Assumptions(projection_years=10))
    summary = summarize_projection("baseline", projection, discount_rate=0.0)
    assert summary["name"] == "baseline"
    assert summary["first_year_net_income"] == projection[0].net_income
    assert summary["year5_net_income"] == projection[4].net_income
    assert summary["year10_net_income"] == projection[9].net_income
    assert summary["total_lifetime_income"] == pytest.approx(sum(cf.net_income for cf in projection))
    assert summary["tsp_depletion_year"] is None
    assert summary["tsp_longevity"] == len(projection)
    assert summary["final_tsp_balance"] == projection[-1].total_tsp_balance()
    assert summary["lifetime_taxes"] > 0


def test_summary_longevity_counts_years_until_depletion():
    projection = [_year(2025, 1000, withdrawal=500), _year(2026, 500, withdrawal=500), _year(2027, 0.0, 500)]
    summary = summarize_projection("short", projection)
    assert summary["tsp_depletion_year"] == 2027
    assert summary["tsp_longevity"] == 2


def test_breakeven_point():
    df_a = calculate_cumulative_income(pd.DataFrame({"Year": [2025, 2026, 2027], "Net_Income": [10, 10, 10]}))
    df_b = calculate_cumulative_income(pd.DataFrame({"Year": [2025, 2026, 2027], "Net_Income": [5, 13, 17]}))
    assert list(df_b["Cumulative_Income"]) == [5, 18, 35]
    idx, year, value = find_breakeven_point(df_a, df_b)
    assert idx == 2
    assert year == 2027
    assert value == 30


def test_no_breakeven_when_one_scenario_dominates():
    df_a = calculate_cumulative_income(pd.DataFrame({"Year": [2025, 2026], "Net_Income": [10, 10]}))
    df_b = calculate_cumulative_income(pd.DataFrame({"Year": [2025, 2026], "Net_Income": [20, 20]}))
    assert find_breakeven_point(df_a, df_b) == (None, None, None)


def test_compare_scenarios():
    summaries = [
        {"name": "a", "first_year_net_income": 100.0, "year5_net_income": 90.0,
         "total_lifetime_income": 1000.0, "final_tsp_balance": 10.0},
        {"name": "b", "first_year_net_income": 120.0, "year5_net_income": 80.0,
         "total_lifetime_income": 900.0, "final_tsp_balance": 30.0},
    ]
    table = compare_scenarios(summaries, "a")
    assert table.loc["b", "first_year_net_income_vs_base"] == 20.0
    assert table.loc["b", "year5_net_income_vs_base"] == -10.0
    assert table.loc["a", "final_tsp_balance_vs_base"] == 0.0
    with pytest.raises(ValueError):
        compare_scenarios(summaries, "missing")
