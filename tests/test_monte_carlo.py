import numpy as np
import pandas as pd
import pytest

import monte_carlo
from household import Assumptions
from monte_carlo import (
    COLA_FLOOR,
    FEHB_INFLATION_FLOOR,
    INFLATION_FLOOR,
    RETURN_FLOOR,
    calculate_risk_metrics,
    is_successful,
    run_monte_carlo_simulation,
    run_sensitivity_analysis,
    run_stress_tests,
    sample_market_conditions,
    sensitivity_risk_level,
)
from projection import project


@pytest.fixture
def short_assumptions():
    return Assumptions(projection_years=10)


def test_same_seed_reproduces_results(household, scenario, short_assumptions):
    df_a, metrics_a = run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=20,
                                                 random_seed=42, max_workers=4)
    df_b, metrics_b = run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=20,
                                                 random_seed=42, max_workers=2)
    pd.testing.assert_frame_equal(df_a, df_b)
    assert metrics_a["success_rate"] == metrics_b["success_rate"]
    pd.testing.assert_frame_equal(metrics_a["market_conditions"], metrics_b["market_conditions"])


def test_results_shape_and_percentile_order(household, scenario, short_assumptions):
    df, metrics = run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=20,
                                             random_seed=7, scenario_label="retire early")
    assert df.index.name == "Year"
    assert list(df.index) == list(range(2025, 2035))
    assert (df["p5"] <= df["p50"]).all()
    assert (df["p50"] <= df["p95"]).all()
    assert (df["tsp_p5"] <= df["tsp_p95"]).all()
    assert metrics["scenario_label"] == "retire early"
    assert metrics["completed_simulations"] == 20
    assert metrics["error_log"] == []
    assert 0.0 <= metrics["success_rate"] <= 1.0
    assert set(metrics["percentile_ranges"]) == {"lifetime_income", "tsp_longevity", "year5_income",
                                                 "year10_income"}
    assert len(metrics["market_conditions"]) == 20
    assert "all_income_paths" not in metrics
    assert metrics["risk_metrics"] == calculate_risk_metrics(df)


def test_full_paths_are_optional(household, scenario, short_assumptions):
    _, metrics = run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=5,
                                            random_seed=1, return_full_paths=True)
    assert metrics["all_income_paths"].shape == (10, 5)
    assert metrics["all_tsp_paths"].shape == (10, 5)


def test_first_year_is_unaffected_by_market_draws(household, scenario, short_assumptions):
    df, _ = run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=10,
                                       random_seed=3)
    baseline = project(household, scenario, short_assumptions)
    assert df.loc[2025, "p5"] == pytest.approx(baseline[0].net_income)
    assert df.loc[2025, "p95"] == pytest.approx(baseline[0].net_income)


def test_sampled_conditions_respect_floors(short_assumptions):
    rng = np.random.default_rng(0)
    conditions = sample_market_conditions(short_assumptions, 500, rng, inflation_std=1.0, cola_std=1.0,
                                          fehb_std=1.0, return_std=2.0)
    assert conditions["inflation_rate"].min() >= INFLATION_FLOOR
    assert conditions["cola_general_rate"].min() >= COLA_FLOOR
    assert conditions["fehb_premium_inflation"].min() >= FEHB_INFLATION_FLOOR
    assert conditions["tsp_return_pre_retirement"].min() >= RETURN_FLOOR
    assert conditions["tsp_return_post_retirement"].min() >= RETURN_FLOOR


def test_lognormal_returns_and_unknown_distribution(short_assumptions):
    conditions = sample_market_conditions(short_assumptions, 200, np.random.default_rng(0), return_dist="lognormal")
    assert (conditions["tsp_return_post_retirement"] > 0).all()
    with pytest.raises(ValueError, match="Unknown distribution"):
        sample_market_conditions(short_assumptions, 10, np.random.default_rng(0), return_dist="cauchy")


def test_failed_simulations_are_logged_and_skipped(monkeypatch, household, scenario, short_assumptions):
    real_project = monte_carlo.project

    def flaky(household, scenario, assumptions, **kwargs):
        if not kwargs.get("validate", True) and assumptions.inflation_rate > short_assumptions.inflation_rate:
            raise RuntimeError("market blew up")
        return real_project(household, scenario, assumptions, **kwargs)

    monkeypatch.setattr(monte_carlo, "project", flaky)
    df, metrics = run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=20,
                                             random_seed=11)
    failures = int((metrics["market_conditions"]["inflation_rate"] > short_assumptions.inflation_rate).sum())
    assert 0 < failures < 20
    assert len(metrics["error_log"]) == failures
    assert metrics["completed_simulations"] == 20 - failures
    assert "market blew up" in metrics["error_log"][0]
    assert not df.isna().any().any()


def test_all_failed_simulations_raise(monkeypatch, household, scenario, short_assumptions):
    real_project = monte_carlo.project

    def broken(household, scenario, assumptions, **kwargs):
        if not kwargs.get("validate", True):
            raise RuntimeError("no market")
        return real_project(household, scenario, assumptions, **kwargs)

    monkeypatch.setattr(monte_carlo, "project", broken)
    with pytest.raises(RuntimeError, match="All 3 simulations failed"):
        run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=3, random_seed=0)


def test_invalid_simulation_count(household, scenario, short_assumptions):
    with pytest.raises(ValueError):
        run_monte_carlo_simulation(household, scenario, short_assumptions, num_simulations=0)


def test_is_successful():
    good = {"tsp_longevity": 30, "year5_net_income": 80000, "total_lifetime_income": 2_000_000}
    assert is_successful(good)
    assert not is_successful({**good, "tsp_longevity": 4})
    assert not is_successful({**good, "year5_net_income": -60000})
    assert not is_successful({**good, "total_lifetime_income": 20_000_000})
    assert is_successful({**good, "total_lifetime_income": 20_000_000}, max_reasonable_income=1e9)


def test_calculate_risk_metrics():
    mc = pd.DataFrame({"p5": [60.0, 50.0], "p25": [90.0, 70.0], "p50": [100.0, 90.0]})
    metrics = calculate_risk_metrics(mc, 100.0)
    assert metrics["below_starting_income_pct"] == pytest.approx(50.0)
    assert metrics["max_income_drop_p5_pct"] == pytest.approx(50.0)
    assert metrics["significant_drop_risk_pct"] == pytest.approx(50.0)
    assert metrics["income_volatility"] == pytest.approx(mc["p50"].std())
    assert calculate_risk_metrics(mc) == metrics


def test_risk_metrics_with_zero_starting_income():
    mc = pd.DataFrame({"p5": [0.0, 0.0], "p25": [0.0, 0.0], "p50": [0.0, 0.0]})
    metrics = calculate_risk_metrics(mc)
    assert metrics["max_income_drop_p5_pct"] == 0.0
    assert metrics["below_starting_income_pct"] == 0.0


def test_stress_tests_order_balances(household, scenario, short_assumptions):
    results = run_stress_tests(household, scenario, short_assumptions)
    assert set(results) == {"best_case", "average_case", "worst_case"}
    final = {name: projection[-1].total_tsp_balance() for name, projection in results.items()}
    assert final["best_case"] > final["average_case"] > final["worst_case"]


@pytest.mark.parametrize("score, level", [(12.0, "high"), (7.5, "moderate"), (5.0, "low"), (0.0, "low")])
def test_sensitivity_risk_level(score, level):
    assert sensitivity_risk_level(score) == level


def test_sensitivity_analysis(household, scenario, short_assumptions):
    df, summary = run_sensitivity_analysis(household, scenario, short_assumptions,
                                           "tsp_return_post_retirement", 0.03, 0.07, steps=5)
    assert len(df) == 5
    assert df["tsp_return_post_retirement"].tolist() == pytest.approx([0.03, 0.04, 0.05, 0.06, 0.07])
    assert df["sensitivity_score"].isna().sum() == 1
    assert df.loc[2, "net_income_change"] == pytest.approx(0.0, abs=1e-6)
    assert summary["base_value"] == 0.05
    assert summary["risk_level"] == sensitivity_risk_level(summary["max_sensitivity_score"])


def test_sensitivity_analysis_rejects_bad_inputs(household, scenario, short_assumptions):
    with pytest.raises(ValueError, match="Unknown sensitivity parameter"):
        run_sensitivity_analysis(household, scenario, short_assumptions, "salary", 0.0, 1.0)
    with pytest.raises(ValueError):
        run_sensitivity_analysis(household, scenario, short_assumptions, "inflation_rate", 0.03, 0.01)
