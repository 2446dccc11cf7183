"""
monte_carlo.py
------------------
Monte Carlo, stress and sensitivity runs of the household projection.
Every run goes through projection.project; only the global market
assumptions (inflation, COLA, FEHB inflation, TSP returns) vary.
"""

import concurrent.futures
import dataclasses
import logging
import traceback

import numpy as np
import pandas as pd

from analysis_utils import lifetime_irmaa_cost, summarize_projection
from projection import project

logger = logging.getLogger(__name__)

PERCENTILES = [5, 10, 25, 50, 75, 90, 95]
SUMMARY_PERCENTILES = [10, 25, 50, 75, 90]

INFLATION_FLOOR = -0.05
COLA_FLOOR = -0.02
FEHB_INFLATION_FLOOR = 0.0
RETURN_FLOOR = -0.5

MIN_TSP_LONGEVITY = 5
MIN_YEAR5_NET_INCOME = -50000.0
MAX_REASONABLE_INCOME = 10_000_000.0

SENSITIVITY_PARAMETERS = (
    "inflation_rate",
    "tsp_return_pre_retirement",
    "tsp_return_post_retirement",
    "cola_general_rate",
    "fehb_premium_inflation",
)


def make_sampler(rng):
    def sample_dist(dist, mean, std, shape):
        if callable(dist):
            return dist(mean, std, shape)
        if dist == 'normal':
            return rng.normal(mean, std, shape)
        if dist == 'lognormal':
            sigma2 = np.log(1 + (std/mean)**2)
            mu = np.log(mean) - 0.5*sigma2
            return rng.lognormal(mu, np.sqrt(sigma2), shape)
        raise ValueError(f"Unknown distribution: {dist}")
    return sample_dist


def sample_market_conditions(assumptions, num_simulations, rng, inflation_std=0.01, cola_std=0.005,
                             fehb_std=0.02, return_std=0.05, return_dist='normal'):
    """One row of market assumptions per simulation, drawn around `assumptions`."""
    sample_dist = make_sampler(rng)
    shape = (num_simulations,)
    inflation = np.clip(rng.normal(assumptions.inflation_rate, inflation_std, shape), INFLATION_FLOOR, None)
    cola = np.clip(rng.normal(assumptions.cola_general_rate, cola_std, shape), COLA_FLOOR, None)
    fehb = np.clip(rng.normal(assumptions.fehb_premium_inflation, fehb_std, shape), FEHB_INFLATION_FLOOR, None)
    pre = np.clip(sample_dist(return_dist, assumptions.tsp_return_pre_retirement, return_std, shape),
                  RETURN_FLOOR, None)
    post = np.clip(sample_dist(return_dist, assumptions.tsp_return_post_retirement, return_std, shape),
                   RETURN_FLOOR, None)
    return pd.DataFrame({
        "inflation_rate": inflation,
        "cola_general_rate": cola,
        "fehb_premium_inflation": fehb,
        "tsp_return_pre_retirement": pre,
        "tsp_return_post_retirement": post,
    })


def is_successful(summary, max_reasonable_income=MAX_REASONABLE_INCOME):
    """A run fails on early TSP depletion, deeply negative year-5 income or an implausible lifetime total."""
    if summary["tsp_longevity"] < MIN_TSP_LONGEVITY:
        return False
    if summary["year5_net_income"] < MIN_YEAR5_NET_INCOME:
        return False
    return summary["total_lifetime_income"] <= max_reasonable_income


def _percentile_ranges(values, percentiles=SUMMARY_PERCENTILES):
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return {}
    return {f"p{p}": float(np.percentile(values, p)) for p in percentiles}


def run_monte_carlo_simulation(
    household, scenario, assumptions, num_simulations=1000, random_seed=None,
    inflation_std=0.01, cola_std=0.005, fehb_std=0.02, return_std=0.05, return_dist='normal',
    max_workers=None, scenario_label=None, max_reasonable_income=MAX_REASONABLE_INCOME,
    return_full_paths=False
):
    """
    Run Monte Carlo simulation of the household projection.
    - Market conditions for every simulation are sampled up front from one
      seeded generator, so a seed reproduces the run regardless of thread
      scheduling.
    - Simulations run on a bounded thread pool; results are stored by
      simulation index.
    - A failing simulation is logged and recorded in `error_log`; the rest
      of the run continues.
    - Returns: (df_results, metrics_dict). df_results is indexed by year
      with net income percentiles p5..p95 and TSP balance percentiles
      tsp_p5..tsp_p95.
    """
    if num_simulations <= 0:
        raise ValueError("Number of simulations must be positive.")

    # Baseline run validates the configuration and provides the year index
    baseline = project(household, scenario, assumptions)
    years = [cf.year for cf in baseline]
    n_years = len(years)

    rng = np.random.default_rng(random_seed)
    conditions = sample_market_conditions(assumptions, num_simulations, rng, inflation_std, cola_std,
                                          fehb_std, return_std, return_dist)
    logger.info("Monte Carlo: %d simulations of '%s' (seed=%s)", num_simulations, scenario.name, random_seed)

    income_results = np.full((n_years, num_simulations), np.nan)
    tsp_results = np.full((n_years, num_simulations), np.nan)
    summaries = [None] * num_simulations
    error_log = []

    def run_single_sim(i):
        try:
            row = conditions.iloc[i]
            sim_assumptions = dataclasses.replace(
                assumptions,
                inflation_rate=float(row["inflation_rate"]),
                cola_general_rate=float(row["cola_general_rate"]),
                fehb_premium_inflation=float(row["fehb_premium_inflation"]),
                tsp_return_pre_retirement=float(row["tsp_return_pre_retirement"]),
                tsp_return_post_retirement=float(row["tsp_return_post_retirement"]),
            )
            projection = project(household, scenario, sim_assumptions, validate=False)
            income = np.array([cf.net_income for cf in projection])
            tsp_bal = np.array([cf.total_tsp_balance() for cf in projection])
            return income, tsp_bal, summarize_projection(f"sim_{i}", projection), None
        except Exception as e:
            tb = traceback.format_exc()
            return None, None, None, f"Simulation {i} failed: {e}\n{tb}"

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(run_single_sim, i): i for i in range(num_simulations)}
        for fut in concurrent.futures.as_completed(futures):
            i = futures[fut]
            income, tsp_bal, summary, err = fut.result()
            if err:
                logger.warning(err.splitlines()[0])
                error_log.append(err)
                continue
            income_results[:, i] = income
            tsp_results[:, i] = tsp_bal
            summaries[i] = summary

    completed = [s for s in summaries if s is not None]
    if not completed:
        raise RuntimeError(f"All {num_simulations} simulations failed; first error: {error_log[0]}")
    ok = ~np.isnan(income_results[0])

    df_results = pd.DataFrame(index=pd.Index(years, name="Year"))
    for p in PERCENTILES:
        df_results[f"p{p}"] = np.percentile(income_results[:, ok], p, axis=1)
    for p in PERCENTILES:
        df_results[f"tsp_p{p}"] = np.percentile(tsp_results[:, ok], p, axis=1)

    successes = [is_successful(s, max_reasonable_income) for s in completed]
    depleted = [s["tsp_depletion_year"] is not None for s in completed]
    lifetime = [s["total_lifetime_income"] for s in completed]
    metrics = {
        "scenario_label": scenario_label or scenario.name,
        "random_seed": random_seed,
        "num_simulations": num_simulations,
        "completed_simulations": len(completed),
        "success_rate": float(np.mean(successes)),
        "median_lifetime_income": float(np.median(lifetime)),
        "tsp_depletion_risk": float(np.mean(depleted)) * 100,
        "percentile_ranges": {
            "lifetime_income": _percentile_ranges(lifetime),
            "tsp_longevity": _percentile_ranges([s["tsp_longevity"] for s in completed]),
            "year5_income": _percentile_ranges([s["year5_net_income"] for s in completed]),
            "year10_income": _percentile_ranges([s["year10_net_income"] for s in completed]),
        },
        "market_conditions": conditions,
        "error_log": error_log,
        "max_drawdown": float(np.min(df_results["p5"])),
        "volatility": float(np.std(df_results["p50"])),
        "risk_metrics": calculate_risk_metrics(df_results),
    }
    if return_full_paths:
        metrics["all_income_paths"] = income_results
        metrics["all_tsp_paths"] = tsp_results
    logger.info("Monte Carlo '%s' finished: success rate %.1f%%, %d errors",
                metrics["scenario_label"], metrics["success_rate"] * 100, len(error_log))
    return df_results, metrics


def calculate_risk_metrics(mc_results, starting_income=None):
    """
    Income risk of a percentile frame from run_monte_carlo_simulation,
    measured against `starting_income` (default: the first year's median
    net income). Percentages are on a 0-100 scale.
    """
    if starting_income is None:
        starting_income = float(mc_results["p50"].iloc[0])
    median = mc_results["p50"]
    worst_drop = 0.0
    if starting_income:
        worst_drop = (starting_income - mc_results["p5"].min()) / starting_income * 100
    return {
        "below_starting_income_pct": float((median < starting_income).mean() * 100),
        "max_income_drop_p5_pct": float(worst_drop),
        "income_volatility": float(median.std()),
        "significant_drop_risk_pct": float((mc_results["p25"] < starting_income * 0.8).mean() * 100),
    }


def run_stress_tests(household, scenario, assumptions):
    """Run stress tests with different market scenarios"""

    def shifted(cola_delta, growth_delta):
        return dataclasses.replace(
            assumptions,
            cola_general_rate=max(0.0, assumptions.cola_general_rate + cola_delta),
            tsp_return_pre_retirement=assumptions.tsp_return_pre_retirement + growth_delta,
            tsp_return_post_retirement=assumptions.tsp_return_post_retirement + growth_delta,
        )

    results = {}
    results["best_case"] = project(household, scenario, shifted(0.005, 0.03))
    results["average_case"] = project(household, scenario, assumptions)
    results["worst_case"] = project(household, scenario, shifted(-0.005, -0.03))
    return results


def _sensitivity_metrics(projection):
    summary = summarize_projection("", projection)
    return {
        "year5_net_income": summary["year5_net_income"],
        "year10_net_income": summary["year10_net_income"],
        "tsp_longevity": summary["tsp_longevity"],
        "total_lifetime_income": summary["total_lifetime_income"],
        "irmaa_total_cost": lifetime_irmaa_cost(projection),
    }


def sensitivity_risk_level(score):
    if score > 10:
        return "high"
    if score > 5:
        return "moderate"
    return "low"


def run_sensitivity_analysis(household, scenario, assumptions, parameter, min_value, max_value, steps=5):
    """
    Sweep one assumption over `steps` evenly spaced values and measure the
    change in year-5 net income against the unmodified run.

    Sensitivity score = |net income change %| / |parameter change %|; the
    base value itself has no score. Returns (DataFrame, summary dict).
    """
    if parameter not in SENSITIVITY_PARAMETERS:
        raise ValueError(f"Unknown sensitivity parameter '{parameter}'.")
    if steps < 2 or max_value <= min_value:
        raise ValueError("Sensitivity sweep needs at least 2 steps over an increasing range.")

    base_value = getattr(assumptions, parameter)
    base = _sensitivity_metrics(project(household, scenario, assumptions))
    rows = []
    for value in np.linspace(min_value, max_value, steps):
        value = float(value)
        metrics = _sensitivity_metrics(project(household, scenario,
                                               dataclasses.replace(assumptions, **{parameter: value})))
        change = metrics["year5_net_income"] - base["year5_net_income"]
        change_pct = change / abs(base["year5_net_income"]) * 100 if base["year5_net_income"] else 0.0
        score = None
        if base_value and not np.isclose(value, base_value):
            param_change_pct = (value - base_value) / base_value * 100
            score = abs(change_pct) / abs(param_change_pct)
        row = {parameter: value, **metrics, "net_income_change": change,
               "net_income_change_pct": change_pct, "sensitivity_score": score}
        logger.debug("sensitivity %s=%.4f: year5 change %.2f%%", parameter, value, change_pct)
        rows.append(row)

    df = pd.DataFrame(rows)
    scores = df["sensitivity_score"].dropna()
    max_score = float(scores.max()) if not scores.empty else 0.0
    summary = {
        "parameter": parameter,
        "base_value": base_value,
        "base_year5_net_income": base["year5_net_income"],
        "max_sensitivity_score": max_score,
        "risk_level": sensitivity_risk_level(max_score),
    }
    return df, summary
