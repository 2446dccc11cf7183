"""
scenario_analysis.py
------------------
What-if analyses built on repeated projections:

  solve_breakeven_withdrawal_rate  uniform TSP withdrawal rate that keeps
                                   retirement net income at a target
  optimize_scenario                best retirement date, Social Security age,
                                   TSP rate or TSP balance for one goal
  optimize_all_targets             several targets compared side by side
  analyze_survivor_viability       income a survivor keeps after a death
  plan_roth_conversions            candidate conversion schedules scored
                                   against a no-conversion baseline
"""

import dataclasses
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from dateutil.relativedelta import relativedelta

from analysis_utils import lifetime_irmaa_cost, present_value, summarize_projection
from household import MortalityAssumptions, ParticipantScenario, RothConversion, death_year_index
from projection import project
from tax_rules import bracket_top

logger = logging.getLogger(__name__)

BREAKEVEN_RATE_LOW = 0.001
BREAKEVEN_RATE_HIGH = 0.15
BREAKEVEN_TOLERANCE = 1000.0
BREAKEVEN_MAX_ITERATIONS = 50

LIFE_INSURANCE_BUFFER = 1.2

VIABILITY_SCORES = (
    (0.05, "EXCELLENT"),
    (0.15, "GOOD"),
    (0.25, "CAUTION"),
    (0.40, "RISK"),
)

ROTH_OBJECTIVES = ("min_tax", "min_irmaa", "min_combined", "max_estate", "max_net_income")


def _participant_scenario(scenario, name):
    return scenario.participant_scenarios.get(name) or ParticipantScenario(participant_name=name)


def _with_participant_scenario(scenario, ps):
    updated = dict(scenario.participant_scenarios)
    updated[ps.participant_name] = ps
    return dataclasses.replace(scenario, participant_scenarios=updated)


# --- Breakeven withdrawal rate ---
def first_full_retirement_index(household, scenario, assumptions):
    """
    Year index of the first calendar year in which every participant with a
    retirement date is retired for the whole year.
    """
    indices = []
    for p in household.participants:
        ps = _participant_scenario(scenario, p.name)
        retirement = ps.retirement_date or p.employment_end_date
        if retirement is None:
            continue
        full_year = retirement.year if (retirement.month, retirement.day) == (1, 1) else retirement.year + 1
        indices.append(max(0, full_year - assumptions.projection_base_year))
    if not indices:
        raise ValueError("No participant retires in this scenario.")
    index = max(indices)
    if index >= assumptions.projection_years:
        raise ValueError("First full retirement year falls outside the projection.")
    return index


def with_uniform_withdrawal_rate(household, scenario, rate):
    """Scenario where every participant withdraws `rate` of their TSP balance each year"""
    for p in household.participants:
        ps = dataclasses.replace(_participant_scenario(scenario, p.name),
                                 tsp_withdrawal_strategy="variable_percentage",
                                 tsp_withdrawal_rate=rate,
                                 tsp_withdrawal_target_monthly=None)
        scenario = _with_participant_scenario(scenario, ps)
    return scenario


def solve_breakeven_withdrawal_rate(household, scenario, assumptions, target_net_income=None,
                                    low=BREAKEVEN_RATE_LOW, high=BREAKEVEN_RATE_HIGH,
                                    tolerance=BREAKEVEN_TOLERANCE, max_iterations=BREAKEVEN_MAX_ITERATIONS):
    """
    Bisect a uniform variable-percentage withdrawal rate so that net income
    in the first full retirement year lands within `tolerance` of
    `target_net_income` (default: net income of the first projection year).

    Returns a dict with the rate, the net income it produces, the target,
    the evaluated year, iteration count and whether it converged.
    """
    index = first_full_retirement_index(household, scenario, assumptions)
    if target_net_income is None:
        target_net_income = project(household, scenario, assumptions)[0].net_income

    def net_at(rate):
        projection = project(household, with_uniform_withdrawal_rate(household, scenario, rate), assumptions)
        return projection[index].net_income

    rate = net_income = None
    converged = False
    iterations = 0
    for iterations in range(1, max_iterations + 1):
        rate = (low + high) / 2
        net_income = net_at(rate)
        logger.debug("breakeven step %d: rate=%.5f net=%.2f target=%.2f",
                     iterations, rate, net_income, target_net_income)
        if abs(net_income - target_net_income) <= tolerance:
            converged = True
            break
        if net_income < target_net_income:
            low = rate
        else:
            high = rate

    return {
        "rate": rate,
        "net_income": net_income,
        "target_net_income": target_net_income,
        "year": assumptions.projection_base_year + index,
        "iterations": iterations,
        "converged": converged,
    }


# --- Scenario optimizer ---
OPTIMIZATION_TARGETS = ("retirement_date", "ss_age", "tsp_rate", "tsp_balance", "all")
OPTIMIZATION_GOALS = ("match_income", "maximize_income", "maximize_longevity", "minimize_taxes")
MULTI_TARGETS = ("tsp_rate", "retirement_date", "ss_age")

RETIREMENT_SEARCH_MONTHS = (-24, 36)
RATE_GRID_POINTS = 10
RATE_MIN_WIDTH = 0.0001
BALANCE_SEARCH_FACTOR = 3.0


@dataclass(frozen=True)
class OptimizationConstraints:
    """
    Search bounds for the participant being optimized.

    The retirement date range defaults to 24 months before through 36 months
    after the scenario's date. `max_tsp_balance` defaults to three times the
    participant's current balance. `target_income` is the net income
    match_income aims for in the first full retirement year; it defaults to
    the first projection year's net income.
    """
    participant: str
    min_retirement_date: Optional[dt.date] = None
    max_retirement_date: Optional[dt.date] = None
    min_tsp_rate: float = 0.02
    max_tsp_rate: float = 0.10
    min_tsp_balance: float = 0.0
    max_tsp_balance: Optional[float] = None
    min_ss_age: int = 62
    max_ss_age: int = 70
    target_income: Optional[float] = None

    def validate(self):
        errors = []
        if not self.participant:
            errors.append("participant name is required")
        if self.min_retirement_date is not None and self.max_retirement_date is not None \
                and self.min_retirement_date > self.max_retirement_date:
            errors.append("min_retirement_date cannot be after max_retirement_date")
        if self.min_tsp_rate > self.max_tsp_rate:
            errors.append("min_tsp_rate cannot be greater than max_tsp_rate")
        if self.min_tsp_rate <= 0 or self.max_tsp_rate > 0.20:
            errors.append("tsp rates must be in (0, 0.20]")
        if self.min_ss_age > self.max_ss_age:
            errors.append("min_ss_age cannot be greater than max_ss_age")
        if self.min_ss_age < 62 or self.max_ss_age > 70:
            errors.append("ss_age must be between 62 and 70")
        if self.min_tsp_balance < 0 or (self.max_tsp_balance is not None
                                         and self.max_tsp_balance < self.min_tsp_balance):
            errors.append("tsp balance bounds are inconsistent")
        return errors


def _goal_key(goal, target_income):
    """Sort key for results; smaller is better"""
    if goal == "match_income":
        return lambda r: abs(r["retirement_net_income"] - target_income)
    if goal == "maximize_income":
        return lambda r: -r["lifetime_income"]
    if goal == "maximize_longevity":
        return lambda r: -r["tsp_longevity"]
    return lambda r: r["lifetime_taxes"]


def _evaluate(household, scenario, assumptions, **parameters):
    projection = project(household, scenario, assumptions)
    summary = summarize_projection(scenario.name, projection)
    try:
        index = first_full_retirement_index(household, scenario, assumptions)
        retirement_net_income = projection[index].net_income
    except ValueError:
        retirement_net_income = summary["first_year_net_income"]
    result = {f"optimal_{name}": None for name in ("retirement_date", "tsp_rate", "tsp_balance", "ss_age")}
    result.update({f"optimal_{name}": value for name, value in parameters.items()})
    result.update({
        "summary": summary,
        "first_year_net_income": summary["first_year_net_income"],
        "retirement_net_income": retirement_net_income,
        "lifetime_income": summary["total_lifetime_income"],
        "tsp_longevity": summary["tsp_longevity"],
        "lifetime_taxes": summary["lifetime_taxes"],
    })
    return result


def _bisect(evaluate, low, high, target_income, tolerance, max_iterations, min_width):
    """Bisect a parameter whose retirement net income rises with it"""
    results = []
    iterations = 0
    for iterations in range(1, max_iterations + 1):
        mid = (low + high) / 2
        result = evaluate(mid)
        results.append(result)
        diff = result["retirement_net_income"] - target_income
        if abs(diff) <= tolerance:
            return results, iterations, True
        if diff < 0:
            low = mid
        else:
            high = mid
        if high - low < min_width:
            break
    return results, iterations, False


def _search_retirement_date(household, scenario, assumptions, constraints):
    ps = scenario.participant_scenarios.get(constraints.participant)
    if ps is None or ps.retirement_date is None:
        raise ValueError(f"Participant '{constraints.participant}' has no retirement date set.")
    base = ps.retirement_date
    low = constraints.min_retirement_date or base + relativedelta(months=RETIREMENT_SEARCH_MONTHS[0])
    high = constraints.max_retirement_date or base + relativedelta(months=RETIREMENT_SEARCH_MONTHS[1])

    results = []
    months = 0
    date = low
    while date <= high:
        candidate = _with_participant_scenario(scenario, dataclasses.replace(ps, retirement_date=date))
        try:
            results.append(_evaluate(household, candidate, assumptions, retirement_date=date))
        except ValueError as e:
            logger.debug("skipping retirement date %s: %s", date, e)
        months += 1
        date = low + relativedelta(months=months)
    return results, months, f"Evaluated {months} retirement dates"


def _search_ss_age(household, scenario, assumptions, constraints):
    ps = _participant_scenario(scenario, constraints.participant)
    results = []
    ages = range(constraints.min_ss_age, constraints.max_ss_age + 1)
    for age in ages:
        candidate = _with_participant_scenario(scenario, dataclasses.replace(ps, ss_start_age=age))
        try:
            results.append(_evaluate(household, candidate, assumptions, ss_age=age))
        except ValueError as e:
            logger.debug("skipping Social Security age %d: %s", age, e)
    return results, len(ages), f"Evaluated {len(ages)} Social Security ages"


def _search_tsp_rate(household, scenario, assumptions, constraints, goal, target_income, tolerance,
                     max_iterations):
    ps = _participant_scenario(scenario, constraints.participant)

    def evaluate(rate):
        candidate = _with_participant_scenario(scenario, dataclasses.replace(
            ps, tsp_withdrawal_strategy="variable_percentage", tsp_withdrawal_rate=float(rate),
            tsp_withdrawal_target_monthly=None))
        return _evaluate(household, candidate, assumptions, tsp_rate=float(rate))

    if goal == "match_income":
        results, iterations, converged = _bisect(evaluate, constraints.min_tsp_rate, constraints.max_tsp_rate,
                                                 target_income, tolerance, max_iterations, RATE_MIN_WIDTH)
        info = (f"Converged to target income within ${tolerance:,.0f}" if converged
                else f"No rate within ${tolerance:,.0f} of the target after {iterations} iterations")
        return results, iterations, info, converged

    rates = np.linspace(constraints.min_tsp_rate, constraints.max_tsp_rate, RATE_GRID_POINTS)
    results = [evaluate(rate) for rate in rates]
    return results, len(rates), f"Evaluated {len(rates)} withdrawal rates", True


def _with_tsp_balance(household, name, total):
    p = household.participant(name)
    current = p.total_tsp_balance
    if current > 0:
        factor = total / current
        p = dataclasses.replace(p, tsp_balance_traditional=p.tsp_balance_traditional * factor,
                                tsp_balance_roth=p.tsp_balance_roth * factor)
    else:
        p = dataclasses.replace(p, tsp_balance_traditional=total, tsp_balance_roth=0.0)
    return dataclasses.replace(household, participants=tuple(
        p if other.name == name else other for other in household.participants))


def _search_tsp_balance(household, scenario, assumptions, constraints, goal, target_income, tolerance,
                        max_iterations):
    if goal != "match_income":
        raise ValueError("tsp_balance optimization only supports the match_income goal.")
    current = household.participant(constraints.participant).total_tsp_balance
    high = constraints.max_tsp_balance
    if high is None:
        high = max(current * BALANCE_SEARCH_FACTOR, constraints.min_tsp_balance + 1.0)

    def evaluate(total):
        return _evaluate(_with_tsp_balance(household, constraints.participant, total), scenario, assumptions,
                         tsp_balance=total)

    results, iterations, converged = _bisect(evaluate, constraints.min_tsp_balance, high, target_income,
                                             tolerance, max_iterations, 1.0)
    info = (f"Converged to target income within ${tolerance:,.0f}" if converged
            else f"No balance within ${tolerance:,.0f} of the target after {iterations} iterations")
    return results, iterations, info, converged


def optimize_scenario(household, scenario, assumptions, target, goal, constraints,
                      tolerance=BREAKEVEN_TOLERANCE, max_iterations=BREAKEVEN_MAX_ITERATIONS):
    """
    Search one scenario parameter of `constraints.participant` for the value
    that best meets `goal`.

    target:
      retirement_date  monthly grid over the allowed dates
      ss_age           every claiming age in the allowed range
      tsp_rate         bisection for match_income, a grid otherwise
      tsp_balance      bisection on the participant's starting TSP balance
                       (match_income only)
      all              tsp_rate, retirement_date and ss_age together; see
                       optimize_all_targets

    Returns a dict with the optimal parameter, the figures at that value and
    the differences from the unchanged scenario.
    """
    if target not in OPTIMIZATION_TARGETS:
        raise ValueError(f"Unsupported optimization target '{target}'.")
    if goal not in OPTIMIZATION_GOALS:
        raise ValueError(f"Unsupported optimization goal '{goal}'.")
    errors = constraints.validate()
    if errors:
        raise ValueError("; ".join(errors))
    if household.participant(constraints.participant) is None:
        raise ValueError(f"Unknown participant '{constraints.participant}'.")
    if target == "all":
        return optimize_all_targets(household, scenario, assumptions, constraints, goals=(goal,),
                                    tolerance=tolerance, max_iterations=max_iterations)

    base_projection = project(household, scenario, assumptions)
    base = summarize_projection(scenario.name, base_projection)
    target_income = constraints.target_income
    if target_income is None:
        target_income = base["first_year_net_income"]

    success = True
    if target == "retirement_date":
        results, iterations, info = _search_retirement_date(household, scenario, assumptions, constraints)
    elif target == "ss_age":
        results, iterations, info = _search_ss_age(household, scenario, assumptions, constraints)
    elif target == "tsp_rate":
        results, iterations, info, success = _search_tsp_rate(household, scenario, assumptions, constraints,
                                                              goal, target_income, tolerance, max_iterations)
    else:
        results, iterations, info, success = _search_tsp_balance(household, scenario, assumptions, constraints,
                                                                 goal, target_income, tolerance, max_iterations)
    if not results:
        raise ValueError(f"No valid candidates found for target '{target}'.")

    best = min(results, key=_goal_key(goal, target_income))
    logger.info("optimized %s for %s (%s): %s", target, constraints.participant, goal, info)
    return {
        **best,
        "target": target,
        "goal": goal,
        "participant": constraints.participant,
        "target_income": target_income,
        "success": success,
        "iterations": iterations,
        "convergence_info": info,
        "base_summary": base,
        "income_diff_from_base": best["lifetime_income"] - base["total_lifetime_income"],
        "tax_diff_from_base": best["lifetime_taxes"] - base["lifetime_taxes"],
    }


def _describe(result):
    text = f"optimize {result['target']}"
    if result["optimal_tsp_rate"] is not None:
        text += f" ({result['optimal_tsp_rate'] * 100:.2f}% withdrawal rate)"
    if result["optimal_retirement_date"] is not None:
        text += f" (retire {result['optimal_retirement_date']:%b %Y})"
    if result["optimal_ss_age"] is not None:
        text += f" (claim Social Security at {result['optimal_ss_age']})"
    return text


def optimize_all_targets(household, scenario, assumptions, constraints, goals=("maximize_income",),
                         tolerance=BREAKEVEN_TOLERANCE, max_iterations=BREAKEVEN_MAX_ITERATIONS):
    """
    Run optimize_scenario for every target in MULTI_TARGETS and every goal,
    keep the successful runs and pick the best by lifetime income, TSP
    longevity and lifetime taxes.
    """
    results = []
    for target in MULTI_TARGETS:
        for goal in goals:
            try:
                result = optimize_scenario(household, scenario, assumptions, target, goal, constraints,
                                           tolerance=tolerance, max_iterations=max_iterations)
            except ValueError as e:
                logger.warning("skipping %s/%s: %s", target, goal, e)
                continue
            if result["success"]:
                results.append(result)
    if not results:
        raise ValueError("No successful optimizations found.")

    best_by_income = max(results, key=lambda r: r["lifetime_income"])
    best_by_longevity = max(results, key=lambda r: r["tsp_longevity"])
    best_by_taxes = min(results, key=lambda r: r["lifetime_taxes"])
    recommendations = [
        f"To maximize lifetime income: {_describe(best_by_income)}",
        f"To maximize TSP longevity ({best_by_longevity['tsp_longevity']} years): {_describe(best_by_longevity)}",
        f"To minimize taxes: {_describe(best_by_taxes)} (lifetime taxes ${best_by_taxes['lifetime_taxes']:,.0f})",
    ]
    if best_by_income["target"] == best_by_longevity["target"]:
        recommendations.append(f"Optimizing {best_by_income['target']} gives both high income and TSP longevity")
    return {
        "results": results,
        "best_by_income": best_by_income,
        "best_by_longevity": best_by_longevity,
        "best_by_taxes": best_by_taxes,
        "recommendations": recommendations,
    }


# --- Survivor viability ---
def viability_score(shortfall_fraction):
    for limit, label in VIABILITY_SCORES:
        if shortfall_fraction <= limit:
            return label
    return "CRITICAL"


def _year_snapshot(cf, survivor):
    return {
        "year": cf.year,
        "filing_status": cf.federal_filing_status,
        "net_income": cf.net_income,
        "monthly_income": cf.net_income / 12,
        "healthcare_costs": cf.healthcare.total,
        "taxes": cf.federal_tax + cf.state_tax + cf.local_tax,
        "survivor_pension": cf.pensions.get(survivor, 0.0) + cf.survivor_pensions.get(survivor, 0.0),
        "survivor_ss": cf.ss_benefits.get(survivor, 0.0),
        "tsp_withdrawal": cf.tsp_withdrawals.get(survivor, 0.0),
        "tsp_balance": cf.tsp_balances.get(survivor, 0.0),
        "irmaa_status": cf.irmaa_risk_status,
        "irmaa_cost": cf.irmaa_surcharge * 12,
    }


def _survivor_recommendations(shortfall_fraction, pre, post):
    recommendations = []
    if shortfall_fraction > 0.20:
        recommendations.append("Consider increasing survivor benefit elections")
        recommendations.append("Build up Roth TSP for tax-free withdrawals")
        recommendations.append("Consider delaying Social Security for higher survivor benefits")
    if post["taxes"] > pre["taxes"]:
        recommendations.append("Single filing raises the survivor's tax rate; plan withdrawals accordingly")
    if post["irmaa_status"] == "Breach" and pre["irmaa_status"] != "Breach":
        recommendations.append("Survivor MAGI crosses an IRMAA threshold under single filing")
    return recommendations


def analyze_survivor_viability(household, scenario, assumptions, target_income_factor=0.75,
                               analysis_years=20, discount_rate=0.03):
    """
    Compare a baseline run (nobody dies) with the scenario's death run.

    The deceased is the first participant (by name) with a death date or age;
    the survivor is the first other participant. The year before death is
    read from the baseline, the year after death from the death run.
    """
    if len(household.participants) < 2:
        raise ValueError("Survivor analysis requires at least 2 participants.")

    deceased = None
    for p in household.sorted_participants():
        ps = scenario.participant_scenarios.get(p.name)
        if ps is not None and ps.mortality is not None and (
                ps.mortality.death_date is not None or ps.mortality.death_age is not None):
            deceased = p
            break
    if deceased is None:
        raise ValueError("No death configured in scenario.")
    survivor = next(p for p in household.sorted_participants() if p.name != deceased.name)

    base_year = assumptions.projection_base_year
    death_index = death_year_index(deceased, scenario.participant_scenarios[deceased.name].mortality, base_year)
    if death_index is None or not 1 <= death_index < assumptions.projection_years - 1:
        raise ValueError("Death year must leave a year before and after it inside the projection.")

    baseline_scenario = scenario
    for ps in scenario.participant_scenarios.values():
        if ps.mortality is not None:
            baseline_scenario = _with_participant_scenario(baseline_scenario, dataclasses.replace(ps, mortality=None))
    baseline_scenario = dataclasses.replace(baseline_scenario, mortality=MortalityAssumptions(
        tsp_spousal_transfer=scenario.mortality.tsp_spousal_transfer,
        filing_status_switch=scenario.mortality.filing_status_switch))

    baseline = project(household, baseline_scenario, assumptions)
    survivor_run = project(household, scenario, assumptions)

    pre = _year_snapshot(baseline[death_index - 1], survivor.name)
    post = _year_snapshot(survivor_run[death_index + 1], survivor.name)

    target_income = pre["net_income"] * target_income_factor
    shortfall = target_income - post["net_income"]
    shortfall_fraction = shortfall / target_income if target_income > 0 else 0.0
    score = viability_score(shortfall_fraction)

    death_date = dt.date(base_year + death_index, 6, 30)
    coverage_pv = present_value([max(0.0, shortfall)] * analysis_years, discount_rate)

    logger.info("survivor viability for %s after %s: %s (shortfall %.1f%%)",
                survivor.name, deceased.name, score, shortfall_fraction * 100)
    return {
        "scenario": scenario.name,
        "deceased": deceased.name,
        "survivor": survivor.name,
        "death_year": base_year + death_index,
        "survivor_age": survivor.age_at(death_date),
        "pre_death": pre,
        "post_death": post,
        "target_income": target_income,
        "actual_income": post["net_income"],
        "income_shortfall": shortfall,
        "shortfall_fraction": shortfall_fraction,
        "viability_score": score,
        "tax_change": post["taxes"] - pre["taxes"],
        "healthcare_change": post["healthcare_costs"] - pre["healthcare_costs"],
        "life_insurance": {
            "annual_shortfall": shortfall,
            "years": analysis_years,
            "discount_rate": discount_rate,
            "present_value": coverage_pv,
            "recommended_coverage": coverage_pv * LIFE_INSURANCE_BUFFER,
        },
        "recommendations": _survivor_recommendations(shortfall_fraction, pre, post),
    }

# --- Roth conversion planning ---
def bracket_room(cf, target_bracket, rules=None):
    """Ordinary income that still fits under the top of `target_bracket` in year `cf`"""
    top = bracket_top(cf.federal_filing_status, target_bracket, rules)
    return max(0.0, top - cf.federal_taxable_income)


def conversion_candidates(baseline, start_year, end_year, target_bracket, fixed_amounts=(),
                          min_amount=1000.0, max_amount=float("inf"), rules=None):
    """
    Candidate schedules as (label, tuple of RothConversion):
      one bracket-fill conversion per year with room in the window,
      a bracket-fill conversion in every such year,
      each fixed amount converted every year of the window.
    """
    by_year = {cf.year: cf for cf in baseline}
    fills = []
    for year in range(start_year, end_year + 1):
        cf = by_year.get(year)
        if cf is None:
            logger.debug("skipping %d: outside the projection", year)
            continue
        room = bracket_room(cf, target_bracket, rules)
        if room > min_amount:
            fills.append(RothConversion(year=year, amount=min(room, max_amount)))
        else:
            logger.debug("no bracket room in %d (room %.2f)", year, room)

    candidates = [(f"fill_{c.year}", (c,)) for c in fills]
    if len(fills) > 1:
        candidates.append(("fill_window", tuple(fills)))
    years = [y for y in range(start_year, end_year + 1) if y in by_year]
    for amount in fixed_amounts:
        if amount > 0 and years:
            candidates.append((f"fixed_{amount:.0f}", tuple(RothConversion(year=y, amount=amount) for y in years)))
    return candidates


def _objective_key(objective):
    if objective == "min_tax":
        return lambda o: o["lifetime_tax"]
    if objective == "min_irmaa":
        return lambda o: o["lifetime_irmaa"]
    if objective == "min_combined":
        return lambda o: o["lifetime_tax"] + o["lifetime_irmaa"]
    if objective == "max_estate":
        return lambda o: -o["final_after_tax_balance"]
    return lambda o: -o["total_lifetime_income"]


def _after_tax_balance(cf, tax_rate):
    traditional = sum(cf.tsp_balances_traditional.values())
    roth = sum(cf.tsp_balances_roth.values())
    return traditional * (1 - tax_rate) + roth + sum(cf.taxable_balances.values())


def _outcome(label, schedule, projection, baseline_summary, heir_tax_rate):
    summary = summarize_projection(label, projection)
    lifetime_tax = sum(cf.federal_tax for cf in projection)
    lifetime_irmaa = lifetime_irmaa_cost(projection)
    tax_difference = lifetime_tax - baseline_summary["lifetime_tax"]
    irmaa_difference = lifetime_irmaa - baseline_summary["lifetime_irmaa"]
    return {
        "label": label,
        "conversions": schedule,
        "total_converted": sum(c.amount for c in schedule),
        "lifetime_tax": lifetime_tax,
        "lifetime_irmaa": lifetime_irmaa,
        "final_after_tax_balance": _after_tax_balance(projection[-1], heir_tax_rate),
        "total_lifetime_income": summary["total_lifetime_income"],
        "net_benefit": -(tax_difference + irmaa_difference),
    }


def plan_roth_conversions(household, scenario, assumptions, participant, start_year, end_year,
                          target_bracket=22, objective="min_combined", fixed_amounts=(),
                          min_amount=1000.0, max_amount=float("inf"), heir_tax_rate=0.24):
    """
    Evaluate conversion schedules for `participant` between `start_year` and
    `end_year` and pick the best one for `objective`. Returns a dict with the
    baseline figures, the recommended outcome and all alternatives.
    """
    if end_year < start_year:
        raise ValueError(f"Invalid year range {start_year}-{end_year}.")
    if target_bracket not in (10, 12, 22, 24, 32, 35, 37):
        raise ValueError(f"Invalid target bracket {target_bracket}.")
    if objective not in ROTH_OBJECTIVES:
        raise ValueError(f"Unknown objective '{objective}'.")
    if household.participant(participant) is None:
        raise ValueError(f"Unknown participant '{participant}'.")
    if min_amount < 0 or max_amount < min_amount:
        raise ValueError("Conversion amount limits are inconsistent.")

    baseline = project(household, scenario, assumptions)
    baseline_figures = {
        "lifetime_tax": sum(cf.federal_tax for cf in baseline),
        "lifetime_irmaa": lifetime_irmaa_cost(baseline),
        "final_after_tax_balance": _after_tax_balance(baseline[-1], heir_tax_rate),
    }

    ps = _participant_scenario(scenario, participant)
    outcomes = []
    for label, schedule in conversion_candidates(baseline, start_year, end_year, target_bracket, fixed_amounts,
                                                 min_amount, max_amount, assumptions.tax_rules):
        candidate = _with_participant_scenario(
            scenario, dataclasses.replace(ps, roth_conversions=tuple(ps.roth_conversions) + schedule))
        outcome = _outcome(label, schedule, project(household, candidate, assumptions),
                           baseline_figures, heir_tax_rate)
        logger.debug("candidate %s: tax=%.2f irmaa=%.2f benefit=%.2f", label,
                     outcome["lifetime_tax"], outcome["lifetime_irmaa"], outcome["net_benefit"])
        outcomes.append(outcome)

    recommended = min(outcomes, key=_objective_key(objective)) if outcomes else None
    return {
        "participant": participant,
        "window": (start_year, end_year),
        "target_bracket": target_bracket,
        "objective": objective,
        "baseline": baseline_figures,
        "recommended": recommended,
        "alternatives": outcomes,
    }
