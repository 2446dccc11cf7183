"""
Utility functions for analyzing household projections.
This module centralizes the summary and comparison logic used by the scenario
analysis, Monte Carlo and plotting modules.
"""

import pandas as pd


def projection_to_dataframe(projection):
    """One row per projection year, indexed by calendar year"""
    if not projection:
        return pd.DataFrame()
    df = pd.DataFrame([cf.as_record() for cf in projection])
    return df.set_index("Year", drop=False)


def find_tsp_depletion_year(projection):
    """Calendar year of the first depleted year once the household has retired, else None"""
    started = False
    for cf in projection:
        if cf.total_tsp_withdrawal() > 0 or cf.is_retired_household:
            started = True
        if started and cf.is_tsp_depleted():
            return cf.year
    return None


def present_value(amounts, discount_rate):
    return sum(amount / (1 + discount_rate) ** i for i, amount in enumerate(amounts))


def _net_at(projection, index):
    if not projection:
        return 0.0
    return projection[min(index, len(projection) - 1)].net_income


def lifetime_irmaa_cost(projection):
    return sum(cf.irmaa_surcharge * 12 * cf.federal_seniors_65_plus
               for cf in projection if cf.is_medicare_eligible)


def summarize_projection(name, projection, discount_rate=0.03):
    """Key figures of one projection"""
    depletion_year = find_tsp_depletion_year(projection)
    if depletion_year is None:
        longevity = len(projection)
    else:
        longevity = depletion_year - projection[0].year
    net_incomes = [cf.net_income for cf in projection]
    return {
        "name": name,
        "first_year_net_income": _net_at(projection, 0),
        "year5_net_income": _net_at(projection, 4),
        "year10_net_income": _net_at(projection, 9),
        "total_lifetime_income": present_value(net_incomes, discount_rate),
        "tsp_longevity": longevity,
        "tsp_depletion_year": depletion_year,
        "initial_tsp_balance": projection[0].total_tsp_balance() if projection else 0.0,
        "final_tsp_balance": projection[-1].total_tsp_balance() if projection else 0.0,
        "lifetime_taxes": sum(cf.total_taxes() for cf in projection),
        "lifetime_irmaa_cost": lifetime_irmaa_cost(projection),
    }


def calculate_cumulative_income(df):
    """Calculate and add cumulative net income to a dataframe"""
    df["Cumulative_Income"] = df["Net_Income"].cumsum()
    return df


def find_breakeven_point(df_a, df_b):
    """Find breakeven point between two scenarios"""
    delta_cum = df_b["Cumulative_Income"].to_numpy() - df_a["Cumulative_Income"].to_numpy()
    breakeven_idx = None
    breakeven_year = None
    breakeven_value = None

    if (delta_cum <= 0).any() and (delta_cum >= 0).any():
        # There is a crossover point
        for i in range(1, len(delta_cum)):
            if (delta_cum[i-1] <= 0 and delta_cum[i] > 0) or \
               (delta_cum[i-1] >= 0 and delta_cum[i] < 0):
                breakeven_idx = i
                break

        if breakeven_idx:
            breakeven_year = df_a["Year"].iloc[breakeven_idx]
            breakeven_value = df_a["Cumulative_Income"].iloc[breakeven_idx]

    return breakeven_idx, breakeven_year, breakeven_value


def compare_scenarios(summaries, base_name):
    """Table of summaries with differences against the `base_name` scenario"""
    df = pd.DataFrame(summaries).set_index("name")
    if base_name not in df.index:
        raise ValueError(f"Unknown base scenario '{base_name}'")
    base = df.loc[base_name]
    for column in ("first_year_net_income", "year5_net_income", "total_lifetime_income", "final_tsp_balance"):
        df[f"{column}_vs_base"] = df[column] - base[column]
    return df
