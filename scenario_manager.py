"""
scenario_manager.py
------------------
Scenario files and scenario transforms.

A scenario file is a JSON document holding the household, its assumptions
and one or more scenarios. Dates are stored as 'YYYY-MM-DD' strings.

Transforms take a Scenario and return a new one; the input is never
modified. `apply_transform(scenario, "name:key=value,...")` applies a
transform by name, e.g.

    apply_transform(s, "postpone_retirement:participant=Alice,months=6")
    apply_transform(s, "set_roth_conversions:participant=Bob,conversions=2027/40000;2028/40000")

Templates bundle transforms under a name, e.g. `apply_template(s, "postpone_1yr", "Alice")`.
"""

import dataclasses
import datetime as dt
import json
import logging
import os

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from household import (
    Assumptions,
    ExternalPension,
    HealthcareConfig,
    Household,
    MortalityAssumptions,
    MortalitySpec,
    Participant,
    ParticipantScenario,
    PartTimeWorkPeriod,
    RothConversion,
    Scenario,
    TaxRules,
    WITHDRAWAL_STRATEGIES,
    WithdrawalSequencingConfig,
)
from retirement_model import calculate_weighted_tsp_growth

logger = logging.getLogger(__name__)

SCENARIO_DIR = "scenarios"


# --- Serialization ---
def _to_json(value):
    if isinstance(value, dt.date):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, dict):
        return {k: _to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    if value == float('inf'):
        return "inf"
    return value


def _date(value):
    if value is None:
        return None
    return isoparse(value).date()


def configuration_to_dict(household, scenarios, assumptions):
    return _to_json({
        "household": dataclasses.asdict(household),
        "assumptions": dataclasses.asdict(assumptions),
        "scenarios": [dataclasses.asdict(s) for s in scenarios],
    })


def _participant_from_dict(data):
    data = dict(data)
    for key in ("birth_date", "hire_date", "employment_end_date"):
        data[key] = _date(data.get(key))
    if data.get("external_pension") is not None:
        data["external_pension"] = ExternalPension(**data["external_pension"])
    if data.get("healthcare") is not None:
        data["healthcare"] = HealthcareConfig(**data["healthcare"])
    return Participant(**data)


def _participant_scenario_from_dict(data):
    data = dict(data)
    data["retirement_date"] = _date(data.get("retirement_date"))
    data["roth_conversions"] = tuple(RothConversion(**c) for c in data.get("roth_conversions", ()))
    data["part_time_work"] = tuple(
        PartTimeWorkPeriod(**{**p, "start_date": _date(p["start_date"]), "end_date": _date(p["end_date"])})
        for p in data.get("part_time_work", ()))
    if data.get("mortality") is not None:
        m = data["mortality"]
        data["mortality"] = MortalitySpec(death_date=_date(m.get("death_date")), death_age=m.get("death_age"))
    return ParticipantScenario(**data)


def _scenario_from_dict(data):
    sequencing = data.get("withdrawal_sequencing")
    if sequencing is not None:
        sequencing = WithdrawalSequencingConfig(**{**sequencing,
                                                   "custom_sequence": tuple(sequencing.get("custom_sequence", ()))})
    return Scenario(
        name=data["name"],
        participant_scenarios={name: _participant_scenario_from_dict(ps)
                               for name, ps in data.get("participant_scenarios", {}).items()},
        mortality=MortalityAssumptions(**data.get("mortality", {})),
        withdrawal_sequencing=sequencing,
    )


def _brackets(rows):
    return tuple((lo, float('inf') if hi == "inf" else hi, rate) for lo, hi, rate in rows)


def _assumptions_from_dict(data):
    """A `tsp_fund_allocation` block (g_fund_pct ... i_fund_pct) replaces both TSP return rates"""
    data = dict(data)
    growth = calculate_weighted_tsp_growth(data.pop("tsp_fund_allocation", None))
    if growth is not None:
        data["tsp_return_pre_retirement"] = growth
        data["tsp_return_post_retirement"] = growth
    if "tax_rules" in data:
        rules = dict(data["tax_rules"])
        for key in ("brackets_mfj", "brackets_single"):
            if key in rules:
                rules[key] = _brackets(rules[key])
        data["tax_rules"] = TaxRules(**rules)
    return Assumptions(**data)


def configuration_from_dict(data):
    """Inverse of configuration_to_dict. Missing required fields raise KeyError or TypeError."""
    household_data = data["household"]
    household = Household(
        participants=tuple(_participant_from_dict(p) for p in household_data["participants"]),
        filing_status=household_data.get("filing_status", Household.filing_status),
    )
    assumptions = _assumptions_from_dict(data.get("assumptions", {}))
    scenarios = [_scenario_from_dict(s) for s in data.get("scenarios", [])]
    return household, scenarios, assumptions


def save_configuration(household, scenarios, assumptions, name, directory=SCENARIO_DIR):
    """Save a configuration to `<directory>/<name>.json`; returns the path"""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"{name}.json")
    with open(path, "w") as f:
        json.dump(configuration_to_dict(household, scenarios, assumptions), f, indent=2)
    logger.info("Saved configuration '%s' to %s", name, path)
    return path


def load_configuration(name_or_path, directory=SCENARIO_DIR):
    """Load (household, scenarios, assumptions) from a path or a saved name"""
    path = name_or_path
    if not os.path.exists(path):
        path = os.path.join(directory, f"{name_or_path}.json")
    with open(path, "r") as f:
        data = json.load(f)
    logger.info("Loaded configuration from %s", path)
    return configuration_from_dict(data)


def get_available_scenarios(directory=SCENARIO_DIR):
    """Get list of available saved scenarios"""
    if not os.path.exists(directory):
        return []
    return sorted(f.replace(".json", "") for f in os.listdir(directory) if f.endswith(".json"))


def delete_scenario(name, directory=SCENARIO_DIR):
    """Delete a saved scenario"""
    path = os.path.join(directory, f"{name}.json")
    if os.path.exists(path):
        os.remove(path)
        logger.info("Deleted %s", path)
        return True
    return False


# --- Transforms ---
def _get_participant_scenario(scenario, participant):
    ps = scenario.participant_scenarios.get(participant)
    if ps is None:
        raise ValueError(f"Participant '{participant}' not found in scenario '{scenario.name}'.")
    return ps


def _replace_participant(scenario, participant, **changes):
    ps = dataclasses.replace(_get_participant_scenario(scenario, participant), **changes)
    updated = dict(scenario.participant_scenarios)
    updated[participant] = ps
    return dataclasses.replace(scenario, participant_scenarios=updated)


def postpone_retirement(scenario, participant, months=0, years=0):
    ps = _get_participant_scenario(scenario, participant)
    if ps.retirement_date is None:
        raise ValueError(f"Participant '{participant}' has no retirement date to postpone.")
    if months < 0 or years < 0 or months + years == 0:
        raise ValueError("Postponement must be a positive number of months or years.")
    new_date = ps.retirement_date + relativedelta(years=years, months=months)
    return _replace_participant(scenario, participant, retirement_date=new_date)


def set_retirement_date(scenario, participant, date):
    if isinstance(date, str):
        date = _date(date)
    return _replace_participant(scenario, participant, retirement_date=date)


def delay_ss_claim(scenario, participant, years=1, age=None):
    """Move the claiming age by `years`, or to `age` when given"""
    ps = _get_participant_scenario(scenario, participant)
    new_age = age if age is not None else ps.ss_start_age + years
    if not 62 <= new_age <= 70:
        raise ValueError(f"Social Security start age {new_age} is outside 62-70.")
    return _replace_participant(scenario, participant, ss_start_age=new_age)


def modify_tsp_strategy(scenario, participant, strategy, rate=None, target_monthly=None):
    """Switch strategy. A rate or target that is not given keeps the participant's current one."""
    ps = _get_participant_scenario(scenario, participant)
    if rate is None:
        rate = ps.tsp_withdrawal_rate
    if target_monthly is None:
        target_monthly = ps.tsp_withdrawal_target_monthly
    if strategy not in WITHDRAWAL_STRATEGIES:
        raise ValueError(f"Unknown TSP withdrawal strategy '{strategy}'.")
    if strategy == "variable_percentage" and (rate is None or not 0 < rate <= 0.20):
        raise ValueError("variable_percentage needs a rate between 0 and 0.20.")
    if strategy == "need_based" and (target_monthly is None or target_monthly <= 0):
        raise ValueError("need_based needs a positive monthly target.")
    return _replace_participant(scenario, participant, tsp_withdrawal_strategy=strategy,
                                tsp_withdrawal_rate=rate, tsp_withdrawal_target_monthly=target_monthly)


def adjust_tsp_rate(scenario, participant, rate):
    ps = _get_participant_scenario(scenario, participant)
    if not 0 < rate <= 0.20:
        raise ValueError(f"TSP rate must be between 0 and 0.20, got {rate}.")
    if ps.tsp_withdrawal_strategy != "variable_percentage":
        raise ValueError(f"TSP rate only applies to variable_percentage, current strategy is "
                         f"{ps.tsp_withdrawal_strategy}.")
    return _replace_participant(scenario, participant, tsp_withdrawal_rate=rate)


def set_tsp_target_income(scenario, participant, monthly_target):
    ps = _get_participant_scenario(scenario, participant)
    if monthly_target <= 0:
        raise ValueError(f"Monthly target must be positive, got {monthly_target}.")
    if ps.tsp_withdrawal_strategy != "need_based":
        raise ValueError(f"Monthly target only applies to need_based, current strategy is "
                         f"{ps.tsp_withdrawal_strategy}.")
    return _replace_participant(scenario, participant, tsp_withdrawal_target_monthly=monthly_target)


def set_mortality(scenario, participant, death_date=None, death_age=None):
    if isinstance(death_date, str):
        death_date = _date(death_date)
    if (death_date is None) == (death_age is None):
        raise ValueError("Give exactly one of death_date or death_age.")
    return _replace_participant(scenario, participant,
                                mortality=MortalitySpec(death_date=death_date, death_age=death_age))


def set_survivor_spending_factor(scenario, factor):
    if not 0 <= factor <= 1:
        raise ValueError("Survivor spending factor must be between 0 and 1.")
    return dataclasses.replace(scenario, mortality=dataclasses.replace(
        scenario.mortality, survivor_spending_factor=factor))


def set_tsp_transfer_mode(scenario, mode):
    if mode not in ("merge", "separate"):
        raise ValueError("TSP transfer mode must be 'merge' or 'separate'.")
    return dataclasses.replace(scenario, mortality=dataclasses.replace(
        scenario.mortality, tsp_spousal_transfer=mode))


def set_roth_conversions(scenario, participant, conversions):
    """Replace the participant's conversion schedule with (year, amount) pairs or RothConversion items."""
    schedule = []
    for conversion in conversions:
        if not isinstance(conversion, RothConversion):
            year, amount = conversion
            conversion = RothConversion(year=int(year), amount=float(amount))
        if conversion.amount < 0:
            raise ValueError(f"Roth conversion for {conversion.year} cannot be negative.")
        schedule.append(conversion)
    return _replace_participant(scenario, participant, roth_conversions=tuple(schedule))


def _parse_conversions(text):
    pairs = []
    for item in text.split(";"):
        year, _, amount = item.partition("/")
        pairs.append((int(year), float(amount)))
    return pairs


# name -> (function, converters for keyword parameters)
TRANSFORMS = {
    "postpone_retirement": (postpone_retirement, {"participant": str, "months": int, "years": int}),
    "set_retirement_date": (set_retirement_date, {"participant": str, "date": _date}),
    "delay_ss_claim": (delay_ss_claim, {"participant": str, "years": int, "age": int}),
    "modify_tsp_strategy": (modify_tsp_strategy, {"participant": str, "strategy": str, "rate": float,
                                                  "target_monthly": float}),
    "adjust_tsp_rate": (adjust_tsp_rate, {"participant": str, "rate": float}),
    "set_tsp_target_income": (set_tsp_target_income, {"participant": str, "monthly_target": float}),
    "set_mortality": (set_mortality, {"participant": str, "death_date": _date, "death_age": int}),
    "set_survivor_spending_factor": (set_survivor_spending_factor, {"factor": float}),
    "set_tsp_transfer_mode": (set_tsp_transfer_mode, {"mode": str}),
    "set_roth_conversions": (set_roth_conversions, {"participant": str, "conversions": _parse_conversions}),
}


def parse_transform(text):
    """'name:k=v,k=v' -> (name, {k: converted v})"""
    name, _, params = text.partition(":")
    name = name.strip()
    if name not in TRANSFORMS:
        raise ValueError(f"Unknown transform '{name}'.")
    converters = TRANSFORMS[name][1]
    kwargs = {}
    for item in filter(None, (p.strip() for p in params.split(","))):
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or key not in converters:
            raise ValueError(f"Invalid parameter '{item}' for transform '{name}'.")
        try:
            kwargs[key] = converters[key](value.strip())
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid value for '{key}' in transform '{name}': {e}") from e
    return name, kwargs


def apply_transform(scenario, text):
    name, kwargs = parse_transform(text)
    logger.debug("applying %s %s to '%s'", name, kwargs, scenario.name)
    try:
        return TRANSFORMS[name][0](scenario, **kwargs)
    except TypeError as e:
        raise ValueError(f"Invalid parameters for transform '{name}': {e}") from e


def apply_transforms(scenario, transforms, name=None):
    """Apply several transform strings in order; optionally rename the result"""
    for text in transforms:
        scenario = apply_transform(scenario, text)
    if name is not None:
        scenario = dataclasses.replace(scenario, name=name)
    return scenario


# --- Templates ---
# name -> (description, transform strings); {participant} is filled in by apply_template
TEMPLATES = {
    "postpone_1yr": ("Postpone retirement by 1 year",
                     ("postpone_retirement:participant={participant},months=12",)),
    "postpone_2yr": ("Postpone retirement by 2 years",
                     ("postpone_retirement:participant={participant},months=24",)),
    "postpone_3yr": ("Postpone retirement by 3 years",
                     ("postpone_retirement:participant={participant},months=36",)),
    "delay_ss_67": ("Claim Social Security at 67 (full retirement age)",
                    ("delay_ss_claim:participant={participant},age=67",)),
    "delay_ss_70": ("Claim Social Security at 70 (maximum benefit)",
                    ("delay_ss_claim:participant={participant},age=70",)),
    "tsp_need_based": ("Switch to need-based TSP withdrawals at the current monthly target",
                       ("modify_tsp_strategy:participant={participant},strategy=need_based",)),
    "tsp_fixed_2pct": ("Withdraw 2% of the TSP balance each year",
                       ("modify_tsp_strategy:participant={participant},strategy=variable_percentage,rate=0.02",)),
    "tsp_fixed_3pct": ("Withdraw 3% of the TSP balance each year",
                       ("modify_tsp_strategy:participant={participant},strategy=variable_percentage,rate=0.03",)),
    "tsp_fixed_4pct": ("Switch to the 4% rule",
                       ("modify_tsp_strategy:participant={participant},strategy=4_percent_rule",)),
    "postpone_1yr_delay_ss_70": ("Postpone retirement 1 year and claim Social Security at 70",
                                 ("postpone_retirement:participant={participant},months=12",
                                  "delay_ss_claim:participant={participant},age=70")),
    "postpone_2yr_delay_ss_70": ("Postpone retirement 2 years and claim Social Security at 70",
                                 ("postpone_retirement:participant={participant},months=24",
                                  "delay_ss_claim:participant={participant},age=70")),
    "delay_ss_70_tsp_4pct": ("Claim Social Security at 70 and use the 4% rule",
                             ("delay_ss_claim:participant={participant},age=70",
                              "modify_tsp_strategy:participant={participant},strategy=4_percent_rule")),
    "conservative": ("Postpone 2 years, claim Social Security at 70, withdraw 3%",
                     ("postpone_retirement:participant={participant},months=24",
                      "delay_ss_claim:participant={participant},age=70",
                      "modify_tsp_strategy:participant={participant},strategy=variable_percentage,rate=0.03")),
    "aggressive": ("Claim Social Security at 70 and use the 4% rule",
                   ("delay_ss_claim:participant={participant},age=70",
                    "modify_tsp_strategy:participant={participant},strategy=4_percent_rule")),
}


def list_templates():
    """{name: description} of the built-in templates"""
    return {name: description for name, (description, _) in sorted(TEMPLATES.items())}


def apply_template(scenario, template, participant, name=None):
    """Apply a built-in template to one participant. Template names are case-insensitive."""
    key = template.strip().lower()
    if key not in TEMPLATES:
        raise ValueError(f"Unknown template '{template}'.")
    steps = [step.format(participant=participant) for step in TEMPLATES[key][1]]
    return apply_transforms(scenario, steps, name=name if name is not None else f"{scenario.name}_{key}")


def apply_templates(scenario, templates, participant):
    """One scenario per name in a comma-separated list or sequence of template names"""
    if isinstance(templates, str):
        templates = templates.split(",")
    return [apply_template(scenario, t, participant) for t in templates if t.strip()]
