import dataclasses
import datetime as dt
import json

import pytest

from household import (
    ExternalPension,
    HealthcareConfig,
    Household,
    MortalitySpec,
    ParticipantScenario,
    PartTimeWorkPeriod,
    RothConversion,
    Scenario,
    WithdrawalSequencingConfig,
)
from scenario_manager import (
    adjust_tsp_rate,
    apply_template,
    apply_templates,
    apply_transform,
    apply_transforms,
    configuration_from_dict,
    configuration_to_dict,
    delay_ss_claim,
    delete_scenario,
    get_available_scenarios,
    list_templates,
    load_configuration,
    modify_tsp_strategy,
    parse_transform,
    postpone_retirement,
    save_configuration,
    set_mortality,
    set_retirement_date,
    set_roth_conversions,
    set_survivor_spending_factor,
    set_tsp_target_income,
    set_tsp_transfer_mode,
)


@pytest.fixture
def detailed_scenario(scenario):
    alice = dataclasses.replace(
        scenario.participant_scenarios["Alice"],
        roth_conversions=(RothConversion(2027, 40000.0),),
        part_time_work=(PartTimeWorkPeriod(dt.date(2026, 3, 1), dt.date(2027, 2, 28), 30000.0, work_type="1099"),),
        mortality=MortalitySpec(death_age=85),
    )
    return dataclasses.replace(
        scenario,
        participant_scenarios={**scenario.participant_scenarios, "Alice": alice},
        withdrawal_sequencing=WithdrawalSequencingConfig(strategy="custom", custom_sequence=("roth", "traditional")),
    )


def test_save_and_load_configuration(tmp_path, make_participant, alice, assumptions, scenario, detailed_scenario):
    bob = make_participant("spouse", external_pension=ExternalPension(1500.0, 62, 0.01, 0.5),
                           healthcare=HealthcareConfig(pre_medicare_coverage="marketplace",
                                                       pre_medicare_monthly_premium=700.0))
    household = Household(participants=(alice, bob))
    path = save_configuration(household, [scenario, detailed_scenario], assumptions, "family", str(tmp_path))
    assert path.endswith("family.json")

    with open(path) as f:
        stored = json.load(f)
    assert stored["household"]["participants"][0]["birth_date"] == "1966-06-15"
    assert stored["assumptions"]["tax_rules"]["brackets_mfj"][-1][1] == "inf"

    loaded_household, loaded_scenarios, loaded_assumptions = load_configuration("family", str(tmp_path))
    assert loaded_household == household
    assert loaded_scenarios == [scenario, detailed_scenario]
    assert loaded_assumptions == assumptions
    assert load_configuration(path)[0] == household


def test_configuration_dict_stores_dates_as_strings(household, scenario, assumptions):
    data = configuration_to_dict(household, [scenario], assumptions)
    retirement = data["scenarios"][0]["participant_scenarios"]["Alice"]["retirement_date"]
    assert retirement == "2026-01-01"


def test_fund_allocation_sets_tsp_returns(household, scenario, assumptions):
    data = configuration_to_dict(household, [scenario], assumptions)
    data["assumptions"]["tsp_fund_allocation"] = {"c_fund_pct": 50, "f_fund_pct": 50}
    _, _, loaded = configuration_from_dict(data)
    assert loaded.tsp_return_pre_retirement == pytest.approx(0.0525)
    assert loaded.tsp_return_post_retirement == pytest.approx(0.0525)
    assert loaded.inflation_rate == assumptions.inflation_rate


def test_list_and_delete_saved_scenarios(tmp_path, household, scenario, assumptions):
    directory = str(tmp_path / "saved")
    assert get_available_scenarios(directory) == []
    save_configuration(household, [scenario], assumptions, "zeta", directory)
    save_configuration(household, [scenario], assumptions, "alpha", directory)
    assert get_available_scenarios(directory) == ["alpha", "zeta"]
    assert delete_scenario("alpha", directory)
    assert not delete_scenario("alpha", directory)
    assert get_available_scenarios(directory) == ["zeta"]


def test_postpone_retirement(scenario):
    later = postpone_retirement(scenario, "Alice", months=6)
    assert later.participant_scenarios["Alice"].retirement_date == dt.date(2026, 7, 1)
    assert scenario.participant_scenarios["Alice"].retirement_date == dt.date(2026, 1, 1)
    assert postpone_retirement(scenario, "Bob", years=1).participant_scenarios["Bob"].retirement_date == \
        dt.date(2028, 1, 1)
    with pytest.raises(ValueError, match="positive"):
        postpone_retirement(scenario, "Alice")
    with pytest.raises(ValueError, match="not found"):
        postpone_retirement(scenario, "Zed", months=1)


def test_postpone_requires_retirement_date():
    scenario = Scenario("s", participant_scenarios={"Alice": ParticipantScenario("Alice")})
    with pytest.raises(ValueError, match="no retirement date"):
        postpone_retirement(scenario, "Alice", months=3)


def test_delay_ss_claim(scenario):
    assert delay_ss_claim(scenario, "Bob", years=3).participant_scenarios["Bob"].ss_start_age == 70
    with pytest.raises(ValueError, match="outside 62-70"):
        delay_ss_claim(scenario, "Bob", years=4)
    assert delay_ss_claim(scenario, "Alice", age=70).participant_scenarios["Alice"].ss_start_age == 70
    with pytest.raises(ValueError, match="outside 62-70"):
        delay_ss_claim(scenario, "Alice", age=71)


def test_modify_tsp_strategy(scenario):
    updated = modify_tsp_strategy(scenario, "Alice", "variable_percentage", rate=0.05)
    ps = updated.participant_scenarios["Alice"]
    assert ps.tsp_withdrawal_strategy == "variable_percentage"
    assert ps.tsp_withdrawal_rate == 0.05
    with pytest.raises(ValueError):
        modify_tsp_strategy(scenario, "Alice", "need_based")
    with pytest.raises(ValueError):
        modify_tsp_strategy(scenario, "Alice", "yolo")


def test_mortality_transforms(scenario):
    dead = set_mortality(scenario, "Alice", death_date="2030-07-01")
    assert dead.participant_scenarios["Alice"].mortality == MortalitySpec(death_date=dt.date(2030, 7, 1))
    with pytest.raises(ValueError, match="exactly one"):
        set_mortality(scenario, "Alice", death_date=dt.date(2030, 7, 1), death_age=70)
    assert set_survivor_spending_factor(scenario, 0.7).mortality.survivor_spending_factor == 0.7
    with pytest.raises(ValueError):
        set_survivor_spending_factor(scenario, 1.5)
    assert set_tsp_transfer_mode(scenario, "separate").mortality.tsp_spousal_transfer == "separate"
    with pytest.raises(ValueError):
        set_tsp_transfer_mode(scenario, "split")


def test_set_roth_conversions(scenario):
    updated = set_roth_conversions(scenario, "Bob", [(2027, 40000), RothConversion(2028, 10000.0)])
    assert updated.participant_scenarios["Bob"].roth_conversions == (
        RothConversion(2027, 40000.0), RothConversion(2028, 10000.0))
    with pytest.raises(ValueError, match="cannot be negative"):
        set_roth_conversions(scenario, "Bob", [(2027, -1)])


def test_parse_transform():
    name, kwargs = parse_transform("set_roth_conversions:participant=Bob,conversions=2027/40000;2028/35000")
    assert name == "set_roth_conversions"
    assert kwargs == {"participant": "Bob", "conversions": [(2027, 40000.0), (2028, 35000.0)]}
    assert parse_transform("set_mortality:participant=Alice,death_age=80")[1]["death_age"] == 80


@pytest.mark.parametrize("text, message", [
    ("teleport:participant=Alice", "Unknown transform"),
    ("delay_ss_claim:participant=Bob,days=3", "Invalid parameter"),
    ("delay_ss_claim:participant", "Invalid parameter"),
    ("delay_ss_claim:participant=Bob,years=soon", "Invalid value"),
])
def test_parse_transform_errors(text, message):
    with pytest.raises(ValueError, match=message):
        parse_transform(text)


def test_apply_transforms_in_order(scenario):
    updated = apply_transforms(scenario, [
        "postpone_retirement:participant=Alice,months=6",
        "delay_ss_claim:participant=Alice,years=2",
        "set_tsp_transfer_mode:mode=separate",
    ], name="later")
    alice = updated.participant_scenarios["Alice"]
    assert updated.name == "later"
    assert alice.retirement_date == dt.date(2026, 7, 1)
    assert alice.ss_start_age == 64
    assert updated.mortality.tsp_spousal_transfer == "separate"
    assert scenario.name == "baseline"


def test_apply_transform_missing_parameter(scenario):
    with pytest.raises(ValueError, match="Invalid parameters"):
        apply_transform(scenario, "set_tsp_transfer_mode:")


def test_set_retirement_date(scenario):
    updated = set_retirement_date(scenario, "Bob", "2029-03-01")
    assert updated.participant_scenarios["Bob"].retirement_date == dt.date(2029, 3, 1)
    via_text = apply_transform(scenario, "set_retirement_date:participant=Bob,date=2029-03-01")
    assert via_text == updated


def test_modify_tsp_strategy_keeps_current_target(scenario):
    need = modify_tsp_strategy(scenario, "Bob", "need_based", target_monthly=3000)
    back = modify_tsp_strategy(modify_tsp_strategy(need, "Bob", "4_percent_rule"), "Bob", "need_based")
    assert back.participant_scenarios["Bob"].tsp_withdrawal_target_monthly == 3000


def test_adjust_tsp_rate(scenario):
    variable = modify_tsp_strategy(scenario, "Alice", "variable_percentage", rate=0.05)
    assert adjust_tsp_rate(variable, "Alice", 0.03).participant_scenarios["Alice"].tsp_withdrawal_rate == 0.03
    via_text = apply_transform(variable, "adjust_tsp_rate:participant=Alice,rate=0.03")
    assert via_text.participant_scenarios["Alice"].tsp_withdrawal_rate == 0.03
    with pytest.raises(ValueError, match="only applies to variable_percentage"):
        adjust_tsp_rate(scenario, "Alice", 0.03)
    with pytest.raises(ValueError, match="between 0 and 0.20"):
        adjust_tsp_rate(variable, "Alice", 0.25)


def test_set_tsp_target_income(scenario):
    need = modify_tsp_strategy(scenario, "Bob", "need_based", target_monthly=3000)
    updated = apply_transform(need, "set_tsp_target_income:participant=Bob,monthly_target=4500")
    assert updated.participant_scenarios["Bob"].tsp_withdrawal_target_monthly == 4500
    with pytest.raises(ValueError, match="only applies to need_based"):
        set_tsp_target_income(scenario, "Bob", 4500)
    with pytest.raises(ValueError, match="must be positive"):
        set_tsp_target_income(need, "Bob", 0)


def test_list_templates():
    templates = list_templates()
    assert {"postpone_1yr", "postpone_2yr", "postpone_3yr", "delay_ss_67", "delay_ss_70",
            "tsp_need_based", "tsp_fixed_2pct", "tsp_fixed_3pct"} <= set(templates)
    assert list(templates) == sorted(templates)
    assert templates["delay_ss_70"].startswith("Claim Social Security at 70")


@pytest.mark.parametrize("template, field, expected", [
    ("postpone_1yr", "retirement_date", dt.date(2027, 1, 1)),
    ("POSTPONE_3YR", "retirement_date", dt.date(2029, 1, 1)),
    ("delay_ss_67", "ss_start_age", 67),
    ("delay_ss_70", "ss_start_age", 70),
    ("tsp_fixed_2pct", "tsp_withdrawal_rate", 0.02),
    ("tsp_fixed_3pct", "tsp_withdrawal_strategy", "variable_percentage"),
])
def test_apply_template(scenario, template, field, expected):
    updated = apply_template(scenario, template, "Alice")
    assert getattr(updated.participant_scenarios["Alice"], field) == expected
    assert updated.participant_scenarios["Bob"] == scenario.participant_scenarios["Bob"]
    assert updated.name == f"baseline_{template.lower()}"


def test_combined_templates(scenario):
    conservative = apply_template(scenario, "conservative", "Alice", name="careful").participant_scenarios["Alice"]
    assert conservative.retirement_date == dt.date(2028, 1, 1)
    assert conservative.ss_start_age == 70
    assert conservative.tsp_withdrawal_rate == 0.03
    scenarios = apply_templates(scenario, "postpone_1yr, delay_ss_70", "Bob")
    assert [s.name for s in scenarios] == ["baseline_postpone_1yr", "baseline_delay_ss_70"]
    assert scenarios[1].participant_scenarios["Bob"].ss_start_age == 70


def test_need_based_template_uses_current_target(scenario):
    with pytest.raises(ValueError, match="positive monthly target"):
        apply_template(scenario, "tsp_need_based", "Alice")
    with_target = dataclasses.replace(scenario, participant_scenarios={
        **scenario.participant_scenarios,
        "Alice": dataclasses.replace(scenario.participant_scenarios["Alice"], tsp_withdrawal_target_monthly=2500.0)})
    alice = apply_template(with_target, "tsp_need_based", "Alice").participant_scenarios["Alice"]
    assert alice.tsp_withdrawal_strategy == "need_based"
    assert alice.tsp_withdrawal_target_monthly == 2500.0
    with pytest.raises(ValueError, match="Unknown template"):
        apply_template(scenario, "retire_yesterday", "Alice")
