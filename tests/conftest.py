import datetime as dt

import matplotlib
matplotlib.use("Agg")

import pytest

from household import Assumptions, Household, Participant, ParticipantScenario, Scenario

FEDERAL_DEFAULTS = dict(
    name="Alice",
    birth_date=dt.date(1966, 6, 15),
    is_federal=True,
    hire_date=dt.date(1995, 6, 1),
    current_salary=120000.0,
    high3_salary=115000.0,
    tsp_balance_traditional=600000.0,
    tsp_balance_roth=100000.0,
    tsp_contribution_percent=0.05,
    ss_benefit_62=2000.0,
    ss_benefit_fra=2800.0,
    ss_benefit_70=3500.0,
    is_primary_fehb_holder=True,
    fehb_premium_per_pay_period=250.0,
    survivor_benefit_election_percent=0.5,
)

SPOUSE_DEFAULTS = dict(
    name="Bob",
    birth_date=dt.date(1964, 3, 10),
    current_salary=90000.0,
    tsp_balance_traditional=250000.0,
    ss_benefit_62=1800.0,
    ss_benefit_fra=2500.0,
    ss_benefit_70=3100.0,
)


@pytest.fixture
def make_participant():
    def _make(kind="federal", **overrides):
        base = FEDERAL_DEFAULTS if kind == "federal" else SPOUSE_DEFAULTS
        return Participant(**{**base, **overrides})
    return _make


@pytest.fixture
def alice(make_participant):
    return make_participant()


@pytest.fixture
def bob(make_participant):
    return make_participant("spouse")


@pytest.fixture
def household(alice, bob):
    return Household(participants=(alice, bob))


@pytest.fixture
def assumptions():
    return Assumptions()


@pytest.fixture
def scenario():
    return Scenario(name="baseline", participant_scenarios={
        "Alice": ParticipantScenario("Alice", retirement_date=dt.date(2026, 1, 1), ss_start_age=62),
        "Bob": ParticipantScenario("Bob", retirement_date=dt.date(2027, 1, 1), ss_start_age=67),
    })
