"""
projection.py
------------------
Year-by-year household projection. Each participant moves through
working -> retired -> deceased while the loop tracks salary, pension, Social
Security, TSP and taxable balances; household taxes, IRMAA and healthcare are
then computed from the year's totals.
"""

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

from dateutil.relativedelta import relativedelta

from healthcare import HealthcareCostProvider, HealthcareRates
from household import (
    AnnualCashFlow,
    MARRIED_FILING_JOINTLY,
    ParticipantScenario,
    SINGLE,
    death_year_index,
    validate_configuration,
)
from medicare import MedicareProvider, is_medicare_eligible
from retirement_model import (
    age_in_months,
    apply_fers_cola,
    calculate_age,
    calculate_fers_pension,
    calculate_fers_supplement,
    calculate_rmd,
    calculate_service_years,
    calculate_tsp_matching,
    compute_withdrawal,
    fers_supplement_earnings_reduction,
    full_retirement_age,
    is_srs_eligible,
    minimum_retirement_age,
    rmd_age,
    self_employment_tax,
    social_security_monthly_benefit,
    ss_months_paid_in_year,
    survivor_ss_benefit,
    work_fraction,
)
from tax_rules import TaxableIncome, TaxEngine
from withdrawal_sequencing import create_strategy, create_strategy_context, create_withdrawal_sources

logger = logging.getLogger(__name__)

PAY_PERIODS_PER_YEAR = 26


@dataclass
class ParticipantState:
    """Mutable per-run state for one participant; never shared between runs."""
    participant: object
    scenario: ParticipantScenario
    salary: float
    retirement_year: Optional[int]
    retirement_date: Optional[dt.date]
    death_year: Optional[int]
    tsp_traditional: float
    tsp_roth: float
    taxable_balance: float
    taxable_basis: float
    fehb_premium: float
    retired: bool = False
    retired_index: Optional[int] = None
    deceased: bool = False
    pension_annual: float = 0.0
    survivor_annuity: float = 0.0
    survivor_pension_income: float = 0.0
    survivor_pension_year: Optional[int] = None
    external_pension_annual: float = 0.0
    external_pension_year: Optional[int] = None
    srs_annual: float = 0.0
    ss_started: bool = False
    ss_annual: float = 0.0
    ss_start_year: Optional[int] = None
    survivor_ss_base: float = 0.0
    survivor_ss_year: Optional[int] = None
    withdrawal_base: float = 0.0

    @property
    def name(self):
        return self.participant.name

    @property
    def tsp_total(self):
        return self.tsp_traditional + self.tsp_roth


def _resolve_retirement(participant, ps, base_year):
    if ps.retirement_date is not None:
        return max(0, ps.retirement_date.year - base_year), ps.retirement_date
    end = participant.employment_end_date
    if end is not None and end.year >= base_year:
        return end.year - base_year, end
    return None, None


def _build_states(household, scenario, assumptions):
    base_year = assumptions.projection_base_year
    states = []
    for p in household.sorted_participants():
        ps = scenario.participant_scenarios.get(p.name) or ParticipantScenario(participant_name=p.name)
        retirement_year, retirement_date = _resolve_retirement(p, ps, base_year)
        death_year = death_year_index(p, ps.mortality, base_year)
        if death_year is not None and not 0 <= death_year < assumptions.projection_years:
            death_year = None
        fehb = p.fehb_premium_per_pay_period * PAY_PERIODS_PER_YEAR if p.is_primary_fehb_holder else 0.0
        states.append(ParticipantState(
            participant=p,
            scenario=ps,
            salary=p.current_salary,
            retirement_year=retirement_year,
            retirement_date=retirement_date,
            death_year=death_year,
            tsp_traditional=p.tsp_balance_traditional,
            tsp_roth=p.tsp_balance_roth,
            taxable_balance=p.taxable_account_balance,
            taxable_basis=p.taxable_account_basis,
            fehb_premium=fehb,
        ))
    return states


def _resolve_deaths(states, k, mortality, assumptions):
    """Zero out participants whose death fires this year and hand their assets to the living."""
    dying = [s for s in states if not s.deceased and s.death_year == k]
    if not dying:
        return
    for s in dying:
        s.deceased = True
    living = [s for s in states if not s.deceased]
    for d in dying:
        logger.info("%s dies in %d", d.name, assumptions.projection_base_year + k)
        if living:
            share = 1.0 / len(living)
            if mortality.tsp_spousal_transfer == "merge":
                for s in living:
                    s.tsp_traditional += d.tsp_traditional * share
                    s.tsp_roth += d.tsp_roth * share
                    s.taxable_balance += d.taxable_balance * share
                    s.taxable_basis += d.taxable_basis * share
            annuity = d.survivor_annuity if d.retired else 0.0
            ext = d.participant.external_pension
            if ext is not None and d.external_pension_annual > 0:
                annuity += d.external_pension_annual * ext.survivor_benefit
            if annuity > 0:
                for s in living:
                    s.survivor_pension_income += annuity * share
                    s.survivor_pension_year = k
            if len(living) == 1:
                deceased_ss = d.ss_annual if d.ss_started else d.participant.ss_benefit_fra * 12
                survivor = living[0]
                if deceased_ss > survivor.survivor_ss_base:
                    survivor.survivor_ss_base = deceased_ss
                    survivor.survivor_ss_year = k
        d.tsp_traditional = d.tsp_roth = 0.0
        d.taxable_balance = d.taxable_basis = 0.0
        d.survivor_annuity = 0.0


def _filing_status(household, states, k, mortality, single_since):
    if len(states) <= 1:
        return SINGLE
    living = sum(1 for s in states if not s.deceased)
    if living >= 2 or single_since is None:
        return household.filing_status
    if mortality.filing_status_switch == "next_year" and k == single_since:
        return household.filing_status
    return SINGLE


def project(household, scenario, assumptions, *, tax_engine=None, rmd_provider=None, medicare=None,
            healthcare=None, sequencing_factory=None, validate=True):
    """
    Project the household over `assumptions.projection_years` calendar years.
    Returns a list of AnnualCashFlow, one per year. Raises ValueError on
    invalid configuration; a household with no participants yields [].
    `validate=False` skips validation for callers that perturb an already
    validated configuration (Monte Carlo draws may carry a negative COLA).
    """
    if not household.participants:
        return []
    errors = validate_configuration(household, scenario, assumptions) if validate else []
    if errors:
        raise ValueError("; ".join(errors))

    tax_engine = tax_engine or TaxEngine(assumptions.tax_rules)
    rmd_provider = rmd_provider or calculate_rmd
    medicare = medicare or MedicareProvider()
    healthcare = healthcare or HealthcareCostProvider(
        HealthcareRates(base_year=assumptions.projection_base_year,
                        fehb_inflation=assumptions.fehb_premium_inflation),
        medicare)
    sequencing_factory = sequencing_factory or create_strategy
    sequencing = scenario.withdrawal_sequencing
    mortality = scenario.mortality

    cola = assumptions.cola_general_rate
    states = _build_states(household, scenario, assumptions)
    multi_person = len(states) > 1
    single_since = None
    projection = []

    for k in range(assumptions.projection_years):
        year = assumptions.projection_base_year + k
        year_start = dt.date(year, 1, 1)
        year_end = dt.date(year, 12, 31)
        cf = AnnualCashFlow(year_index=k, year=year, date=year_start)

        _resolve_deaths(states, k, mortality, assumptions)
        living = [s for s in states if not s.deceased]
        if multi_person and len(living) <= 1 and single_since is None:
            single_since = k
        sole_survivor = multi_person and len(living) == 1
        spending_factor = mortality.survivor_spending_factor if sole_survivor else 1.0
        filing_status = _filing_status(household, states, k, mortality, single_since)

        wages_by_person = []
        se_income = 0.0
        se_tax = 0.0
        trad_withdrawn = 0.0
        cap_gains = 0.0
        conversions = 0.0
        rmd_household = 0.0
        rmd_year = False

        for s in states:
            p = s.participant
            ps = s.scenario
            age = calculate_age(p.birth_date, year_start)
            age_end = calculate_age(p.birth_date, year_end)
            cf.ages[s.name] = age
            cf.is_deceased[s.name] = s.deceased
            if s.deceased:
                for record in (cf.salaries, cf.pensions, cf.survivor_pensions, cf.ss_benefits,
                               cf.fers_supplements, cf.fers_supplement_reductions, cf.tsp_withdrawals,
                               cf.tsp_contributions, cf.employee_tsp_contributions, cf.tsp_balances,
                               cf.tsp_balances_traditional, cf.tsp_balances_roth, cf.taxable_balances,
                               cf.withdrawals_taxable, cf.withdrawals_traditional, cf.withdrawals_roth,
                               cf.roth_conversions, cf.part_time_salaries):
                    record[s.name] = 0.0
                cf.is_part_time[s.name] = False
                cf.is_retired[s.name] = s.retired
                continue

            if k > 0 and s.fehb_premium > 0:
                s.fehb_premium *= 1 + assumptions.fehb_premium_inflation

            # Salary and work fraction
            if k > 0 and s.salary > 0 and (s.retirement_year is None or k <= s.retirement_year):
                s.salary *= 1 + cola
            if s.retirement_year is None or k < s.retirement_year:
                wf = 1.0
            elif k == s.retirement_year:
                wf = work_fraction(s.retirement_date, year)
            else:
                wf = 0.0
            salary_for_year = s.salary * wf

            # Part-time work
            pt_salary = pt_w2 = pt_1099 = pt_contribution = 0.0
            for period in ps.part_time_work:
                fraction = period.overlap_fraction(year)
                if fraction <= 0:
                    continue
                earned = period.annual_salary * fraction
                pt_salary += earned
                pt_contribution += earned * period.tsp_contribution_percent
                if period.work_type == "1099":
                    pt_1099 += earned
                else:
                    pt_w2 += earned
            srs_reduction = fers_supplement_earnings_reduction(pt_salary, age)

            # Retirement transition
            if s.retirement_year is not None and k >= s.retirement_year and not s.retired:
                s.retired = True
                s.retired_index = k
                if s.retirement_date is None:
                    s.retirement_date = dt.date(assumptions.projection_base_year + s.retirement_year, 1, 1)
                s.withdrawal_base = s.tsp_total
                if p.is_federal and p.high3_salary > 0 and p.hire_date is not None:
                    service = calculate_service_years(p.hire_date, s.retirement_date, p.sick_leave_hours)
                    age_at_retirement = calculate_age(p.birth_date, s.retirement_date)
                    s.pension_annual, s.survivor_annuity = calculate_fers_pension(
                        p.high3_salary, service, age_at_retirement, p.survivor_benefit_election_percent)
                    mra_months = round(minimum_retirement_age(p.birth_date.year) * 12)
                    if age_at_retirement < 62 and is_srs_eligible(
                            age_in_months(p.birth_date, s.retirement_date), mra_months, service):
                        s.srs_annual = calculate_fers_supplement(service, p.ss_benefit_62, age_at_retirement)
                logger.info("%s retires in %d (pension %.2f, SRS %.2f)", s.name, year, s.pension_annual, s.srs_annual)
            retired_fraction = 1.0 - work_fraction(s.retirement_date, year) if s.retired else 0.0

            # Contributions
            employee = auto = match = 0.0
            in_retirement_view = (assumptions.tsp_contribution_policy == "zero_in_retirement_view"
                                  and s.retirement_year is not None and k >= s.retirement_year)
            if p.is_federal and salary_for_year > 0 and not in_retirement_view:
                employee = salary_for_year * p.tsp_contribution_percent
                auto, match = calculate_tsp_matching(
                    salary_for_year, p.tsp_contribution_percent, assumptions.employer_contribution_percent,
                    assumptions.match_threshold_percent, assumptions.agency_automatic_percent)
            s.tsp_traditional += employee + auto + match + pt_contribution
            cf.employee_tsp_contributions[s.name] = employee + pt_contribution
            cf.tsp_contributions[s.name] = employee + auto + match + pt_contribution

            # Pension (FERS or external)
            pension = 0.0
            if s.retired and s.pension_annual > 0:
                if k > s.retired_index:
                    s.pension_annual = apply_fers_cola(s.pension_annual, cola, age)
                    s.survivor_annuity = apply_fers_cola(s.survivor_annuity, cola, age)
                pension = s.pension_annual * (retired_fraction if k == s.retired_index else 1.0)
            ext = p.external_pension
            if ext is not None and s.retired and age_end >= ext.start_age:
                if s.external_pension_year is None:
                    s.external_pension_annual = ext.monthly_benefit * 12
                    s.external_pension_year = k
                elif k > s.external_pension_year:
                    s.external_pension_annual *= 1 + ext.cola_adjustment
                pension += s.external_pension_annual
            survivor_pension = 0.0
            if s.survivor_pension_income > 0:
                if k > s.survivor_pension_year:
                    s.survivor_pension_income = apply_fers_cola(s.survivor_pension_income, cola, age)
                survivor_pension = s.survivor_pension_income
            cf.pensions[s.name] = pension * spending_factor
            cf.survivor_pensions[s.name] = survivor_pension * spending_factor

            # Special Retirement Supplement
            srs = 0.0
            if s.retired and s.srs_annual > 0 and age < 62:
                srs = s.srs_annual
                if k == s.retired_index:
                    srs *= retired_fraction
                if age_end >= 62:
                    srs *= p.birth_date.month / 12
                srs = max(0.0, srs - srs_reduction)
            cf.fers_supplements[s.name] = srs
            cf.fers_supplement_reductions[s.name] = srs_reduction

            # Social Security
            fra = full_retirement_age(p.birth_date.year)
            ss = 0.0
            if s.ss_started:
                if k > s.ss_start_year:
                    s.ss_annual *= 1 + cola
                ss = s.ss_annual
            elif age_end >= ps.ss_start_age:
                monthly = social_security_monthly_benefit(
                    ps.ss_start_age, p.ss_benefit_62, p.ss_benefit_fra, p.ss_benefit_70, fra)
                if monthly > 0:
                    s.ss_annual = monthly * 12
                    s.ss_started = True
                    s.ss_start_year = k
                    if age >= ps.ss_start_age:
                        ss = s.ss_annual
                    else:
                        claim_date = p.birth_date + relativedelta(years=ps.ss_start_age)
                        ss = s.ss_annual * ss_months_paid_in_year(claim_date, year) / 12
            if s.survivor_ss_base > 0:
                if k > s.survivor_ss_year:
                    s.survivor_ss_base *= 1 + cola
                ss = survivor_ss_benefit(ss, s.survivor_ss_base, age, fra)
            cf.ss_benefits[s.name] = ss

            # RMD, deferred while still employed
            rmd = 0.0
            if s.retired and age >= rmd_age(p.birth_date.year):
                rmd_year = True
                rmd = rmd_provider(s.tsp_traditional, age, p.birth_date.year)
                rmd_household = max(rmd_household, rmd)

            # Withdrawals
            w_trad = w_roth = w_taxable = 0.0
            if s.retired and (s.tsp_total > 0 or s.taxable_balance > 0):
                available = s.tsp_total + (s.taxable_balance if sequencing is not None else 0.0)
                withdrawal = compute_withdrawal(
                    ps.tsp_withdrawal_strategy, s.tsp_total,
                    years_since_retirement=k - s.retired_index,
                    initial_balance=s.withdrawal_base,
                    inflation_rate=assumptions.inflation_rate,
                    target_monthly=ps.tsp_withdrawal_target_monthly,
                    rate=ps.tsp_withdrawal_rate,
                    rmd_amount=rmd,
                    available=available)
                if k == s.retired_index:
                    withdrawal *= retired_fraction
                withdrawal *= spending_factor
                withdrawal = min(max(withdrawal, min(rmd, s.tsp_traditional)), available)

                if sequencing is not None and withdrawal > 0:
                    sources = create_withdrawal_sources(s.tsp_traditional, s.tsp_roth, s.taxable_balance,
                                                        s.taxable_basis, rmd > 0, rmd)
                    ordinary_so_far = sum(cf.salaries.values()) + sum(cf.pensions.values()) + salary_for_year
                    ctx = create_strategy_context(withdrawal, ordinary_so_far, 0.0, rmd > 0, sequencing,
                                                  filing_status, assumptions.tax_rules)
                    plan = sequencing_factory(sequencing).plan(sources, ctx)
                    w_trad = min(plan.traditional_used, s.tsp_traditional)
                    w_roth = min(plan.roth_used, s.tsp_roth)
                    w_taxable = min(plan.taxable_used, s.taxable_balance)
                    if w_taxable > 0:
                        basis_used = s.taxable_basis * w_taxable / s.taxable_balance
                        cap_gains += w_taxable - basis_used
                        s.taxable_basis -= basis_used
                        s.taxable_balance -= w_taxable
                    for note in plan.notes:
                        logger.debug("%s %d sequencing: %s", s.name, year, note)
                elif s.tsp_total > 0:
                    withdrawal = min(withdrawal, s.tsp_total)
                    w_trad = withdrawal * s.tsp_traditional / s.tsp_total
                    w_roth = withdrawal - w_trad
                s.tsp_traditional = max(0.0, s.tsp_traditional - w_trad)
                s.tsp_roth = max(0.0, s.tsp_roth - w_roth)
            cf.withdrawals_traditional[s.name] = w_trad
            cf.withdrawals_roth[s.name] = w_roth
            cf.withdrawals_taxable[s.name] = w_taxable
            cf.tsp_withdrawals[s.name] = w_trad + w_roth
            trad_withdrawn += w_trad

            # Roth conversions
            converted = 0.0
            for conversion in ps.roth_conversions:
                if conversion.year == year:
                    amount = min(conversion.amount, s.tsp_traditional)
                    s.tsp_traditional -= amount
                    s.tsp_roth += amount
                    converted += amount
            cf.roth_conversions[s.name] = converted
            conversions += converted

            # Growth
            rate = assumptions.tsp_return_post_retirement if s.retired else assumptions.tsp_return_pre_retirement
            s.tsp_traditional = max(0.0, s.tsp_traditional * (1 + rate))
            s.tsp_roth = max(0.0, s.tsp_roth * (1 + rate))
            s.taxable_balance = max(0.0, s.taxable_balance * (1 + rate))

            cf.salaries[s.name] = salary_for_year + pt_salary
            cf.part_time_salaries[s.name] = pt_salary
            cf.is_part_time[s.name] = pt_salary > 0
            cf.is_retired[s.name] = s.retired
            cf.tsp_balances_traditional[s.name] = s.tsp_traditional
            cf.tsp_balances_roth[s.name] = s.tsp_roth
            cf.tsp_balances[s.name] = s.tsp_total
            cf.taxable_balances[s.name] = s.taxable_balance

            wages_by_person.append(salary_for_year + pt_w2)
            se_income += pt_1099
            se_tax += self_employment_tax(pt_1099)

        # Household aggregates
        living_ages = [cf.ages[s.name] for s in living]
        cf.is_rmd_year = rmd_year
        cf.rmd_amount = rmd_household
        cf.total_tsp_contributions = sum(cf.tsp_contributions.values())
        cf.federal_filing_status = filing_status
        cf.filing_status_single = filing_status == SINGLE
        cf.federal_seniors_65_plus = sum(1 for age in living_ages if age >= 65)
        cf.is_retired_household = bool(living) and all(s.retired for s in living)

        pension_income = cf.total_pension() + cf.total_fers_supplement()
        ss_total = cf.total_ss()
        cf.capital_gains = cap_gains
        cf.magi = (sum(wages_by_person) + se_income + pension_income + trad_withdrawn
                   + conversions + cap_gains + ss_total * 0.85)

        married = filing_status == MARRIED_FILING_JOINTLY
        cf.is_medicare_eligible = any(is_medicare_eligible(age) for age in living_ages)
        risk = medicare.irmaa_risk_status(cf.magi, married)
        cf.irmaa_risk_status = risk.status
        cf.irmaa_level = risk.tier
        cf.irmaa_surcharge = risk.surcharge
        cf.irmaa_distance_to_next = risk.distance_to_next

        fehb_premiums = {s.name: s.fehb_premium for s in living if s.fehb_premium > 0}
        cf.healthcare = healthcare.cost_breakdown(
            [s.participant for s in living], cf.ages, year, cf.magi, filing_status, fehb_premiums)
        cf.fehb_premium = cf.healthcare.fehb_premium
        cf.medicare_premium = cf.healthcare.medicare_part_b + cf.healthcare.medicare_part_d

        income = TaxableIncome(
            wages=sum(wages_by_person),
            self_employment=se_income,
            pension=pension_income,
            traditional_withdrawals=trad_withdrawn,
            roth_conversions=conversions,
            capital_gains=cap_gains,
            social_security=ss_total,
        )
        federal, state, local, fica = tax_engine.compute_taxes(
            income, filing_status, living_ages, wages_by_person, se_income)
        cf.federal_tax, cf.state_tax, cf.local_tax, cf.fica_tax = federal, state, local, fica
        cf.federal_taxable_income, cf.federal_standard_deduction = tax_engine.federal_taxable_income(
            income, filing_status, living_ages)
        cf.self_employment_tax = se_tax

        cf.total_gross_income = (cf.total_salary() + pension_income + ss_total
                                 + cf.total_tsp_withdrawal() + cf.total_taxable_withdrawal())
        cf.net_income = (cf.total_gross_income - cf.total_taxes()
                         - sum(cf.employee_tsp_contributions.values()) - cf.healthcare.total)

        logger.debug("year %d: living=%s filing=%s net=%.2f", year, [s.name for s in living],
                     filing_status, cf.net_income)
        projection.append(cf)

    return projection
