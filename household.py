"""
household.py
------------------
Input and output records for the household projection: participants, their
scenario overrides, global assumptions, and the per-year cash flow record.
Also holds configuration validation (returns an error list, callers raise).
"""

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

MARRIED_FILING_JOINTLY = "married_filing_jointly"
SINGLE = "single"

WITHDRAWAL_STRATEGIES = ("4_percent_rule", "need_based", "variable_percentage")
SEQUENCING_STRATEGIES = ("standard", "tax_efficient", "bracket_fill", "custom")
SEQUENCING_SOURCES = ("taxable", "traditional", "roth")
CONTRIBUTION_POLICIES = ("continue_until_retirement", "zero_in_retirement_view")
FEDERAL_BRACKET_RATES = (10, 12, 22, 24, 32, 35, 37)


@dataclass(frozen=True)
class ExternalPension:
    """Non-federal pension paid from `start_age`."""
    monthly_benefit: float
    start_age: int
    cola_adjustment: float = 0.0
    survivor_benefit: float = 0.0


@dataclass(frozen=True)
class HealthcareConfig:
    pre_medicare_coverage: str = "fehb"  # fehb, retiree_plan, marketplace, cobra
    pre_medicare_monthly_premium: float = 0.0
    medicare_part_b: bool = True
    medicare_part_d: bool = True
    part_d_plan: str = "standard"
    medigap_plan: str = "G"
    drop_fehb_at_65: bool = True


@dataclass(frozen=True)
class Participant:
    """
    Base facts about one member of the household. Social Security amounts are
    monthly benefits at 62, full retirement age and 70. `None` dates mean the
    fact does not apply (e.g. no hire date for a non-federal spouse).
    """
    name: str
    birth_date: dt.date
    is_federal: bool = False
    hire_date: Optional[dt.date] = None
    current_salary: float = 0.0
    high3_salary: float = 0.0
    tsp_balance_traditional: float = 0.0
    tsp_balance_roth: float = 0.0
    tsp_contribution_percent: float = 0.0
    ss_benefit_62: float = 0.0
    ss_benefit_fra: float = 0.0
    ss_benefit_70: float = 0.0
    is_primary_fehb_holder: bool = False
    fehb_premium_per_pay_period: float = 0.0
    survivor_benefit_election_percent: float = 0.0
    sick_leave_hours: float = 0.0
    employment_end_date: Optional[dt.date] = None
    external_pension: Optional[ExternalPension] = None
    taxable_account_balance: float = 0.0
    taxable_account_basis: float = 0.0
    healthcare: Optional[HealthcareConfig] = None

    def age_at(self, date):
        return date.year - self.birth_date.year - ((date.month, date.day) < (self.birth_date.month, self.birth_date.day))

    @property
    def total_tsp_balance(self):
        return self.tsp_balance_traditional + self.tsp_balance_roth


@dataclass(frozen=True)
class PartTimeWorkPeriod:
    start_date: dt.date
    end_date: dt.date
    annual_salary: float
    tsp_contribution_percent: float = 0.0
    work_type: str = "w2"  # w2 or 1099

    def overlap_fraction(self, year):
        """Share of calendar `year` covered by this period (0 when no overlap)."""
        year_start = dt.date(year, 1, 1)
        year_end = dt.date(year, 12, 31)
        start = max(self.start_date, year_start)
        end = min(self.end_date, year_end)
        if end < start:
            return 0.0
        days_in_year = (dt.date(year + 1, 1, 1) - year_start).days
        return min(1.0, ((end - start).days + 1) / days_in_year)


@dataclass(frozen=True)
class RothConversion:
    year: int
    amount: float


@dataclass(frozen=True)
class MortalitySpec:
    """Death trigger: an absolute date or an age, never both."""
    death_date: Optional[dt.date] = None
    death_age: Optional[int] = None


@dataclass(frozen=True)
class ParticipantScenario:
    """
    Per-participant overrides. Defaults when absent:
      retirement_date None -> fall back to the participant's employment end
        date, otherwise the participant keeps working for the whole projection
      ss_start_age -> 67 (values outside 62..70 are rejected by validation)
      tsp_withdrawal_target_monthly None -> need_based withdraws nothing
      tsp_withdrawal_rate None -> variable_percentage withdraws nothing
      mortality None -> the participant never dies in the projection
    """
    participant_name: str
    retirement_date: Optional[dt.date] = None
    ss_start_age: int = 67
    tsp_withdrawal_strategy: str = "4_percent_rule"
    tsp_withdrawal_target_monthly: Optional[float] = None
    tsp_withdrawal_rate: Optional[float] = None
    roth_conversions: Tuple[RothConversion, ...] = ()
    part_time_work: Tuple[PartTimeWorkPeriod, ...] = ()
    mortality: Optional[MortalitySpec] = None


@dataclass(frozen=True)
class MortalityAssumptions:
    survivor_spending_factor: float = 1.0
    tsp_spousal_transfer: str = "merge"  # merge or separate
    filing_status_switch: str = "next_year"  # next_year or immediate


@dataclass(frozen=True)
class WithdrawalSequencingConfig:
    strategy: str = "standard"
    custom_sequence: Tuple[str, ...] = ()
    target_bracket: Optional[int] = None
    bracket_buffer: float = 0.0


@dataclass(frozen=True)
class Scenario:
    name: str
    participant_scenarios: Dict[str, ParticipantScenario] = field(default_factory=dict)
    mortality: MortalityAssumptions = field(default_factory=MortalityAssumptions)
    withdrawal_sequencing: Optional[WithdrawalSequencingConfig] = None


@dataclass(frozen=True)
class Household:
    participants: Tuple[Participant, ...] = ()
    filing_status: str = MARRIED_FILING_JOINTLY

    def participant(self, name):
        for p in self.participants:
            if p.name == name:
                return p
        return None

    def sorted_participants(self):
        return sorted(self.participants, key=lambda p: p.name)


# 2025 federal brackets: (lower, upper, rate)
MFJ_BRACKETS_2025 = (
    (0, 23200, 0.10),
    (23200, 94300, 0.12),
    (94300, 201050, 0.22),
    (201050, 383900, 0.24),
    (383900, 487450, 0.32),
    (487450, 731200, 0.35),
    (731200, float('inf'), 0.37),
)
SINGLE_BRACKETS_2025 = tuple((lo / 2, hi / 2, rate) for lo, hi, rate in MFJ_BRACKETS_2025)


@dataclass(frozen=True)
class TaxRules:
    brackets_mfj: Tuple[Tuple[float, float, float], ...] = MFJ_BRACKETS_2025
    brackets_single: Tuple[Tuple[float, float, float], ...] = SINGLE_BRACKETS_2025
    standard_deduction_mfj: float = 30000.0
    standard_deduction_single: float = 15000.0
    additional_deduction_65: float = 1550.0
    state_rate: float = 0.0307
    local_eit_rate: float = 0.01
    ss_wage_base: float = 176100.0
    ss_rate: float = 0.062
    medicare_rate: float = 0.0145
    additional_medicare_rate: float = 0.009
    additional_medicare_threshold_mfj: float = 250000.0
    additional_medicare_threshold_single: float = 200000.0


@dataclass(frozen=True)
class Assumptions:
    inflation_rate: float = 0.025
    fehb_premium_inflation: float = 0.05
    tsp_return_pre_retirement: float = 0.06
    tsp_return_post_retirement: float = 0.05
    cola_general_rate: float = 0.025
    projection_years: int = 30
    projection_base_year: int = 2025
    tsp_contribution_policy: str = "continue_until_retirement"
    employer_contribution_percent: float = 0.05
    match_threshold_percent: float = 0.05
    agency_automatic_percent: float = 0.01
    tax_rules: TaxRules = field(default_factory=TaxRules)


@dataclass
class HealthcareCostBreakdown:
    fehb_premium: float = 0.0
    marketplace_premium: float = 0.0
    medicare_part_b: float = 0.0
    medicare_part_d: float = 0.0
    medigap: float = 0.0

    @property
    def total(self):
        return self.fehb_premium + self.marketplace_premium + self.medicare_part_b + self.medicare_part_d + self.medigap

    def add(self, other):
        self.fehb_premium += other.fehb_premium
        self.marketplace_premium += other.marketplace_premium
        self.medicare_part_b += other.medicare_part_b
        self.medicare_part_d += other.medicare_part_d
        self.medigap += other.medigap


@dataclass
class AnnualCashFlow:
    """
    One projection year. Per-participant dicts are filled in sorted
    participant-name order so that iteration over them is reproducible.
    """
    year_index: int
    year: int
    date: dt.date

    ages: Dict[str, int] = field(default_factory=dict)
    salaries: Dict[str, float] = field(default_factory=dict)
    pensions: Dict[str, float] = field(default_factory=dict)
    survivor_pensions: Dict[str, float] = field(default_factory=dict)
    ss_benefits: Dict[str, float] = field(default_factory=dict)
    fers_supplements: Dict[str, float] = field(default_factory=dict)
    fers_supplement_reductions: Dict[str, float] = field(default_factory=dict)
    tsp_withdrawals: Dict[str, float] = field(default_factory=dict)
    tsp_contributions: Dict[str, float] = field(default_factory=dict)
    employee_tsp_contributions: Dict[str, float] = field(default_factory=dict)
    tsp_balances: Dict[str, float] = field(default_factory=dict)
    tsp_balances_traditional: Dict[str, float] = field(default_factory=dict)
    tsp_balances_roth: Dict[str, float] = field(default_factory=dict)
    taxable_balances: Dict[str, float] = field(default_factory=dict)
    withdrawals_taxable: Dict[str, float] = field(default_factory=dict)
    withdrawals_traditional: Dict[str, float] = field(default_factory=dict)
    withdrawals_roth: Dict[str, float] = field(default_factory=dict)
    roth_conversions: Dict[str, float] = field(default_factory=dict)
    part_time_salaries: Dict[str, float] = field(default_factory=dict)
    is_deceased: Dict[str, bool] = field(default_factory=dict)
    is_part_time: Dict[str, bool] = field(default_factory=dict)
    is_retired: Dict[str, bool] = field(default_factory=dict)

    total_gross_income: float = 0.0
    federal_tax: float = 0.0
    federal_taxable_income: float = 0.0
    federal_standard_deduction: float = 0.0
    federal_filing_status: str = MARRIED_FILING_JOINTLY
    federal_seniors_65_plus: int = 0
    state_tax: float = 0.0
    local_tax: float = 0.0
    fica_tax: float = 0.0
    self_employment_tax: float = 0.0
    capital_gains: float = 0.0
    total_tsp_contributions: float = 0.0
    fehb_premium: float = 0.0
    medicare_premium: float = 0.0
    healthcare: HealthcareCostBreakdown = field(default_factory=HealthcareCostBreakdown)
    net_income: float = 0.0
    magi: float = 0.0
    is_medicare_eligible: bool = False
    irmaa_risk_status: str = ""
    irmaa_level: str = ""
    irmaa_surcharge: float = 0.0
    irmaa_distance_to_next: float = 0.0
    is_rmd_year: bool = False
    rmd_amount: float = 0.0
    filing_status_single: bool = False
    is_retired_household: bool = False

    def total_salary(self):
        return sum(self.salaries.values())

    def total_pension(self):
        return sum(self.pensions.values()) + sum(self.survivor_pensions.values())

    def total_ss(self):
        return sum(self.ss_benefits.values())

    def total_fers_supplement(self):
        return sum(self.fers_supplements.values())

    def total_tsp_withdrawal(self):
        return sum(self.tsp_withdrawals.values())

    def total_taxable_withdrawal(self):
        return sum(self.withdrawals_taxable.values())

    def total_tsp_balance(self):
        return sum(self.tsp_balances.values())

    def total_taxes(self):
        return self.federal_tax + self.state_tax + self.local_tax + self.fica_tax + self.self_employment_tax

    def is_tsp_depleted(self):
        return self.total_tsp_balance() <= 0

    def as_record(self):
        """Flatten to one dict per year for DataFrame construction."""
        record = {
            "Year": self.year,
            "Date": self.date,
            "Salary": self.total_salary(),
            "Pension": sum(self.pensions.values()),
            "Survivor_Pension": sum(self.survivor_pensions.values()),
            "FERS_Supplement": self.total_fers_supplement(),
            "Social_Security": self.total_ss(),
            "TSP_Withdrawal": self.total_tsp_withdrawal(),
            "Taxable_Withdrawal": self.total_taxable_withdrawal(),
            "Roth_Conversion": sum(self.roth_conversions.values()),
            "Total_Gross_Income": self.total_gross_income,
            "Federal_Tax": self.federal_tax,
            "State_Tax": self.state_tax,
            "Local_Tax": self.local_tax,
            "FICA_Tax": self.fica_tax + self.self_employment_tax,
            "TSP_Contributions": self.total_tsp_contributions,
            "FEHB": self.fehb_premium,
            "Medicare": self.medicare_premium,
            "Healthcare_Total": self.healthcare.total,
            "Net_Income": self.net_income,
            "MAGI": self.magi,
            "IRMAA_Status": self.irmaa_risk_status,
            "IRMAA_Surcharge": self.irmaa_surcharge,
            "RMD_Amount": self.rmd_amount,
            "Filing_Status": self.federal_filing_status,
            "TSP_Balance": self.total_tsp_balance(),
        }
        for name, balance in self.tsp_balances.items():
            record[f"TSP_Balance_{name}"] = balance
        for name, age in self.ages.items():
            record[f"Age_{name}"] = age
        for name, deceased in self.is_deceased.items():
            record[f"Deceased_{name}"] = deceased
        return record


# --- Validation ---
def _validate_participant(p, errors):
    if not p.name:
        errors.append("Participant name is required.")
    if not isinstance(p.birth_date, dt.date):
        errors.append(f"{p.name or '?'}: birth date is required.")
        return
    for label, amount in (("62", p.ss_benefit_62), ("FRA", p.ss_benefit_fra), ("70", p.ss_benefit_70)):
        if amount < 0:
            errors.append(f"{p.name}: Social Security benefit at {label} cannot be negative.")
    if p.tsp_balance_traditional < 0 or p.tsp_balance_roth < 0:
        errors.append(f"{p.name}: TSP balances cannot be negative.")
    if p.is_federal:
        if p.hire_date is None:
            errors.append(f"{p.name}: hire date is required for federal employees.")
        elif p.birth_date >= p.hire_date:
            errors.append(f"{p.name}: birth date must be before hire date.")
        if p.high3_salary <= 0:
            errors.append(f"{p.name}: high-3 salary must be positive for federal employees.")
        if p.current_salary < 0:
            errors.append(f"{p.name}: current salary cannot be negative.")
        if not 0 <= p.tsp_contribution_percent <= 1:
            errors.append(f"{p.name}: TSP contribution percent must be between 0 and 1.")
        if not 0 <= p.survivor_benefit_election_percent <= 1:
            errors.append(f"{p.name}: survivor benefit election must be between 0 and 1.")
    if p.is_primary_fehb_holder and p.fehb_premium_per_pay_period <= 0:
        errors.append(f"{p.name}: primary FEHB holder needs a premium per pay period.")
    if p.sick_leave_hours < 0:
        errors.append(f"{p.name}: sick leave hours cannot be negative.")
    ext = p.external_pension
    if ext is not None:
        if ext.monthly_benefit <= 0:
            errors.append(f"{p.name}: external pension monthly benefit must be positive.")
        if not 50 <= ext.start_age <= 75:
            errors.append(f"{p.name}: external pension start age must be between 50 and 75.")
        if ext.cola_adjustment < 0:
            errors.append(f"{p.name}: external pension COLA cannot be negative.")
        if not 0 <= ext.survivor_benefit <= 1:
            errors.append(f"{p.name}: external pension survivor benefit must be between 0 and 1.")
    if p.taxable_account_balance < 0 or p.taxable_account_basis < 0:
        errors.append(f"{p.name}: taxable account balance and basis cannot be negative.")
    elif p.taxable_account_basis > p.taxable_account_balance:
        errors.append(f"{p.name}: taxable account basis cannot exceed balance.")


def _validate_participant_scenario(ps, participant, errors):
    name = ps.participant_name
    if participant is None:
        errors.append(f"Scenario references unknown participant '{name}'.")
        return
    if ps.retirement_date is not None and participant.hire_date is not None and ps.retirement_date < participant.hire_date:
        errors.append(f"{name}: retirement date ({ps.retirement_date:%Y-%m-%d}) cannot be before hire date ({participant.hire_date:%Y-%m-%d}).")
    if not isinstance(ps.ss_start_age, int) or not 62 <= ps.ss_start_age <= 70:
        errors.append(f"{name}: Social Security start age should be between 62 and 70.")
    if ps.tsp_withdrawal_strategy not in WITHDRAWAL_STRATEGIES:
        errors.append(f"{name}: unknown TSP withdrawal strategy '{ps.tsp_withdrawal_strategy}'.")
    elif ps.tsp_withdrawal_strategy == "need_based":
        if ps.tsp_withdrawal_target_monthly is None or ps.tsp_withdrawal_target_monthly <= 0:
            errors.append(f"{name}: need_based withdrawals require a positive monthly target.")
    elif ps.tsp_withdrawal_strategy == "variable_percentage":
        if ps.tsp_withdrawal_rate is None or not 0 < ps.tsp_withdrawal_rate <= 0.20:
            errors.append(f"{name}: variable_percentage withdrawals require a rate between 0 and 0.20.")
    if ps.mortality is not None:
        if ps.mortality.death_date is not None and ps.mortality.death_age is not None:
            errors.append(f"{name}: specify either death date or death age, not both.")
        if ps.mortality.death_age is not None and ps.mortality.death_age <= 0:
            errors.append(f"{name}: death age must be positive.")
    for conversion in ps.roth_conversions:
        if conversion.amount < 0:
            errors.append(f"{name}: Roth conversion amount for {conversion.year} cannot be negative.")
    periods = sorted(ps.part_time_work, key=lambda period: period.start_date)
    for period in periods:
        if period.end_date <= period.start_date:
            errors.append(f"{name}: part-time period must end after it starts.")
        if period.annual_salary <= 0:
            errors.append(f"{name}: part-time salary must be positive.")
        if period.work_type not in ("w2", "1099"):
            errors.append(f"{name}: part-time work type must be 'w2' or '1099'.")
        if not 0 <= period.tsp_contribution_percent <= 1:
            errors.append(f"{name}: part-time TSP contribution percent must be between 0 and 1.")
    for current, following in zip(periods, periods[1:]):
        if current.end_date >= following.start_date:
            errors.append(f"{name}: part-time work periods cannot overlap.")


def validate_configuration(household, scenario, assumptions):
    """Validate household, scenario and assumptions together. Returns error list."""
    errors = []
    names = [p.name for p in household.participants]
    if len(set(names)) != len(names):
        errors.append("Participant names must be unique.")
    fehb_holders = [p.name for p in household.participants if p.is_primary_fehb_holder]
    if len(fehb_holders) > 1:
        errors.append("Only one participant can be the primary FEHB holder.")
    if household.filing_status not in (MARRIED_FILING_JOINTLY, SINGLE):
        errors.append(f"Unknown filing status '{household.filing_status}'.")
    for p in household.participants:
        _validate_participant(p, errors)

    if not scenario.name:
        errors.append("Scenario name is required.")
    for key, ps in scenario.participant_scenarios.items():
        if key != ps.participant_name:
            errors.append(f"Participant scenario key '{key}' does not match '{ps.participant_name}'.")
        _validate_participant_scenario(ps, household.participant(ps.participant_name), errors)

    mortality = scenario.mortality
    if not 0 <= mortality.survivor_spending_factor <= 1:
        errors.append("Survivor spending factor must be between 0 and 1.")
    if mortality.tsp_spousal_transfer not in ("merge", "separate"):
        errors.append("TSP spousal transfer must be 'merge' or 'separate'.")
    if mortality.filing_status_switch not in ("next_year", "immediate"):
        errors.append("Filing status switch must be 'next_year' or 'immediate'.")

    seq = scenario.withdrawal_sequencing
    if seq is not None:
        if seq.strategy not in SEQUENCING_STRATEGIES:
            errors.append(f"Unknown withdrawal sequencing strategy '{seq.strategy}'.")
        if seq.strategy == "custom":
            if not seq.custom_sequence:
                errors.append("Custom withdrawal sequencing needs a source order.")
            if len(set(seq.custom_sequence)) != len(seq.custom_sequence):
                errors.append("Custom withdrawal sequence contains duplicate sources.")
            for source in seq.custom_sequence:
                if source not in SEQUENCING_SOURCES:
                    errors.append(f"Invalid withdrawal source '{source}'.")
        if seq.target_bracket is not None and seq.target_bracket not in FEDERAL_BRACKET_RATES:
            errors.append(f"Target bracket {seq.target_bracket} is not a federal bracket rate.")
        if seq.bracket_buffer < 0:
            errors.append("Bracket buffer cannot be negative.")

    if not -0.10 <= assumptions.inflation_rate <= 0.20:
        errors.append(f"Inflation rate must be between -10% and 20%, got {assumptions.inflation_rate * 100:.2f}%.")
    if assumptions.fehb_premium_inflation < 0:
        errors.append("FEHB premium inflation cannot be negative.")
    if assumptions.tsp_return_pre_retirement < -1 or assumptions.tsp_return_post_retirement < -1:
        errors.append("TSP returns cannot be below -100%.")
    if assumptions.cola_general_rate < 0:
        errors.append("COLA cannot be negative.")
    if not isinstance(assumptions.projection_years, int) or not 1 <= assumptions.projection_years <= 50:
        errors.append("Projection years must be between 1 and 50.")
    if assumptions.tsp_contribution_policy not in CONTRIBUTION_POLICIES:
        errors.append(f"Unknown TSP contribution policy '{assumptions.tsp_contribution_policy}'.")
    return errors


def death_year_index(participant, mortality, base_year):
    """Year index at which a mortality setting fires, or None."""
    if mortality is None:
        return None
    if mortality.death_date is not None:
        return mortality.death_date.year - base_year
    if mortality.death_age is not None:
        return (participant.birth_date + relativedelta(years=mortality.death_age)).year - base_year
    return None
