"""
retirement_model.py
------------------
Benefit rules for one participant and one year: service credit, FERS pension and
COLA tiering, the Special Retirement Supplement, Social Security claiming and
survivor benefits, TSP matching, RMDs and the withdrawal strategies.
"""

import calendar
import datetime as dt
import enum
import logging

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

SICK_LEAVE_HOURS_PER_MONTH = 174
SRS_EARNINGS_EXEMPT_AMOUNT = 23400.0
SE_EARNINGS_FACTOR = 0.9235
SE_TAX_RATE = 0.153
SURVIVOR_ELECTIONS = (0.0, 0.25, 0.50)

# Historical average TSP fund returns
TSP_FUND_RETURNS = {
    "G": 0.025,  # Very stable, low risk
    "F": 0.035,  # Fixed income, medium-low risk
    "C": 0.07,   # Tracks S&P 500, medium-high risk
    "S": 0.08,   # Small cap index, high risk
    "I": 0.065   # International stocks, high risk
}

# IRS Uniform Lifetime Table
RMD_DISTRIBUTION_PERIODS = {
    72: 27.4, 73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9, 78: 22.0,
    79: 21.1, 80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7, 84: 16.8, 85: 16.0,
    86: 15.2, 87: 14.4, 88: 13.7, 89: 12.9, 90: 12.2, 91: 11.5, 92: 10.8,
    93: 10.1, 94: 9.5, 95: 8.9, 96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8, 100: 6.4
}
RMD_DIVISOR_OVER_100 = 6.0


def calculate_age(birthdate, target_date):
    """Calculate age at a specific date"""
    age = target_date.year - birthdate.year - ((target_date.month, target_date.day) < (birthdate.month, birthdate.day))
    return age


def age_in_months(birthdate, target_date):
    delta = relativedelta(target_date, birthdate)
    return delta.years * 12 + delta.months


def calculate_service_years(hire_date, end_date, sick_leave_hours=0):
    """Calculate years of service including sick leave credit (174 hours = 1 month)"""
    if end_date <= hire_date:
        service_years = 0.0
    else:
        service_years = round((end_date - hire_date).days / 365.25, 4)
    sick_leave_months = sick_leave_hours / SICK_LEAVE_HOURS_PER_MONTH
    return service_years + sick_leave_months / 12


def full_retirement_age(birth_year):
    """Social Security full retirement age in (fractional) years."""
    if birth_year <= 1937:
        return 65.0
    if birth_year <= 1942:
        return 65 + (birth_year - 1937) * 2 / 12
    if birth_year <= 1954:
        return 66.0
    if birth_year <= 1959:
        return 66 + (birth_year - 1954) * 2 / 12
    return 67.0


def minimum_retirement_age(birth_year):
    """FERS Minimum Retirement Age in (fractional) years."""
    if birth_year <= 1947:
        return 55.0
    if birth_year <= 1952:
        return 55 + (birth_year - 1947) * 2 / 12
    if birth_year <= 1964:
        return 56.0
    if birth_year <= 1969:
        return 56 + (birth_year - 1964) * 2 / 12
    return 57.0


def work_fraction(retirement_date, year):
    """
    Fraction of calendar `year` worked before `retirement_date`.
    1.0 before the retirement year, 0.0 after it.
    """
    if retirement_date is None or year < retirement_date.year:
        return 1.0
    if year > retirement_date.year:
        return 0.0
    days_in_year = 366 if calendar.isleap(year) else 365
    days_worked = (retirement_date - dt.date(year, 1, 1)).days
    return min(1.0, max(0.0, days_worked / days_in_year))


def snap_survivor_election(election):
    """Snap a requested survivor election to the nearest of 0%, 25%, 50%."""
    if election is None or election <= 0:
        return 0.0
    best = SURVIVOR_ELECTIONS[0]
    for option in SURVIVOR_ELECTIONS:
        if abs(election - option) <= abs(election - best):
            best = option
    return best


def calculate_fers_pension(high3, service_years, age_at_retirement, survivor_election=0.0):
    """
    Annual FERS pension and the survivor annuity it funds.
    Returns (annual_pension, survivor_annuity).
    """
    if high3 <= 0 or service_years <= 0:
        return 0.0, 0.0
    multiplier = 0.011 if age_at_retirement >= 62 and service_years >= 20 else 0.01
    base = high3 * service_years * multiplier
    election = snap_survivor_election(survivor_election)
    if election == 0.50:
        return base * 0.90, base * 0.50
    if election == 0.25:
        return base * 0.95, base * 0.25
    return base, 0.0


def fers_cola_rate(inflation):
    if inflation <= 0.02:
        return inflation
    if inflation <= 0.03:
        return 0.02
    return inflation - 0.01


def apply_fers_cola(amount, inflation, age):
    """Apply one year of FERS COLA tiering. No COLA before age 62."""
    if age < 62:
        return amount
    return amount * (1 + fers_cola_rate(inflation))


def is_srs_eligible(age_months, mra_months, service_years):
    """Immediate unreduced retirement: MRA with 30 years, or 60 with 20."""
    if age_months >= mra_months and service_years >= 30:
        return True
    return age_months >= 60 * 12 and service_years >= 20


def calculate_fers_supplement(service_years, ss_benefit_age_62, age):
    """Annual FERS Special Retirement Supplement, paid only before age 62"""
    if age >= 62 or ss_benefit_age_62 <= 0:
        return 0.0
    service_factor = min(service_years, 40) / 40
    return ss_benefit_age_62 * 12 * service_factor


def fers_supplement_earnings_reduction(earnings, age):
    """Earnings test: $1 of SRS lost for every $2 earned over the exempt amount."""
    if age >= 62 or earnings <= SRS_EARNINGS_EXEMPT_AMOUNT:
        return 0.0
    return (earnings - SRS_EARNINGS_EXEMPT_AMOUNT) * 0.5


def social_security_monthly_benefit(claim_age, benefit_62, benefit_fra, benefit_70, fra=67.0):
    """Monthly benefit at `claim_age`, interpolated between the 62 / FRA / 70 anchors."""
    if claim_age <= 62:
        return benefit_62
    if claim_age >= 70:
        return benefit_70
    if claim_age < fra:
        span = fra - 62
        return benefit_62 + (benefit_fra - benefit_62) * (claim_age - 62) / span
    if fra >= 70:
        return benefit_70
    return benefit_fra + (benefit_70 - benefit_fra) * (claim_age - fra) / (70 - fra)


def ss_months_paid_in_year(claim_date, year):
    """Months paid in `year` when the first payment arrives the month after `claim_date`."""
    if year < claim_date.year:
        return 0
    if year > claim_date.year:
        return 12
    return 12 - claim_date.month


def survivor_benefit_fraction(age, fra):
    """Share of the deceased's benefit a survivor receives at `age`: 71.5% at 60 up to 100% at FRA."""
    if age < 60:
        return 0.0
    if age >= fra:
        return 1.0
    return 0.715 + (1.0 - 0.715) * (age - 60) / (fra - 60)


def survivor_ss_benefit(own_benefit, deceased_benefit, survivor_age, survivor_fra):
    """Greater of the survivor's own benefit and the age-reduced survivor benefit."""
    reduced = deceased_benefit * survivor_benefit_fraction(survivor_age, survivor_fra)
    return max(own_benefit, reduced)


def calculate_tsp_matching(salary, employee_percent, employer_percent=0.05, threshold=0.05, automatic_percent=0.01):
    """
    Agency contributions for a year of salary.
    Returns (automatic, match): the automatic contribution is paid regardless of
    the employee election; the match pool (employer minus automatic) is paid
    dollar-for-dollar on the first 60% of the threshold and at 50 cents on the
    dollar for the rest of the threshold.
    """
    if salary <= 0 or employer_percent <= 0:
        return 0.0, 0.0
    automatic_percent = min(automatic_percent, employer_percent)
    automatic = salary * automatic_percent
    match_pool = max(0.0, employer_percent - automatic_percent)
    if threshold <= 0:
        threshold = 0.05
    employee_percent = max(0.0, employee_percent)
    if match_pool <= 0 or employee_percent <= 0:
        return automatic, 0.0

    first_cap = threshold * 0.6
    second_cap = threshold * 0.4
    first_tier = min(employee_percent, first_cap, match_pool)
    remaining_pool = max(0.0, match_pool - first_tier)
    second_employee = min(max(0.0, employee_percent - first_cap), second_cap)
    second_tier = min(second_employee * 0.5, remaining_pool)
    return automatic, salary * (first_tier + second_tier)


def self_employment_tax(earnings):
    if earnings <= 0:
        return 0.0
    return earnings * SE_EARNINGS_FACTOR * SE_TAX_RATE


def rmd_age(birth_year):
    """Age at which Required Minimum Distributions begin (SECURE 2.0)."""
    if birth_year <= 1950:
        return 72
    if birth_year <= 1959:
        return 73
    return 75


def calculate_rmd(balance, age, birth_year):
    """Calculate Required Minimum Distribution on a traditional balance"""
    if balance <= 0 or age < rmd_age(birth_year):
        return 0.0
    if age > 100:
        return balance / RMD_DIVISOR_OVER_100
    period = RMD_DISTRIBUTION_PERIODS.get(age)
    if period is None:
        return 0.0
    return balance / period


class WithdrawalStrategy(enum.Enum):
    FOUR_PERCENT_RULE = "4_percent_rule"
    NEED_BASED = "need_based"
    VARIABLE_PERCENTAGE = "variable_percentage"


def compute_withdrawal(strategy, current_balance, years_since_retirement=0, initial_balance=0.0,
                       inflation_rate=0.0, target_monthly=None, rate=None, rmd_amount=0.0, available=None):
    """
    Annual TSP withdrawal for one participant.
      FOUR_PERCENT_RULE: 4% of the balance at retirement, inflated each later year
      NEED_BASED: monthly target x 12 (nothing when no target is set)
      VARIABLE_PERCENTAGE: rate x current balance (nothing when no rate is set)
    The result is floored at `rmd_amount` and capped at `available`, which
    defaults to `current_balance`.
    """
    if available is None:
        available = current_balance
    strategy = WithdrawalStrategy(strategy)
    if strategy is WithdrawalStrategy.FOUR_PERCENT_RULE:
        withdrawal = initial_balance * 0.04 * (1 + inflation_rate) ** max(0, years_since_retirement)
    elif strategy is WithdrawalStrategy.NEED_BASED:
        withdrawal = max(0.0, target_monthly * 12) if target_monthly is not None else 0.0
    else:
        withdrawal = current_balance * rate if rate is not None else 0.0
    if rmd_amount > withdrawal:
        withdrawal = rmd_amount
    return max(0.0, min(withdrawal, available))


def calculate_weighted_tsp_growth(fund_allocation):
    """Calculate weighted TSP growth rate based on fund allocation"""
    if not fund_allocation:
        return None

    weighted_growth = (
        fund_allocation.get("g_fund_pct", 0)/100 * TSP_FUND_RETURNS["G"] +
        fund_allocation.get("f_fund_pct", 0)/100 * TSP_FUND_RETURNS["F"] +
        fund_allocation.get("c_fund_pct", 0)/100 * TSP_FUND_RETURNS["C"] +
        fund_allocation.get("s_fund_pct", 0)/100 * TSP_FUND_RETURNS["S"] +
        fund_allocation.get("i_fund_pct", 0)/100 * TSP_FUND_RETURNS["I"]
    )

    return weighted_growth
