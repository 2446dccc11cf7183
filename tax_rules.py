"""
tax_rules.py
------------------
Default tax engine: progressive federal brackets with standard deduction,
Social Security provisional-income taxation, flat state and local earned-income
taxes, and FICA with per-person wage-base caps.
"""

import logging
from dataclasses import dataclass

from household import MARRIED_FILING_JOINTLY, SINGLE, TaxRules

logger = logging.getLogger(__name__)

SS_THRESHOLDS = {
    MARRIED_FILING_JOINTLY: (32000.0, 44000.0),
    SINGLE: (25000.0, 34000.0),
}


@dataclass
class TaxableIncome:
    """Income components for one household year, before deductions."""
    wages: float = 0.0
    self_employment: float = 0.0
    pension: float = 0.0
    traditional_withdrawals: float = 0.0
    roth_conversions: float = 0.0
    capital_gains: float = 0.0
    social_security: float = 0.0
    other: float = 0.0

    @property
    def earned(self):
        return self.wages + self.self_employment

    def ordinary_excluding_ss(self):
        return (self.wages + self.self_employment + self.pension + self.traditional_withdrawals
                + self.roth_conversions + self.capital_gains + self.other)


def _normalize_status(filing_status):
    return SINGLE if filing_status == SINGLE else MARRIED_FILING_JOINTLY


def taxable_social_security(ss_benefits, other_income, filing_status=MARRIED_FILING_JOINTLY):
    """Taxable portion of Social Security under the 50% / 85% provisional-income rule."""
    if ss_benefits <= 0:
        return 0.0
    first, second = SS_THRESHOLDS[_normalize_status(filing_status)]
    provisional = other_income + ss_benefits * 0.5
    if provisional <= first:
        return 0.0
    if provisional <= second:
        return min(ss_benefits * 0.5, (provisional - first) * 0.5)
    base = min(ss_benefits * 0.5, (second - first) * 0.5)
    return min(ss_benefits * 0.85, (provisional - second) * 0.85 + base)


def brackets_for(filing_status, rules=None):
    rules = rules or TaxRules()
    if _normalize_status(filing_status) == SINGLE:
        return rules.brackets_single
    return rules.brackets_mfj


def standard_deduction(filing_status, seniors=0, rules=None):
    rules = rules or TaxRules()
    if _normalize_status(filing_status) == SINGLE:
        base = rules.standard_deduction_single
    else:
        base = rules.standard_deduction_mfj
    return base + seniors * rules.additional_deduction_65


def federal_income_tax(taxable_income, filing_status, rules=None):
    """Calculate federal tax on income after deductions using progressive brackets"""
    tax = 0.0
    for min_income, max_income, rate in brackets_for(filing_status, rules):
        if taxable_income > min_income:
            taxable_in_bracket = min(taxable_income, max_income) - min_income
            tax += taxable_in_bracket * rate
    return tax


def bracket_top(filing_status, rate_percent, rules=None):
    """Upper edge of the bracket taxed at `rate_percent` (e.g. 22), or None if unknown."""
    for _, max_income, rate in brackets_for(filing_status, rules):
        if round(rate * 100) == rate_percent:
            return max_income
    return None


class TaxEngine:
    """Computes (federal, state, local, FICA) for one household year."""

    def __init__(self, rules=None):
        self.rules = rules or TaxRules()

    def seniors(self, ages):
        return sum(1 for age in ages if age >= 65)

    def federal_taxable_income(self, income, filing_status, ages):
        """Returns (taxable_income, deduction) after standard deduction."""
        other = income.ordinary_excluding_ss()
        taxable_ss = taxable_social_security(income.social_security, other, filing_status)
        deduction = standard_deduction(filing_status, self.seniors(ages), self.rules)
        return max(0.0, other + taxable_ss - deduction), deduction

    def fica(self, wages_by_person, filing_status):
        total = 0.0
        for wages in wages_by_person:
            if wages <= 0:
                continue
            total += min(wages, self.rules.ss_wage_base) * self.rules.ss_rate
            total += wages * self.rules.medicare_rate
        if _normalize_status(filing_status) == SINGLE:
            threshold = self.rules.additional_medicare_threshold_single
        else:
            threshold = self.rules.additional_medicare_threshold_mfj
        combined = sum(w for w in wages_by_person if w > 0)
        if combined > threshold:
            total += (combined - threshold) * self.rules.additional_medicare_rate
        return total

    def compute_taxes(self, taxable_income, filing_status, ages, wage_income, self_employment_income=0.0):
        """
        `wage_income` is the list of per-person W-2 wages so that the Social
        Security wage base caps each earner separately. State and local taxes
        apply to earned income only; retirement income is exempt.
        """
        if isinstance(wage_income, (int, float)):
            wage_income = [wage_income]
        taxable, _ = self.federal_taxable_income(taxable_income, filing_status, ages)
        federal = federal_income_tax(taxable, filing_status, self.rules)
        earned = sum(w for w in wage_income if w > 0) + max(0.0, self_employment_income)
        state = earned * self.rules.state_rate
        local = earned * self.rules.local_eit_rate
        fica = self.fica(wage_income, filing_status)
        logger.debug("taxes: federal=%.2f state=%.2f local=%.2f fica=%.2f", federal, state, local, fica)
        return federal, state, local, fica
