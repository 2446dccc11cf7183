"""
healthcare.py
------------------
Household healthcare cost breakdown: FEHB, marketplace or COBRA coverage before
Medicare, then Medicare Part B and Part D (each with IRMAA) and Medigap.
All base amounts are in base-year dollars and inflated per category.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

from household import HealthcareConfig, HealthcareCostBreakdown, MARRIED_FILING_JOINTLY
from medicare import MedicareProvider

logger = logging.getLogger(__name__)

PAY_PERIODS_PER_YEAR = 26
COBRA_MULTIPLIER = 1.5


@dataclass(frozen=True)
class HealthcareRates:
    base_year: int = 2025
    part_b_base_premium: float = 174.70
    part_d_standard_premium: float = 35.00
    part_d_enhanced_premium: float = 50.00
    medigap_base_cost: float = 200.00
    medigap_age_multipliers: Dict[int, float] = field(default_factory=lambda: {
        65: 1.0, 70: 1.1, 75: 1.2, 80: 1.3, 85: 1.4, 90: 1.5})
    fehb_inflation: float = 0.05
    marketplace_inflation: float = 0.07
    medicare_b_inflation: float = 0.05
    medicare_d_inflation: float = 0.05
    medigap_inflation: float = 0.04


class HealthcareCostProvider:

    def __init__(self, rates=None, medicare=None):
        self.rates = rates or HealthcareRates()
        self.medicare = medicare or MedicareProvider()

    def inflate(self, amount, year, rate):
        years = year - self.rates.base_year
        if years <= 0:
            return amount
        return amount * (1 + rate) ** years

    def medigap_monthly(self, age):
        multiplier = 1.0
        for threshold in sorted(self.rates.medigap_age_multipliers):
            if age >= threshold:
                multiplier = self.rates.medigap_age_multipliers[threshold]
        return self.rates.medigap_base_cost * multiplier

    def _fehb_annual(self, participant, year, fehb_premiums):
        if fehb_premiums is not None and participant.name in fehb_premiums:
            return fehb_premiums[participant.name]
        base = participant.fehb_premium_per_pay_period * PAY_PERIODS_PER_YEAR
        return self.inflate(base, year, self.rates.fehb_inflation)

    def participant_breakdown(self, participant, age, year, magi, filing_status, fehb_premiums=None):
        config = participant.healthcare or HealthcareConfig()
        breakdown = HealthcareCostBreakdown()
        if age < 65:
            coverage = config.pre_medicare_coverage
            if coverage in ("fehb", "retiree_plan"):
                breakdown.fehb_premium = self._fehb_annual(participant, year, fehb_premiums)
            elif coverage == "marketplace":
                breakdown.marketplace_premium = self.inflate(
                    config.pre_medicare_monthly_premium * 12, year, self.rates.marketplace_inflation)
            elif coverage == "cobra":
                base = participant.fehb_premium_per_pay_period * PAY_PERIODS_PER_YEAR * COBRA_MULTIPLIER
                breakdown.marketplace_premium = self.inflate(base, year, self.rates.marketplace_inflation)
            return breakdown

        married = filing_status == MARRIED_FILING_JOINTLY
        if config.medicare_part_b:
            premium = self.inflate(self.rates.part_b_base_premium * 12, year, self.rates.medicare_b_inflation)
            breakdown.medicare_part_b = premium + self.medicare.irmaa_tier(magi, married)[1] * 12
        if config.medicare_part_d:
            if config.part_d_plan == "enhanced":
                monthly = self.rates.part_d_enhanced_premium
            else:
                monthly = self.rates.part_d_standard_premium
            premium = self.inflate(monthly * 12, year, self.rates.medicare_d_inflation)
            breakdown.medicare_part_d = premium + self.medicare.part_d_irmaa(magi, married) * 12
        if config.medigap_plan:
            breakdown.medigap = self.inflate(self.medigap_monthly(age) * 12, year, self.rates.medigap_inflation)
        if not config.drop_fehb_at_65:
            breakdown.fehb_premium = self._fehb_annual(participant, year, fehb_premiums)
        return breakdown

    def cost_breakdown(self, participants, ages, year, magi, filing_status, fehb_premiums=None):
        """
        Sum of per-participant breakdowns for the living participants passed in.
        `fehb_premiums` maps participant name to an already-inflated annual
        FEHB premium; when given it replaces the base-year premium.
        """
        household = HealthcareCostBreakdown()
        for participant in participants:
            household.add(self.participant_breakdown(
                participant, ages[participant.name], year, magi, filing_status, fehb_premiums))
        return household
