"""
medicare.py
------------------
Medicare Part B premiums and IRMAA (income-related surcharge) tiering, plus a
multi-year IRMAA risk analysis over a projection.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger(__name__)

IRMAA_WARNING_DISTANCE = 10000.0

RISK_SAFE = "Safe"
RISK_WARNING = "Warning"
RISK_BREACH = "Breach"

# 2025 thresholds: (single, joint, monthly Part B surcharge, monthly Part D surcharge)
IRMAA_THRESHOLDS_2025 = (
    (103000.0, 206000.0, 69.90, 13.70),
    (129000.0, 258000.0, 174.70, 35.30),
    (161000.0, 322000.0, 279.50, 57.00),
    (193000.0, 386000.0, 384.30, 78.60),
    (500000.0, 750000.0, 489.10, 85.80),
)


@dataclass
class IRMAARisk:
    status: str
    tier: str
    surcharge: float
    distance_to_next: float


@dataclass
class IRMAAYearRisk:
    year: int
    magi: float
    status: str
    tier: str
    monthly_surcharge: float
    annual_cost: float
    distance_to_next: float


@dataclass
class IRMAAAnalysis:
    years_with_breaches: List[int] = field(default_factory=list)
    years_with_warnings: List[int] = field(default_factory=list)
    high_risk_years: List[IRMAAYearRisk] = field(default_factory=list)
    total_irmaa_cost: float = 0.0
    first_breach_year: int = 0
    first_eligible_year: int = 0
    recommendations: List[str] = field(default_factory=list)


class MedicareProvider:
    """Part B premium with the IRMAA surcharge for the tier a MAGI falls into."""

    def __init__(self, base_premium=185.00, thresholds: Tuple = IRMAA_THRESHOLDS_2025):
        self.base_premium = base_premium
        self.thresholds = thresholds

    def _threshold(self, row, married_jointly):
        return row[1] if married_jointly else row[0]

    def _tier_index(self, magi, married_jointly):
        index = -1
        for i, row in enumerate(self.thresholds):
            if magi > self._threshold(row, married_jointly):
                index = i
            else:
                break
        return index

    def irmaa_tier(self, magi, married_jointly):
        """Returns (tier number, monthly Part B surcharge); tier 0 means no surcharge."""
        index = self._tier_index(magi, married_jointly)
        if index < 0:
            return 0, 0.0
        return index + 1, self.thresholds[index][2]

    def part_d_irmaa(self, magi, married_jointly):
        index = self._tier_index(magi, married_jointly)
        if index < 0:
            return 0.0
        return self.thresholds[index][3]

    def part_b_monthly_premium(self, magi, married_jointly):
        return self.base_premium + self.irmaa_tier(magi, married_jointly)[1]

    def part_b_annual_cost(self, magi, married_jointly):
        return self.part_b_monthly_premium(magi, married_jointly) * 12

    def irmaa_risk_status(self, magi, married_jointly):
        if not self.thresholds:
            return IRMAARisk(RISK_SAFE, "None", 0.0, 0.0)
        first = self._threshold(self.thresholds[0], married_jointly)
        if magi <= first:
            distance = first - magi
            status = RISK_WARNING if distance <= IRMAA_WARNING_DISTANCE else RISK_SAFE
            return IRMAARisk(status, "None", 0.0, distance)
        tier, surcharge = self.irmaa_tier(magi, married_jointly)
        distance = 0.0
        if tier < len(self.thresholds):
            distance = self._threshold(self.thresholds[tier], married_jointly) - magi
        return IRMAARisk(RISK_BREACH, f"Tier{tier}", surcharge, distance)


def is_medicare_eligible(age):
    return age >= 65


def _longest_run(years):
    longest = current = 0
    previous = None
    for year in sorted(years):
        current = current + 1 if previous is not None and year == previous + 1 else 1
        longest = max(longest, current)
        previous = year
    return longest


def _recommendations(analysis):
    recommendations = []
    if analysis.years_with_breaches:
        recommendations.append("IRMAA breaches detected: consider strategies to reduce MAGI")
        if analysis.total_irmaa_cost > 10000:
            recommendations.append(
                f"High IRMAA cost (${analysis.total_irmaa_cost:,.0f} over {len(analysis.years_with_breaches)} years): "
                "significant savings possible through optimization")
        if analysis.first_breach_year - analysis.first_eligible_year <= 5:
            recommendations.append("Breaches occur early: consider Roth conversions before retirement to reduce future MAGI")
        else:
            recommendations.append("Breaches occur mid-retirement: review Social Security timing and TSP withdrawal strategy")
        streak = _longest_run(analysis.years_with_breaches)
        if streak >= 3:
            recommendations.append(f"{streak} consecutive breach years: a systematic withdrawal strategy change is recommended")
        recommendations.append("Withdraw from Roth TSP instead of Traditional TSP in breach years")
    elif analysis.years_with_warnings:
        closest = min(r.distance_to_next for r in analysis.high_risk_years if r.status == RISK_WARNING)
        recommendations.append("Close to IRMAA thresholds: monitor MAGI carefully")
        if closest < 5000:
            recommendations.append(f"Only ${closest:,.0f} away from a breach: small TSP withdrawal adjustments could prevent surcharges")
        else:
            recommendations.append("Moderate buffer to thresholds: keep the current withdrawal strategy but monitor annually")
    else:
        recommendations.append("No IRMAA concerns: MAGI remains comfortably below thresholds")
    return recommendations


def analyze_irmaa_risk(projection, married_jointly=True, provider=None):
    """Scan Medicare-eligible years of a projection for IRMAA warnings and breaches."""
    provider = provider or MedicareProvider()
    analysis = IRMAAAnalysis()
    persons = 2 if married_jointly else 1
    for cf in projection:
        if not cf.is_medicare_eligible:
            continue
        if not analysis.first_eligible_year:
            analysis.first_eligible_year = cf.year
        risk = provider.irmaa_risk_status(cf.magi, married_jointly)
        if risk.status == RISK_BREACH:
            annual_cost = risk.surcharge * 12 * persons
            analysis.years_with_breaches.append(cf.year)
            if not analysis.first_breach_year:
                analysis.first_breach_year = cf.year
            analysis.total_irmaa_cost += annual_cost
        elif risk.status == RISK_WARNING:
            annual_cost = 0.0
            analysis.years_with_warnings.append(cf.year)
        else:
            continue
        analysis.high_risk_years.append(IRMAAYearRisk(
            year=cf.year, magi=cf.magi, status=risk.status, tier=risk.tier,
            monthly_surcharge=risk.surcharge, annual_cost=annual_cost,
            distance_to_next=risk.distance_to_next))
    analysis.recommendations = _recommendations(analysis)
    logger.debug("IRMAA analysis: %d breaches, %d warnings", len(analysis.years_with_breaches),
                 len(analysis.years_with_warnings))
    return analysis
