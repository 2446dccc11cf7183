"""
withdrawal_sequencing.py
------------------
Apportions a gross withdrawal across taxable, traditional and Roth accounts.

Every strategy first takes a pending RMD from the traditional account.

Strategies:
  standard       taxable -> traditional -> roth
  tax_efficient  roth -> traditional -> taxable
  bracket_fill   traditional up to the target bracket, roth, taxable,
                 then any remaining traditional
  custom         caller-supplied order (falls back to standard when invalid)
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from household import MARRIED_FILING_JOINTLY, SEQUENCING_SOURCES
from tax_rules import bracket_top

logger = logging.getLogger(__name__)

TAX_FREE = "tax_free"
ORDINARY = "ordinary"
CAPITAL_GAINS = "capital_gains"

INSUFFICIENT_NOTE = "insufficient balances to meet request"


@dataclass
class WithdrawalSource:
    name: str
    balance: float
    basis: float = 0.0
    tax_treatment: str = ORDINARY
    rmd_required: bool = False
    pending_rmd: float = 0.0

    def gain_ratio(self):
        if self.balance <= 0:
            return 0.0
        return max(0.0, self.balance - self.basis) / self.balance


@dataclass
class WithdrawalAllocation:
    source: str
    gross: float
    ordinary_portion: float = 0.0
    capital_gains_portion: float = 0.0
    tax_free_portion: float = 0.0
    magi_impact: float = 0.0


@dataclass
class WithdrawalPlan:
    requested: float
    strategy_used: str
    allocations: List[WithdrawalAllocation] = field(default_factory=list)
    total_sourced: float = 0.0
    remaining_need: float = 0.0
    estimated_ordinary_income: float = 0.0
    estimated_capital_gains: float = 0.0
    estimated_magi_impact: float = 0.0
    traditional_used: float = 0.0
    roth_used: float = 0.0
    taxable_used: float = 0.0
    bracket_filled: bool = False
    notes: List[str] = field(default_factory=list)


@dataclass
class StrategyContext:
    need_amount: float
    current_ordinary_income: float = 0.0
    magi_current: float = 0.0
    is_rmd_year: bool = False
    target_bracket: Optional[int] = None
    bracket_buffer: float = 0.0
    bracket_ceiling: Optional[float] = None


def _draw(plan, source, amount):
    """Take up to `amount` from `source`, record the allocation, return the amount taken."""
    amount = min(amount, source.balance)
    if amount <= 0:
        return 0.0
    alloc = WithdrawalAllocation(source=source.name, gross=amount)
    if source.tax_treatment == ORDINARY:
        alloc.ordinary_portion = amount
        alloc.magi_impact = amount
    elif source.tax_treatment == CAPITAL_GAINS:
        gain = amount * source.gain_ratio()
        alloc.capital_gains_portion = gain
        alloc.tax_free_portion = amount - gain
        alloc.magi_impact = gain
        source.basis = max(0.0, source.basis - (amount - gain))
    else:
        alloc.tax_free_portion = amount
    source.balance -= amount

    plan.allocations.append(alloc)
    plan.total_sourced += amount
    plan.estimated_ordinary_income += alloc.ordinary_portion
    plan.estimated_capital_gains += alloc.capital_gains_portion
    plan.estimated_magi_impact += alloc.magi_impact
    if source.name == "traditional":
        plan.traditional_used += amount
    elif source.name == "roth":
        plan.roth_used += amount
    elif source.name == "taxable":
        plan.taxable_used += amount
    return amount


def _draw_pending_rmd(plan, lookup, remaining):
    """An outstanding RMD comes out of the traditional account before anything else"""
    trad = lookup.get("traditional")
    if trad is None or not trad.rmd_required or trad.pending_rmd <= 0:
        return remaining
    remaining -= _draw(plan, trad, min(trad.pending_rmd, remaining))
    trad.pending_rmd = 0.0
    return remaining


def _finish(plan, remaining):
    plan.remaining_need = max(0.0, remaining)
    if plan.remaining_need > 1e-9:
        plan.notes.append(INSUFFICIENT_NOTE)
    return plan


class OrderedStrategy:
    name = "ordered"
    order = ()

    def plan(self, sources, ctx):
        plan = WithdrawalPlan(requested=ctx.need_amount, strategy_used=self.name)
        lookup = {s.name: s for s in sources}
        remaining = _draw_pending_rmd(plan, lookup, ctx.need_amount)
        for name in self.order:
            if remaining <= 0:
                break
            source = lookup.get(name)
            if source is None or source.balance <= 0:
                continue
            remaining -= _draw(plan, source, remaining)
        return _finish(plan, remaining)


class StandardStrategy(OrderedStrategy):
    name = "standard"
    order = ("taxable", "traditional", "roth")


class TaxEfficientStrategy(OrderedStrategy):
    name = "tax_efficient"
    order = ("roth", "traditional", "taxable")


class CustomStrategy(OrderedStrategy):
    name = "custom"

    def __init__(self, sequence):
        self.order = tuple(sequence)

    def is_valid(self):
        return (bool(self.order) and len(set(self.order)) == len(self.order)
                and all(name in SEQUENCING_SOURCES for name in self.order))

    def plan(self, sources, ctx):
        if not self.is_valid():
            logger.debug("invalid custom sequence %s, using standard order", self.order)
            plan = StandardStrategy().plan(sources, ctx)
            plan.strategy_used = "custom->standard_fallback"
            plan.notes.insert(0, "invalid or empty custom sequence - falling back to standard")
            return plan
        return super().plan(sources, ctx)


class BracketFillStrategy:
    name = "bracket_fill"

    def plan(self, sources, ctx):
        plan = WithdrawalPlan(requested=ctx.need_amount, strategy_used=self.name)
        lookup = {s.name: s for s in sources}
        remaining = _draw_pending_rmd(plan, lookup, ctx.need_amount)
        trad = lookup.get("traditional")

        if remaining > 0 and trad is not None and ctx.bracket_ceiling is not None:
            headroom = max(0.0, ctx.bracket_ceiling - ctx.bracket_buffer
                           - ctx.current_ordinary_income - plan.estimated_ordinary_income)
            taken = _draw(plan, trad, min(remaining, headroom))
            remaining -= taken
            plan.bracket_filled = headroom - taken <= 0

        for name in ("roth", "taxable", "traditional"):
            if remaining <= 0:
                break
            source = lookup.get(name)
            if source is not None and source.balance > 0:
                remaining -= _draw(plan, source, remaining)
        return _finish(plan, remaining)


def create_strategy(config):
    if config is None:
        return StandardStrategy()
    if config.strategy == "tax_efficient":
        return TaxEfficientStrategy()
    if config.strategy == "bracket_fill":
        return BracketFillStrategy()
    if config.strategy == "custom":
        return CustomStrategy(config.custom_sequence)
    return StandardStrategy()


def create_strategy_context(need_amount, current_ordinary_income, magi_current, is_rmd_year, config,
                            filing_status=MARRIED_FILING_JOINTLY, rules=None):
    ctx = StrategyContext(
        need_amount=need_amount,
        current_ordinary_income=current_ordinary_income,
        magi_current=magi_current,
        is_rmd_year=is_rmd_year,
    )
    if config is not None and config.strategy == "bracket_fill":
        ctx.target_bracket = config.target_bracket
        ctx.bracket_buffer = config.bracket_buffer
        if config.target_bracket is not None:
            ctx.bracket_ceiling = bracket_top(filing_status, config.target_bracket, rules)
    return ctx


def create_withdrawal_sources(traditional_balance, roth_balance, taxable_balance=0.0, taxable_basis=0.0,
                              is_rmd_year=False, rmd_amount=0.0):
    sources = []
    if taxable_balance > 0:
        sources.append(WithdrawalSource("taxable", taxable_balance, basis=taxable_basis,
                                        tax_treatment=CAPITAL_GAINS))
    if traditional_balance > 0:
        sources.append(WithdrawalSource("traditional", traditional_balance, tax_treatment=ORDINARY,
                                        rmd_required=is_rmd_year, pending_rmd=rmd_amount if is_rmd_year else 0.0))
    if roth_balance > 0:
        sources.append(WithdrawalSource("roth", roth_balance, tax_treatment=TAX_FREE))
    return sources
