"""
Calculation utilities for quote generation.

Pure helpers shared by the member quote builder, the aggregator and the
filter reapplier, so a filtered view and a fresh quote compute savings the
same way.
"""

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from constants import RECOMMENDED_PLAN_LIMIT
from quote_engine import Market
from quote_engine.models import (
    Contribution,
    CostComparison,
    ICHRAClass,
    Member,
    MemberQuoteResult,
    MarketSummary,
    MemberSummary,
    PlanAnalysis,
    PlanOffer,
    PlanOptionsCount,
)


def percentage(part: float, whole: float) -> float:
    """part / whole * 100, or 0 when whole is 0."""
    if not whole:
        return 0.0
    return part / whole * 100


def member_cost(effective_premium: float, employee_contribution: float) -> float:
    """Out-of-pocket after ICHRA. Never negative."""
    return max(0.0, effective_premium - employee_contribution)


def contribution_for_member(member: Member, ichra_class: Optional[ICHRAClass]) -> Contribution:
    if ichra_class is None:
        return Contribution()
    return ichra_class.contribution_for_age(member.age)


def apply_contribution(offer: PlanOffer, contribution: Contribution,
                       previous_total_cost: float) -> PlanOffer:
    """Attach ICHRA cost and savings versus prior coverage to a priced offer."""
    monthly_savings = previous_total_cost - offer.effective_premium
    return replace(
        offer,
        ichra_contribution=contribution.employee,
        member_cost=member_cost(offer.effective_premium, contribution.employee),
        monthly_savings=monthly_savings,
        annual_savings=monthly_savings * 12,
        savings_percentage=percentage(monthly_savings, previous_total_cost),
    )


def top_offers(offers: Iterable[PlanOffer], key: str,
               limit: int = RECOMMENDED_PLAN_LIMIT) -> List[PlanOffer]:
    """Cheapest ``limit`` offers by ``key`` (plan_id breaks ties)."""
    ranked = sorted(offers, key=lambda o: (getattr(o, key), o.plan_id))
    return ranked[:limit]


def count_by_market(offers: Iterable[PlanOffer]) -> PlanOptionsCount:
    on_market = 0
    off_market = 0
    for offer in offers:
        if offer.market is Market.ON:
            on_market += 1
        else:
            off_market += 1
    return PlanOptionsCount(on_market=on_market, off_market=off_market)


def market_summary(offers: Sequence[PlanOffer]) -> MarketSummary:
    """Average premiums and subsidy savings over one market's offers."""
    if not offers:
        return MarketSummary()
    count = len(offers)
    return MarketSummary(
        plan_count=count,
        average_full_premium=sum(o.full_premium for o in offers) / count,
        average_subsidized_premium=sum(o.effective_premium for o in offers) / count,
        average_savings=sum(o.full_premium - o.effective_premium for o in offers) / count,
        plans_with_zero_premium=sum(1 for o in offers if o.effective_premium == 0),
    )


def build_member_summary(contribution: Contribution, best_plan: Optional[PlanOffer],
                         offers: Sequence[PlanOffer], subsidy_eligible: bool) -> MemberSummary:
    return MemberSummary(
        ichra_contribution=contribution.employee,
        best_plan_cost=best_plan.member_cost if best_plan else 0.0,
        best_plan_savings=best_plan.monthly_savings if best_plan else 0.0,
        subsidy_eligible=subsidy_eligible,
        plan_options_count=count_by_market(offers),
        on_market_summary=market_summary([o for o in offers if o.market is Market.ON]),
        off_market_summary=market_summary([o for o in offers if o.market is Market.OFF]),
    )


def cost_comparison(old_cost: float, new_cost: float) -> CostComparison:
    savings = old_cost - new_cost
    return CostComparison(
        old_monthly_cost=old_cost,
        new_monthly_cost=new_cost,
        monthly_savings=savings,
        annual_savings=savings * 12,
        savings_percentage=percentage(savings, old_cost),
    )


def offers_dataframe(member_quotes: Sequence[MemberQuoteResult]) -> pd.DataFrame:
    """One row per priced offer across all members."""
    rows = [
        {
            'member_id': mq.member.id,
            'plan_id': offer.plan_id,
            'market': offer.market.value,
            'effective_premium': offer.effective_premium,
        }
        for mq in member_quotes
        for offer in mq.plan_offers
    ]
    return pd.DataFrame(rows, columns=['member_id', 'plan_id', 'market', 'effective_premium'])


def plan_statistics(member_quotes: Sequence[MemberQuoteResult]) -> PlanAnalysis:
    """Plan counts and premium range across every member's offers."""
    df = offers_dataframe(member_quotes)
    member_count = len(member_quotes)

    if df.empty:
        return PlanAnalysis(
            total_plans=0,
            total_on_market_plans=0,
            total_off_market_plans=0,
            average_plans_per_member=0.0,
            average_premium=0.0,
            lowest_premium=0.0,
            highest_premium=0.0,
        )

    priced = df.loc[df['effective_premium'] > 0, 'effective_premium']
    return PlanAnalysis(
        total_plans=int(df['plan_id'].nunique()),
        total_on_market_plans=int((df['market'] == Market.ON.value).sum()),
        total_off_market_plans=int((df['market'] == Market.OFF.value).sum()),
        average_plans_per_member=len(df) / member_count if member_count else 0.0,
        average_premium=float(priced.mean()) if not priced.empty else 0.0,
        lowest_premium=float(priced.min()) if not priced.empty else 0.0,
        highest_premium=float(priced.max()) if not priced.empty else 0.0,
    )
