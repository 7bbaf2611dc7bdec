"""
Benchmark (SLCSP) selection.

The ACA benchmark is the second-lowest-cost active on-market Silver plan for
the member's rating area, priced at the member's age and tobacco status.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Tuple

from constants import BENCHMARK_METAL_LEVEL
from quote_engine import Market
from quote_engine.errors import NoSilverBenchmarkAvailable, NotFoundError
from quote_engine.models import (
    BenchmarkResult,
    CatalogFilters,
    PlanCandidate,
    PremiumBreakdown,
    RatingGeography,
)
from quote_engine.services.collaborators import PlanCatalog, PricingLookup, fetch_all_plans
from quote_engine.services.rate_scheduler import EXTERNAL_SERVICE, RateScheduler

logger = logging.getLogger(__name__)

PremiumCache = Dict[str, Optional[PremiumBreakdown]]


def price_plan_breakdown(scheduler: RateScheduler, pricing: PricingLookup, plan_id: str,
                         geography: RatingGeography, age: int, tobacco: bool, as_of: date,
                         premium_cache: Optional[PremiumCache] = None) -> Optional[PremiumBreakdown]:
    """
    Premium breakdown for one plan, or None when no rate is on file.

    ``premium_cache`` memoizes lookups (including misses) for one member so the
    benchmark and the offer list share a single pricing call per plan.
    """
    if premium_cache is not None and plan_id in premium_cache:
        return premium_cache[plan_id]
    try:
        breakdown = scheduler.execute(EXTERNAL_SERVICE, pricing.get_premium_breakdown, plan_id,
                                      geography.rating_area_id, age, tobacco, as_of)
    except NotFoundError:
        logger.debug(f"PRICING: No rate for plan {plan_id} in area {geography.rating_area_id}, age {age}")
        breakdown = None
    if premium_cache is not None:
        premium_cache[plan_id] = breakdown
    return breakdown


def price_plan(scheduler: RateScheduler, pricing: PricingLookup, plan_id: str,
               geography: RatingGeography, age: int, tobacco: bool, as_of: date,
               premium_cache: Optional[PremiumCache] = None) -> Optional[float]:
    """Monthly premium for one plan, or None when no rate is on file."""
    breakdown = price_plan_breakdown(scheduler, pricing, plan_id, geography, age, tobacco,
                                     as_of, premium_cache)
    return breakdown.total_premium if breakdown is not None else None


class BenchmarkSelector:
    """Selects the SLCSP for a member."""

    def __init__(self, scheduler: RateScheduler, catalog: PlanCatalog, pricing: PricingLookup):
        self.scheduler = scheduler
        self.catalog = catalog
        self.pricing = pricing

    def silver_plans(self, geography: RatingGeography) -> List[PlanCandidate]:
        filters = CatalogFilters(on_market=True, off_market=False,
                                 metal_levels=(BENCHMARK_METAL_LEVEL,))
        plans = fetch_all_plans(
            self.catalog, geography.county_id, filters,
            execute=lambda fn, *args: self.scheduler.execute(EXTERNAL_SERVICE, fn, *args),
        )
        return [
            p for p in plans
            if p.market is Market.ON and p.metal_level.lower() == BENCHMARK_METAL_LEVEL.lower()
        ]

    def select(self, geography: RatingGeography, age: int, tobacco: bool, as_of: date,
               premium_cache: Optional[PremiumCache] = None) -> BenchmarkResult:
        """
        Price every Silver plan and pick the second cheapest.

        Ties on premium are broken by plan_id so the choice is deterministic.
        Exactly one priced plan is used as-is with ``degraded=True``.

        Raises:
            NoSilverBenchmarkAvailable: no priced on-market Silver plan in the area
        """
        priced: List[Tuple[float, str]] = []
        for plan in self.silver_plans(geography):
            premium = price_plan(self.scheduler, self.pricing, plan.plan_id, geography,
                                 age, tobacco, as_of, premium_cache)
            if premium is not None:
                priced.append((premium, plan.plan_id))

        if not priced:
            raise NoSilverBenchmarkAvailable(
                f"No priced on-market Silver plans in county {geography.county_id}",
                {'county_id': geography.county_id, 'rating_area_id': geography.rating_area_id},
            )

        priced.sort()
        if len(priced) == 1:
            logger.warning(
                f"BENCHMARK: Only one Silver plan in county {geography.county_id}, "
                f"using {priced[0][1]} as benchmark (degraded)"
            )
            premium, plan_id = priced[0]
            return BenchmarkResult(
                benchmark_premium=premium,
                benchmark_plan_id=plan_id,
                lowest_premium=premium,
                total_silver_plans=1,
                degraded=True,
            )

        premium, plan_id = priced[1]
        return BenchmarkResult(
            benchmark_premium=premium,
            benchmark_plan_id=plan_id,
            lowest_premium=priced[0][0],
            total_silver_plans=len(priced),
        )
