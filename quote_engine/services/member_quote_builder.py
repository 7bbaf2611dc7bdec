"""
Member Quote Builder

Per-member pipeline: geography -> plan candidates -> benchmark and subsidy ->
priced offers -> ICHRA-adjusted member cost and savings.

Member-level failures raise MemberQuoteError subclasses; the caller records
them as skips and keeps going with the rest of the group.
"""

import logging
import re
from datetime import date
from typing import List, Optional, Tuple

from constants import DEFAULT_FPL_YEAR, DEFAULT_HOUSEHOLD_INCOME
from quote_engine import Market
from quote_engine.errors import GeographyNotResolved, NoPlansAvailable, NotFoundError
from quote_engine.models import (
    Household,
    ICHRAClass,
    Member,
    MemberQuoteResult,
    OffMarketOffer,
    OnMarketOffer,
    PlanCandidate,
    PlanOffer,
    PremiumBreakdown,
    QuoteFilters,
    RatingGeography,
)
from quote_engine.services.benchmark_selector import BenchmarkSelector, price_plan_breakdown
from quote_engine.services.collaborators import (
    GeoResolver,
    PlanCatalog,
    PricingLookup,
    fetch_all_plans,
)
from quote_engine.services.rate_scheduler import EXTERNAL_SERVICE, RateScheduler
from quote_engine.utils.cache import TTLCache
from quote_engine.utils.calculations import (
    apply_contribution,
    build_member_summary,
    contribution_for_member,
    top_offers,
)
from subsidy_calculator import SubsidyResult, compute_subsidy

logger = logging.getLogger(__name__)

ZIP_PATTERN = re.compile(r'^\d{5}$')


class MemberQuoteBuilder:
    """Builds one MemberQuoteResult per member. Safe to share across threads."""

    def __init__(self, scheduler: RateScheduler, geo_resolver: GeoResolver,
                 catalog: PlanCatalog, pricing: PricingLookup,
                 geography_cache: Optional[TTLCache] = None,
                 fpl_year: int = DEFAULT_FPL_YEAR):
        self.scheduler = scheduler
        self.geo_resolver = geo_resolver
        self.catalog = catalog
        self.pricing = pricing
        self.geography_cache = geography_cache
        self.fpl_year = fpl_year
        self.benchmark_selector = BenchmarkSelector(scheduler, catalog, pricing)

    def build(self, member: Member, ichra_class: Optional[ICHRAClass],
              filters: QuoteFilters, as_of: date) -> MemberQuoteResult:
        """
        Quote one member.

        Raises:
            GeographyNotResolved: ZIP is malformed or unknown
            NoSilverBenchmarkAvailable: no Silver plan to anchor the subsidy
            NoPlansAvailable: no candidate plan could be priced
        """
        geography = self.resolve_geography(member.zip_code)
        premium_cache = {}

        candidates = []
        for market in (Market.ON, Market.OFF):
            if filters.market.allows(market):
                candidates.extend(self._fetch_candidates(geography, filters, market))

        subsidy = self.compute_member_subsidy(member, geography, as_of, premium_cache)

        offers: List[PlanOffer] = []
        for candidate in candidates:
            breakdown = price_plan_breakdown(self.scheduler, self.pricing, candidate.plan_id, geography,
                                             member.age, member.tobacco_use, as_of, premium_cache)
            if breakdown is None:
                continue
            offers.append(self._make_offer(candidate, breakdown, subsidy))

        if not offers:
            raise NoPlansAvailable(
                f"No priced plans for member {member.id} in county {geography.county_id}",
                {'member_id': member.id, 'county_id': geography.county_id,
                 'candidates': len(candidates)},
            )

        if ichra_class is None:
            logger.warning(f"QUOTE: Member {member.id} has no ICHRA class, using zero contribution")
        contribution = contribution_for_member(member, ichra_class)
        previous_total = member.previous_contribution.total_cost
        offers = [apply_contribution(o, contribution, previous_total) for o in offers]

        recommended = top_offers(offers, 'effective_premium')
        best_plan = recommended[0]

        return MemberQuoteResult(
            member=member,
            geography=geography,
            subsidy=subsidy,
            contribution=contribution,
            plan_offers=tuple(sorted(offers, key=lambda o: (o.effective_premium, o.plan_id))),
            recommended_plans=tuple(recommended),
            best_plan=best_plan,
            member_summary=build_member_summary(contribution, best_plan, offers, subsidy.eligible),
            defaults_applied=tuple(subsidy.defaults_applied),
        )

    def resolve_geography(self, zip_code: str) -> RatingGeography:
        zip_code = (zip_code or '').strip()
        if not ZIP_PATTERN.match(zip_code):
            raise GeographyNotResolved(f"Invalid ZIP code '{zip_code}'", {'zip_code': zip_code})

        if self.geography_cache is not None:
            cached = self.geography_cache.get(zip_code)
            if cached is not None:
                return cached

        try:
            resolution = self.scheduler.execute(EXTERNAL_SERVICE, self.geo_resolver.resolve_county, zip_code)
        except NotFoundError as e:
            raise GeographyNotResolved(f"No county found for ZIP {zip_code}", {'zip_code': zip_code}) from e

        if not resolution.counties:
            raise GeographyNotResolved(f"No county found for ZIP {zip_code}", {'zip_code': zip_code})
        if not resolution.single:
            logger.info(
                f"QUOTE: ZIP {zip_code} spans {len(resolution.counties)} counties, "
                f"using {resolution.primary.name}"
            )

        geography = RatingGeography.from_county(resolution.primary)
        if self.geography_cache is not None:
            self.geography_cache.set(zip_code, geography)
        return geography

    def household_for(self, member: Member) -> Tuple[Household, List[str]]:
        """Household inputs for the subsidy, with the names of any defaulted fields."""
        defaults = []
        income = member.household_income
        if income is None:
            income = DEFAULT_HOUSEHOLD_INCOME
            defaults.append('household_income')
        size = member.household_size
        # Zero or negative sizes count as missing
        if size is None or size < 1:
            size = max(1, member.family_size)
            defaults.append('household_size')
        if defaults:
            logger.warning(
                f"QUOTE: Member {member.id} missing {', '.join(defaults)}, "
                f"using income ${income:,.0f} and household size {size}"
            )
        return Household(income=income, size=size), defaults

    def compute_member_subsidy(self, member: Member, geography: RatingGeography,
                               as_of: date, premium_cache=None) -> SubsidyResult:
        household, defaults = self.household_for(member)
        benchmark = self.benchmark_selector.select(geography, member.age, member.tobacco_use,
                                                   as_of, premium_cache)
        return compute_subsidy(
            benchmark.benchmark_premium,
            household.income,
            household.size,
            fpl_year=self.fpl_year,
            benchmark_degraded=benchmark.degraded,
            defaults_applied=defaults,
        )

    def _fetch_candidates(self, geography: RatingGeography, filters: QuoteFilters,
                          market: Market) -> List[PlanCandidate]:
        plans = fetch_all_plans(
            self.catalog, geography.county_id, filters.to_catalog_filters(market),
            execute=lambda fn, *args: self.scheduler.execute(EXTERNAL_SERVICE, fn, *args),
        )
        return [p for p in plans if p.market is market]

    @staticmethod
    def _make_offer(candidate: PlanCandidate, breakdown: PremiumBreakdown,
                    subsidy: SubsidyResult) -> PlanOffer:
        full_premium = breakdown.total_premium
        common = dict(
            plan_id=candidate.plan_id,
            plan_name=candidate.plan_name,
            carrier=candidate.carrier,
            metal_level=candidate.metal_level,
            plan_type=candidate.plan_type,
            hsa_eligible=candidate.hsa_eligible,
            deductible=candidate.deductible,
            out_of_pocket_max=candidate.out_of_pocket_max,
            base_premium=breakdown.base_premium,
            tobacco_surcharge=breakdown.tobacco_surcharge,
            full_premium=full_premium,
        )
        if candidate.market is Market.OFF:
            return OffMarketOffer(effective_premium=full_premium, **common)

        if subsidy.eligible:
            subsidized = max(0.0, full_premium - subsidy.monthly_subsidy)
            return OnMarketOffer(
                effective_premium=subsidized,
                monthly_subsidy=subsidy.monthly_subsidy,
                subsidized_premium=subsidized,
                subsidy_applied=True,
                **common,
            )
        return OnMarketOffer(effective_premium=full_premium, subsidized_premium=full_premium, **common)
