"""
Quote Service

Entry point for generating and re-filtering group quotes. Wires the rate
scheduler, member quote builder, affordability coordinator, aggregator and
filter reapplier together, and owns the per-group quote cache.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple, Union

from constants import DEFAULT_MEMBER_WORKERS
from quote_engine.config import EngineConfig
from quote_engine.errors import (
    GroupNotFound,
    MemberQuoteError,
    NoPlansAvailable,
    NotFoundError,
    QuoteNotFound,
)
from quote_engine.models import (
    FilteredQuoteView,
    Group,
    MemberQuoteResult,
    MemberSkip,
    QuoteFilters,
    QuoteResult,
)
from quote_engine.services.affordability_coordinator import AffordabilityCoordinator
from quote_engine.services.collaborators import (
    ExternalAffordabilityAPI,
    GeoResolver,
    PlanCatalog,
    PricingLookup,
)
from quote_engine.services.filter_reapplier import FilterReapplier
from quote_engine.services.member_quote_builder import MemberQuoteBuilder
from quote_engine.services.quote_aggregator import QuoteAggregator
from quote_engine.services.rate_scheduler import RateScheduler
from quote_engine.services.stores import (
    AffordabilityStore,
    GroupRepository,
    InMemoryAffordabilityStore,
    InMemoryQuoteStore,
    QuoteStore,
)
from quote_engine.utils.cache import TTLCache

logger = logging.getLogger(__name__)

FilterInput = Union[QuoteFilters, Dict[str, Any], None]


class QuoteService:
    """Generates, caches and re-filters ICHRA group quotes."""

    def __init__(self, groups: GroupRepository, quote_store: QuoteStore,
                 builder: MemberQuoteBuilder, coordinator: AffordabilityCoordinator,
                 cache: TTLCache, aggregator: Optional[QuoteAggregator] = None,
                 reapplier: Optional[FilterReapplier] = None,
                 scheduler: Optional[RateScheduler] = None,
                 member_workers: int = DEFAULT_MEMBER_WORKERS):
        self.groups = groups
        self.quote_store = quote_store
        self.builder = builder
        self.coordinator = coordinator
        self.cache = cache
        self.aggregator = aggregator or QuoteAggregator()
        self.reapplier = reapplier or FilterReapplier()
        self.scheduler = scheduler
        self.member_workers = member_workers

    @classmethod
    def from_config(cls, config: EngineConfig, groups: GroupRepository,
                    geo_resolver: GeoResolver, catalog: PlanCatalog, pricing: PricingLookup,
                    affordability_api: ExternalAffordabilityAPI,
                    quote_store: Optional[QuoteStore] = None,
                    affordability_store: Optional[AffordabilityStore] = None) -> "QuoteService":
        """Build a fully wired service from configuration."""
        scheduler = RateScheduler.from_config(config)
        builder = MemberQuoteBuilder(
            scheduler, geo_resolver, catalog, pricing,
            geography_cache=TTLCache(config.quote_cache_capacity * 16, config.quote_cache_ttl),
            fpl_year=config.fpl_year,
        )
        coordinator = AffordabilityCoordinator(
            affordability_api, scheduler, affordability_store or InMemoryAffordabilityStore(),
            sync_wait=config.affordability_sync_wait,
            background_delay=config.affordability_background_delay,
            background_max_attempts=config.affordability_background_max_attempts,
        )
        return cls(
            groups=groups,
            quote_store=quote_store or InMemoryQuoteStore(),
            builder=builder,
            coordinator=coordinator,
            cache=TTLCache(config.quote_cache_capacity, config.quote_cache_ttl),
            scheduler=scheduler,
            member_workers=config.member_workers,
        )

    # ------------------------------------------------------------------
    # Quote generation
    # ------------------------------------------------------------------

    def generate_group_quote(self, group_id: str, filters: FilterInput = None,
                             wait_for_affordability: bool = True) -> QuoteResult:
        """
        Generate (or return the cached) quote for a group.

        Raises:
            InvalidFilterInput: malformed filters
            GroupNotFound: unknown group
            AffordabilityTrialLimitExceeded: affordability quota spent
            ComplianceDataUnavailable: affordability results not completed
            NoPlansAvailable: no member could be quoted
            ExternalRateLimitExceeded / ExternalServiceUnavailable: after retries
        """
        filters = self._coerce_filters(filters)
        cache_key = (group_id, filters.cache_key())
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info(f"QUOTE: Cache hit for group {group_id}, returning quote {cached.quote_id}")
            return cached

        group = self._get_group(group_id)
        if not group.members:
            raise NoPlansAvailable(f"Group {group_id} has no active members", {'group_id': group_id})
        logger.info(f"QUOTE: Generating quote for group {group_id} ({len(group.members)} members)")

        affordability = self.coordinator.calculate_group_affordability(group, wait_for_affordability)
        # Pricing budget is only spent once compliance data is in hand
        self.coordinator.require_completed(affordability)
        member_quotes, skipped = self._quote_members(group, filters)

        try:
            quote = self.aggregator.aggregate(group.id, member_quotes, skipped, affordability, filters)
        except Exception as e:
            logger.error(f"QUOTE: Quote generation for group {group_id} failed: {e}")
            raise

        self.quote_store.save(quote)
        self.cache.set(cache_key, quote)
        return quote

    def _quote_members(self, group: Group,
                       filters: QuoteFilters) -> Tuple[List[MemberQuoteResult], List[MemberSkip]]:
        """Quote every member concurrently; results keep census order."""
        members = list(group.members)
        results: List[MemberQuoteResult] = []
        skipped: List[MemberSkip] = []
        workers = max(1, min(self.member_workers, len(members)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="member-quote") as executor:
            futures = [
                executor.submit(self.builder.build, member, group.class_by_id(member.class_id),
                                filters, group.effective_date)
                for member in members
            ]
            try:
                for member, future in zip(members, futures):
                    try:
                        results.append(future.result())
                    except MemberQuoteError as e:
                        logger.warning(f"QUOTE: Skipping member {member.id}: [{e.code}] {e.message}")
                        skipped.append(MemberSkip(member.id, e.code, e.message))
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        return results, skipped

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def apply_filters_to_quote(self, quote_id: str, filters: FilterInput) -> FilteredQuoteView:
        """
        Re-filter a stored quote without any external calls.

        Uses the affordability calculation the quote was generated with,
        falling back to the group's latest calculation.
        """
        filters = self._coerce_filters(filters)
        quote = self.get_quote_result(quote_id)

        affordability = None
        if quote.affordability_calculation_id:
            affordability = self.coordinator.store.get(quote.affordability_calculation_id)
        if affordability is None:
            affordability = self.coordinator.latest_for_group(quote.group_id)

        return self.reapplier.apply(quote, filters, affordability)

    def update_quote_filters(self, group_id: str, filters: FilterInput) -> QuoteResult:
        """Drop the group's cached quotes and regenerate under new filters."""
        filters = self._coerce_filters(filters)
        removed = self.cache.invalidate_where(lambda key: key[0] == group_id)
        logger.info(f"QUOTE: Invalidated {removed} cached quotes for group {group_id}")
        return self.generate_group_quote(group_id, filters)

    def get_employee_comparison(self, quote_id: str, member_id: str,
                                filters: FilterInput = None) -> Dict[str, Any]:
        """One member's offers and out-of-pocket cost versus prior coverage."""
        filters = self._coerce_filters(filters)
        quote = self.get_quote_result(quote_id)
        member_quote = quote.member_quote(member_id)
        if member_quote is None:
            raise NotFoundError(f"Member {member_id} not found in quote {quote_id}",
                                {'quote_id': quote_id, 'member_id': member_id})

        filtered = self.reapplier.filter_member(member_quote, filters)
        previous = member_quote.member.previous_contribution
        new_cost = filtered.member_summary.best_plan_cost
        return {
            'quote_id': quote_id,
            'member': filtered.to_dict(),
            'applied_filters': filters.to_dict(),
            'out_of_pocket_comparison': {
                'previous_plan_name': previous.plan_name,
                'previous_member_cost': previous.member,
                'new_member_cost': new_cost,
                'monthly_difference': previous.member - new_cost,
                'annual_difference': (previous.member - new_cost) * 12,
            },
        }

    # ------------------------------------------------------------------
    # Lookup and maintenance
    # ------------------------------------------------------------------

    def get_quote_result(self, quote_id: str) -> QuoteResult:
        quote = self.quote_store.get(quote_id)
        if quote is None:
            raise QuoteNotFound(f"Quote {quote_id} not found", {'quote_id': quote_id})
        return quote

    def invalidate_pricing_data(self):
        """Clear cached quotes and resolved geographies after plan or pricing data changes."""
        count = len(self.cache)
        self.cache.clear()
        if self.builder.geography_cache is not None:
            self.builder.geography_cache.clear()
        logger.info(f"QUOTE: Pricing data changed, cleared {count} cached quotes")

    def clear_cache(self):
        self.cache.clear()

    def shutdown(self, cancel_pending: bool = False):
        self.coordinator.shutdown(cancel_pending=cancel_pending)
        if self.scheduler is not None:
            self.scheduler.shutdown(drop_waiting_jobs=cancel_pending)

    def _get_group(self, group_id: str) -> Group:
        group = self.groups.get_group(group_id)
        if group is None:
            raise GroupNotFound(f"Group {group_id} not found", {'group_id': group_id})
        return group

    @staticmethod
    def _coerce_filters(filters: FilterInput) -> QuoteFilters:
        if isinstance(filters, QuoteFilters):
            return filters
        return QuoteFilters.from_dict(filters)
