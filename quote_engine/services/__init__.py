"""
Services for the quote engine.

Rate limiting, collaborator interfaces and adapters, per-member pricing,
affordability coordination, aggregation and re-filtering.
"""

from .rate_scheduler import (
    RateScheduler,
    RateLimiter,
    LimiterSettings,
    EXTERNAL_SERVICE,
    AFFORDABILITY_SERVICE,
)
from .collaborators import (
    GeoResolver,
    PlanCatalog,
    PricingLookup,
    ExternalAffordabilityAPI,
)
from .stores import (
    GroupRepository,
    QuoteStore,
    AffordabilityStore,
    InMemoryGroupRepository,
    InMemoryQuoteStore,
    InMemoryAffordabilityStore,
)
from .benchmark_selector import BenchmarkSelector
from .member_quote_builder import MemberQuoteBuilder
from .affordability_coordinator import AffordabilityCoordinator, BackgroundRetry
from .quote_aggregator import QuoteAggregator
from .filter_reapplier import FilterReapplier
from .quote_service import QuoteService

__all__ = [
    'RateScheduler',
    'RateLimiter',
    'LimiterSettings',
    'EXTERNAL_SERVICE',
    'AFFORDABILITY_SERVICE',
    'GeoResolver',
    'PlanCatalog',
    'PricingLookup',
    'ExternalAffordabilityAPI',
    'GroupRepository',
    'QuoteStore',
    'AffordabilityStore',
    'InMemoryGroupRepository',
    'InMemoryQuoteStore',
    'InMemoryAffordabilityStore',
    'BenchmarkSelector',
    'MemberQuoteBuilder',
    'AffordabilityCoordinator',
    'BackgroundRetry',
    'QuoteAggregator',
    'FilterReapplier',
    'QuoteService',
]
