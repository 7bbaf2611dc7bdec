"""
ICHRA Quote Engine

Turns a group's census, the marketplace plan catalog, and premium tables into a
priced, compliance-annotated ICHRA quote.

Pipeline:
- RateScheduler gates every external lookup and the affordability endpoint
- MemberQuoteBuilder prices each member's plans net of subsidy and ICHRA
- AffordabilityCoordinator runs the group-level affordability calculation
- QuoteAggregator rolls members into employer/employee comparisons
- FilterReapplier re-derives comparisons from a stored quote without new calls
"""

from enum import Enum


class Market(Enum):
    """Plan distribution channel. Only on-market plans can carry a subsidy."""
    ON = "on-market"
    OFF = "off-market"


class MarketFilter(Enum):
    """Market restriction applied by quote filters."""
    ALL = "all"
    ON_MARKET = "on-market"
    OFF_MARKET = "off-market"

    def allows(self, market: Market) -> bool:
        if self is MarketFilter.ALL:
            return True
        return self.value == market.value


class CalculationStatus(Enum):
    """Status reported by the external affordability service."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AffordabilityPhase(Enum):
    """
    Lifecycle of a group affordability calculation.

    NOT_STARTED -> SUBMITTED -> WAITING_SYNC | POLLING_BACKGROUND -> COMPLETED | FAILED
    """
    NOT_STARTED = "not_started"
    SUBMITTED = "submitted"
    WAITING_SYNC = "waiting_sync"
    POLLING_BACKGROUND = "polling_background"
    COMPLETED = "completed"
    FAILED = "failed"


class QuoteStatus(Enum):
    ACTIVE = "active"
    EXPIRED = "expired"


__all__ = [
    'Market',
    'MarketFilter',
    'CalculationStatus',
    'AffordabilityPhase',
    'QuoteStatus',
]
