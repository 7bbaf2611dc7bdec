"""
Utility functions for the quote engine.
"""

from .cache import TTLCache
from .calculations import (
    percentage,
    member_cost,
    contribution_for_member,
    apply_contribution,
    top_offers,
    market_summary,
    build_member_summary,
    cost_comparison,
    plan_statistics,
)

__all__ = [
    'TTLCache',
    'percentage',
    'member_cost',
    'contribution_for_member',
    'apply_contribution',
    'top_offers',
    'market_summary',
    'build_member_summary',
    'cost_comparison',
    'plan_statistics',
]
