"""
Filter Reapplier

Re-derives a quote's recommendations and comparisons under new filters from
the offers already priced in the stored quote. Makes no external calls and
never modifies the stored quote.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from quote_engine.models import (
    AffordabilityCalculation,
    FilteredQuoteView,
    MemberQuoteResult,
    QuoteFilters,
    QuoteResult,
)
from quote_engine.services.quote_aggregator import build_comparison_summary
from quote_engine.utils.calculations import build_member_summary, top_offers

logger = logging.getLogger(__name__)


class FilterReapplier:

    def __init__(self, now=datetime.now):
        self._now = now

    def filter_member(self, member_quote: MemberQuoteResult, filters: QuoteFilters) -> MemberQuoteResult:
        """A copy of ``member_quote`` holding only the offers that pass ``filters``."""
        offers = [o for o in member_quote.plan_offers if filters.matches(o)]
        recommended = top_offers(offers, 'effective_premium')
        best_plan = recommended[0] if recommended else None
        return replace(
            member_quote,
            plan_offers=tuple(offers),
            recommended_plans=tuple(recommended),
            best_plan=best_plan,
            member_summary=build_member_summary(
                member_quote.contribution, best_plan, offers, member_quote.subsidy.eligible),
        )

    def apply(self, quote: QuoteResult, filters: QuoteFilters,
              affordability: Optional[AffordabilityCalculation]) -> FilteredQuoteView:
        """
        Raises:
            ComplianceDataUnavailable: the group's affordability is not completed
        """
        member_quotes = tuple(self.filter_member(mq, filters) for mq in quote.member_quotes)
        comparison = build_comparison_summary(member_quotes, affordability)

        without_match = sum(1 for mq in member_quotes if mq.best_plan is None)
        logger.info(
            f"QUOTE: Re-filtered quote {quote.quote_id} with {filters.to_dict()}, "
            f"{without_match} of {len(member_quotes)} members without a matching plan"
        )

        return FilteredQuoteView(
            quote_id=quote.quote_id,
            group_id=quote.group_id,
            applied_filters=filters,
            member_quotes=member_quotes,
            comparison_summary=comparison,
            generated_at=quote.generated_at,
            filtered_at=self._now(),
        )
