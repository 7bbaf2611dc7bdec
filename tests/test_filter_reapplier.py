"""
Test Suite for re-filtering stored quotes
"""

import unittest
from datetime import datetime

from fakes import make_service
from quote_engine import AffordabilityPhase, CalculationStatus, MarketFilter
from quote_engine.errors import ComplianceDataUnavailable
from quote_engine.models import AffordabilityCalculation, QuoteFilters
from quote_engine.services.filter_reapplier import FilterReapplier


class FilterReapplierTestCase(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        service, _, _ = make_service()
        cls.quote = service.generate_group_quote('g1')
        cls.affordability = service.coordinator.store.get(cls.quote.affordability_calculation_id)
        service.shutdown()

    def setUp(self):
        self.reapplier = FilterReapplier(now=lambda: datetime(2025, 2, 1, 9, 0))


class TestApply(FilterReapplierTestCase):

    def test_no_filters_reproduces_quote(self):
        view = self.reapplier.apply(self.quote, QuoteFilters(), self.affordability)

        self.assertEqual(view.comparison_summary, self.quote.comparison_summary)
        for original, filtered in zip(self.quote.member_quotes, view.member_quotes):
            self.assertEqual(filtered.best_plan, original.best_plan)
            self.assertEqual(filtered.recommended_plans, original.recommended_plans)

    def test_unknown_carrier_leaves_members_without_plans(self):
        view = self.reapplier.apply(self.quote, QuoteFilters(carriers=('Nobody',)), self.affordability)

        for member_quote in view.member_quotes:
            self.assertEqual(member_quote.recommended_plans, ())
            self.assertIsNone(member_quote.best_plan)
            self.assertEqual(member_quote.member_summary.best_plan_cost, 0.0)
            self.assertEqual(member_quote.member_summary.plan_options_count.total, 0)
        self.assertIsNone(view.to_dict()['member_quotes'][0]['best_plan'])

    def test_comparison_keeps_original_baseline(self):
        """Prior costs come from the census, whatever the filter."""
        view = self.reapplier.apply(self.quote, QuoteFilters(metal_levels=('gold',)), self.affordability)
        employees = view.comparison_summary.employees

        self.assertEqual(employees.old_monthly_cost, 400.0)
        # m1: g1 500 - 400 = 100; m2: g1 380 - 400 -> 0
        self.assertEqual(employees.new_monthly_cost, 100.0)
        self.assertEqual(view.comparison_summary.employer.old_monthly_cost, 1000.0)

    def test_market_filter(self):
        view = self.reapplier.apply(self.quote, QuoteFilters(market=MarketFilter.OFF_MARKET),
                                    self.affordability)
        for member_quote in view.member_quotes:
            self.assertEqual(member_quote.on_market_offers, [])
            self.assertEqual(member_quote.best_plan.plan_id, 'ob1')

    def test_stored_quote_untouched(self):
        self.reapplier.apply(self.quote, QuoteFilters(carriers=('Nobody',)), self.affordability)
        for member_quote in self.quote.member_quotes:
            self.assertEqual(len(member_quote.plan_offers), 6)
            self.assertEqual(member_quote.best_plan.plan_id, 's1')

    def test_view_metadata(self):
        filters = QuoteFilters(hsa_eligible=True)
        view = self.reapplier.apply(self.quote, filters, self.affordability)
        self.assertEqual(view.applied_filters, filters)
        self.assertEqual(view.generated_at, self.quote.generated_at)
        self.assertEqual(view.filtered_at, datetime(2025, 2, 1, 9, 0))

    def test_incomplete_affordability_rejected(self):
        pending = AffordabilityCalculation('calc-x', 'g1', CalculationStatus.PENDING,
                                           AffordabilityPhase.POLLING_BACKGROUND)
        with self.assertRaises(ComplianceDataUnavailable):
            self.reapplier.apply(self.quote, QuoteFilters(), pending)


class TestFilterMember(FilterReapplierTestCase):

    def test_recommendations_rebuilt_from_matching_offers(self):
        member_quote = self.quote.member_quote('m2')
        filtered = self.reapplier.filter_member(member_quote, QuoteFilters(carriers=('acme',)))

        self.assertEqual([o.plan_id for o in filtered.recommended_plans], ['s1', 's2', 's3'])
        self.assertEqual(filtered.member_summary.plan_options_count.on_market, 3)
        self.assertEqual(filtered.member_summary.plan_options_count.off_market, 0)
        self.assertTrue(filtered.member_summary.subsidy_eligible)


if __name__ == '__main__':
    unittest.main()
