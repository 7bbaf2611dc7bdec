"""
Test Suite for the per-member quote pipeline

Standard market (county c1): Silver s1/s2/s3 at 100/120/150, on-market Gold
g1 at 500, off-market Bronze ob1 at 300 and off-market HSA Gold og1 at 650.
Benchmark is s2 at 120.
"""

import unittest
from dataclasses import replace

from fakes import (
    EFFECTIVE_DATE,
    FakeGeoResolver,
    FakePlanCatalog,
    FakePricingLookup,
    COUNTY_A,
    full_time_class,
    make_scheduler,
    member,
    plan,
    standard_market,
)
from quote_engine import Market, MarketFilter
from quote_engine.errors import (
    GeographyNotResolved,
    NoPlansAvailable,
    NoSilverBenchmarkAvailable,
)
from quote_engine.models import AgeBandContribution, QuoteFilters
from quote_engine.services.member_quote_builder import MemberQuoteBuilder
from quote_engine.utils.cache import TTLCache

NO_FILTERS = QuoteFilters()


def make_builder(market=None, geography_cache=None) -> MemberQuoteBuilder:
    geo, catalog, pricing = market or standard_market()
    return MemberQuoteBuilder(make_scheduler(), geo, catalog, pricing, geography_cache=geography_cache)


def offer_by_id(result, plan_id):
    return next(o for o in result.plan_offers if o.plan_id == plan_id)


# =============================================================================
# OFFERS AND SAVINGS
# =============================================================================

class TestOffers(unittest.TestCase):
    """Member at 254% FPL: no subsidy against a 120 benchmark."""

    def setUp(self):
        self.result = make_builder().build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)

    def test_all_markets_priced(self):
        self.assertEqual(len(self.result.plan_offers), 6)
        self.assertEqual(len(self.result.on_market_offers), 4)
        self.assertEqual(len(self.result.off_market_offers), 2)

    def test_best_plan_is_cheapest(self):
        self.assertEqual(self.result.best_plan.plan_id, 's1')
        self.assertEqual([o.plan_id for o in self.result.recommended_plans],
                         ['s1', 's2', 's3', 'ob1', 'g1', 'og1'])

    def test_member_cost_never_negative(self):
        for offer in self.result.plan_offers:
            self.assertGreaterEqual(offer.member_cost, 0.0)
        self.assertEqual(offer_by_id(self.result, 's1').member_cost, 0.0)
        self.assertEqual(offer_by_id(self.result, 'og1').member_cost, 250.0)

    def test_savings_against_previous_total(self):
        """Previous coverage cost 700 (500 employer + 200 member)."""
        gold = offer_by_id(self.result, 'g1')
        self.assertEqual(gold.monthly_savings, 200.0)
        self.assertEqual(gold.annual_savings, 2400.0)
        self.assertAlmostEqual(gold.savings_percentage, 200 / 700 * 100)

    def test_ineligible_member_pays_full_premium(self):
        self.assertFalse(self.result.subsidy.eligible)
        for offer in self.result.on_market_offers:
            self.assertFalse(offer.is_subsidized)
            self.assertEqual(offer.effective_premium, offer.full_premium)

    def test_member_summary(self):
        summary = self.result.member_summary
        self.assertEqual(summary.ichra_contribution, 400.0)
        self.assertEqual(summary.best_plan_cost, 0.0)
        self.assertEqual(summary.best_plan_savings, 600.0)
        self.assertEqual(summary.plan_options_count.total, 6)

    def test_to_dict_splits_markets(self):
        data = self.result.to_dict()
        self.assertEqual(len(data['plan_options']['on_market']), 4)
        self.assertEqual(len(data['plan_options']['off_market']), 2)
        self.assertEqual(data['best_plan']['plan_id'], 's1')
        self.assertEqual(data['previous_plan']['total_cost'], 700.0)

    def test_recommended_limited_to_ten(self):
        plans = [plan(f"s{i:02d}") for i in range(15)]
        premiums = {p.plan_id: 100.0 + i for i, p in enumerate(plans)}
        builder = make_builder((FakeGeoResolver({'78701': [COUNTY_A]}),
                                FakePlanCatalog({'c1': plans}), FakePricingLookup(premiums)))
        result = builder.build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)

        self.assertEqual(len(result.plan_offers), 15)
        self.assertEqual(len(result.recommended_plans), 10)


class TestSubsidizedOffers(unittest.TestCase):
    """Member at 100% FPL: full benchmark subsidy of 120."""

    def setUp(self):
        self.result = make_builder().build(member(income=20440, household_size=2),
                                           full_time_class(), NO_FILTERS, EFFECTIVE_DATE)

    def test_subsidy_applied_to_on_market_only(self):
        self.assertEqual(self.result.subsidy.monthly_subsidy, 120.0)
        silver = offer_by_id(self.result, 's3')
        self.assertTrue(silver.is_subsidized)
        self.assertEqual(silver.monthly_subsidy, 120.0)
        self.assertEqual(silver.effective_premium, 30.0)

        off_market = offer_by_id(self.result, 'og1')
        self.assertFalse(off_market.is_subsidized)
        self.assertEqual(off_market.effective_premium, 650.0)

    def test_subsidized_premium_floored_at_zero(self):
        self.assertEqual(offer_by_id(self.result, 's1').effective_premium, 0.0)

    def test_summary_reports_eligibility(self):
        self.assertTrue(self.result.member_summary.subsidy_eligible)

    def test_market_summaries(self):
        """On-market effective premiums after the 120 subsidy: 0, 0, 30, 380."""
        on_market = self.result.member_summary.on_market_summary
        self.assertEqual(on_market.plan_count, 4)
        self.assertAlmostEqual(on_market.average_full_premium, 217.5)
        self.assertAlmostEqual(on_market.average_subsidized_premium, 102.5)
        self.assertAlmostEqual(on_market.average_savings, 115.0)
        self.assertEqual(on_market.plans_with_zero_premium, 2)

        off_market = self.result.member_summary.off_market_summary
        self.assertEqual(off_market.plan_count, 2)
        self.assertAlmostEqual(off_market.average_full_premium, 475.0)
        self.assertAlmostEqual(off_market.average_savings, 0.0)
        self.assertEqual(off_market.plans_with_zero_premium, 0)

    def test_market_summaries_in_to_dict(self):
        summary = self.result.to_dict()['member_summary']
        self.assertEqual(summary['on_market_summary']['plans_with_zero_premium'], 2)
        self.assertEqual(summary['off_market_summary']['plan_count'], 2)


# =============================================================================
# PLAN DETAILS
# =============================================================================

class TestPlanDetails(unittest.TestCase):

    def test_deductible_and_out_of_pocket_max_carried_to_offers(self):
        plans = [replace(plan('s1'), deductible=2500.0, out_of_pocket_max=8000.0), plan('s2')]
        builder = make_builder((FakeGeoResolver({'78701': [COUNTY_A]}),
                                FakePlanCatalog({'c1': plans}),
                                FakePricingLookup({'s1': 100.0, 's2': 120.0})))
        result = builder.build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)

        s1 = offer_by_id(result, 's1')
        self.assertEqual(s1.deductible, 2500.0)
        self.assertEqual(s1.out_of_pocket_max, 8000.0)
        self.assertIsNone(offer_by_id(result, 's2').deductible)

    def test_tobacco_surcharge_broken_out(self):
        geo, catalog, _ = standard_market()
        pricing = FakePricingLookup({'s1': 100.0, 's2': 120.0, 's3': 150.0, 'g1': 500.0,
                                     'ob1': 300.0, 'og1': 650.0}, tobacco_surcharge=25.0)
        result = make_builder((geo, catalog, pricing)).build(
            member(tobacco=True), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)

        s1 = offer_by_id(result, 's1')
        self.assertEqual(s1.base_premium, 100.0)
        self.assertEqual(s1.tobacco_surcharge, 25.0)
        self.assertEqual(s1.full_premium, 125.0)
        self.assertEqual(s1.to_dict()['premium_details'],
                         {'base_premium': 100.0, 'tobacco_surcharge': 25.0})

    def test_non_tobacco_member_has_no_surcharge(self):
        result = make_builder().build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)
        for offer in result.plan_offers:
            self.assertEqual(offer.tobacco_surcharge, 0.0)
            self.assertEqual(offer.base_premium, offer.full_premium)


# =============================================================================
# HOUSEHOLD DEFAULTS AND CONTRIBUTIONS
# =============================================================================

class TestHouseholdDefaults(unittest.TestCase):

    def test_missing_household_data_defaulted_and_flagged(self):
        builder = make_builder()
        result = builder.build(member(income=None, household_size=None, dependents=1),
                               full_time_class(), NO_FILTERS, EFFECTIVE_DATE)

        self.assertEqual(result.defaults_applied, ('household_income', 'household_size'))
        self.assertEqual(result.subsidy.fpl_amount, 20440)
        self.assertAlmostEqual(result.subsidy.fpl_percentage, 50000 / 20440 * 100)

    def test_complete_household_has_no_defaults(self):
        result = make_builder().build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)
        self.assertEqual(result.defaults_applied, ())

    def test_household_for_single_member(self):
        household, defaults = make_builder().household_for(member(income=None, household_size=None))
        self.assertEqual(household.income, 50000)
        self.assertEqual(household.size, 1)
        self.assertEqual(defaults, ['household_income', 'household_size'])


class TestContributions(unittest.TestCase):

    def test_age_band_upper_bound_inclusive(self):
        bands = (
            AgeBandContribution(18, 40, 250.0),
            AgeBandContribution(41, 64, 450.0),
        )
        result = make_builder().build(member(age=40), full_time_class(bands=bands),
                                      NO_FILTERS, EFFECTIVE_DATE)
        self.assertEqual(result.contribution.employee, 250.0)
        self.assertEqual(offer_by_id(result, 'g1').member_cost, 250.0)

    def test_age_outside_bands_uses_flat_contribution(self):
        bands = (AgeBandContribution(18, 29, 250.0),)
        result = make_builder().build(member(age=40), full_time_class(employee=375.0, bands=bands),
                                      NO_FILTERS, EFFECTIVE_DATE)
        self.assertEqual(result.contribution.employee, 375.0)

    def test_no_class_means_zero_contribution(self):
        result = make_builder().build(member(class_id=None), None, NO_FILTERS, EFFECTIVE_DATE)
        self.assertEqual(result.contribution.employee, 0.0)
        for offer in result.plan_offers:
            self.assertEqual(offer.member_cost, offer.effective_premium)


# =============================================================================
# GEOGRAPHY AND FAILURES
# =============================================================================

class TestGeography(unittest.TestCase):

    def test_malformed_zip_rejected_without_lookup(self):
        geo, catalog, pricing = standard_market()
        builder = make_builder((geo, catalog, pricing))
        for bad in ('7870', '787011', 'abcde', ''):
            with self.assertRaises(GeographyNotResolved):
                builder.resolve_geography(bad)
        self.assertEqual(geo.counter.calls, 0)

    def test_unknown_zip(self):
        with self.assertRaises(GeographyNotResolved) as ctx:
            make_builder().build(member(zip_code='99999'), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)
        self.assertEqual(ctx.exception.code, 'GEOGRAPHY_NOT_RESOLVED')

    def test_multi_county_zip_uses_first_county(self):
        geography = make_builder().resolve_geography('78613')
        self.assertEqual(geography.county_id, 'c1')
        self.assertEqual(geography.rating_area_id, 'ra1')

    def test_geography_cache_avoids_repeat_lookups(self):
        geo, catalog, pricing = standard_market()
        builder = make_builder((geo, catalog, pricing), geography_cache=TTLCache(16, 300))
        builder.build(member('m1'), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)
        builder.build(member('m2'), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)
        self.assertEqual(geo.counter.calls, 1)


class TestFailures(unittest.TestCase):

    def test_no_matching_plans(self):
        filters = QuoteFilters(carriers=('Nobody',))
        with self.assertRaises(NoPlansAvailable):
            make_builder().build(member(), full_time_class(), filters, EFFECTIVE_DATE)

    def test_no_silver_benchmark(self):
        market = (
            FakeGeoResolver({'78701': [COUNTY_A]}),
            FakePlanCatalog({'c1': [plan('ob1', 'Bronze', Market.OFF)]}),
            FakePricingLookup({'ob1': 300.0}),
        )
        with self.assertRaises(NoSilverBenchmarkAvailable):
            make_builder(market).build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)

    def test_degraded_benchmark_flagged(self):
        market = (
            FakeGeoResolver({'78701': [COUNTY_A]}),
            FakePlanCatalog({'c1': [plan('s1'), plan('g1', 'Gold')]}),
            FakePricingLookup({'s1': 300.0, 'g1': 400.0}),
        )
        result = make_builder(market).build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)
        self.assertTrue(result.subsidy.benchmark_degraded)
        self.assertEqual(result.subsidy.benchmark_premium, 300.0)


# =============================================================================
# FILTERS AND CALL ECONOMY
# =============================================================================

class TestFiltersAndCalls(unittest.TestCase):

    def test_on_market_filter_skips_off_market_catalog(self):
        filters = QuoteFilters(market=MarketFilter.ON_MARKET)
        result = make_builder().build(member(), full_time_class(), filters, EFFECTIVE_DATE)
        self.assertEqual(result.off_market_offers, [])
        self.assertEqual(len(result.on_market_offers), 4)

    def test_carrier_and_hsa_filters(self):
        filters = QuoteFilters(carriers=('gamma',), hsa_eligible=True)
        result = make_builder().build(member(), full_time_class(), filters, EFFECTIVE_DATE)
        self.assertEqual([o.plan_id for o in result.plan_offers], ['og1'])

    def test_each_plan_priced_once(self):
        """Silver plans priced for the benchmark are reused for the offers."""
        geo, catalog, pricing = standard_market()
        make_builder((geo, catalog, pricing)).build(member(), full_time_class(), NO_FILTERS, EFFECTIVE_DATE)
        self.assertEqual(pricing.counter.calls, 6)


if __name__ == '__main__':
    unittest.main()
