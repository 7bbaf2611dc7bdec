"""
Interfaces for the external collaborators the engine consumes.

The engine never resolves geography, reads the plan catalog, or looks up
premiums itself. It calls these interfaces through the RateScheduler.
PostgreSQL-backed implementations live in database_collaborators.py and the
HTTP affordability client in affordability_client.py.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List

from quote_engine.models import (
    AffordabilityRequest,
    CatalogFilters,
    CountyResolution,
    PlanCandidate,
    PlanPage,
    PremiumBreakdown,
)


class GeoResolver(ABC):

    @abstractmethod
    def resolve_county(self, zip_code: str) -> CountyResolution:
        """
        Resolve a ZIP code to its county (or counties).

        Raises:
            NotFoundError: unknown or malformed ZIP
        """


class PlanCatalog(ABC):

    @abstractmethod
    def get_plans_for_county(self, county_id: str, filters: CatalogFilters) -> PlanPage:
        """One page of active plans sold in a county under the given filters."""


class PricingLookup(ABC):

    @abstractmethod
    def get_premium(self, plan_id: str, rating_area_id: str, age: int,
                    tobacco: bool, as_of: date) -> float:
        """
        Monthly premium for one enrollee.

        Raises:
            NotFoundError: no rate on file for the plan/area/age
        """

    def get_premium_breakdown(self, plan_id: str, rating_area_id: str, age: int,
                              tobacco: bool, as_of: date) -> PremiumBreakdown:
        """
        Base premium and tobacco surcharge for one enrollee.

        Tobacco users cost a second lookup for the non-tobacco rate unless an
        implementation can return both at once.
        """
        total = self.get_premium(plan_id, rating_area_id, age, tobacco, as_of)
        if not tobacco:
            return PremiumBreakdown(base_premium=total)
        base = self.get_premium(plan_id, rating_area_id, age, False, as_of)
        return PremiumBreakdown(base_premium=base, tobacco_surcharge=total - base)


class ExternalAffordabilityAPI(ABC):
    """Group-level ICHRA affordability service. Calculations complete asynchronously."""

    @abstractmethod
    def submit(self, group_external_id: str, request: AffordabilityRequest) -> Dict[str, Any]:
        """Start a calculation. Returns ``{'calculation_id', 'status'}``."""

    @abstractmethod
    def get(self, calculation_id: str) -> Dict[str, Any]:
        """Returns ``{'status', 'overall_affordability', 'summary'}``."""

    @abstractmethod
    def get_members(self, calculation_id: str) -> List[Dict[str, Any]]:
        """Per-member compliance determinations for a completed calculation."""


def fetch_all_plans(catalog: PlanCatalog, county_id: str, filters: CatalogFilters,
                    execute=None) -> List[PlanCandidate]:
    """
    Walk every page of ``get_plans_for_county``.

    ``execute(fn, *args)`` runs each page request, normally through the
    RateScheduler; when omitted the catalog is called directly.
    """
    plans: List[PlanCandidate] = []
    page = filters.page
    while True:
        page_filters = replace(filters, page=page)
        if execute is None:
            result = catalog.get_plans_for_county(county_id, page_filters)
        else:
            result = execute(catalog.get_plans_for_county, county_id, page_filters)
        plans.extend(p for p in result.plans if p.active)
        if not result.plans or not result.has_next:
            return plans
        page += 1
