"""
PostgreSQL-backed GeoResolver, PlanCatalog and PricingLookup.

Connection failures surface as ExternalCallError without a status code so the
rate scheduler treats them as transient and retries.
"""

import logging
from datetime import date
from typing import Optional

import pandas as pd
import psycopg2

from database import DatabaseConnection
from queries import PlanQueries, normalize_zip
from quote_engine import Market
from quote_engine.errors import ExternalCallError, NotFoundError
from quote_engine.models import (
    CatalogFilters,
    County,
    CountyResolution,
    PlanCandidate,
    PlanPage,
    PremiumBreakdown,
)
from quote_engine.services.collaborators import GeoResolver, PlanCatalog, PricingLookup

logger = logging.getLogger(__name__)


def _run(query_fn, *args, **kwargs) -> pd.DataFrame:
    try:
        return query_fn(*args, **kwargs)
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        raise ExternalCallError(f"Database unavailable: {type(e).__name__}") from e


class DatabaseGeoResolver(GeoResolver):

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def resolve_county(self, zip_code: str) -> CountyResolution:
        df = _run(PlanQueries.get_counties_by_zip, self.db, zip_code)
        if df.empty:
            raise NotFoundError(f"ZIP code {normalize_zip(zip_code)} not found",
                                {'zip_code': zip_code})
        counties = tuple(
            County(
                county_id=str(row['county_id']),
                name=str(row['county_name']),
                state=str(row['state_code']),
                rating_area_id=str(row['rating_area_id']),
            )
            for _, row in df.iterrows()
        )
        return CountyResolution(counties=counties)


class DatabasePlanCatalog(PlanCatalog):

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def get_plans_for_county(self, county_id: str, filters: CatalogFilters) -> PlanPage:
        df = _run(
            PlanQueries.get_plans_for_county,
            self.db, county_id,
            on_market=filters.on_market,
            off_market=filters.off_market,
            metal_levels=list(filters.metal_levels),
            carriers=list(filters.carriers),
            hsa_eligible=filters.hsa_eligible,
            page=filters.page,
            page_size=filters.page_size,
        )
        if df.empty:
            return PlanPage(plans=[], total=0, page=filters.page, page_size=filters.page_size)

        plans = [
            PlanCandidate(
                plan_id=str(row['plan_id']),
                plan_name=str(row['plan_name']),
                carrier=str(row['carrier_name']),
                metal_level=str(row['metal_level']),
                market=Market.ON if bool(row['on_market']) else Market.OFF,
                plan_type=str(row['plan_type'] or ''),
                hsa_eligible=bool(row['hsa_eligible']),
                active=bool(row['is_active']),
                deductible=_optional_amount(row.get('individual_deductible')),
                out_of_pocket_max=_optional_amount(row.get('individual_oop_max')),
            )
            for _, row in df.iterrows()
        ]
        return PlanPage(
            plans=plans,
            total=int(df['total_count'].iloc[0]),
            page=filters.page,
            page_size=filters.page_size,
        )


class DatabasePricingLookup(PricingLookup):

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def get_premium(self, plan_id: str, rating_area_id: str, age: int,
                    tobacco: bool, as_of: date) -> float:
        return self.get_premium_breakdown(plan_id, rating_area_id, age, tobacco, as_of).total_premium

    def get_premium_breakdown(self, plan_id: str, rating_area_id: str, age: int,
                              tobacco: bool, as_of: date) -> PremiumBreakdown:
        """Both rates come from one row, so tobacco users cost a single query."""
        df = _run(PlanQueries.get_plan_rate, self.db, plan_id, rating_area_id, age, as_of)
        if df.empty:
            raise NotFoundError(
                f"No pricing for plan {plan_id} in rating area {rating_area_id}",
                {'plan_id': plan_id, 'rating_area_id': rating_area_id, 'age': age},
            )

        row = df.iloc[0]
        base = row['individual_rate']
        if pd.isna(base):
            raise NotFoundError(f"No premium for plan {plan_id} at age {age}",
                                {'plan_id': plan_id, 'age': age})
        base = float(base)
        # Rates without a tobacco column carry no surcharge
        if tobacco and pd.notna(row['tobacco_rate']):
            return PremiumBreakdown(base_premium=base, tobacco_surcharge=float(row['tobacco_rate']) - base)
        return PremiumBreakdown(base_premium=base)


def _optional_amount(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)
