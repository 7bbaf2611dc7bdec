"""
SQL queries for the ICHRA Quote Engine
Geography, plan catalog and premium lookups against the plan/pricing database

Tables:
    zip_counties (zip_code, county_id, rating_area_id)
    counties (county_id, county_name, state_code)
    plans (plan_id, plan_name, carrier_name, metal_level, plan_type,
           on_market, off_market, hsa_eligible, is_active)
    plan_counties (plan_id, county_id)
    pricings (plan_id, rating_area_id, age_band, individual_rate,
              tobacco_rate, effective_date, expiration_date)
"""

import logging
from datetime import date
from typing import List, Optional

import pandas as pd

from database import DatabaseConnection

logger = logging.getLogger(__name__)


def normalize_zip(zip_code: str) -> str:
    """Handle ZIP+4 format (e.g., "29654-7352" -> "29654") and ensure 5 digits"""
    return str(zip_code).strip().split('-')[0].zfill(5)[:5]


def get_age_band(age: int) -> str:
    """
    Convert age to premium rating age band.

    Logic:
        - Ages 0-14: "0-14" (single rate)
        - Ages 15-63: exact age as string (e.g., "35")
        - Ages 64+: "64 and over"
    """
    if age <= 14:
        return "0-14"
    elif age >= 64:
        return "64 and over"
    return str(age)


class PlanQueries:
    """SQL queries for geography, plan and pricing retrieval"""

    @staticmethod
    def get_counties_by_zip(db: DatabaseConnection, zip_code: str) -> pd.DataFrame:
        """
        Get every county (with rating area) a ZIP code maps to

        Args:
            db: Database connection
            zip_code: 5-digit ZIP code (ZIP+4 accepted)

        Returns:
            DataFrame with county_id, county_name, state_code, rating_area_id,
            ordered so the primary county comes first
        """
        zip_code = normalize_zip(zip_code)
        logger.debug(f"ZIP LOOKUP: Looking up {zip_code}")

        query = """
        SELECT
            c.county_id,
            c.county_name,
            c.state_code,
            zc.rating_area_id
        FROM zip_counties zc
        JOIN counties c ON c.county_id = zc.county_id
        WHERE zc.zip_code = %s
        ORDER BY zc.county_id
        """
        return db.execute_query(query, (zip_code,))

    @staticmethod
    def get_plans_for_county(db: DatabaseConnection, county_id: str,
                             on_market: bool = True, off_market: bool = True,
                             metal_levels: Optional[List[str]] = None,
                             carriers: Optional[List[str]] = None,
                             hsa_eligible: Optional[bool] = None,
                             page: int = 1, page_size: int = 20) -> pd.DataFrame:
        """
        Get one page of active plans sold in a county

        Plans flagged both on- and off-market are returned as on-market.

        Args:
            db: Database connection
            county_id: County identifier
            on_market: Include on-market (exchange) plans
            off_market: Include off-market plans
            metal_levels: Bronze, Silver, Gold, Platinum, Catastrophic (case-insensitive)
            carriers: Carrier names (case-insensitive exact match)
            hsa_eligible: Restrict to HSA-eligible (True) or ineligible (False) plans
            page: 1-based page number
            page_size: Plans per page

        Returns:
            DataFrame of plans (individual deductible and out-of-pocket max may be NULL)
            with a total_count column (total matches across pages)
        """
        if not on_market and not off_market:
            return pd.DataFrame()

        query = """
        SELECT
            p.plan_id,
            p.plan_name,
            p.carrier_name,
            p.metal_level,
            p.plan_type,
            p.on_market,
            p.hsa_eligible,
            p.is_active,
            p.individual_deductible,
            p.individual_oop_max,
            COUNT(*) OVER () AS total_count
        FROM plans p
        JOIN plan_counties pc ON pc.plan_id = p.plan_id
        WHERE pc.county_id = %s
            AND p.is_active = TRUE
        """
        params: list = [county_id]

        if on_market and not off_market:
            query += " AND p.on_market = TRUE"
        elif off_market and not on_market:
            query += " AND p.off_market = TRUE AND p.on_market = FALSE"

        if metal_levels:
            query += " AND LOWER(p.metal_level) = ANY(%s)"
            params.append([m.lower() for m in metal_levels])

        if carriers:
            query += " AND LOWER(p.carrier_name) = ANY(%s)"
            params.append([c.lower() for c in carriers])

        if hsa_eligible is not None:
            query += " AND p.hsa_eligible = %s"
            params.append(hsa_eligible)

        query += " ORDER BY p.plan_id LIMIT %s OFFSET %s"
        params.extend([page_size, (page - 1) * page_size])

        return db.execute_query(query, tuple(params))

    @staticmethod
    def get_plan_rate(db: DatabaseConnection, plan_id: str, rating_area_id: str,
                      age: int, as_of: date) -> pd.DataFrame:
        """
        Get the premium rate row for one plan, rating area and age in effect on a date

        Args:
            db: Database connection
            plan_id: Plan identifier
            rating_area_id: Rating area identifier
            age: Enrollee age (mapped to its rating age band)
            as_of: Date the rate must be effective on

        Returns:
            DataFrame with individual_rate and tobacco_rate (at most one row)
        """
        query = """
        SELECT
            pr.plan_id,
            pr.age_band,
            pr.individual_rate,
            pr.tobacco_rate
        FROM pricings pr
        WHERE pr.plan_id = %s
            AND pr.rating_area_id = %s
            AND pr.age_band = %s
            AND pr.effective_date <= %s
            AND pr.expiration_date >= %s
        ORDER BY pr.effective_date DESC
        LIMIT 1
        """
        result = db.execute_query(query, (plan_id, rating_area_id, get_age_band(age), as_of, as_of))
        if result.empty:
            logger.warning(f"No rate found for plan_id={plan_id}, age={age}, rating_area={rating_area_id}")
        return result
