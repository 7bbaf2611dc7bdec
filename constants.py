"""
Constants and reference data for the ICHRA Quote Engine
Includes FPL tables, ACA subsidy tiers, and quote/rate-limit defaults
"""

# Metal levels for ACA marketplace plans
METAL_LEVELS = [
    "Bronze",
    "Silver",
    "Gold",
    "Platinum",
    "Catastrophic"
]

# Metal level used for the ACA benchmark plan (SLCSP)
BENCHMARK_METAL_LEVEL = "Silver"

# Market filter values accepted by quote filters
MARKET_ALL = "all"
MARKET_ON = "on-market"
MARKET_OFF = "off-market"
MARKET_FILTER_VALUES = [MARKET_ALL, MARKET_ON, MARKET_OFF]

# ==============================================================================
# FEDERAL POVERTY LEVEL (FPL)
# ==============================================================================
# Source: HHS Poverty Guidelines (48 contiguous states + DC)
# Used for ACA premium tax credit eligibility, keyed by household size

FPL_2024_BY_HOUSEHOLD_SIZE = {
    1: 15060,
    2: 20440,
    3: 25820,
    4: 31200,
    5: 36580,
    6: 41960,
    7: 47340,
    8: 52720,
}
FPL_2024_PER_ADDITIONAL_PERSON = 5380

# Coverage year 2025 subsidies are determined from the 2024 guidelines
FPL_TABLES = {
    2024: (FPL_2024_BY_HOUSEHOLD_SIZE, FPL_2024_PER_ADDITIONAL_PERSON),
    2025: (FPL_2024_BY_HOUSEHOLD_SIZE, FPL_2024_PER_ADDITIONAL_PERSON),
}
DEFAULT_FPL_YEAR = 2025

# ==============================================================================
# ACA APPLICABLE PERCENTAGE TIERS
# ==============================================================================
# (upper FPL % bound inclusive, applicable % of income)
# Households above ACA_SUBSIDY_FPL_CAP are ineligible for a premium tax credit

ACA_APPLICABLE_PERCENTAGE_TIERS = [
    (150, 0.0),
    (200, 2.0),
    (250, 4.0),
    (300, 6.0),
    (400, 8.5),
]
ACA_SUBSIDY_FPL_CAP = 400

# ==============================================================================
# MEMBER DEFAULTS
# ==============================================================================
# Income assumed when the census omits it (household size falls back to the
# member plus dependents). Always reported on the member result.

DEFAULT_HOUSEHOLD_INCOME = 50000

# ==============================================================================
# QUOTE DEFAULTS
# ==============================================================================

RECOMMENDED_PLAN_LIMIT = 10
QUOTE_CACHE_TTL_SECONDS = 300  # 5 minutes
QUOTE_CACHE_CAPACITY = 256
QUOTE_EXPIRY_DAYS = 30
PLAN_CATALOG_PAGE_SIZE = 20
DEFAULT_MEMBER_WORKERS = 8

# ==============================================================================
# EXTERNAL RATE LIMITS
# ==============================================================================
# Production: 100 calls/minute. Trial: 5 calls/minute plus a lifetime cap.

RATE_LIMIT_PRODUCTION_PER_MINUTE = 100
RATE_LIMIT_TRIAL_PER_MINUTE = 5
RATE_LIMIT_TRIAL_LIFETIME_CAP = 100
RATE_LIMIT_REFRESH_INTERVAL_SECONDS = 60
RATE_LIMIT_MAX_CONCURRENT = 2
RATE_LIMIT_MIN_TIME_SECONDS = 0.6
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_RETRY_BASE_SECONDS = 1.0
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

# Affordability endpoint: lifetime quota, single concurrency
AFFORDABILITY_LIFETIME_LIMIT = 10
AFFORDABILITY_MAX_CONCURRENT = 1
AFFORDABILITY_MIN_TIME_SECONDS = 1.0

# ==============================================================================
# AFFORDABILITY CALCULATION LIFECYCLE
# ==============================================================================

AFFORDABILITY_SYNC_WAIT_SECONDS = 6.0
AFFORDABILITY_BACKGROUND_DELAY_SECONDS = 5.0
AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS = 1
AFFORDABILITY_RATING_AREA_LOCATION = "work"
AFFORDABILITY_API_TIMEOUT_SECONDS = 30


if __name__ == "__main__":
    # Print constants for verification
    print("FPL by Household Size:")
    for size, amount in FPL_2024_BY_HOUSEHOLD_SIZE.items():
        print(f"  {size}: ${amount:,}")
    print(f"  each additional: ${FPL_2024_PER_ADDITIONAL_PERSON:,}")
    print("\nApplicable Percentage Tiers:")
    for upper, pct in ACA_APPLICABLE_PERCENTAGE_TIERS:
        print(f"  <= {upper}% FPL: {pct}%")
    print(f"  > {ACA_SUBSIDY_FPL_CAP}% FPL: ineligible")
