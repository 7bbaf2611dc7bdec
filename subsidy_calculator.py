"""
ACA Premium Tax Credit (Subsidy) Calculator

Pure functions that turn household income and size plus a benchmark premium
into a monthly premium tax credit. No I/O.

Key concepts:
- SLCSP (Second Lowest Cost Silver Plan): the benchmark premium
- FPL (Federal Poverty Level): determines the applicable percentage of income
- Applicable percentage: share of income the household is expected to pay
  toward the benchmark plan; above 400% FPL the household is ineligible
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union

from constants import (
    FPL_TABLES,
    DEFAULT_FPL_YEAR,
    ACA_APPLICABLE_PERCENTAGE_TIERS,
    ACA_SUBSIDY_FPL_CAP,
)


@dataclass(frozen=True)
class Eligible:
    """Household qualifies for a premium tax credit at ``percentage`` of income."""
    percentage: float


@dataclass(frozen=True)
class Ineligible:
    """Household income is above the subsidy cliff."""
    reason: str = f"Income exceeds {ACA_SUBSIDY_FPL_CAP}% FPL"


ApplicablePercentage = Union[Eligible, Ineligible]


@dataclass(frozen=True)
class SubsidyResult:
    """Subsidy calculation for one member in one quote run."""
    fpl_amount: float
    fpl_percentage: float
    applicable_percentage: Optional[float]  # None when ineligible
    expected_contribution: float
    benchmark_premium: float
    monthly_subsidy: float
    eligible: bool
    benchmark_degraded: bool = False
    defaults_applied: List[str] = field(default_factory=list)

    @property
    def annual_subsidy(self) -> float:
        return self.monthly_subsidy * 12

    def to_dict(self) -> dict:
        return {
            'fpl_amount': self.fpl_amount,
            'fpl_percentage': round(self.fpl_percentage, 1),
            'applicable_percentage': self.applicable_percentage,
            'expected_contribution': round(self.expected_contribution, 2),
            'benchmark_premium': round(self.benchmark_premium, 2),
            'monthly_subsidy': round(self.monthly_subsidy, 2),
            'annual_subsidy': round(self.annual_subsidy, 2),
            'eligible': self.eligible,
            'benchmark_degraded': self.benchmark_degraded,
            'defaults_applied': list(self.defaults_applied),
        }


def get_fpl_for_household(household_size: int, fpl_year: int = DEFAULT_FPL_YEAR) -> float:
    """
    Get Federal Poverty Level for a given household size.

    Args:
        household_size: Number of people in household (1-8+)
        fpl_year: Coverage year; unknown years use the latest table

    Returns:
        Annual FPL in dollars
    """
    if household_size < 1:
        raise ValueError(f"Household size must be at least 1, got {household_size}")

    if fpl_year in FPL_TABLES:
        fpl_table, per_additional = FPL_TABLES[fpl_year]
    else:
        fpl_table, per_additional = FPL_TABLES[max(FPL_TABLES)]

    # Cap at 8 for direct lookup, add per-person for larger households
    if household_size <= 8:
        return fpl_table[household_size]
    return fpl_table[8] + (household_size - 8) * per_additional


def get_applicable_percentage(fpl_percentage: float) -> ApplicablePercentage:
    """
    Get the applicable percentage of income for ACA subsidy calculation.

    Tier upper bounds are inclusive: exactly 150% FPL pays 0%, exactly 400%
    pays 8.5%, and anything above 400% is Ineligible.

    Args:
        fpl_percentage: Household income as percentage of FPL (e.g., 200 for 200% FPL)

    Returns:
        Eligible(percentage) or Ineligible()
    """
    for upper_bound, percentage in ACA_APPLICABLE_PERCENTAGE_TIERS:
        if fpl_percentage <= upper_bound:
            return Eligible(percentage)
    return Ineligible()


def compute_subsidy(
    benchmark_premium: float,
    income: float,
    household_size: int,
    fpl_year: int = DEFAULT_FPL_YEAR,
    benchmark_degraded: bool = False,
    defaults_applied: Optional[List[str]] = None,
) -> SubsidyResult:
    """
    Calculate the monthly ACA premium tax credit.

    Args:
        benchmark_premium: Monthly SLCSP premium for the member
        income: Annual household income in dollars
        household_size: Number of people in household
        fpl_year: Coverage year used to pick the FPL table
        benchmark_degraded: True when the benchmark fell back to the only Silver plan
        defaults_applied: Household fields that were defaulted, carried onto the result

    Returns:
        SubsidyResult. ``monthly_subsidy`` is never negative, and is zero for
        ineligible households regardless of the arithmetic.
    """
    fpl_amount = get_fpl_for_household(household_size, fpl_year)
    fpl_percentage = (income / fpl_amount) * 100
    applicable = get_applicable_percentage(fpl_percentage)

    if isinstance(applicable, Ineligible):
        return SubsidyResult(
            fpl_amount=fpl_amount,
            fpl_percentage=fpl_percentage,
            applicable_percentage=None,
            expected_contribution=income / 12,
            benchmark_premium=benchmark_premium,
            monthly_subsidy=0.0,
            eligible=False,
            benchmark_degraded=benchmark_degraded,
            defaults_applied=list(defaults_applied or []),
        )

    # Expected contribution: what the household pays toward the benchmark plan
    monthly_expected = income * (applicable.percentage / 100) / 12
    subsidy = max(0.0, benchmark_premium - monthly_expected)

    return SubsidyResult(
        fpl_amount=fpl_amount,
        fpl_percentage=fpl_percentage,
        applicable_percentage=applicable.percentage,
        expected_contribution=monthly_expected,
        benchmark_premium=benchmark_premium,
        monthly_subsidy=subsidy,
        eligible=subsidy > 0,
        benchmark_degraded=benchmark_degraded,
        defaults_applied=list(defaults_applied or []),
    )
