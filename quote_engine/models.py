"""
Quote Engine Types
Dataclasses for groups, members, plan offers, affordability and quote results
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from constants import (
    MARKET_FILTER_VALUES,
    METAL_LEVELS,
    PLAN_CATALOG_PAGE_SIZE,
    QUOTE_EXPIRY_DAYS,
)
from quote_engine import (
    AffordabilityPhase,
    CalculationStatus,
    Market,
    MarketFilter,
    QuoteStatus,
)
from quote_engine.errors import InvalidFilterInput
from subsidy_calculator import SubsidyResult


# ==============================================================================
# GROUP / MEMBER CENSUS
# ==============================================================================

@dataclass(frozen=True)
class Household:
    """Household inputs to the subsidy calculation."""
    income: float
    size: int


@dataclass(frozen=True)
class PreviousContribution:
    """What the member and employer paid under the prior group plan (monthly)."""
    employer: float = 0.0
    member: float = 0.0
    plan_name: str = ""

    @property
    def total_cost(self) -> float:
        return self.employer + self.member


@dataclass(frozen=True)
class Member:
    """
    Immutable census snapshot of one covered employee.

    ``household_income`` and ``household_size`` are optional; the quote
    builder applies defaults and records that it did so.
    """
    id: str
    age: int
    zip_code: str
    tobacco_use: bool = False
    dependents_count: int = 0
    class_id: Optional[str] = None
    previous_contribution: PreviousContribution = field(default_factory=PreviousContribution)
    household_income: Optional[float] = None
    household_size: Optional[int] = None
    name: str = ""

    @property
    def family_size(self) -> int:
        return 1 + self.dependents_count

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Contribution:
    """Monthly ICHRA contribution resolved for one member."""
    employee: float = 0.0
    dependent: float = 0.0

    @property
    def total(self) -> float:
        return self.employee + self.dependent


@dataclass(frozen=True)
class AgeBandContribution:
    """Contribution tier for members with min_age <= age <= max_age."""
    min_age: int
    max_age: int
    employee_contribution: float
    dependent_contribution: float = 0.0

    def contains(self, age: int) -> bool:
        return self.min_age <= age <= self.max_age


@dataclass(frozen=True)
class ICHRAClass:
    """
    An employee class with its ICHRA contribution rules.
    Age bands, when present, take precedence over the flat contribution.
    """
    id: str
    name: str
    employee_contribution: float = 0.0
    dependent_contribution: float = 0.0
    age_bands: Tuple[AgeBandContribution, ...] = ()

    def contribution_for_age(self, age: int) -> Contribution:
        for band in self.age_bands:
            if band.contains(age):
                return Contribution(band.employee_contribution, band.dependent_contribution)
        return Contribution(self.employee_contribution, self.dependent_contribution)


@dataclass(frozen=True)
class Group:
    """An employer group and its census."""
    id: str
    name: str
    external_id: str
    effective_date: date
    members: Tuple[Member, ...] = ()
    classes: Tuple[ICHRAClass, ...] = ()

    @property
    def plan_year(self) -> int:
        return self.effective_date.year

    def class_by_id(self, class_id: Optional[str]) -> Optional[ICHRAClass]:
        if class_id is None:
            return None
        for ichra_class in self.classes:
            if ichra_class.id == class_id:
                return ichra_class
        return None


# ==============================================================================
# GEOGRAPHY
# ==============================================================================

@dataclass(frozen=True)
class County:
    county_id: str
    name: str
    state: str
    rating_area_id: str


@dataclass(frozen=True)
class CountyResolution:
    """Counties a ZIP code maps to. Multi-county ZIPs use the first."""
    counties: Tuple[County, ...]

    @property
    def single(self) -> bool:
        return len(self.counties) == 1

    @property
    def primary(self) -> County:
        return self.counties[0]


@dataclass(frozen=True)
class RatingGeography:
    county_id: str
    rating_area_id: str
    county_name: str = ""
    state: str = ""

    @classmethod
    def from_county(cls, county: County) -> "RatingGeography":
        return cls(
            county_id=county.county_id,
            rating_area_id=county.rating_area_id,
            county_name=county.name,
            state=county.state,
        )


# ==============================================================================
# PLAN CATALOG
# ==============================================================================

@dataclass(frozen=True)
class CatalogFilters:
    """Filters passed to PlanCatalog.get_plans_for_county."""
    on_market: bool = True
    off_market: bool = True
    metal_levels: Tuple[str, ...] = ()
    carriers: Tuple[str, ...] = ()
    hsa_eligible: Optional[bool] = None
    page: int = 1
    page_size: int = PLAN_CATALOG_PAGE_SIZE


@dataclass(frozen=True)
class PlanCandidate:
    """A catalog plan before pricing."""
    plan_id: str
    plan_name: str
    carrier: str
    metal_level: str
    market: Market
    plan_type: str = ""
    hsa_eligible: bool = False
    active: bool = True
    deductible: Optional[float] = None
    out_of_pocket_max: Optional[float] = None


@dataclass
class PlanPage:
    plans: List[PlanCandidate]
    total: int
    page: int
    page_size: int

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total


@dataclass(frozen=True)
class PremiumBreakdown:
    """One enrollee's monthly rate split into the base rate and tobacco surcharge."""
    base_premium: float
    tobacco_surcharge: float = 0.0

    @property
    def total_premium(self) -> float:
        return self.base_premium + self.tobacco_surcharge


# ==============================================================================
# PLAN OFFERS
# ==============================================================================

@dataclass(frozen=True)
class PlanOffer:
    """
    A priced plan for one member. Use OnMarketOffer or OffMarketOffer.

    ``effective_premium`` is what the member's household pays before ICHRA:
    the subsidized premium for eligible on-market offers, otherwise the
    full premium.
    """
    market: ClassVar[Market]

    plan_id: str
    plan_name: str
    carrier: str
    metal_level: str
    full_premium: float
    effective_premium: float
    plan_type: str = ""
    hsa_eligible: bool = False
    deductible: Optional[float] = None
    out_of_pocket_max: Optional[float] = None
    base_premium: float = 0.0
    tobacco_surcharge: float = 0.0
    ichra_contribution: float = 0.0
    member_cost: float = 0.0
    monthly_savings: float = 0.0
    annual_savings: float = 0.0
    savings_percentage: float = 0.0

    @property
    def is_subsidized(self) -> bool:
        return False

    def to_dict(self) -> dict:
        data = asdict(self)
        data['market'] = self.market.value
        data['is_subsidized'] = self.is_subsidized
        data['is_positive_savings'] = self.monthly_savings > 0
        data['premium_details'] = {
            'base_premium': data.pop('base_premium'),
            'tobacco_surcharge': data.pop('tobacco_surcharge'),
        }
        return data


@dataclass(frozen=True)
class OnMarketOffer(PlanOffer):
    market: ClassVar[Market] = Market.ON

    monthly_subsidy: float = 0.0
    subsidized_premium: float = 0.0
    subsidy_applied: bool = False

    @property
    def is_subsidized(self) -> bool:
        return self.subsidy_applied


@dataclass(frozen=True)
class OffMarketOffer(PlanOffer):
    market: ClassVar[Market] = Market.OFF


@dataclass(frozen=True)
class BenchmarkResult:
    benchmark_premium: float
    benchmark_plan_id: str
    lowest_premium: float
    total_silver_plans: int
    degraded: bool = False


# ==============================================================================
# MEMBER RESULTS
# ==============================================================================

@dataclass(frozen=True)
class PlanOptionsCount:
    on_market: int = 0
    off_market: int = 0

    @property
    def total(self) -> int:
        return self.on_market + self.off_market

    def to_dict(self) -> dict:
        return {'on_market': self.on_market, 'off_market': self.off_market, 'total': self.total}


@dataclass(frozen=True)
class MarketSummary:
    """Premium averages over one market's offers. Savings are full minus effective premium."""
    plan_count: int = 0
    average_full_premium: float = 0.0
    average_subsidized_premium: float = 0.0
    average_savings: float = 0.0
    plans_with_zero_premium: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MemberSummary:
    ichra_contribution: float
    best_plan_cost: float
    best_plan_savings: float
    subsidy_eligible: bool
    plan_options_count: PlanOptionsCount
    on_market_summary: MarketSummary = field(default_factory=MarketSummary)
    off_market_summary: MarketSummary = field(default_factory=MarketSummary)

    def to_dict(self) -> dict:
        return {
            'ichra_contribution': self.ichra_contribution,
            'best_plan_cost': self.best_plan_cost,
            'best_plan_savings': self.best_plan_savings,
            'subsidy_eligible': self.subsidy_eligible,
            'plan_options_count': self.plan_options_count.to_dict(),
            'on_market_summary': self.on_market_summary.to_dict(),
            'off_market_summary': self.off_market_summary.to_dict(),
        }


@dataclass(frozen=True)
class MemberQuoteResult:
    """All priced offers for one member, with their best plan and summary."""
    member: Member
    geography: RatingGeography
    subsidy: SubsidyResult
    contribution: Contribution
    plan_offers: Tuple[PlanOffer, ...]
    recommended_plans: Tuple[PlanOffer, ...]
    best_plan: Optional[PlanOffer]
    member_summary: MemberSummary
    defaults_applied: Tuple[str, ...] = ()

    @property
    def previous_total_cost(self) -> float:
        return self.member.previous_contribution.total_cost

    @property
    def on_market_offers(self) -> List[PlanOffer]:
        return [o for o in self.plan_offers if o.market is Market.ON]

    @property
    def off_market_offers(self) -> List[PlanOffer]:
        return [o for o in self.plan_offers if o.market is Market.OFF]

    def to_dict(self) -> dict:
        member = self.member
        return {
            'member_id': member.id,
            'member_name': member.display_name,
            'age': member.age,
            'zip_code': member.zip_code,
            'tobacco_use': member.tobacco_use,
            'family_size': member.family_size,
            'previous_plan': {
                'plan_name': member.previous_contribution.plan_name,
                'employer_contribution': member.previous_contribution.employer,
                'member_contribution': member.previous_contribution.member,
                'total_cost': self.previous_total_cost,
            },
            'geography': asdict(self.geography),
            'subsidy': self.subsidy.to_dict(),
            'ichra_contribution': asdict(self.contribution),
            'plan_options': {
                'on_market': [o.to_dict() for o in self.on_market_offers],
                'off_market': [o.to_dict() for o in self.off_market_offers],
            },
            'recommended_plans': [o.to_dict() for o in self.recommended_plans],
            'best_plan': self.best_plan.to_dict() if self.best_plan else None,
            'member_summary': self.member_summary.to_dict(),
            'defaults_applied': list(self.defaults_applied),
        }


@dataclass(frozen=True)
class MemberSkip:
    """A member left out of the quote, and why."""
    member_id: str
    code: str
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


# ==============================================================================
# AFFORDABILITY
# ==============================================================================

@dataclass(frozen=True)
class AffordabilityRequest:
    effective_date: date
    plan_year: int
    rating_area_location: str = "work"

    def to_payload(self) -> dict:
        return {
            'ichra_affordability_calculation': {
                'effective_date': self.effective_date.isoformat(),
                'plan_year': self.plan_year,
                'rating_area_location': self.rating_area_location,
            }
        }


@dataclass(frozen=True)
class MemberCompliance:
    """Per-member affordability determination, taken verbatim from the service."""
    member_id: str
    is_affordable: bool
    benchmark_premium: float = 0.0
    minimum_contribution: float = 0.0
    maximum_employee_cost: float = 0.0
    actual_contribution: float = 0.0
    affordability_threshold: float = 0.0
    compliance_status: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "MemberCompliance":
        return cls(
            member_id=str(data.get('member_id', '')),
            is_affordable=bool(data.get('is_affordable', False)),
            benchmark_premium=float(data.get('benchmark_premium') or 0),
            minimum_contribution=float(data.get('minimum_contribution') or 0),
            maximum_employee_cost=float(data.get('maximum_employee_cost') or 0),
            actual_contribution=float(data.get('actual_contribution') or 0),
            affordability_threshold=float(data.get('affordability_threshold') or 0),
            compliance_status=str(data.get('compliance_status') or ''),
        )


@dataclass(frozen=True)
class AffordabilitySummary:
    total_members: int
    affordable_members: int
    non_affordable_members: int
    average_benchmark_premium: float = 0.0
    total_minimum_contribution: float = 0.0
    compliance_percentage: float = 0.0

    def __post_init__(self):
        if self.affordable_members > self.total_members:
            raise ValueError(
                f"affordable_members ({self.affordable_members}) exceeds "
                f"total_members ({self.total_members})"
            )

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "AffordabilitySummary":
        return cls(
            total_members=int(data.get('total_members') or 0),
            affordable_members=int(data.get('affordable_members') or 0),
            non_affordable_members=int(data.get('non_affordable_members') or 0),
            average_benchmark_premium=float(data.get('average_benchmark_premium') or 0),
            total_minimum_contribution=float(data.get('total_minimum_contribution') or 0),
            compliance_percentage=float(data.get('compliance_percentage') or 0),
        )


@dataclass(frozen=True)
class AffordabilityCalculation:
    """A group's external affordability calculation at one point in its lifecycle."""
    calculation_id: str
    group_id: str
    status: CalculationStatus
    phase: AffordabilityPhase
    member_results: Tuple[MemberCompliance, ...] = ()
    summary: Optional[AffordabilitySummary] = None
    overall_affordability: Optional[bool] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_completed(self) -> bool:
        return self.status is CalculationStatus.COMPLETED and self.summary is not None

    @property
    def compliance_rate(self) -> float:
        """Percentage of members whose ICHRA offer is affordable."""
        if not self.summary or self.summary.total_members == 0:
            return 0.0
        return self.summary.affordable_members / self.summary.total_members * 100

    def to_dict(self) -> dict:
        return {
            'calculation_id': self.calculation_id,
            'group_id': self.group_id,
            'status': self.status.value,
            'phase': self.phase.value,
            'member_results': [asdict(r) for r in self.member_results],
            'summary': asdict(self.summary) if self.summary else None,
            'overall_affordability': self.overall_affordability,
            'compliance_rate': self.compliance_rate,
            'error': self.error,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }


# ==============================================================================
# FILTERS
# ==============================================================================

@dataclass(frozen=True)
class QuoteFilters:
    """Carrier / metal level / market / HSA restrictions for a quote."""
    carriers: Tuple[str, ...] = ()
    metal_levels: Tuple[str, ...] = ()
    market: MarketFilter = MarketFilter.ALL
    hsa_eligible: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QuoteFilters":
        """
        Build filters from request data.

        Accepts ``carrier``/``carriers`` and ``metal_level``/``metal_levels``
        as a string or list, ``market`` as one of all/on-market/off-market.

        Raises:
            InvalidFilterInput: when a value has the wrong type or the market is unknown
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidFilterInput("Filters must be an object", {'filters': repr(data)})

        carriers = _as_string_tuple(data.get('carriers', data.get('carrier')), 'carrier')
        metal_levels = _as_string_tuple(data.get('metal_levels', data.get('metal_level')), 'metal_level')
        known_metals = {m.lower() for m in METAL_LEVELS}
        unknown = [m for m in metal_levels if m.lower() not in known_metals]
        if unknown:
            raise InvalidFilterInput(
                f"Unknown metal level(s): {', '.join(unknown)}",
                {'metal_levels': unknown, 'allowed': METAL_LEVELS},
            )

        market_value = data.get('market') or MarketFilter.ALL.value
        if isinstance(market_value, MarketFilter):
            market = market_value
        elif market_value in MARKET_FILTER_VALUES:
            market = MarketFilter(market_value)
        else:
            raise InvalidFilterInput(
                f"Invalid market filter '{market_value}'",
                {'market': market_value, 'allowed': MARKET_FILTER_VALUES},
            )

        hsa_eligible = data.get('hsa_eligible')
        if hsa_eligible is not None and not isinstance(hsa_eligible, bool):
            raise InvalidFilterInput("hsa_eligible must be true, false or null",
                                     {'hsa_eligible': hsa_eligible})

        return cls(carriers=carriers, metal_levels=metal_levels,
                   market=market, hsa_eligible=hsa_eligible)

    def cache_key(self) -> tuple:
        """Order- and case-independent key for caching quotes."""
        return (
            tuple(sorted(c.lower() for c in self.carriers)),
            tuple(sorted(m.lower() for m in self.metal_levels)),
            self.market.value,
            self.hsa_eligible,
        )

    def matches(self, offer: PlanOffer) -> bool:
        if self.carriers and offer.carrier.lower() not in {c.lower() for c in self.carriers}:
            return False
        if self.metal_levels and offer.metal_level.lower() not in {m.lower() for m in self.metal_levels}:
            return False
        if not self.market.allows(offer.market):
            return False
        if self.hsa_eligible is not None and offer.hsa_eligible != self.hsa_eligible:
            return False
        return True

    def to_catalog_filters(self, market: Market, page: int = 1,
                           page_size: int = PLAN_CATALOG_PAGE_SIZE) -> CatalogFilters:
        """Catalog query for one side of the market."""
        return CatalogFilters(
            on_market=market is Market.ON,
            off_market=market is Market.OFF,
            metal_levels=self.metal_levels,
            carriers=self.carriers,
            hsa_eligible=self.hsa_eligible,
            page=page,
            page_size=page_size,
        )

    def to_dict(self) -> dict:
        return {
            'carriers': list(self.carriers),
            'metal_levels': list(self.metal_levels),
            'market': self.market.value,
            'hsa_eligible': self.hsa_eligible,
        }


def _as_string_tuple(value: Any, name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise InvalidFilterInput(f"{name} must be a string or list of strings", {name: repr(value)})
    return tuple(v.strip() for v in value if v.strip())


# ==============================================================================
# QUOTE RESULTS
# ==============================================================================

@dataclass(frozen=True)
class CostComparison:
    old_monthly_cost: float
    new_monthly_cost: float
    monthly_savings: float
    annual_savings: float
    savings_percentage: float


@dataclass(frozen=True)
class SubsidyAnalysis:
    eligible_count: int
    total_members: int
    eligibility_rate: float
    average_subsidy: float


@dataclass(frozen=True)
class PlanAnalysis:
    total_plans: int
    total_on_market_plans: int
    total_off_market_plans: int
    average_plans_per_member: float
    average_premium: float
    lowest_premium: float
    highest_premium: float


@dataclass(frozen=True)
class ComparisonSummary:
    employer: CostComparison
    employees: CostComparison
    overall: CostComparison
    total_employees: int
    average_savings_per_employee: float
    compliance_rate: float
    compliance_count: int
    employees_with_savings: int
    employees_with_increases: int
    subsidy_analysis: SubsidyAnalysis
    plan_analysis: PlanAnalysis

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EmployerSummary:
    old_total_cost: float
    new_total_cost: float
    monthly_savings: float
    annual_savings: float
    savings_percentage: float
    total_members: int
    average_savings_per_member: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SelectedPlan:
    """A plan chosen as best plan by one or more members."""
    plan_id: str
    plan_name: str
    carrier: str
    metal_level: str
    market: str
    member_count: int
    total_premium: float
    total_employer_contribution: float
    total_member_contribution: float

    @property
    def average_premium(self) -> float:
        return self.total_premium / self.member_count if self.member_count else 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data['average_premium'] = self.average_premium
        return data


@dataclass(frozen=True)
class QuoteResult:
    """Root aggregate of a quote run."""
    quote_id: str
    group_id: str
    generated_at: datetime
    filters: QuoteFilters
    employer_summary: EmployerSummary
    comparison_summary: ComparisonSummary
    member_quotes: Tuple[MemberQuoteResult, ...]
    selected_plans: Tuple[SelectedPlan, ...] = ()
    skipped_members: Tuple[MemberSkip, ...] = ()
    affordability_calculation_id: Optional[str] = None
    status: QuoteStatus = QuoteStatus.ACTIVE
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        if self.expires_at is None:
            object.__setattr__(self, 'expires_at',
                               self.generated_at + timedelta(days=QUOTE_EXPIRY_DAYS))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now()) >= self.expires_at

    def member_quote(self, member_id: str) -> Optional[MemberQuoteResult]:
        for member_quote in self.member_quotes:
            if member_quote.member.id == member_id:
                return member_quote
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for persistence / JSON serialization."""
        return {
            'quote_id': self.quote_id,
            'group_id': self.group_id,
            'generated_at': self.generated_at.isoformat(),
            'filters': self.filters.to_dict(),
            'employer_summary': self.employer_summary.to_dict(),
            'comparison_summary': self.comparison_summary.to_dict(),
            'member_quotes': [mq.to_dict() for mq in self.member_quotes],
            'selected_plans': [p.to_dict() for p in self.selected_plans],
            'skipped_members': [s.to_dict() for s in self.skipped_members],
            'affordability_calculation_id': self.affordability_calculation_id,
            'status': self.status.value,
            'expires_at': self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class FilteredQuoteView:
    """A re-filtered reading of a stored quote. The stored quote is untouched."""
    quote_id: str
    group_id: str
    applied_filters: QuoteFilters
    member_quotes: Tuple[MemberQuoteResult, ...]
    comparison_summary: ComparisonSummary
    generated_at: datetime
    filtered_at: datetime

    def to_dict(self) -> dict:
        return {
            'quote_id': self.quote_id,
            'group_id': self.group_id,
            'applied_filters': self.applied_filters.to_dict(),
            'member_quotes': [mq.to_dict() for mq in self.member_quotes],
            'comparison_summary': self.comparison_summary.to_dict(),
            'generated_at': self.generated_at.isoformat(),
            'filtered_at': self.filtered_at.isoformat(),
        }
