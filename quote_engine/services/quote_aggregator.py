"""
Quote Aggregator

Rolls member quote results into employer and employee comparisons against
prior coverage and assembles the QuoteResult. Every total is recomputed from
the member results passed in, so the same inputs always give the same summary.
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from quote_engine.errors import NoPlansAvailable
from quote_engine.models import (
    AffordabilityCalculation,
    ComparisonSummary,
    EmployerSummary,
    MemberQuoteResult,
    MemberSkip,
    QuoteFilters,
    QuoteResult,
    SelectedPlan,
    SubsidyAnalysis,
)
from quote_engine.services.affordability_coordinator import AffordabilityCoordinator
from quote_engine.utils.calculations import cost_comparison, percentage, plan_statistics

logger = logging.getLogger(__name__)


def build_comparison_summary(member_quotes: Sequence[MemberQuoteResult],
                             affordability: Optional[AffordabilityCalculation]) -> ComparisonSummary:
    """
    Employer, employee and overall cost comparison for the given members.

    Old costs come from each member's previous contribution; new costs from
    the ICHRA contribution (employer) and best-plan out-of-pocket (employee).

    Raises:
        ComplianceDataUnavailable: affordability is missing or not completed
    """
    calculation = AffordabilityCoordinator.require_completed(affordability)

    old_employer = sum(mq.member.previous_contribution.employer for mq in member_quotes)
    new_employer = sum(mq.member_summary.ichra_contribution for mq in member_quotes)
    old_employee = sum(mq.member.previous_contribution.member for mq in member_quotes)
    new_employee = sum(mq.member_summary.best_plan_cost for mq in member_quotes)

    employer = cost_comparison(old_employer, new_employer)
    employees = cost_comparison(old_employee, new_employee)
    overall = cost_comparison(old_employer + old_employee, new_employer + new_employee)

    total = len(member_quotes)
    eligible = [mq for mq in member_quotes if mq.member_summary.subsidy_eligible]
    average_subsidy = (
        sum(mq.subsidy.monthly_subsidy for mq in eligible) / len(eligible) if eligible else 0.0
    )

    return ComparisonSummary(
        employer=employer,
        employees=employees,
        overall=overall,
        total_employees=total,
        average_savings_per_employee=employees.monthly_savings / total if total else 0.0,
        compliance_rate=calculation.compliance_rate,
        compliance_count=calculation.summary.affordable_members,
        employees_with_savings=sum(1 for mq in member_quotes if mq.member_summary.best_plan_savings > 0),
        employees_with_increases=sum(1 for mq in member_quotes if mq.member_summary.best_plan_savings < 0),
        subsidy_analysis=SubsidyAnalysis(
            eligible_count=len(eligible),
            total_members=total,
            eligibility_rate=percentage(len(eligible), total),
            average_subsidy=average_subsidy,
        ),
        plan_analysis=plan_statistics(member_quotes),
    )


def build_employer_summary(comparison: ComparisonSummary) -> EmployerSummary:
    employer = comparison.employer
    total = comparison.total_employees
    return EmployerSummary(
        old_total_cost=employer.old_monthly_cost,
        new_total_cost=employer.new_monthly_cost,
        monthly_savings=employer.monthly_savings,
        annual_savings=employer.annual_savings,
        savings_percentage=employer.savings_percentage,
        total_members=total,
        average_savings_per_member=employer.monthly_savings / total if total else 0.0,
    )


def aggregate_selected_plans(member_quotes: Sequence[MemberQuoteResult]) -> List[SelectedPlan]:
    """Group members by their best plan."""
    plans: Dict[str, dict] = {}
    for mq in member_quotes:
        best = mq.best_plan
        if best is None:
            continue
        entry = plans.setdefault(best.plan_id, {
            'plan_id': best.plan_id,
            'plan_name': best.plan_name,
            'carrier': best.carrier,
            'metal_level': best.metal_level,
            'market': best.market.value,
            'member_count': 0,
            'total_premium': 0.0,
            'total_employer_contribution': 0.0,
            'total_member_contribution': 0.0,
        })
        entry['member_count'] += 1
        entry['total_premium'] += best.effective_premium
        entry['total_employer_contribution'] += best.effective_premium - best.member_cost
        entry['total_member_contribution'] += best.member_cost
    return [SelectedPlan(**entry) for entry in plans.values()]


class QuoteAggregator:
    """Assembles QuoteResult objects."""

    def __init__(self, now=datetime.now, id_factory=None):
        self._now = now
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    def aggregate(self, group_id: str, member_quotes: Sequence[MemberQuoteResult],
                  skipped: Sequence[MemberSkip],
                  affordability: Optional[AffordabilityCalculation],
                  filters: QuoteFilters) -> QuoteResult:
        """
        Raises:
            NoPlansAvailable: every member was skipped
            ComplianceDataUnavailable: affordability is missing or not completed
        """
        if not member_quotes:
            raise NoPlansAvailable(
                f"No members of group {group_id} could be quoted",
                {'group_id': group_id, 'skipped_members': [s.to_dict() for s in skipped]},
            )

        comparison = build_comparison_summary(member_quotes, affordability)
        employer_summary = build_employer_summary(comparison)

        logger.info(
            f"QUOTE: Group {group_id} employer ${employer_summary.old_total_cost:,.2f} -> "
            f"${employer_summary.new_total_cost:,.2f} "
            f"({employer_summary.savings_percentage:.1f}% savings), "
            f"{len(member_quotes)} quoted, {len(skipped)} skipped"
        )

        return QuoteResult(
            quote_id=self._id_factory(),
            group_id=group_id,
            generated_at=self._now(),
            filters=filters,
            employer_summary=employer_summary,
            comparison_summary=comparison,
            member_quotes=tuple(member_quotes),
            selected_plans=tuple(aggregate_selected_plans(member_quotes)),
            skipped_members=tuple(skipped),
            affordability_calculation_id=affordability.calculation_id,
        )
