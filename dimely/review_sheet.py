"""
Review sheet assembly for generated billing actions.
"""

from datetime import datetime, timezone
from typing import List, Optional

from .models import BillingAction, BillingActionType, Opportunity, ReviewSheet, RiskLevel


def needs_manual_review(action: BillingAction) -> bool:
    return (
        action.requires_review
        or action.risk_level == RiskLevel.HIGH
        or "ERROR" in action.description
    )


def estimate_total_impact(actions: List[BillingAction]) -> int:
    """Net monetary effect in cents. Credits subtract; error actions carry no money."""
    total = 0
    for action in actions:
        if action.amount_in_cents is None or action.type == BillingActionType.ERROR:
            continue
        if action.type == BillingActionType.APPLY_CREDIT:
            total -= action.amount_in_cents
        else:
            total += action.amount_in_cents
    return total


def generate_review_sheet(
    opportunity: Opportunity,
    actions: List[BillingAction],
    generated_at: Optional[str] = None,
) -> ReviewSheet:
    """
    Summarize billing actions for human review.

    Args:
        opportunity: Opportunity the actions were generated for
        actions: Ordered billing actions from the engine
        generated_at: ISO timestamp; defaults to now (UTC)

    Returns:
        ReviewSheet with counts, net impact, warnings and the review flag
    """
    high_risk = [a for a in actions if a.risk_level == RiskLevel.HIGH]
    warnings = [
        f"{a.type.value}: {a.description}"
        for a in actions
        if a.risk_level == RiskLevel.HIGH or "ERROR" in a.description
    ]
    impact = estimate_total_impact(actions)
    review_count = sum(1 for a in actions if needs_manual_review(a))

    summary = (
        f"{opportunity.order_type_label} opportunity '{opportunity.opportunity_name or opportunity.id}' "
        f"for {opportunity.account_name or opportunity.account_id}: {len(actions)} action(s), "
        f"{review_count} requiring review, net impact ${impact / 100:,.2f}"
    )

    return ReviewSheet(
        opportunity_id=opportunity.id,
        opportunity_name=opportunity.opportunity_name,
        account_name=opportunity.account_name,
        total_actions=len(actions),
        high_risk_actions=len(high_risk),
        estimated_total_impact=impact,
        billing_actions=actions,
        summary=summary,
        warnings=warnings,
        manual_review_required=review_count > 0,
        generated_at=generated_at or datetime.now(timezone.utc).isoformat(),
    )
