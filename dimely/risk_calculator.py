"""
Risk scoring for opportunities and individual billing amounts.

Pure functions: no clock, no I/O. Malformed contract dates raise
InvalidDateError and must be reported by the caller.
"""

from typing import List, Sequence, Tuple

from .models import BillingPeriod, LineItem, Opportunity, RiskAssessment, RiskLevel
from .validation_utils import parse_date

# Amount tiers in dollars
LOW_RISK_AMOUNT = 1000
MEDIUM_RISK_AMOUNT = 5000

# Aggregate score thresholds
LOW_RISK_SCORE = 10
MEDIUM_RISK_SCORE = 20

SubScore = Tuple[int, List[str]]


class RiskCalculator:
    """Scores amounts and whole opportunities into low/medium/high risk."""

    def score_amount(self, amount: float) -> RiskLevel:
        """Map a dollar amount to a risk level."""
        if amount <= LOW_RISK_AMOUNT:
            return RiskLevel.LOW
        if amount <= MEDIUM_RISK_AMOUNT:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

    def score_opportunity(self, opportunity: Opportunity) -> RiskAssessment:
        """
        Sum the amount, complexity, duration and payment-terms sub-scores.

        Args:
            opportunity: Opportunity to assess

        Returns:
            RiskAssessment with the total score, derived level and factor strings
        """
        amount = opportunity.amount
        if amount is None:
            amount = sum(item.total_price for item in opportunity.line_items)

        score = 0
        factors: List[str] = []
        for sub_score, sub_factors in (
            self._amount_risk(amount),
            self._complexity_risk(opportunity.line_items),
            self._duration_risk(
                opportunity.contract_start_date, opportunity.contract_end_date
            ),
            self._payment_terms_risk(opportunity.payment_terms),
        ):
            score += sub_score
            factors.extend(sub_factors)

        return RiskAssessment(
            risk_level=self._risk_level_for_score(score),
            score=score,
            factors=factors,
        )

    def _amount_risk(self, amount: float) -> SubScore:
        if amount > 100000:
            return 10, ["Very high value opportunity (>$100k)"]
        if amount > 50000:
            return 7, ["High value opportunity (>$50k)"]
        if amount > 10000:
            return 4, ["Medium value opportunity (>$10k)"]
        if amount > 1000:
            return 2, ["Low value opportunity (>$1k)"]
        return 0, []

    def _complexity_risk(self, line_items: Sequence[LineItem]) -> SubScore:
        score = 0
        factors = []

        if len(line_items) > 10:
            score += 8
            factors.append("Very complex order (>10 line items)")
        elif len(line_items) > 5:
            score += 5
            factors.append("Complex order (>5 line items)")
        elif len(line_items) > 2:
            score += 2
            factors.append("Multiple line items")

        if any(item.billing_period == BillingPeriod.ONE_TIME for item in line_items):
            score += 3
            factors.append("Contains one-time charges")

        if any(item.proration_needed for item in line_items):
            score += 4
            factors.append("Contains proration calculations")

        return score, factors

    def _duration_risk(self, start_date: str, end_date: str) -> SubScore:
        # 30-90 day contracts intentionally score 0
        start = parse_date(start_date, "contract_start_date")
        end = parse_date(end_date, "contract_end_date")
        duration_in_days = (end - start).days

        if duration_in_days > 365:
            return 6, ["Long-term contract (>1 year)"]
        if duration_in_days > 90:
            return 3, ["Medium-term contract (>3 months)"]
        if duration_in_days < 30:
            return 2, ["Short-term contract (<1 month)"]
        return 0, []

    def _payment_terms_risk(self, payment_terms: str) -> SubScore:
        terms = payment_terms or ""
        if "net_90" in terms or "net_120" in terms:
            return 5, ["Extended payment terms"]
        if "net_60" in terms:
            return 3, ["Long payment terms"]
        if "net_30" in terms:
            return 1, ["Standard payment terms"]
        if "due_on_receipt" in terms:
            return 0, ["Immediate payment"]
        return 0, []

    def _risk_level_for_score(self, score: int) -> RiskLevel:
        if score <= LOW_RISK_SCORE:
            return RiskLevel.LOW
        if score <= MEDIUM_RISK_SCORE:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH
