"""
Billing engine: validates an opportunity, scores its risk and dispatches it
to the order-type generator. Always returns a list of actions; never raises.
"""

import logging
import time
from typing import List, Optional

from .action_factory import ActionFactory
from .action_generators import critical_error_action
from .models import (
    BillingAction,
    BillingActionType,
    Opportunity,
    RecurlyState,
    RiskAssessment,
    RiskLevel,
)
from .observability import get_metrics_collector, trace_function
from .proration import Clock, ProrationEngine
from .risk_calculator import RiskCalculator
from .validation_utils import validate_opportunity

logger = logging.getLogger(__name__)


class BillingEngine:
    """
    Turns an opportunity and the customer's billing state into billing actions.

    Args:
        provider: Billing provider (RecurlyClient or any object with the same
                  create/update/cancel methods)
        clock: Callable returning today's date, used by proration
    """

    def __init__(self, provider, clock: Optional[Clock] = None):
        self.provider = provider
        self.risk_calculator = RiskCalculator()
        self.proration_engine = ProrationEngine(clock=clock)
        self.action_factory = ActionFactory(
            provider, self.risk_calculator, self.proration_engine
        )

    @trace_function(span_name="billing_engine.generate_actions", attributes={"component": "engine"})
    def generate_actions(
        self, opportunity: Opportunity, state: Optional[RecurlyState] = None
    ) -> List[BillingAction]:
        metrics = get_metrics_collector()
        order_type = opportunity.order_type_label
        start_time = time.time()

        try:
            errors = validate_opportunity(opportunity)
            if errors:
                logger.warning(
                    f"Opportunity {opportunity.id} failed validation: {'; '.join(errors)}"
                )
                actions = [self._validation_error_action(opportunity, errors)]
                metrics.record_opportunity(
                    order_type, (time.time() - start_time) * 1000, success=False
                )
                return actions

            assessment = self.risk_calculator.score_opportunity(opportunity)
            logger.info(
                f"Opportunity {opportunity.id} risk: {assessment.risk_level.value} "
                f"(score {assessment.score})"
            )

            actions = self.action_factory.generate_actions(opportunity, state)
            if assessment.risk_level == RiskLevel.HIGH:
                actions.insert(0, self._high_risk_action(opportunity, assessment))
        except Exception as e:
            logger.exception(f"Billing engine failed for {opportunity.id}")
            actions = [critical_error_action(opportunity, e)]

        success = not any(a.type == BillingActionType.ERROR for a in actions)
        metrics.record_opportunity(
            order_type, (time.time() - start_time) * 1000, success=success
        )
        metrics.record_actions(order_type, actions)
        logger.info(f"Generated {len(actions)} billing actions for {opportunity.id}")
        return actions

    def _validation_error_action(
        self, opportunity: Opportunity, errors: List[str]
    ) -> BillingAction:
        return BillingAction(
            type=BillingActionType.ERROR,
            description="Opportunity validation failed",
            details={"errors": errors, "opportunity_id": opportunity.id},
            requires_review=True,
            risk_level=RiskLevel.HIGH,
            notes=errors,
        )

    def _high_risk_action(
        self, opportunity: Opportunity, assessment: RiskAssessment
    ) -> BillingAction:
        return BillingAction(
            type=BillingActionType.ERROR,
            description="High-risk opportunity detected",
            details={
                "risk_score": assessment.score,
                "risk_factors": assessment.factors,
                "opportunity_id": opportunity.id,
            },
            requires_review=True,
            risk_level=RiskLevel.HIGH,
            notes=[
                f"Risk score: {assessment.score}",
                *assessment.factors,
                "Senior review required before execution",
            ],
        )
