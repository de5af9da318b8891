"""
Order-type dispatch.

Maps each OrderType to its generator. Anything a generator lets escape,
and any order type without a generator, becomes one synthetic high-risk
error action.
"""

import logging
from typing import Dict, List, Optional

from .action_generators import (
    ActionGenerator,
    ConversionActionGenerator,
    InsertionOrderActionGenerator,
    NewBusinessActionGenerator,
    RenewalActionGenerator,
    critical_error_action,
)
from .exceptions import UnsupportedOrderTypeError
from .models import BillingAction, Opportunity, OrderType, RecurlyState
from .proration import ProrationEngine
from .risk_calculator import RiskCalculator

logger = logging.getLogger(__name__)


class ActionFactory:
    """Selects and runs the generator for an opportunity's order type."""

    def __init__(
        self,
        provider,
        risk_calculator: Optional[RiskCalculator] = None,
        proration_engine: Optional[ProrationEngine] = None,
    ):
        risk_calculator = risk_calculator or RiskCalculator()
        proration_engine = proration_engine or ProrationEngine()
        self._generators: Dict[OrderType, ActionGenerator] = {
            generator_class.order_type: generator_class(
                provider, risk_calculator, proration_engine
            )
            for generator_class in (
                NewBusinessActionGenerator,
                RenewalActionGenerator,
                InsertionOrderActionGenerator,
                ConversionActionGenerator,
            )
        }

    def get_action_generator(self, order_type) -> ActionGenerator:
        generator = self._generators.get(order_type)
        if generator is None:
            raise UnsupportedOrderTypeError(order_type)
        return generator

    def generate_actions(
        self, opportunity: Opportunity, state: Optional[RecurlyState] = None
    ) -> List[BillingAction]:
        try:
            generator = self.get_action_generator(opportunity.type)
            return generator.generate(opportunity, state)
        except Exception as e:
            logger.exception(f"Action generation failed for {opportunity.id}")
            return [critical_error_action(opportunity, e)]
