"""
Order-type action generators.

Each generator turns an opportunity (plus the customer's existing billing
state, where the order type needs one) into an ordered list of billing
actions. Provider calls run one at a time; what they create is recorded in
a per-call RollbackLedger so a mid-sequence failure can be compensated.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .amounts import as_quantity, to_cents
from .models import (
    BillingAction,
    BillingActionType,
    LineItem,
    Opportunity,
    OrderType,
    RecurlyAccount,
    RecurlyState,
    RecurlySubscription,
    RiskLevel,
)
from .observability import get_metrics_collector
from .proration import ProrationEngine
from .risk_calculator import RiskCalculator

logger = logging.getLogger(__name__)

ONE_TIME_REVIEW_THRESHOLD = 1000
HIGH_VALUE_ONE_TIME_THRESHOLD = 5000
PRICE_CHANGE_REVIEW_THRESHOLD = 1.00
CONVERSION_NET_TERMS = 30


@dataclass
class RollbackLedger:
    """Provider-side effects produced so far by one generate() call."""

    created_account: Optional[RecurlyAccount] = None
    created_subscriptions: List[RecurlySubscription] = field(default_factory=list)
    # (updated subscription, spec that restores its original values)
    updated_subscriptions: List[Tuple[RecurlySubscription, Dict[str, Any]]] = field(
        default_factory=list
    )
    cancelled_subscriptions: List[RecurlySubscription] = field(default_factory=list)
    applied_credits: List[Dict[str, Any]] = field(default_factory=list)
    charges: List[Dict[str, Any]] = field(default_factory=list)
    invoices: List[Dict[str, Any]] = field(default_factory=list)


def critical_error_action(
    opportunity: Opportunity, error: Any, description: Optional[str] = None
) -> BillingAction:
    """The single terminal action returned when processing fails outright."""
    return BillingAction(
        type=BillingActionType.ERROR,
        description=description
        or f"Critical error during {opportunity.order_type_label} processing",
        details={"error": str(error), "opportunity_id": opportunity.id},
        requires_review=True,
        risk_level=RiskLevel.HIGH,
        notes=["Processing completely failed", "Manual intervention required"],
    )


class ActionGenerator:
    """
    Base class for the per-order-type generators.

    Subclasses implement `_generate`, appending actions in line-item order
    and recording every provider side effect in the ledger they are given.
    """

    order_type: OrderType
    label: str = ""
    requires_existing_state: bool = True

    def __init__(
        self,
        provider,
        risk_calculator: RiskCalculator,
        proration_engine: Optional[ProrationEngine] = None,
    ):
        self.provider = provider
        self.risk_calculator = risk_calculator
        self.proration_engine = proration_engine or ProrationEngine()

    def generate(
        self, opportunity: Opportunity, state: Optional[RecurlyState] = None
    ) -> List[BillingAction]:
        if self.requires_existing_state and state is None:
            logger.warning(
                f"{self.label} opportunity {opportunity.id} has no existing Recurly account"
            )
            return [self._missing_state_action(opportunity)]

        actions: List[BillingAction] = []
        ledger = RollbackLedger()
        try:
            self._generate(opportunity, state, actions, ledger)
        except Exception as e:
            logger.exception(
                f"Error during {self.label} processing of {opportunity.id}; rolling back"
            )
            get_metrics_collector().record_rollback(self.order_type.value)
            self._compensate(ledger, actions)
            actions.append(
                BillingAction(
                    type=BillingActionType.ERROR,
                    description=f"Error during {self.label} processing",
                    details={"error": str(e), "opportunity_id": opportunity.id},
                    requires_review=True,
                    risk_level=RiskLevel.HIGH,
                    notes=["Processing halted, rollback attempted"],
                )
            )
        return actions

    def _generate(
        self,
        opportunity: Opportunity,
        state: Optional[RecurlyState],
        actions: List[BillingAction],
        ledger: RollbackLedger,
    ) -> None:
        raise NotImplementedError

    def _missing_state_action(self, opportunity: Opportunity) -> BillingAction:
        return BillingAction(
            type=BillingActionType.CREATE_ACCOUNT,
            description=f"ERROR: {self.label.capitalize()} opportunity but no existing Recurly account found",
            details={
                "opportunity_id": opportunity.id,
                "recurly_account_code": opportunity.recurly_account_code,
            },
            requires_review=True,
            risk_level=RiskLevel.HIGH,
            notes=[
                f"Manual intervention required - account should exist for {self.label}"
            ],
        )

    # =========================================================================
    # Shared steps
    # =========================================================================

    def _one_time_charge_action(
        self, item: LineItem, opportunity: Opportunity, ledger: RollbackLedger
    ) -> BillingAction:
        amount_in_cents = to_cents(item.total_price)
        details = {
            "product_code": item.product_code,
            "amount_in_cents": amount_in_cents,
            "description": item.description,
            "quantity": as_quantity(item.quantity),
            "immediate_invoice": bool(item.immediate_invoice),
        }
        notes = []
        if item.total_price >= HIGH_VALUE_ONE_TIME_THRESHOLD:
            notes.append("High-value one-time charge")
        if item.immediate_invoice:
            notes.append("Immediate invoicing required")

        ledger.charges.append(details)
        return BillingAction(
            type=BillingActionType.CHARGE_ONE_TIME,
            description=f"One-time charge: {item.product_name}",
            details=details,
            amount_in_cents=amount_in_cents,
            effective_date=opportunity.contract_start_date,
            requires_review=item.total_price > ONE_TIME_REVIEW_THRESHOLD,
            risk_level=self.risk_calculator.score_amount(item.total_price),
            notes=notes or None,
        )

    def _subscription_spec(self, item: LineItem, **extra) -> Dict[str, Any]:
        spec = {
            "plan_code": item.product_code,
            "unit_amount_in_cents": to_cents(item.unit_price),
            "quantity": as_quantity(item.quantity),
            "billing_period": item.billing_period.value,
        }
        spec.update(extra)
        return spec

    def _create_subscription(
        self, account_code: str, spec: Dict[str, Any], ledger: RollbackLedger
    ) -> RecurlySubscription:
        subscription = self.provider.create_subscription(account_code, spec)
        ledger.created_subscriptions.append(subscription)
        return subscription

    # =========================================================================
    # Compensation
    # =========================================================================

    def _compensate(self, ledger: RollbackLedger, actions: List[BillingAction]) -> None:
        """Undo what can be undone, then flag everything that cannot."""
        for subscription in ledger.created_subscriptions:
            try:
                self.provider.cancel_subscription(subscription.uuid)
            except Exception as e:
                logger.error(
                    f"Rollback failed for subscription {subscription.uuid}: {e}"
                )
                actions.append(
                    BillingAction(
                        type=BillingActionType.ERROR,
                        description=f"Rollback failed: could not cancel subscription {subscription.plan_code}",
                        details={"subscription_id": subscription.uuid, "error": str(e)},
                        requires_review=True,
                        risk_level=RiskLevel.HIGH,
                        notes=["Rollback failed", "Cancel the subscription manually"],
                    )
                )
            else:
                actions.append(
                    BillingAction(
                        type=BillingActionType.CANCEL_SUBSCRIPTION,
                        description=f"Rollback: Cancel subscription {subscription.plan_code}",
                        details={"subscription_id": subscription.uuid},
                        requires_review=True,
                        risk_level=RiskLevel.HIGH,
                        notes=[f"Rollback due to error during {self.label} processing"],
                    )
                )

        for subscription, original in ledger.updated_subscriptions:
            try:
                self.provider.update_subscription(subscription.uuid, original)
            except Exception as e:
                logger.error(
                    f"Rollback failed for subscription {subscription.uuid}: {e}"
                )
                actions.append(
                    BillingAction(
                        type=BillingActionType.ERROR,
                        description=f"Rollback failed: could not restore subscription {subscription.plan_code}",
                        details={"subscription_id": subscription.uuid, "error": str(e)},
                        requires_review=True,
                        risk_level=RiskLevel.HIGH,
                        notes=["Rollback failed", "Restore the original price manually"],
                    )
                )
            else:
                actions.append(
                    BillingAction(
                        type=BillingActionType.UPDATE_SUBSCRIPTION,
                        description=f"Rollback: Restore subscription {subscription.plan_code} to original state",
                        details={"subscription_id": subscription.uuid, "restored_to": original},
                        requires_review=True,
                        risk_level=RiskLevel.HIGH,
                        notes=[f"Rollback due to error during {self.label} processing"],
                    )
                )

        notes = [
            "Manual intervention required to reverse charges and credits "
            "and to restore cancelled subscriptions"
        ]
        if ledger.created_account:
            notes.append(
                f"Account {ledger.created_account.account_code} was created and must be closed manually"
            )
        actions.append(
            BillingAction(
                type=BillingActionType.ERROR,
                description="One-time charges, credits and cancellations of existing "
                "subscriptions cannot be automatically reversed",
                details={
                    "created_account": ledger.created_account.account_code
                    if ledger.created_account
                    else None,
                    "charges": ledger.charges,
                    "invoices": ledger.invoices,
                    "applied_credits": ledger.applied_credits,
                    "cancelled_subscriptions": [
                        s.uuid for s in ledger.cancelled_subscriptions
                    ],
                },
                requires_review=True,
                risk_level=RiskLevel.HIGH,
                notes=notes,
            )
        )


class NewBusinessActionGenerator(ActionGenerator):
    """Account creation followed by one action per line item."""

    order_type = OrderType.NEW_BUSINESS
    label = "new business"
    requires_existing_state = False

    def _generate(self, opportunity, state, actions, ledger):
        contact = opportunity.contact_info
        first_name, _, last_name = contact.primary_contact.partition(" ")
        account = self.provider.create_account({
            "account_code": opportunity.account_id,
            "company_name": contact.billing_address.company,
            "email": contact.email,
            "first_name": first_name,
            "last_name": last_name,
        })
        ledger.created_account = account
        actions.append(
            BillingAction(
                type=BillingActionType.CREATE_ACCOUNT,
                description=f"Create new Recurly account for {opportunity.account_name}",
                details=account.model_dump(),
                requires_review=False,
                risk_level=RiskLevel.LOW,
            )
        )

        for item in opportunity.line_items:
            if item.is_one_time:
                actions.append(self._one_time_charge_action(item, opportunity, ledger))
                continue

            subscription = self._create_subscription(
                account.account_code,
                self._subscription_spec(
                    item,
                    start_date=opportunity.contract_start_date,
                    end_date=opportunity.contract_end_date,
                ),
                ledger,
            )
            actions.append(
                BillingAction(
                    type=BillingActionType.CREATE_SUBSCRIPTION,
                    description=f"Create subscription: {item.product_name} ({item.billing_period.value})",
                    details=subscription.model_dump(),
                    amount_in_cents=to_cents(item.total_price),
                    effective_date=opportunity.contract_start_date,
                    requires_review=False,
                    risk_level=RiskLevel.LOW,
                )
            )


class RenewalActionGenerator(ActionGenerator):
    """Updates matching subscriptions and adds new products to the renewal."""

    order_type = OrderType.RENEWAL
    label = "renewal"

    def _generate(self, opportunity, state, actions, ledger):
        account_code = state.account.account_code
        for item in opportunity.line_items:
            existing = find_matching_subscription(state, item)
            if existing:
                actions.append(self._update_action(item, existing, opportunity, ledger))
            else:
                subscription = self._create_subscription(
                    account_code, self._subscription_spec(item), ledger
                )
                actions.append(
                    BillingAction(
                        type=BillingActionType.CREATE_SUBSCRIPTION,
                        description=f"Create new subscription: {item.product_name}",
                        details=subscription.model_dump(),
                        amount_in_cents=to_cents(item.total_price),
                        effective_date=opportunity.contract_start_date,
                        requires_review=True,
                        risk_level=RiskLevel.MEDIUM,
                        notes=["New product added during renewal"],
                    )
                )

    def _update_action(
        self,
        item: LineItem,
        existing: RecurlySubscription,
        opportunity: Opportunity,
        ledger: RollbackLedger,
    ) -> BillingAction:
        original = {
            "plan_code": existing.plan_code,
            "unit_amount_in_cents": existing.unit_amount_in_cents,
            "quantity": as_quantity(existing.quantity),
        }
        price_change = item.unit_price - existing.unit_amount_in_cents / 100

        updated = self.provider.update_subscription(
            existing.uuid,
            {
                "plan_code": item.product_code,
                "unit_amount_in_cents": to_cents(item.unit_price),
                "quantity": as_quantity(item.quantity),
            },
        )
        ledger.updated_subscriptions.append((updated, original))

        details = updated.model_dump()
        details["previous_unit_amount_in_cents"] = existing.unit_amount_in_cents
        details["price_change_in_cents"] = to_cents(price_change)
        return BillingAction(
            type=BillingActionType.UPDATE_SUBSCRIPTION,
            description=f"Update subscription: {item.product_name}",
            details=details,
            amount_in_cents=to_cents(item.total_price),
            effective_date=opportunity.contract_start_date,
            requires_review=abs(price_change) > PRICE_CHANGE_REVIEW_THRESHOLD,
            risk_level=self.risk_calculator.score_amount(abs(price_change)),
            notes=[item.price_change_reason] if item.price_change_reason else None,
        )


class InsertionOrderActionGenerator(ActionGenerator):
    """Mid-contract additions: outstanding invoices, charges, prorations, add-ons."""

    order_type = OrderType.INSERTION_ORDER
    label = "insertion order"

    def _generate(self, opportunity, state, actions, ledger):
        outstanding = opportunity.outstanding_invoices
        if outstanding and outstanding.has_outstanding:
            total = outstanding.total_outstanding or 0
            details = {
                "invoice_ids": outstanding.invoice_ids,
                "total_amount": total,
            }
            ledger.invoices.append(details)
            actions.append(
                BillingAction(
                    type=BillingActionType.CREATE_INVOICE,
                    description=f"Process outstanding invoices: ${total:,.2f}",
                    details=details,
                    amount_in_cents=to_cents(total),
                    requires_review=True,
                    risk_level=RiskLevel.MEDIUM,
                    notes=["Outstanding invoices must be processed before new charges"],
                )
            )

        account_code = state.account.account_code
        for item in opportunity.line_items:
            if item.is_one_time:
                actions.append(self._one_time_charge_action(item, opportunity, ledger))
            elif item.proration_needed:
                actions.append(self._proration_action(item, opportunity, ledger))
            else:
                spec = self._subscription_spec(item)
                if item.item_classification:
                    spec["item_classification"] = item.item_classification.value
                subscription = self._create_subscription(account_code, spec, ledger)
                actions.append(
                    BillingAction(
                        type=BillingActionType.CREATE_SUBSCRIPTION,
                        description=f"Add subscription: {item.product_name}",
                        details=subscription.model_dump(),
                        amount_in_cents=to_cents(item.total_price),
                        effective_date=opportunity.contract_start_date,
                        requires_review=False,
                        risk_level=RiskLevel.LOW,
                    )
                )

    def _proration_action(
        self, item: LineItem, opportunity: Opportunity, ledger: RollbackLedger
    ) -> BillingAction:
        result = self.proration_engine.calculate_proration(
            item,
            opportunity.contract_start_date,
            opportunity.contract_end_date,
            opportunity.billing_frequency,
            opportunity.proration_details,
        )
        classification = (
            item.item_classification.value if item.item_classification else "unknown"
        )
        details = {
            "product_code": item.product_code,
            "monthly_amount": to_cents(item.unit_price),
            "months_remaining": item.months_remaining or 0,
            "proration_date": opportunity.contract_start_date,
            "proration_amount": result.amount_in_cents,
            "item_classification": classification,
            "affects_base_subscription": bool(item.affects_base_subscription),
            "calculation_method": result.calculation_method,
            "days_calculated": result.days_calculated,
        }
        ledger.charges.append(details)
        return BillingAction(
            type=BillingActionType.PRORATE_CHARGES,
            description=f"Prorate charges for: {item.product_name}",
            details=details,
            amount_in_cents=result.amount_in_cents,
            effective_date=opportunity.contract_start_date,
            requires_review=True,
            risk_level=RiskLevel.MEDIUM,
            notes=[
                "Proration calculation - verify dates and amounts",
                f"Calculation method: {result.calculation_method}",
                f"Classification: {classification}",
                *result.notes,
            ],
        )


class ConversionActionGenerator(ActionGenerator):
    """Self-service to direct-sales conversion: cancel, credit, re-subscribe on invoice terms."""

    order_type = OrderType.CONVERSION_ORDER
    label = "conversion"

    def _generate(self, opportunity, state, actions, ledger):
        for subscription in state.subscriptions:
            if subscription.state != "active":
                continue
            self.provider.cancel_subscription(subscription.uuid)
            ledger.cancelled_subscriptions.append(subscription)
            actions.append(
                BillingAction(
                    type=BillingActionType.CANCEL_SUBSCRIPTION,
                    description=f"Cancel self-service subscription: {subscription.plan_code}",
                    details={
                        "subscription_id": subscription.uuid,
                        "plan_code": subscription.plan_code,
                        "cancellation_date": opportunity.contract_start_date,
                        "current_amount": subscription.unit_amount_in_cents,
                    },
                    requires_review=False,
                    risk_level=RiskLevel.MEDIUM,
                    notes=["Ensure no service interruption during transition"],
                )
            )

        transition = opportunity.billing_transition
        if transition and transition.credit_amount_due:
            credit_in_cents = to_cents(transition.credit_amount_due)
            details = {
                "credit_amount_in_cents": credit_in_cents,
                "description": transition.credit_calculation,
                "credit_reason": "Self-service to enterprise conversion",
            }
            ledger.applied_credits.append(details)
            actions.append(
                BillingAction(
                    type=BillingActionType.APPLY_CREDIT,
                    description="Apply credit for unused self-service period",
                    details=details,
                    amount_in_cents=credit_in_cents,
                    effective_date=transition.transition_date,
                    requires_review=True,
                    risk_level=RiskLevel.MEDIUM,
                    notes=["Verify credit calculation is correct"],
                )
            )

        account_code = state.account.account_code
        for item in opportunity.line_items:
            subscription = self._create_subscription(
                account_code,
                self._subscription_spec(
                    item,
                    collection_method="manual",
                    net_terms=CONVERSION_NET_TERMS,
                    replaces_self_service=bool(item.replaces_self_service),
                ),
                ledger,
            )
            actions.append(
                BillingAction(
                    type=BillingActionType.CREATE_SUBSCRIPTION,
                    description=f"Create enterprise subscription: {item.product_name}",
                    details=subscription.model_dump(),
                    amount_in_cents=to_cents(item.total_price),
                    effective_date=opportunity.contract_start_date,
                    requires_review=False,
                    risk_level=RiskLevel.LOW,
                )
            )


def find_matching_subscription(
    state: RecurlyState, item: LineItem
) -> Optional[RecurlySubscription]:
    """Exact plan-code match first, then substring match in either direction."""
    code = item.product_code
    for subscription in state.subscriptions:
        if subscription.plan_code == code:
            return subscription
    for subscription in state.subscriptions:
        if code in subscription.plan_code or subscription.plan_code in code:
            return subscription
    return None
