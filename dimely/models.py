from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any, Literal
from enum import Enum


# ============ Enumerations ============


class OrderType(str, Enum):
    """Opportunity order types handled by the engine."""

    NEW_BUSINESS = "new_business"
    RENEWAL = "renewal"
    INSERTION_ORDER = "insertion_order"
    CONVERSION_ORDER = "conversion_order"


class BillingFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    ONE_TIME = "one_time"


class ItemClassification(str, Enum):
    """How a line item relates to the customer's base subscription."""

    SUBSCRIPTION_CONSUMPTION = "subscription_consumption"
    NON_SUBSCRIPTION_CONSUMPTION = "non_subscription_consumption"
    ONE_TIME_SERVICE = "one_time_service"


class BillingActionType(str, Enum):
    CREATE_ACCOUNT = "create_account"
    UPDATE_ACCOUNT = "update_account"
    CREATE_SUBSCRIPTION = "create_subscription"
    UPDATE_SUBSCRIPTION = "update_subscription"
    CANCEL_SUBSCRIPTION = "cancel_subscription"
    CREATE_INVOICE = "create_invoice"
    APPLY_CREDIT = "apply_credit"
    CHARGE_ONE_TIME = "charge_one_time"
    PRORATE_CHARGES = "prorate_charges"
    ERROR = "error"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============ Opportunity Models ============


class LineItem(BaseModel):
    """One priced product/service entry within an opportunity.

    Prices are in major currency units (dollars); the engine converts them
    to cents when emitting billing actions.
    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    product_name: str
    product_code: str
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    billing_period: BillingPeriod
    description: str = ""

    item_classification: Optional[ItemClassification] = None

    # Scenario-specific flags
    previous_price: Optional[float] = None
    price_change_reason: Optional[str] = None
    is_new_product: Optional[bool] = None
    proration_needed: Optional[bool] = None
    months_remaining: Optional[int] = None
    affects_base_subscription: Optional[bool] = None
    immediate_invoice: Optional[bool] = None
    replaces_self_service: Optional[bool] = None
    self_service_credit_needed: Optional[bool] = None
    is_new_service: Optional[bool] = None

    @property
    def is_one_time(self) -> bool:
        return self.billing_period == BillingPeriod.ONE_TIME

    @property
    def affects_subscription(self) -> bool:
        """True when the item changes the base recurring subscription price."""
        return (
            self.item_classification == ItemClassification.SUBSCRIPTION_CONSUMPTION
            or bool(self.affects_base_subscription)
        )


class BillingAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    company: str
    address_line_1: str = ""
    address_line_2: Optional[str] = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class ContactInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary_contact: str = ""
    email: str
    billing_address: BillingAddress


class BillingScenarios(BaseModel):
    """Free-text scenario hints; presence of a value flags the scenario."""

    model_config = ConfigDict(frozen=True)

    immediate_invoice: Optional[str] = None
    subscription_update: Optional[str] = None
    future_billing: Optional[str] = None


class ProrationDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_period_end: Optional[str] = None
    next_invoice_date: Optional[str] = None
    upsell_start_date: Optional[str] = None
    contract_end_date: Optional[str] = None
    payment_frequency: Optional[str] = None
    months_to_prorate: Optional[int] = None
    days_to_prorate: Optional[int] = None
    proration_methods: Optional[Dict[str, str]] = None
    billing_scenarios: Optional[BillingScenarios] = None


class BillingTransition(BaseModel):
    """Self-service to direct-sales payment transition data."""

    model_config = ConfigDict(frozen=True)

    credit_amount_due: Optional[float] = None
    credit_calculation: Optional[str] = None
    from_payment_method: Optional[str] = None
    to_payment_method: Optional[str] = None
    transition_date: Optional[str] = None


class OutstandingInvoices(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_outstanding: bool = False
    invoice_ids: List[str] = Field(default_factory=list)
    total_outstanding: Optional[float] = None
    requires_processing: Optional[bool] = None


class Opportunity(BaseModel):
    """
    Immutable sales-order record.

    Required-field checks beyond the structural types (non-empty ids,
    positive prices, start before end) are performed by the billing engine
    so that a bad record yields an `error` action instead of an exception.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: OrderType
    account_name: str = ""
    account_id: str
    recurly_account_code: Optional[str] = None
    opportunity_name: str = ""
    close_date: Optional[str] = None
    amount: Optional[float] = None
    contract_start_date: str
    contract_end_date: str
    billing_frequency: BillingFrequency = BillingFrequency.MONTHLY
    payment_terms: str = ""
    line_items: List[LineItem] = Field(default_factory=list)
    contact_info: ContactInfo
    sales_rep: str = ""
    notes: Optional[str] = None

    # Order-specific fields
    previous_contract: Optional[Dict[str, Any]] = None
    existing_contract: Optional[Dict[str, Any]] = None
    existing_self_service: Optional[Dict[str, Any]] = None
    renewal_notes: Optional[List[str]] = None
    insertion_notes: Optional[List[str]] = None
    conversion_notes: Optional[List[str]] = None
    proration_details: Optional[ProrationDetails] = None
    billing_transition: Optional[BillingTransition] = None
    outstanding_invoices: Optional[OutstandingInvoices] = None

    @property
    def order_type_label(self) -> str:
        return self.type.value if isinstance(self.type, OrderType) else str(self.type)


# ============ Recurly Snapshot Models ============


class RecurlyAccount(BaseModel):
    account_code: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    company_name: str = ""
    state: Literal["active", "closed", "past_due"] = "active"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    billing_info: Optional[Dict[str, Any]] = None
    address: Optional[Dict[str, Any]] = None


class RecurlySubscription(BaseModel):
    uuid: str
    plan_code: str
    state: Literal[
        "active",
        "canceled",
        "expired",
        "future",
        "in_trial",
        "live",
        "paused",
        "past_due",
    ] = "active"
    unit_amount_in_cents: int = 0
    quantity: float = 1
    current_period_started_at: Optional[str] = None
    current_period_ends_at: Optional[str] = None
    started_at: Optional[str] = None
    expires_at: Optional[str] = None
    collection_method: Literal["automatic", "manual"] = "automatic"
    net_terms: int = 0
    add_ons: List[Dict[str, Any]] = Field(default_factory=list)


class RecurlyInvoice(BaseModel):
    invoice_number: str
    state: str
    total_in_cents: int = 0
    created_at: Optional[str] = None
    due_at: Optional[str] = None
    closed_at: Optional[str] = None
    line_items: List[Dict[str, Any]] = Field(default_factory=list)


class RecurlyTransaction(BaseModel):
    type: str
    action: str = ""
    amount_in_cents: int = 0
    status: Literal["success", "failed", "void", "pending"] = "success"
    created_at: Optional[str] = None
    invoice_number: Optional[str] = None


class RecurlyCredit(BaseModel):
    type: str
    amount_in_cents: int = 0
    description: str = ""


class RecurlyState(BaseModel):
    """Read-only snapshot of a customer's billing state at the provider."""

    model_config = ConfigDict(frozen=True)

    account: RecurlyAccount
    subscriptions: List[RecurlySubscription] = Field(default_factory=list)
    invoices: List[RecurlyInvoice] = Field(default_factory=list)
    transactions: List[RecurlyTransaction] = Field(default_factory=list)
    credits: List[RecurlyCredit] = Field(default_factory=list)


# ============ Engine Output Models ============


class BillingAction(BaseModel):
    """One discrete billing instruction destined for human review."""

    model_config = ConfigDict(frozen=True)

    type: BillingActionType
    description: str
    details: Dict[str, Any] = Field(default_factory=dict)
    amount_in_cents: Optional[int] = None
    effective_date: Optional[str] = None
    requires_review: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    notes: Optional[List[str]] = None


class ProrationResult(BaseModel):
    amount_in_cents: int = Field(..., ge=0)
    calculation_method: str
    days_calculated: int = 0
    billing_frequency: str
    notes: List[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    risk_level: RiskLevel
    score: int
    factors: List[str] = Field(default_factory=list)


class ValidationIssue(BaseModel):
    field: str
    message: str
    value: Optional[Any] = None


class ReviewSheet(BaseModel):
    opportunity_id: str
    opportunity_name: str
    account_name: str
    total_actions: int
    high_risk_actions: int
    estimated_total_impact: int = Field(
        ..., description="Net monetary impact in cents"
    )
    billing_actions: List[BillingAction]
    summary: str
    warnings: List[str] = Field(default_factory=list)
    manual_review_required: bool
    generated_at: str


class ProcessingResult(BaseModel):
    success: bool
    review_sheet: Optional[ReviewSheet] = None
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
