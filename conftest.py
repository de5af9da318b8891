"""
Shared fixtures: sample opportunities, a recording fake billing provider and
a fixed clock. OpenTelemetry export is disabled for the whole test run.
"""

import os

os.environ["OTEL_ENABLED"] = "false"
os.environ.setdefault("RECURLY_USE_MOCK_DATA", "true")

from datetime import date
from typing import Any, Dict, Optional

import pytest

from dimely.exceptions import RecurlyApiError
from dimely.models import (
    LineItem,
    Opportunity,
    RecurlyAccount,
    RecurlyState,
    RecurlySubscription,
)

FIXED_TODAY = date(2024, 11, 1)
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
MOCK_DATA_PATH = os.path.join(REPO_ROOT, "mock-apis")
SAMPLE_DATA_PATH = os.path.join(REPO_ROOT, "sample-data")


class FakeProvider:
    """
    In-memory billing provider that records every call.

    fail_on maps an operation name to the 1-based call number that should
    raise RecurlyApiError, e.g. {"create_subscription": 2}.
    """

    def __init__(
        self,
        fail_on: Optional[Dict[str, int]] = None,
        states: Optional[Dict[str, RecurlyState]] = None,
    ):
        self.fail_on = fail_on or {}
        self.states = states or {}
        self.calls = []
        self._next_id = 0

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        count = sum(1 for call in self.calls if call[0] == operation)
        if self.fail_on.get(operation) == count:
            raise RecurlyApiError(
                operation.replace("_", " "), "simulated provider failure", status_code=500
            )

    def operations(self):
        return [call[0] for call in self.calls]

    def get_account_state(self, account_code: str) -> Optional[RecurlyState]:
        self._record("get_account_state", account_code)
        return self.states.get(account_code)

    def create_account(self, fields: Dict[str, Any]) -> RecurlyAccount:
        self._record("create_account", fields)
        return RecurlyAccount(
            account_code=fields["account_code"],
            email=fields.get("email", ""),
            first_name=fields.get("first_name", ""),
            last_name=fields.get("last_name", ""),
            company_name=fields.get("company_name", ""),
        )

    def create_subscription(
        self, account_code: str, spec: Dict[str, Any]
    ) -> RecurlySubscription:
        self._record("create_subscription", account_code, spec)
        self._next_id += 1
        return RecurlySubscription(
            uuid=f"fake_sub_{self._next_id}",
            plan_code=spec["plan_code"],
            unit_amount_in_cents=spec.get("unit_amount_in_cents", 0),
            quantity=spec.get("quantity", 1),
            collection_method=spec.get("collection_method", "automatic"),
            net_terms=spec.get("net_terms", 0),
        )

    def update_subscription(
        self, subscription_id: str, spec: Dict[str, Any]
    ) -> RecurlySubscription:
        self._record("update_subscription", subscription_id, spec)
        return RecurlySubscription(
            uuid=subscription_id,
            plan_code=spec["plan_code"],
            unit_amount_in_cents=spec.get("unit_amount_in_cents", 0),
            quantity=spec.get("quantity", 1),
        )

    def cancel_subscription(self, subscription_id: str) -> None:
        self._record("cancel_subscription", subscription_id)


def make_line_item(**overrides) -> LineItem:
    data = {
        "id": "li_1",
        "product_name": "Platform Pro",
        "product_code": "platform_pro",
        "quantity": 1,
        "unit_price": 1000,
        "total_price": 1000,
        "billing_period": "monthly",
    }
    data.update(overrides)
    return LineItem(**data)


def make_opportunity(**overrides) -> Opportunity:
    data = {
        "id": "opp_test_001",
        "type": "new_business",
        "account_name": "Acme Corp",
        "account_id": "acme_corp",
        "opportunity_name": "Acme Corp - Platform",
        "amount": 6000,
        "contract_start_date": "2024-11-01",
        "contract_end_date": "2025-10-31",
        "billing_frequency": "monthly",
        "payment_terms": "net_30",
        "line_items": [make_line_item()],
        "contact_info": {
            "primary_contact": "Jane Smith",
            "email": "jane@acme.example",
            "billing_address": {"company": "Acme Corp", "country": "US"},
        },
        "sales_rep": "Sam Seller",
    }
    data.update(overrides)
    return Opportunity(**data)


def make_state(subscriptions=None, account_code: str = "acme_corp") -> RecurlyState:
    return RecurlyState(
        account=RecurlyAccount(account_code=account_code, company_name="Acme Corp"),
        subscriptions=subscriptions or [],
    )


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_TODAY


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def new_business_opportunity():
    """$1,000/mo subscription plus a $5,000 one-time setup fee."""
    return make_opportunity(
        line_items=[
            make_line_item(),
            make_line_item(
                id="li_2",
                product_name="Setup Fee",
                product_code="setup_fee",
                unit_price=5000,
                total_price=5000,
                billing_period="one_time",
            ),
        ]
    )


@pytest.fixture
def existing_state():
    return make_state(
        subscriptions=[
            RecurlySubscription(
                uuid="sub_existing_1",
                plan_code="platform_pro",
                state="active",
                unit_amount_in_cents=80000,
                quantity=1,
            )
        ]
    )
